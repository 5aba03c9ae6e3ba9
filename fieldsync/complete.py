from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from .models import AnyRecord, CompleteDatasetPayload, CompositeKey, now_iso


def latest_per_key(records: Iterable[AnyRecord]) -> list[AnyRecord]:
    latest: dict[CompositeKey, AnyRecord] = {}
    for record in records:
        current = latest.get(record.key)
        if current is None or (record.last_updated_at, record.rev) >= (
            current.last_updated_at,
            current.rev,
        ):
            latest[record.key] = record
    return sorted(
        latest.values(),
        key=lambda r: (r.key.data_element, r.key.category_option_combo),
    )


def group_by_section(
    records: Iterable[AnyRecord], section_map: Mapping[str, Sequence[str]]
) -> dict[str, list[AnyRecord]]:
    """Bucket records by section id using ``{section_id: [data_element, ...]}``.

    A data element listed under several sections lands in the first one.
    """

    grouped: dict[str, list[AnyRecord]] = {section_id: [] for section_id in section_map}
    for record in records:
        for section_id, elements in section_map.items():
            if record.key.data_element in elements:
                grouped[section_id].append(record)
                break
    return grouped


def build_complete_payload(
    records: Iterable[AnyRecord],
    *,
    source: str,
    period: str,
    data_set: str,
    completed_by: str | None = None,
) -> CompleteDatasetPayload:
    selected = [r for r in records if r.key.source == source and r.key.period == period]
    return CompleteDatasetPayload(
        source=source,
        period=period,
        data_set=data_set,
        completed_at=now_iso(),
        completed_by=completed_by,
        records=latest_per_key(selected),
    )
