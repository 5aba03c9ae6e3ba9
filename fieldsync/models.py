from __future__ import annotations

import datetime as dt
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar, NamedTuple, Self
from uuid import uuid4

from .errors import MissingContextError
from .validation import CustomLogic, ValidationRules, parse_custom_logic

KIND_VALUE = "value"
KIND_RECORD = "record"
DEFAULT_CATEGORY_OPTION_COMBO = "HllvX50cXC0"
DEFAULT_AUTO_SAVE_DELAY_MS = 400


def now_iso() -> str:
    return dt.datetime.now(dt.UTC).isoformat()


def new_local_id() -> str:
    return str(uuid4())


class CompositeKey(NamedTuple):
    source: str
    period: str
    data_element: str
    category_option_combo: str = ""
    attribute_option_combo: str = ""

    def label(self) -> str:
        return "/".join(part or "-" for part in self)


@dataclass(frozen=True, kw_only=True)
class _StoredRecord:
    key: CompositeKey
    comment: str | None = None
    followup: bool = False
    created_at: str = ""
    last_updated_at: str = ""
    synced: bool = False
    local_id: str = field(default_factory=new_local_id)
    rev: int = 0
    saved_by: str | None = None

    kind: ClassVar[str] = ""

    def as_synced(self) -> Self:
        return replace(self, synced=True)

    def _identity_payload(self) -> dict[str, Any]:
        return {
            "uuid": self.local_id,
            "source": self.key.source,
            "period": self.key.period,
            "dataElement": self.key.data_element,
            "categoryOptionCombo": self.key.category_option_combo,
            "attributeOptionCombo": self.key.attribute_option_combo,
            "comment": self.comment,
            "followup": self.followup,
            "created": self.created_at,
            "lastUpdated": self.last_updated_at,
            "savedBy": self.saved_by,
            "synced": self.synced,
        }


@dataclass(frozen=True, kw_only=True)
class ValueRecord(_StoredRecord):
    """One scalar field value, serialized to a string."""

    value: str = ""

    kind: ClassVar[str] = KIND_VALUE

    def payload(self) -> dict[str, Any]:
        data = self._identity_payload()
        data["value"] = self.value
        return data


@dataclass(frozen=True, kw_only=True)
class RecordPayload(_StoredRecord):
    """A structured field value: sub-field name to scalar."""

    data: dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[str] = KIND_RECORD

    def payload(self) -> dict[str, Any]:
        payload = self._identity_payload()
        payload["data"] = dict(self.data)
        return payload


AnyRecord = ValueRecord | RecordPayload


@dataclass
class SyncContext:
    """The org unit / period selection a coordinator captures data for."""

    source: str = ""
    period: str = ""
    data_set: str | None = None
    attribute_option_combo: str = ""
    saved_by: str | None = None

    def require(self) -> None:
        if not self.source or not self.period:
            raise MissingContextError("Missing required source ID or period")


@dataclass
class FieldSpec:
    """Metadata for one input: identity, rules and auto-save tuning."""

    data_element: str
    category_option_combo: str = DEFAULT_CATEGORY_OPTION_COMBO
    kind: str = KIND_VALUE
    rules: ValidationRules = field(default_factory=ValidationRules)
    sub_rules: dict[str, ValidationRules] = field(default_factory=dict)
    custom_logic: CustomLogic | None = None
    multi_select: bool = False
    auto_save_delay_ms: int | None = None
    comment: str | None = None
    section: str | None = None

    def key(self, context: SyncContext) -> CompositeKey:
        return CompositeKey(
            source=context.source,
            period=context.period,
            data_element=self.data_element,
            category_option_combo=self.category_option_combo,
            attribute_option_combo=context.attribute_option_combo,
        )

    @classmethod
    def from_metadata(cls, data: Mapping[str, Any]) -> FieldSpec:
        """Build a field from a data-element metadata mapping (camelCase keys)."""

        combo = data.get("categoryCombo")
        combo_id = combo.get("id") if isinstance(combo, Mapping) else None
        styles = data.get("formStyles")
        help_text = styles.get("helpText") if isinstance(styles, Mapping) else None
        section = data.get("section")
        section_name = section.get("name") if isinstance(section, Mapping) else section
        rules_data = dict(data.get("validationRules") or {})
        if data.get("valueType") and "valueType" not in rules_data:
            rules_data["valueType"] = data["valueType"]
        delay = data.get("autoSaveDelay")
        return cls(
            data_element=str(data.get("uid") or data.get("id") or ""),
            category_option_combo=str(combo_id or DEFAULT_CATEGORY_OPTION_COMBO),
            kind=KIND_RECORD if data.get("metrics") else KIND_VALUE,
            rules=ValidationRules.from_dict(rules_data),
            custom_logic=parse_custom_logic(data.get("customLogic")),
            multi_select=data.get("dataElementQuestionType") == "MULTIPLE_SELECT",
            auto_save_delay_ms=int(delay) if delay is not None else None,
            comment=help_text or None,
            section=str(section_name) if section_name else None,
        )


@dataclass
class CompleteDatasetPayload:
    source: str
    period: str
    data_set: str
    completed_at: str
    completed_by: str | None
    records: list[AnyRecord] = field(default_factory=list)

    def payload(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "period": self.period,
            "dataSet": self.data_set,
            "completed": True,
            "date": self.completed_at,
            "completedBy": self.completed_by,
            "dataValues": [r.payload() for r in self.records if isinstance(r, ValueRecord)],
            "dataRecords": [r.payload() for r in self.records if isinstance(r, RecordPayload)],
        }


def record_from_row(row: Mapping[str, Any], *, data: dict[str, Any] | None = None) -> AnyRecord:
    key = CompositeKey(
        source=str(row["source"]),
        period=str(row["period"]),
        data_element=str(row["data_element"]),
        category_option_combo=str(row["category_option_combo"] or ""),
        attribute_option_combo=str(row["attribute_option_combo"] or ""),
    )
    common: dict[str, Any] = {
        "key": key,
        "comment": row["comment"],
        "followup": bool(row["followup"]),
        "created_at": str(row["created_at"]),
        "last_updated_at": str(row["last_updated_at"]),
        "synced": bool(row["synced"]),
        "local_id": str(row["local_id"]),
        "rev": int(row["rev"] or 0),
        "saved_by": row["saved_by"],
    }
    if row["kind"] == KIND_RECORD:
        return RecordPayload(data=dict(data or {}), **common)
    return ValueRecord(value=str(row["value"] or ""), **common)
