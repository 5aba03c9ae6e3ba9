from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

SEVERITY_SUCCESS = "success"
SEVERITY_INFO = "info"
SEVERITY_WARNING = "warning"
SEVERITY_ERROR = "error"


@dataclass(frozen=True)
class Notice:
    """A user-facing message, e.g. a snackbar/alert in the form UI."""

    message: str
    severity: str = SEVERITY_INFO


NoticeSink = Callable[[Notice], None]


def emit(sink: NoticeSink | None, notice: Notice) -> None:
    if sink is None:
        logger.info("%s: %s", notice.severity, notice.message)
        return
    try:
        sink(notice)
    except Exception as exc:
        logger.warning("notice sink failed", exc_info=exc)
