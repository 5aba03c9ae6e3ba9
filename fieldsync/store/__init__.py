from __future__ import annotations

from ._store import FieldStore
from .types import RetryState, StoreCounts

__all__ = [
    "FieldStore",
    "RetryState",
    "StoreCounts",
]
