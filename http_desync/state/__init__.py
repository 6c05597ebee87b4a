"""Scan state and its persistence."""

from .store import (
    ScanState,
    StateDocument,
    RecordDocument,
    LockedMap,
    CounterMap,
    RecordLog,
    load_document,
)
from .checkpoint import Checkpointer

__all__ = [
    "ScanState",
    "StateDocument",
    "RecordDocument",
    "LockedMap",
    "CounterMap",
    "RecordLog",
    "load_document",
    "Checkpointer",
]
