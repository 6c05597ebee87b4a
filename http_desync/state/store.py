"""Scan state shared between workers, scheduler and checkpointer.

Baselines, completed test records and per-target error counts each live in
their own section with their own lock, so a worker bumping an error count
never waits on the result consumer appending a record. Only a snapshot for
persistence holds all three locks at once, and only while serializing.
"""

import asyncio
from typing import Dict, List, Optional, Set, Tuple, Generic, TypeVar

from pydantic import BaseModel, Field, ValidationError

from http_desync.core.exceptions import PersistenceError
from http_desync.core.models import SmuggleTestRecord, TestStatus


V = TypeVar("V")

TestKey = Tuple[str, str, str]


# ============================================================================
# On-disk document
# ============================================================================


class RecordDocument(BaseModel):
    url: str
    method: str
    mutation: str
    status: TestStatus

    @property
    def key(self) -> TestKey:
        return (self.url, self.method, self.mutation)


class StateDocument(BaseModel):
    baselines: Dict[str, float] = Field(default_factory=dict)
    results: List[RecordDocument] = Field(default_factory=list)
    errors: Dict[str, int] = Field(default_factory=dict)


def load_document(text: str, path: str = "<memory>") -> StateDocument:
    """Parse a persisted state document.

    Raises:
        PersistenceError: the text is not a valid state document
    """
    if not text.strip():
        return StateDocument()
    try:
        return StateDocument.model_validate_json(text)
    except ValidationError as e:
        raise PersistenceError(path, f"invalid state document: {e.error_count()} error(s)")


# ============================================================================
# Sections
# ============================================================================


class LockedMap(Generic[V]):
    """A dict guarded by its own lock."""

    def __init__(self, data: Optional[Dict[str, V]] = None):
        self.lock = asyncio.Lock()
        self._data: Dict[str, V] = dict(data or {})

    async def get(self, key: str, default: Optional[V] = None) -> Optional[V]:
        async with self.lock:
            return self._data.get(key, default)

    async def set(self, key: str, value: V) -> None:
        async with self.lock:
            self._data[key] = value

    async def contains(self, key: str) -> bool:
        async with self.lock:
            return key in self._data

    async def snapshot(self) -> Dict[str, V]:
        async with self.lock:
            return dict(self._data)

    def __len__(self) -> int:
        return len(self._data)


class CounterMap(LockedMap[int]):
    """Per-target counters (error budget, confirmed findings)."""

    async def increment(self, key: str, amount: int = 1) -> int:
        async with self.lock:
            value = self._data.get(key, 0) + amount
            self._data[key] = value
            return value

    async def reached(self, key: str, cap: int) -> bool:
        """True when a positive cap is set and the counter is at or above it."""
        if cap <= 0:
            return False
        async with self.lock:
            return self._data.get(key, 0) >= cap


class RecordLog:
    """Append-only collection of completed test records."""

    def __init__(self, records: Optional[List[RecordDocument]] = None):
        self.lock = asyncio.Lock()
        self._records: List[RecordDocument] = []
        self._keys: Set[TestKey] = set()
        for record in records or []:
            self._add(record)

    def _add(self, record: RecordDocument) -> bool:
        if record.key in self._keys:
            return False
        self._keys.add(record.key)
        self._records.append(record)
        return True

    async def append(self, record: SmuggleTestRecord) -> bool:
        """Append a resolved record. Returns False for an already known key."""
        if record.status is TestStatus.UNKNOWN:
            raise ValueError(f"record {record.key} has no status")
        document = RecordDocument(
            url=record.target.url,
            method=record.method,
            mutation=record.mutation,
            status=record.status,
        )
        async with self.lock:
            return self._add(document)

    async def keys(self) -> Set[TestKey]:
        async with self.lock:
            return set(self._keys)

    async def snapshot(self) -> List[RecordDocument]:
        async with self.lock:
            return list(self._records)

    def __len__(self) -> int:
        return len(self._records)


# ============================================================================
# Scan state
# ============================================================================


class ScanState:
    """Persisted scan state: baselines, completed records, error counts."""

    def __init__(self):
        self.baselines: LockedMap[float] = LockedMap()
        self.results = RecordLog()
        self.errors = CounterMap()

    @classmethod
    def from_document(cls, document: StateDocument) -> "ScanState":
        state = cls()
        state.baselines = LockedMap(document.baselines)
        state.results = RecordLog(document.results)
        state.errors = CounterMap(document.errors)
        return state

    async def merge(self, document: StateDocument) -> None:
        """Add entries from a loaded document. Existing entries win."""
        async with self.baselines.lock:
            for url, elapsed in document.baselines.items():
                self.baselines._data.setdefault(url, elapsed)
        async with self.results.lock:
            for record in document.results:
                self.results._add(record)
        async with self.errors.lock:
            for url, count in document.errors.items():
                self.errors._data[url] = max(self.errors._data.get(url, 0), count)

    async def serialize(self) -> str:
        """Serialize all sections while holding every section lock."""
        async with self.baselines.lock, self.results.lock, self.errors.lock:
            document = StateDocument(
                baselines=self.baselines._data,
                results=self.results._records,
                errors=self.errors._data,
            )
            return document.model_dump_json()

    async def confirmed_counts(self) -> Dict[str, int]:
        """Confirmed findings per target among completed records."""
        counts: Dict[str, int] = {}
        for record in await self.results.snapshot():
            if record.status.is_finding:
                counts[record.url] = counts.get(record.url, 0) + 1
        return counts
