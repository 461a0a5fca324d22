"""
Module: toolcrib_kernel.store.base
Responsibility: Abstract document store consumed by the custody kernel.
    Defines document addressing, write-time field transforms, the
    transaction contract and the change-feed contract.  Concrete backends
    live in ``store/memory.py`` and ``store/sql.py``.
Architecture position: Kernel > Store.  May import from domain/clock.py,
    exceptions.py and logging_config.py only.

Invariants enforced:
    - Server timestamps are assigned by the store, never by callers, and
      are strictly monotonic per store instance.
    - A transaction either applies every buffered write or none of them.
    - An exception raised by a transaction function aborts the attempt and
      propagates unchanged; only version conflicts are retried.

Failure modes:
    - TransactionConflictError when optimistic retries are exhausted.
    - DocumentMissingError when ``update()`` targets an absent document.
    - UnsupportedStoreOperationError when a backend cannot apply a
      transform (e.g. atomic array union disabled).
"""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Generic, TypeVar

from toolcrib_kernel.domain.clock import Clock

T = TypeVar("T")


# =============================================================================
# Addressing
# =============================================================================


@dataclass(frozen=True)
class DocumentRef:
    """Address of one document: ``{collection}/{doc_id}``.

    ``doc_id`` may itself contain slashes (the global ledger's
    ``YYYY/MM/DD`` keys); ``collection`` never ends with one.
    """

    collection: str
    doc_id: str

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.doc_id}"

    def child(self, collection: str, doc_id: str) -> DocumentRef:
        """Reference into a sub-collection of this document."""
        return DocumentRef(f"{self.path}/{collection}", doc_id)

    def __str__(self) -> str:
        return self.path


# =============================================================================
# Field transforms
# =============================================================================


class _ServerTimestamp:
    """Sentinel replaced by the store's commit timestamp."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class ArrayUnion:
    """Append each value not already present in the target array."""

    values: tuple[Any, ...]

    def __init__(self, values):
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class ArrayRemove:
    """Remove every occurrence of each value from the target array."""

    values: tuple[Any, ...]

    def __init__(self, values):
        object.__setattr__(self, "values", tuple(values))


def _resolve_value(value: Any, current: Any, timestamp: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return timestamp
    if isinstance(value, ArrayUnion):
        result = list(current) if isinstance(current, list) else []
        for item in value.values:
            if item not in result:
                result.append(copy.deepcopy(item))
        return result
    if isinstance(value, ArrayRemove):
        result = list(current) if isinstance(current, list) else []
        return [item for item in result if item not in value.values]
    return copy.deepcopy(value)


def apply_write(
    existing: dict[str, Any] | None,
    data: dict[str, Any],
    merge: bool,
    timestamp: datetime,
) -> dict[str, Any]:
    """Compute the new document body for a set/update.

    Merge is shallow: top-level keys in ``data`` replace the existing keys,
    other keys are kept.  Without merge the document is replaced.
    """
    base = dict(existing) if (merge and existing is not None) else {}
    for key, value in data.items():
        base[key] = _resolve_value(value, base.get(key), timestamp)
    return base


def contains_transform(data: dict[str, Any], kind: type) -> bool:
    return any(isinstance(v, kind) for v in data.values())


class MonotonicStamp:
    """Hands out strictly increasing UTC timestamps from a Clock."""

    _RESOLUTION = timedelta(microseconds=1)

    def __init__(self, clock: Clock):
        self._clock = clock
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def next(self) -> datetime:
        with self._lock:
            now = self._clock.now_utc()
            if self._last is not None and now <= self._last:
                now = self._last + self._RESOLUTION
            self._last = now
            return now


# =============================================================================
# Contracts
# =============================================================================


@dataclass(frozen=True)
class Committed(Generic[T]):
    """Result of ``run_transaction``: the function's value and commit time."""

    value: T
    committed_at: datetime


@dataclass(frozen=True)
class DocumentChange:
    """One committed change pushed to subscribers.  ``data`` None = deleted."""

    ref: DocumentRef
    data: dict[str, Any] | None
    committed_at: datetime


ChangeCallback = Callable[[list[DocumentChange]], None]


class Subscription(ABC):
    """Handle for a change-feed subscription."""

    @abstractmethod
    def close(self) -> None:
        ...

    @property
    @abstractmethod
    def active(self) -> bool:
        ...


class Transaction(ABC):
    """Transactional read/write handle passed to ``run_transaction``.

    Writes are buffered and applied at commit.  Reads return the committed
    state and register the document version for conflict detection.
    """

    @abstractmethod
    def get(self, ref: DocumentRef) -> dict[str, Any] | None:
        ...

    @abstractmethod
    def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> None:
        ...

    @abstractmethod
    def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        """Merge ``data`` into an existing document (DocumentMissingError if absent)."""
        ...


class DocumentStore(ABC):
    """Abstract transactional document store."""

    backend_name: str = "document_store"

    @abstractmethod
    def run_transaction(self, fn: Callable[[Transaction], T]) -> Committed[T]:
        """Run ``fn`` atomically, retrying on version conflicts.

        Raises:
            TransactionConflictError: retries exhausted.
            Any exception raised by ``fn`` (no writes applied).
        """
        ...

    @abstractmethod
    def get(self, ref: DocumentRef) -> dict[str, Any] | None:
        ...

    @abstractmethod
    def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> datetime:
        """Non-transactional write.  Returns the server timestamp used."""
        ...

    @abstractmethod
    def list_documents(self, collection: str) -> list[tuple[DocumentRef, dict[str, Any]]]:
        ...

    @abstractmethod
    def find(
        self, collection: str, field: str, value: Any,
    ) -> list[tuple[DocumentRef, dict[str, Any]]]:
        """Documents in ``collection`` whose top-level ``field`` equals ``value``."""
        ...

    @property
    def supports_atomic_array_union(self) -> bool:
        return False

    def subscribe(self, collection: str, callback: ChangeCallback) -> Subscription | None:
        """Push change feed for ``collection``; None if the backend has none."""
        return None

    def close(self) -> None:
        """Release backend resources."""
