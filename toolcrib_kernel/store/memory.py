"""
Module: toolcrib_kernel.store.memory
Responsibility: Thread-safe in-memory DocumentStore with optimistic
    transactions and a push change feed.  Used by tests, demos and the
    scanner front end when no database is configured.
Architecture position: Kernel > Store.  Implements store/base.py.

Invariants enforced:
    - Every document carries a version; a transaction commits only if every
      document it read still has the version it saw.
    - Readers receive deep copies; no caller can mutate stored state.
    - Subscribers are notified after the commit lock is released, in commit
      order per store instance.
    - A subscriber that raises is logged as ``subscriber_failed``; the
      commit and the writer's result are unaffected.

Failure modes:
    - TransactionConflictError after ``max_attempts`` version conflicts.
    - UnsupportedStoreOperationError for ArrayUnion when constructed with
      ``atomic_array_union=False``.
"""

from __future__ import annotations

import copy
import threading
from datetime import datetime
from typing import Any, Callable, TypeVar

from toolcrib_kernel.domain.clock import Clock, SystemClock
from toolcrib_kernel.exceptions import (
    DocumentMissingError,
    TransactionConflictError,
    UnsupportedStoreOperationError,
)
from toolcrib_kernel.logging_config import get_logger
from toolcrib_kernel.store.base import (
    ArrayUnion,
    ChangeCallback,
    Committed,
    DocumentChange,
    DocumentRef,
    DocumentStore,
    MonotonicStamp,
    Subscription,
    Transaction,
    apply_write,
    contains_transform,
)

logger = get_logger("store.memory")

T = TypeVar("T")

_SET = "set"
_MERGE = "merge"
_UPDATE = "update"


class _VersionConflict(Exception):
    def __init__(self, path: str):
        self.path = path
        super().__init__(path)


class _MemorySubscription(Subscription):
    def __init__(self, store: InMemoryDocumentStore, collection: str, callback: ChangeCallback):
        self._store = store
        self.collection = collection
        self.callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        if self._active:
            self._active = False
            self._store._unsubscribe(self)


class _MemoryTransaction(Transaction):
    def __init__(self, store: InMemoryDocumentStore):
        self._store = store
        self.reads: dict[DocumentRef, int] = {}
        self.writes: list[tuple[DocumentRef, dict[str, Any], str]] = []

    def get(self, ref: DocumentRef) -> dict[str, Any] | None:
        version, data = self._store._read(ref)
        self.reads.setdefault(ref, version)
        return data

    def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> None:
        self._store._check_transforms(data)
        self.writes.append((ref, dict(data), _MERGE if merge else _SET))

    def update(self, ref: DocumentRef, data: dict[str, Any]) -> None:
        self._store._check_transforms(data)
        self.writes.append((ref, dict(data), _UPDATE))


class InMemoryDocumentStore(DocumentStore):
    """
    Versioned dictionary of documents keyed by DocumentRef.

    Args:
        clock: Source of server timestamps (SystemClock by default).
        max_attempts: Optimistic retries before TransactionConflictError.
        atomic_array_union: When False, ArrayUnion writes are rejected so
            callers must fall back to read-modify-write.
    """

    backend_name = "memory"

    def __init__(
        self,
        clock: Clock | None = None,
        max_attempts: int = 5,
        atomic_array_union: bool = True,
    ):
        self._clock = clock or SystemClock()
        self._stamp = MonotonicStamp(self._clock)
        self._max_attempts = max_attempts
        self._atomic_array_union = atomic_array_union
        self._docs: dict[DocumentRef, tuple[int, dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._subscriptions: list[_MemorySubscription] = []
        # Serializes change delivery so subscribers observe commit order.
        self._notify_lock = threading.Lock()

    @property
    def supports_atomic_array_union(self) -> bool:
        return self._atomic_array_union

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _read(self, ref: DocumentRef) -> tuple[int, dict[str, Any] | None]:
        with self._lock:
            version, data = self._docs.get(ref, (0, None))
            return version, copy.deepcopy(data)

    def get(self, ref: DocumentRef) -> dict[str, Any] | None:
        return self._read(ref)[1]

    def list_documents(self, collection: str) -> list[tuple[DocumentRef, dict[str, Any]]]:
        with self._lock:
            rows = [
                (ref, copy.deepcopy(data))
                for ref, (_, data) in self._docs.items()
                if ref.collection == collection
            ]
        rows.sort(key=lambda row: row[0].doc_id)
        return rows

    def find(
        self, collection: str, field: str, value: Any,
    ) -> list[tuple[DocumentRef, dict[str, Any]]]:
        return [
            (ref, data)
            for ref, data in self.list_documents(collection)
            if data.get(field) == value
        ]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _check_transforms(self, data: dict[str, Any]) -> None:
        if not self._atomic_array_union and contains_transform(data, ArrayUnion):
            raise UnsupportedStoreOperationError("array_union", self.backend_name)

    def set(self, ref: DocumentRef, data: dict[str, Any], merge: bool = False) -> datetime:
        self._check_transforms(data)
        with self._lock:
            timestamp = self._stamp.next()
            change = self._apply(ref, data, _MERGE if merge else _SET, timestamp)
        self._notify([change])
        return timestamp

    def _apply(
        self, ref: DocumentRef, data: dict[str, Any], mode: str, timestamp: datetime,
    ) -> DocumentChange:
        # Caller holds self._lock.
        version, existing = self._docs.get(ref, (0, None))
        body = apply_write(existing, data, merge=(mode != _SET), timestamp=timestamp)
        self._docs[ref] = (version + 1, body)
        return DocumentChange(ref=ref, data=copy.deepcopy(body), committed_at=timestamp)

    def delete(self, ref: DocumentRef) -> None:
        """Remove a document (test and maintenance helper)."""
        with self._lock:
            existed = self._docs.pop(ref, None) is not None
            timestamp = self._stamp.next()
        if existed:
            self._notify([DocumentChange(ref=ref, data=None, committed_at=timestamp)])

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def run_transaction(self, fn: Callable[[Transaction], T]) -> Committed[T]:
        conflicted: set[str] = set()
        for attempt in range(1, self._max_attempts + 1):
            txn = _MemoryTransaction(self)
            value = fn(txn)
            try:
                committed_at, changes = self._commit(txn)
            except _VersionConflict as exc:
                conflicted.add(exc.path)
                logger.debug(
                    "transaction_retry",
                    extra={"attempt": attempt, "path": exc.path},
                )
                continue
            self._notify(changes)
            return Committed(value=value, committed_at=committed_at)

        logger.warning(
            "transaction_conflict_exhausted",
            extra={"attempts": self._max_attempts, "paths": sorted(conflicted)},
        )
        raise TransactionConflictError(self._max_attempts, tuple(sorted(conflicted)))

    def _commit(self, txn: _MemoryTransaction) -> tuple[datetime, list[DocumentChange]]:
        with self._lock:
            for ref, seen_version in txn.reads.items():
                current_version = self._docs.get(ref, (0, None))[0]
                if current_version != seen_version:
                    raise _VersionConflict(ref.path)

            # Validate before applying so a missing document leaves no partial writes.
            pending = {ref for ref, _, mode in txn.writes if mode != _UPDATE}
            for ref, _, mode in txn.writes:
                if mode == _UPDATE and ref not in self._docs and ref not in pending:
                    raise DocumentMissingError(ref.path)

            timestamp = self._stamp.next()
            changes = [
                self._apply(ref, data, mode, timestamp)
                for ref, data, mode in txn.writes
            ]
        return timestamp, changes

    # -------------------------------------------------------------------------
    # Change feed
    # -------------------------------------------------------------------------

    def subscribe(self, collection: str, callback: ChangeCallback) -> Subscription:
        subscription = _MemorySubscription(self, collection, callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: _MemorySubscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def _notify(self, changes: list[DocumentChange]) -> None:
        if not changes:
            return
        with self._notify_lock:
            with self._lock:
                subscriptions = list(self._subscriptions)
            for subscription in subscriptions:
                relevant = [c for c in changes if c.ref.collection == subscription.collection]
                if not (relevant and subscription.active):
                    continue
                # The commit is durable; a failing listener must not reach the writer.
                try:
                    subscription.callback(relevant)
                except Exception as exc:
                    logger.warning(
                        "subscriber_failed",
                        extra={
                            "collection": subscription.collection,
                            "paths": [c.ref.path for c in relevant],
                            "reason": f"{type(exc).__name__}: {exc}",
                        },
                    )

    def close(self) -> None:
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.close()
