"""
HistoryLedger -- best-effort, partitioned history appends.

Responsibility:
    Appends immutable HistoryEntry records to time-partitioned bucket
    documents.  Two ledgers share the mechanism:

        ItemHistoryLedger     {tools|consumables}/{id}/history/{MM-YYYY}
        GlobalHistoryLedger   tool_history/{YYYY/MM/DD}

Architecture position:
    Kernel > Services.  Called by CustodyService AFTER the atomic phase has
    committed; never inside a store transaction.

Invariants enforced:
    - Append-only: an append never removes or rewrites an existing entry.
    - Idempotent per entry id: appending the same entry twice leaves one
      copy (array union semantics, or an id check on read-modify-write).
    - Bucket header fields are written with merge, so concurrent appends to
      a bucket never clobber each other's entries.

Failure modes:
    - LedgerWriteError wraps every store failure.  The custody engine logs
      and swallows it; the item's instant-status fields are already
      committed.

Concurrency:
    When the store supports atomic array union the append is one write.
    Otherwise it is read-modify-write serialized by an in-process lock per
    partition path (PartitionLocks).  Two processes appending to the same
    bucket on such a store can still lose an entry.
"""

from __future__ import annotations

import threading
import weakref
from contextlib import contextmanager
from typing import Any, Iterator

from toolcrib_kernel.domain.partitions import day_key, month_key
from toolcrib_kernel.domain.types import HistoryEntry
from toolcrib_kernel.exceptions import LedgerWriteError
from toolcrib_kernel.logging_config import get_logger
from toolcrib_kernel.services.base import BaseService
from toolcrib_kernel.store.base import (
    SERVER_TIMESTAMP,
    ArrayUnion,
    DocumentRef,
    DocumentStore,
)
from toolcrib_kernel.store.layout import global_history_ref, item_history_ref

logger = get_logger("services.history_ledger")


class PartitionLocks:
    """In-process lock per partition path, shared by every ledger on a store."""

    _registry: weakref.WeakKeyDictionary = weakref.WeakKeyDictionary()
    _registry_guard = threading.Lock()

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @classmethod
    def for_store(cls, store: DocumentStore) -> PartitionLocks:
        with cls._registry_guard:
            locks = cls._registry.get(store)
            if locks is None:
                locks = cls()
                cls._registry[store] = locks
            return locks

    def lock_for(self, path: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(path)
            if lock is None:
                lock = threading.Lock()
                self._locks[path] = lock
            return lock

    @contextmanager
    def hold(self, path: str) -> Iterator[None]:
        with self.lock_for(path):
            yield


class PartitionedLedger(BaseService):
    """Shared append mechanism for the per-item and global ledgers."""

    ledger_name = "ledger"

    def __init__(self, store: DocumentStore, locks: PartitionLocks | None = None):
        super().__init__(store)
        self._locks = locks or PartitionLocks.for_store(store)

    def append_entry(
        self,
        partition_ref: DocumentRef,
        entry: HistoryEntry,
        header: dict[str, Any],
    ) -> None:
        """
        Append ``entry`` to the bucket at ``partition_ref``.

        Raises:
            LedgerWriteError: the store rejected or failed the write.
        """
        document = entry.to_document()
        data: dict[str, Any] = dict(header)
        data["updatedAt"] = SERVER_TIMESTAMP

        try:
            if self.store.supports_atomic_array_union:
                data["transactions"] = ArrayUnion([document])
                self.store.set(partition_ref, data, merge=True)
            else:
                with self._locks.hold(partition_ref.path):
                    existing = self.store.get(partition_ref) or {}
                    transactions = list(existing.get("transactions", []))
                    if not any(t.get("id") == entry.id for t in transactions):
                        transactions.append(document)
                    data["transactions"] = transactions
                    self.store.set(partition_ref, data, merge=True)
        except Exception as exc:
            raise LedgerWriteError(
                ledger=self.ledger_name,
                partition_path=partition_ref.path,
                entry_id=entry.id,
                reason=f"{type(exc).__name__}: {exc}",
            ) from exc

        logger.debug(
            "ledger_entry_appended",
            extra={
                "ledger": self.ledger_name,
                "partition": partition_ref.path,
                "entry_id": entry.id,
            },
        )


class ItemHistoryLedger(PartitionedLedger):
    """Per-item ledger partitioned by calendar month."""

    ledger_name = "item_history"

    def partition_for(self, entry: HistoryEntry) -> DocumentRef:
        return item_history_ref(entry.item_kind, entry.item_id, month_key(entry.timestamp))

    def append(self, entry: HistoryEntry) -> DocumentRef:
        ref = self.partition_for(entry)
        self.append_entry(
            ref,
            entry,
            header={
                "monthKey": ref.doc_id,
                "itemId": entry.item_id,
                "itemUniqueId": entry.metadata.item_unique_id,
                "itemKind": entry.item_kind.value,
            },
        )
        return ref


class GlobalHistoryLedger(PartitionedLedger):
    """Global ledger partitioned by calendar day."""

    ledger_name = "global_history"

    def partition_for(self, entry: HistoryEntry) -> DocumentRef:
        return global_history_ref(day_key(entry.timestamp))

    def append(self, entry: HistoryEntry) -> DocumentRef:
        ref = self.partition_for(entry)
        self.append_entry(
            ref,
            entry,
            header={
                "dayKey": ref.doc_id,
                "date": ref.doc_id.replace("/", "-"),
            },
        )
        return ref
