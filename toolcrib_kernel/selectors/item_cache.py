"""
Module: toolcrib_kernel.selectors.item_cache
Responsibility: Read-through snapshot of one item collection with push
    invalidation.  Owns the snapshot and the change-feed subscription
    handle; nothing else holds a copy of the collection.
Architecture position: Kernel > Selectors.  Used by the batch coordinator
    for scan-time validation and by listing screens for instant filtering.

Invariants enforced:
    - With a change feed, the snapshot reflects every committed change
      delivered so far.
    - Without one, a read never serves a snapshot older than
      ``max_staleness_seconds``; it reloads first.
    - Changes delivered during a reload are replayed over the reloaded
      snapshot, so a listing never overwrites a newer delivered change.
    - The cache is advisory.  Custody preconditions are always re-checked
      inside the store transaction.

Failure modes:
    - Store errors during (re)load propagate to the caller of the read.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Union

from toolcrib_kernel.domain.clock import Clock, SystemClock
from toolcrib_kernel.domain.types import Consumable, ItemKind, Tool
from toolcrib_kernel.logging_config import get_logger
from toolcrib_kernel.store.base import DocumentChange, DocumentStore, Subscription

logger = get_logger("selectors.item_cache")

Item = Union[Tool, Consumable]


class ItemCache:
    """
    Snapshot of the ``tools`` or ``consumables`` collection.

    Args:
        store: Source store.
        kind: Which collection to mirror.
        clock: Used for staleness checks.
        max_staleness_seconds: Reload threshold when the store has no
            change feed.
    """

    def __init__(
        self,
        store: DocumentStore,
        kind: ItemKind,
        clock: Clock | None = None,
        max_staleness_seconds: float = 30.0,
    ):
        self._store = store
        self._kind = kind
        self._clock = clock or SystemClock()
        self._max_staleness = max_staleness_seconds
        self._items: dict[str, Item] = {}
        self._by_unique_id: dict[str, str] = {}
        self._loaded_at: datetime | None = None
        self._subscription: Subscription | None = None
        self._lock = threading.RLock()
        # Changes delivered while a listing is in flight; None when idle.
        self._pending: list[DocumentChange] | None = None
        self._refreshes = 0

    @property
    def kind(self) -> ItemKind:
        return self._kind

    @property
    def is_live(self) -> bool:
        """True while a change-feed subscription keeps the snapshot current."""
        return self._subscription is not None and self._subscription.active

    @property
    def loaded_at(self) -> datetime | None:
        return self._loaded_at

    def _parse(self, doc_id: str, data: dict) -> Item:
        if self._kind is ItemKind.TOOL:
            return Tool.from_document(doc_id, data)
        return Consumable.from_document(doc_id, data)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> ItemCache:
        """Subscribe (when supported) and load the initial snapshot."""
        if self._subscription is None:
            self._subscription = self._store.subscribe(self._kind.collection, self._on_changes)
        self.refresh()
        logger.info(
            "item_cache_started",
            extra={
                "collection": self._kind.collection,
                "live": self.is_live,
                "item_count": len(self._items),
            },
        )
        return self

    def refresh(self) -> None:
        """
        Reload the full snapshot from the store.

        Changes delivered while the listing runs may be newer than the rows
        it returns; they are replayed, in delivery order, over the new
        snapshot before it is served.
        """
        with self._lock:
            if self._pending is None:
                self._pending = []
            self._refreshes += 1
        try:
            rows = self._store.list_documents(self._kind.collection)
            items = {ref.doc_id: self._parse(ref.doc_id, data) for ref, data in rows}
            with self._lock:
                self._items = items
                self._by_unique_id = {
                    item.unique_id: item.id for item in items.values() if item.unique_id
                }
                replayed = len(self._pending)
                self._apply_changes(self._pending)
                self._loaded_at = self._clock.now_utc()
        finally:
            with self._lock:
                self._refreshes -= 1
                if self._refreshes == 0:
                    self._pending = None
        if replayed:
            logger.debug(
                "item_cache_changes_replayed",
                extra={"collection": self._kind.collection, "change_count": replayed},
            )

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def __enter__(self) -> ItemCache:
        return self.start()

    def __exit__(self, *exc) -> None:
        self.close()

    def _on_changes(self, changes: list[DocumentChange]) -> None:
        with self._lock:
            if self._pending is not None:
                self._pending.extend(changes)
            self._apply_changes(changes)

    def _apply_changes(self, changes: list[DocumentChange]) -> None:
        # Caller holds self._lock.
        for change in changes:
            doc_id = change.ref.doc_id
            previous = self._items.pop(doc_id, None)
            if previous is not None and previous.unique_id:
                self._by_unique_id.pop(previous.unique_id, None)
            if change.data is None:
                continue
            item = self._parse(doc_id, change.data)
            self._items[doc_id] = item
            if item.unique_id:
                self._by_unique_id[item.unique_id] = doc_id

    def _ensure_fresh(self) -> None:
        if self.is_live and self._loaded_at is not None:
            return
        if self._loaded_at is not None:
            age = (self._clock.now_utc() - self._loaded_at).total_seconds()
            if age <= self._max_staleness:
                return
        self.refresh()
        logger.debug("item_cache_reloaded", extra={"collection": self._kind.collection})

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, item_id: str) -> Item | None:
        self._ensure_fresh()
        with self._lock:
            return self._items.get(item_id)

    def get_by_unique_id(self, unique_id: str) -> Item | None:
        self._ensure_fresh()
        with self._lock:
            item_id = self._by_unique_id.get(unique_id)
            return self._items.get(item_id) if item_id is not None else None

    def all(self) -> list[Item]:
        self._ensure_fresh()
        with self._lock:
            return sorted(self._items.values(), key=lambda i: i.unique_id)

    def available(self) -> list[Tool]:
        return [i for i in self.all() if isinstance(i, Tool) and i.is_available]

    def checked_out(self) -> list[Tool]:
        return [i for i in self.all() if isinstance(i, Tool) and not i.is_available]

    def low_stock(self) -> list[Consumable]:
        return [i for i in self.all() if isinstance(i, Consumable) and i.is_low_stock]

    def __len__(self) -> int:
        self._ensure_fresh()
        with self._lock:
            return len(self._items)
