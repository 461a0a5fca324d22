"""
toolcrib_services.custody_api -- Upward facade for scanner and UI collaborators.

Responsibility:
    Creates every kernel service, selector, cache and the batch
    coordinator exactly once and wires them together.  Exposes the
    operations screens and scripts call.

Architecture position:
    Services -- top of the stack.  The only place where config values are
    turned into constructor arguments and where a store is built.

Invariants enforced:
    - Single-instance lifecycle: one store, one CustodyService, one
      BatchCoordinator per facade.
    - DI transparency: all wiring is visible in ``__init__`` and
      ``from_config``.

Failure modes:
    - Errors from the kernel propagate unchanged (typed, with ``code``).
    - ``from_config`` raises whatever the SQL engine raises when the
      database is unreachable.

Usage:
    api = CustodyAPI.from_config(get_active_config())
    api.checkout("tool-1", staff_uid="W1", acting_staff_uid="ADMIN1")
    api.tool_status("tool-1").can_check_in
"""

from __future__ import annotations

from datetime import datetime, timedelta

from toolcrib_batch.coordinator import BatchCoordinator
from toolcrib_batch.domain.types import BatchReport, BatchType, ScanResult
from toolcrib_config.schema import CustodyConfig
from toolcrib_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from toolcrib_kernel.domain.clock import Clock, SystemClock
from toolcrib_kernel.domain.types import (
    CustodyReceipt,
    HistoryAction,
    HistoryEntry,
    ItemKind,
    ToolStatusView,
)
from toolcrib_kernel.logging_config import configure_logging, get_logger
from toolcrib_kernel.selectors.history_selector import HistorySelector
from toolcrib_kernel.selectors.item_cache import ItemCache
from toolcrib_kernel.selectors.item_selector import ItemSelector
from toolcrib_kernel.services.custody_service import CustodyService
from toolcrib_kernel.store.base import DocumentStore
from toolcrib_kernel.store.memory import InMemoryDocumentStore
from toolcrib_kernel.store.sql import SqlDocumentStore

logger = get_logger("services.custody_api")


def build_store(config: CustodyConfig, clock: Clock) -> DocumentStore:
    """Construct the configured document store."""
    store_config = config.store
    if store_config.backend == "sql":
        init_engine_from_url(store_config.database_url, echo=store_config.echo_sql)
        create_tables()
        return SqlDocumentStore(
            get_session_factory(),
            clock=clock,
            max_attempts=store_config.max_transaction_attempts,
        )
    return InMemoryDocumentStore(
        clock=clock,
        max_attempts=store_config.max_transaction_attempts,
        atomic_array_union=store_config.atomic_array_union,
    )


class CustodyAPI:
    """Facade over custody, history, status and batch operations.

    Non-goals:
        - Does NOT authenticate callers; ``acting_staff_uid`` is trusted.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: CustodyConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or CustodyConfig()
        self.clock = clock or SystemClock()
        self.store = store

        self.custody = CustodyService(
            store,
            record_item_history=self.config.ledger.item_history_enabled,
            record_global_history=self.config.ledger.global_history_enabled,
        )
        self.items = ItemSelector(store)
        self.history = HistorySelector(
            store, clock=self.clock, default_limit=self.config.history.default_limit,
        )

        self.tool_cache: ItemCache | None = None
        self.consumable_cache: ItemCache | None = None
        if self.config.cache.enabled:
            staleness = self.config.cache.max_staleness_seconds
            self.tool_cache = ItemCache(store, ItemKind.TOOL, self.clock, staleness).start()
            self.consumable_cache = ItemCache(store, ItemKind.CONSUMABLE, self.clock, staleness).start()

        self.batch = BatchCoordinator(
            self.custody,
            self.items,
            tool_cache=self.tool_cache,
            consumable_cache=self.consumable_cache,
            clock=self.clock,
            debounce_seconds=self.config.batch.debounce_seconds,
        )

    @classmethod
    def from_config(cls, config: CustodyConfig, clock: Clock | None = None) -> CustodyAPI:
        clock = clock or SystemClock()
        configure_logging(level=config.logging.level)
        store = build_store(config, clock)
        logger.info(
            "custody_api_ready",
            extra={"config_id": config.config_id, "store_backend": config.store.backend},
        )
        return cls(store, config=config, clock=clock)

    def close(self) -> None:
        for cache in (self.tool_cache, self.consumable_cache):
            if cache is not None:
                cache.close()
        self.store.close()

    # -------------------------------------------------------------------------
    # Custody
    # -------------------------------------------------------------------------

    def checkout(
        self, item_id: str, staff_uid: str, acting_staff_uid: str, notes: str | None = None,
    ) -> CustodyReceipt:
        return self.custody.checkout(item_id, staff_uid, acting_staff_uid, notes=notes)

    def checkin(
        self, item_id: str, acting_staff_uid: str, notes: str | None = None,
    ) -> CustodyReceipt:
        return self.custody.checkin(item_id, acting_staff_uid, notes=notes)

    def record_usage(
        self,
        item_id: str,
        quantity: float,
        acting_staff_uid: str,
        assigned_to_staff_uid: str | None = None,
        notes: str | None = None,
    ) -> CustodyReceipt:
        return self.custody.record_usage(
            item_id, quantity, acting_staff_uid, assigned_to_staff_uid=assigned_to_staff_uid, notes=notes,
        )

    def record_restock(
        self, item_id: str, quantity: float, acting_staff_uid: str, notes: str | None = None,
    ) -> CustodyReceipt:
        return self.custody.record_restock(item_id, quantity, acting_staff_uid, notes=notes)

    def tool_status(self, item_id: str) -> ToolStatusView:
        return self.items.tool_status(item_id)

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def start_batch(self, batch_type: BatchType | None = None) -> None:
        self.batch.start_batch(batch_type)

    def scan_into_batch(self, code: str) -> ScanResult:
        return self.batch.scan_into_batch(code)

    def scan_consumable(self, code: str, quantity: float) -> ScanResult:
        return self.batch.scan_consumable(code, quantity)

    def submit_batch(
        self,
        acting_staff_uid: str,
        assign_to_staff_uid: str | None = None,
        notes: str | None = None,
    ) -> BatchReport:
        return self.batch.submit_batch(acting_staff_uid, assign_to_staff_uid=assign_to_staff_uid, notes=notes)

    def clear_batch(self) -> None:
        self.batch.clear_batch()

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def _window(
        self, start: datetime | None, end: datetime | None,
    ) -> tuple[datetime, datetime]:
        end = end or self.clock.now_utc()
        start = start or end - timedelta(days=self.config.history.default_days_back)
        return start, end

    def query_item_history(
        self,
        item_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
        item_kind: ItemKind = ItemKind.TOOL,
    ) -> tuple[HistoryEntry, ...]:
        start, end = self._window(start, end)
        return self.history.query_item_history(
            item_id,
            start,
            end,
            limit,
            item_kind=item_kind,
            fallback_to_global=self.config.history.fallback_to_global,
        )

    def query_global_history(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
        item_id: str | None = None,
        staff_uid: str | None = None,
        action: HistoryAction | None = None,
    ) -> tuple[HistoryEntry, ...]:
        start, end = self._window(start, end)
        return self.history.query_global_history(
            start, end, limit, item_id=item_id, staff_uid=staff_uid, action=action,
        )

    def query_batch(
        self,
        batch_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> tuple[HistoryEntry, ...]:
        start, end = self._window(start, end)
        return self.history.query_batch(batch_id, start, end)
