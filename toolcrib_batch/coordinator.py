"""
BatchCoordinator -- homogeneous scan batches driven through the custody engine.

Contract:
    Accumulates scanned items into one batch, validates each scan against
    the batch type, and on submission runs one independent custody
    operation per item under a shared batch id.

Architecture: toolcrib_batch (top-level).  Imports kernel services and
    selectors; nothing in toolcrib_kernel imports from toolcrib_batch.

State machine:
    EMPTY --first tool scan--> CHECKOUT | CHECKIN (inferred from status)
    EMPTY --start_batch(type)--> any BatchType (consumables must use this)
    any --clear_batch()--> EMPTY
    any --submit_batch()--> EMPTY when every item succeeded, otherwise the
        same type holding only the failed items

Invariants enforced:
    - Homogeneity: a rejected scan raises BatchValidationError and leaves
      the item list and batch type exactly as they were.
    - An item appears at most once in a batch.
    - Submission is NOT atomic across items: each item commits or fails on
      its own, and one failure never stops the rest.
    - Every entry written by one submission carries the same batch id.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime
from uuid import uuid4

from toolcrib_kernel.domain.clock import Clock, SystemClock
from toolcrib_kernel.domain.types import Consumable, CustodyReceipt, ItemKind, Tool
from toolcrib_kernel.exceptions import (
    BatchValidationError,
    ConcurrencyError,
    EmptyBatchError,
    NotFoundError,
    PreconditionFailedError,
    ToolCribError,
)
from toolcrib_kernel.logging_config import LogContext, get_logger
from toolcrib_kernel.selectors.item_cache import ItemCache
from toolcrib_kernel.selectors.item_selector import ItemSelector, parse_scan_code
from toolcrib_kernel.services.custody_service import CustodyService

from toolcrib_batch.domain.types import (
    BatchItem,
    BatchItemOutcome,
    BatchItemStatus,
    BatchReport,
    BatchStatus,
    BatchType,
    ScanResult,
    ScanStatus,
)

logger = get_logger("batch.coordinator")

_CONSUMABLE_TYPES = (BatchType.CONSUMABLE_USAGE, BatchType.CONSUMABLE_RESTOCK)


def new_batch_id() -> str:
    return f"BATCH_{uuid4().hex}"


def _error_category(exc: Exception) -> str:
    if isinstance(exc, NotFoundError):
        return "not_found"
    if isinstance(exc, PreconditionFailedError):
        return "precondition_failed"
    if isinstance(exc, ConcurrencyError):
        return "transaction_conflict"
    if isinstance(exc, ToolCribError):
        return "custody_error"
    return "unhandled"


class BatchCoordinator:
    """Scan batch state plus submission.

    Args:
        custody: Transaction engine used for every submitted item.
        items: Selector for scan resolution when no cache is supplied.
        tool_cache: Optional live snapshot of tools for scan validation.
        consumable_cache: Optional live snapshot of consumables.
        clock: Used for debounce windows and report timestamps.
        debounce_seconds: Repeat scans of the same code inside this window
            are ignored.
    """

    def __init__(
        self,
        custody: CustodyService,
        items: ItemSelector,
        tool_cache: ItemCache | None = None,
        consumable_cache: ItemCache | None = None,
        clock: Clock | None = None,
        debounce_seconds: float = 2.0,
    ):
        self._custody = custody
        self._items = items
        self._caches = {
            ItemKind.TOOL: tool_cache,
            ItemKind.CONSUMABLE: consumable_cache,
        }
        self._clock = clock or SystemClock()
        self._debounce_seconds = debounce_seconds

        self._lock = threading.RLock()
        self._batch_type: BatchType | None = None
        self._type_explicit = False
        self._entries: list[BatchItem] = []
        self._last_scan: tuple[str, datetime] | None = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def batch_type(self) -> BatchType | None:
        """None while the batch is EMPTY."""
        return self._batch_type

    @property
    def is_empty(self) -> bool:
        return self._batch_type is None and not self._entries

    @property
    def items(self) -> tuple[BatchItem, ...]:
        with self._lock:
            return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def start_batch(self, batch_type: BatchType | None = None) -> None:
        """Reset, optionally fixing the batch type up front."""
        with self._lock:
            self._entries = []
            self._batch_type = batch_type
            self._type_explicit = batch_type is not None
            self._last_scan = None
        logger.debug(
            "batch_started",
            extra={"batch_type": batch_type.value if batch_type else None},
        )

    def clear_batch(self) -> None:
        """Discard every scanned item and return to EMPTY."""
        with self._lock:
            discarded = len(self._entries)
            self._entries = []
            self._batch_type = None
            self._type_explicit = False
            self._last_scan = None
        logger.info("batch_cleared", extra={"discarded_items": discarded})

    def remove_from_batch(self, item_id: str) -> bool:
        """Drop one item.  Returns False if it was not in the batch."""
        with self._lock:
            before = len(self._entries)
            self._entries = [e for e in self._entries if e.item_id != item_id]
            removed = len(self._entries) != before
            if not self._entries and not self._type_explicit:
                self._batch_type = None
            return removed

    # -------------------------------------------------------------------------
    # Scanning
    # -------------------------------------------------------------------------

    def _is_debounced(self, code: str, now: datetime) -> bool:
        if self._last_scan is not None:
            last_code, last_at = self._last_scan
            if last_code == code and (now - last_at).total_seconds() < self._debounce_seconds:
                return True
        self._last_scan = (code, now)
        return False

    def _lookup(self, code: str) -> Tool | Consumable:
        parsed = parse_scan_code(code)
        if parsed is None:
            raise BatchValidationError("item_not_found", detail=f"unrecognized code {code!r}")

        cache = self._caches[parsed.kind]
        if cache is not None:
            item = cache.get_by_unique_id(parsed.unique_id) or cache.get(parsed.unique_id)
            if item is None:
                raise BatchValidationError("item_not_found", detail=parsed.unique_id)
            return item

        item_id = self._items.resolve_unique_id(parsed.unique_id, parsed.kind)
        if item_id is None:
            raise BatchValidationError("item_not_found", detail=parsed.unique_id)
        if parsed.kind is ItemKind.TOOL:
            return self._items.get_tool(item_id)
        return self._items.get_consumable(item_id)

    def _ensure_not_present(self, item_id: str) -> None:
        if any(e.item_id == item_id for e in self._entries):
            raise BatchValidationError("already_in_batch", item_id)

    def scan_into_batch(self, code: str) -> ScanResult:
        """
        Add a scanned tool (or a consumable with quantity 1).

        The first tool fixes the batch type: available tools start a
        checkout batch, checked-out tools a checkin batch.

        Raises:
            BatchValidationError: item_not_found, already_in_batch,
                status_mismatch, kind_mismatch, batch_type_required,
                insufficient_quantity.
        """
        with self._lock:
            now = self._clock.now_utc()
            if self._is_debounced(code, now):
                return ScanResult(ScanStatus.DEBOUNCED, self._batch_type, len(self._entries))

            item = self._lookup(code)
            if isinstance(item, Consumable):
                return self._add_consumable(item, 1.0, now)

            self._ensure_not_present(item.id)
            expected = BatchType.CHECKOUT if item.is_available else BatchType.CHECKIN
            if self._batch_type in _CONSUMABLE_TYPES:
                raise BatchValidationError(
                    "kind_mismatch", item.id, f"{self._batch_type.value} batch takes consumables",
                )
            if self._batch_type is not None and self._batch_type != expected:
                raise BatchValidationError(
                    "status_mismatch",
                    item.id,
                    f"{item.unique_id} is {item.status.value}; batch is {self._batch_type.value}",
                )

            entry = BatchItem(
                item_id=item.id,
                unique_id=item.unique_id,
                item_kind=ItemKind.TOOL,
                display_name=item.display_name,
                scanned_at=now,
            )
            self._batch_type = expected
            self._entries.append(entry)
            return ScanResult(ScanStatus.ADDED, self._batch_type, len(self._entries), entry)

    def scan_consumable(self, code: str, quantity: float) -> ScanResult:
        """
        Add a consumable with an explicit quantity.

        Raises:
            BatchValidationError: item_not_found, already_in_batch,
                kind_mismatch, batch_type_required, invalid_quantity,
                insufficient_quantity.
        """
        with self._lock:
            now = self._clock.now_utc()
            if self._is_debounced(code, now):
                return ScanResult(ScanStatus.DEBOUNCED, self._batch_type, len(self._entries))

            item = self._lookup(code)
            if not isinstance(item, Consumable):
                raise BatchValidationError("kind_mismatch", item.id, "expected a consumable")
            return self._add_consumable(item, quantity, now)

    def _add_consumable(self, item: Consumable, quantity: float, now: datetime) -> ScanResult:
        # Caller holds self._lock.
        if quantity <= 0:
            raise BatchValidationError("invalid_quantity", item.id, str(quantity))
        self._ensure_not_present(item.id)
        if self._batch_type is None:
            raise BatchValidationError(
                "batch_type_required", item.id, "choose usage or restock before scanning consumables",
            )
        if self._batch_type not in _CONSUMABLE_TYPES:
            raise BatchValidationError(
                "kind_mismatch", item.id, f"{self._batch_type.value} batch takes tools",
            )
        if self._batch_type == BatchType.CONSUMABLE_USAGE and quantity > item.current_quantity:
            raise BatchValidationError(
                "insufficient_quantity",
                item.id,
                f"requested {quantity}, available {item.current_quantity}",
            )

        entry = BatchItem(
            item_id=item.id,
            unique_id=item.unique_id,
            item_kind=ItemKind.CONSUMABLE,
            display_name=item.display_name,
            scanned_at=now,
            quantity=quantity,
        )
        self._entries.append(entry)
        return ScanResult(ScanStatus.ADDED, self._batch_type, len(self._entries), entry)

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def _execute_item(
        self,
        entry: BatchItem,
        batch_type: BatchType,
        batch_id: str,
        acting_staff_uid: str,
        assign_to_staff_uid: str | None,
        notes: str,
    ) -> CustodyReceipt:
        if batch_type == BatchType.CHECKOUT:
            return self._custody.checkout(
                entry.item_id, assign_to_staff_uid, acting_staff_uid, notes=notes, batch_id=batch_id,
            )
        if batch_type == BatchType.CHECKIN:
            return self._custody.checkin(
                entry.item_id, acting_staff_uid, notes=notes, batch_id=batch_id,
            )
        if batch_type == BatchType.CONSUMABLE_USAGE:
            return self._custody.record_usage(
                entry.item_id,
                entry.quantity,
                acting_staff_uid,
                assigned_to_staff_uid=assign_to_staff_uid,
                notes=notes,
                batch_id=batch_id,
            )
        return self._custody.record_restock(
            entry.item_id, entry.quantity, acting_staff_uid, notes=notes, batch_id=batch_id,
        )

    def submit_batch(
        self,
        acting_staff_uid: str,
        assign_to_staff_uid: str | None = None,
        notes: str | None = None,
    ) -> BatchReport:
        """
        Run every scanned item through the custody engine.

        Raises:
            EmptyBatchError: no items scanned.
            BatchValidationError: missing_assignee for a checkout batch.
        """
        with self._lock:
            if not self._entries or self._batch_type is None:
                raise EmptyBatchError()
            batch_type = self._batch_type
            if batch_type == BatchType.CHECKOUT and not assign_to_staff_uid:
                raise BatchValidationError("missing_assignee", detail="checkout batch needs a staff member")

            entries = list(self._entries)
            batch_id = new_batch_id()
            batch_notes = f"BATCH: {notes}" if notes else f"Batch {batch_type.label} ({batch_id})"

            start_time = time.monotonic()
            started_at = self._clock.now_utc()
            outcomes: list[BatchItemOutcome] = []

            with LogContext.bind(batch_id=batch_id, actor_id=acting_staff_uid):
                for index, entry in enumerate(entries):
                    item_start = time.monotonic()
                    try:
                        receipt = self._execute_item(
                            entry, batch_type, batch_id, acting_staff_uid, assign_to_staff_uid, batch_notes,
                        )
                        outcome = BatchItemOutcome(
                            item_index=index,
                            item_id=entry.item_id,
                            unique_id=entry.unique_id,
                            status=BatchItemStatus.SUCCEEDED,
                            receipt=receipt,
                            duration_ms=int((time.monotonic() - item_start) * 1000),
                        )
                    except Exception as exc:
                        code = getattr(exc, "code", "UNHANDLED_EXCEPTION")
                        outcome = BatchItemOutcome(
                            item_index=index,
                            item_id=entry.item_id,
                            unique_id=entry.unique_id,
                            status=BatchItemStatus.FAILED,
                            error_code=code,
                            error_category=_error_category(exc),
                            error_message=str(exc),
                            duration_ms=int((time.monotonic() - item_start) * 1000),
                        )
                        logger.warning(
                            "batch_item_failed",
                            extra={
                                "item_id": entry.item_id,
                                "item_index": index,
                                "error_code": code,
                                "error_message": str(exc),
                            },
                        )
                    outcomes.append(outcome)

                succeeded = sum(1 for o in outcomes if o.succeeded)
                failed = len(outcomes) - succeeded
                if failed == 0:
                    status = BatchStatus.COMPLETED
                elif succeeded == 0:
                    status = BatchStatus.FAILED
                else:
                    status = BatchStatus.PARTIALLY_COMPLETED

                failed_ids = {o.item_id for o in outcomes if not o.succeeded}
                self._entries = [e for e in self._entries if e.item_id in failed_ids]
                if not self._entries:
                    self._batch_type = None
                    self._type_explicit = False
                self._last_scan = None

                duration_ms = int((time.monotonic() - start_time) * 1000)
                logger.info(
                    "batch_submitted",
                    extra={
                        "batch_type": batch_type.value,
                        "status": status.value,
                        "total_items": len(outcomes),
                        "succeeded": succeeded,
                        "failed": failed,
                        "duration_ms": duration_ms,
                    },
                )

            return BatchReport(
                batch_id=batch_id,
                batch_type=batch_type,
                status=status,
                outcomes=tuple(outcomes),
                succeeded=succeeded,
                failed=failed,
                started_at=started_at,
                completed_at=self._clock.now_utc(),
                duration_ms=duration_ms,
            )
