"""
toolcrib_batch.domain.types -- Pure frozen dataclasses for scan batches.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - A batch holds items of one BatchType only.
    - Reports are immutable; per-item outcomes keep scan order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from toolcrib_kernel.domain.types import CustodyReceipt, ItemKind


# =============================================================================
# Enums
# =============================================================================


class BatchType(str, Enum):
    """What every item in a batch will undergo."""

    CHECKOUT = "checkout"
    CHECKIN = "checkin"
    CONSUMABLE_USAGE = "consumable_usage"
    CONSUMABLE_RESTOCK = "consumable_restock"

    @property
    def item_kind(self) -> ItemKind:
        if self in (BatchType.CHECKOUT, BatchType.CHECKIN):
            return ItemKind.TOOL
        return ItemKind.CONSUMABLE

    @property
    def label(self) -> str:
        return {
            BatchType.CHECKOUT: "checkout",
            BatchType.CHECKIN: "checkin",
            BatchType.CONSUMABLE_USAGE: "usage",
            BatchType.CONSUMABLE_RESTOCK: "restock",
        }[self]


class ScanStatus(str, Enum):
    ADDED = "added"
    DEBOUNCED = "debounced"  # Same code re-read within the debounce window


class BatchItemStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class BatchStatus(str, Enum):
    """Outcome of a submitted batch."""

    COMPLETED = "completed"  # Every item succeeded
    PARTIALLY_COMPLETED = "partially_completed"  # Some items failed
    FAILED = "failed"  # No item succeeded


# =============================================================================
# Scan DTOs
# =============================================================================


@dataclass(frozen=True)
class BatchItem:
    """One scanned item waiting for submission."""

    item_id: str
    unique_id: str
    item_kind: ItemKind
    display_name: str
    scanned_at: datetime
    quantity: float | None = None  # Consumables only


@dataclass(frozen=True)
class ScanResult:
    """Result of a scan that was not rejected."""

    status: ScanStatus
    batch_type: BatchType | None
    batch_size: int
    item: BatchItem | None = None


# =============================================================================
# Report DTOs
# =============================================================================


@dataclass(frozen=True)
class BatchItemOutcome:
    """Result of the engine call for one batch item."""

    item_index: int  # 0-indexed scan position
    item_id: str
    unique_id: str
    status: BatchItemStatus
    receipt: CustodyReceipt | None = None
    error_code: str | None = None
    error_category: str | None = None  # not_found / precondition_failed / ...
    error_message: str | None = None
    duration_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == BatchItemStatus.SUCCEEDED


@dataclass(frozen=True)
class BatchReport:
    """Aggregated result of ``submit_batch``."""

    batch_id: str
    batch_type: BatchType
    status: BatchStatus
    outcomes: tuple[BatchItemOutcome, ...]
    succeeded: int
    failed: int
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int = 0

    @property
    def total_items(self) -> int:
        return len(self.outcomes)

    @property
    def failures(self) -> tuple[BatchItemOutcome, ...]:
        return tuple(o for o in self.outcomes if not o.succeeded)
