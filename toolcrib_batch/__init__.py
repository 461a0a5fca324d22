"""
toolcrib_batch -- Scan batches for tools and consumables.

A batch is client-side only: a list of scanned items of one BatchType and,
on submission, a shared batch id stamped on every history entry it
produces.  Nothing in toolcrib_kernel imports from toolcrib_batch.
"""

from toolcrib_batch.coordinator import BatchCoordinator, new_batch_id
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

__all__ = [
    "BatchCoordinator",
    "new_batch_id",
    "BatchItem",
    "BatchItemOutcome",
    "BatchItemStatus",
    "BatchReport",
    "BatchStatus",
    "BatchType",
    "ScanResult",
    "ScanStatus",
]
