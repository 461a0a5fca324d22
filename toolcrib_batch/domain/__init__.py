"""
toolcrib_batch.domain -- Pure types for scan batches.

ZERO I/O.  All types are frozen dataclasses.
"""

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
    "BatchItem",
    "BatchItemOutcome",
    "BatchItemStatus",
    "BatchReport",
    "BatchStatus",
    "BatchType",
    "ScanResult",
    "ScanStatus",
]
