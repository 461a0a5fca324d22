"""Kernel services (write side)."""

from toolcrib_kernel.services.custody_service import CustodyService
from toolcrib_kernel.services.history_ledger import (
    GlobalHistoryLedger,
    ItemHistoryLedger,
    PartitionedLedger,
    PartitionLocks,
)

__all__ = [
    "CustodyService",
    "GlobalHistoryLedger",
    "ItemHistoryLedger",
    "PartitionedLedger",
    "PartitionLocks",
]
