"""Pure domain layer: types, clock and partition keys.  Zero I/O."""

from toolcrib_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SystemClock,
)
from toolcrib_kernel.domain.partitions import (
    day_key,
    day_keys_between,
    month_key,
    month_keys_between,
    parse_day_key,
    parse_month_key,
)
from toolcrib_kernel.domain.types import (
    Consumable,
    CustodyReceipt,
    HistoryAction,
    HistoryEntry,
    HistoryMetadata,
    ItemKind,
    Staff,
    Tool,
    ToolStatus,
    ToolStatusView,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "day_key",
    "day_keys_between",
    "month_key",
    "month_keys_between",
    "parse_day_key",
    "parse_month_key",
    "Consumable",
    "CustodyReceipt",
    "HistoryAction",
    "HistoryEntry",
    "HistoryMetadata",
    "ItemKind",
    "Staff",
    "Tool",
    "ToolStatus",
    "ToolStatusView",
]
