"""Read-only selectors."""

from toolcrib_kernel.selectors.history_selector import HistorySelector
from toolcrib_kernel.selectors.item_cache import ItemCache
from toolcrib_kernel.selectors.item_selector import ItemSelector, ScanCode, parse_scan_code

__all__ = [
    "HistorySelector",
    "ItemCache",
    "ItemSelector",
    "ScanCode",
    "parse_scan_code",
]
