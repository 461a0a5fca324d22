"""
Module: toolcrib_kernel.selectors.history_selector
Responsibility: Read-side queries over the per-item and global history
    ledgers.
Architecture position: Kernel > Selectors.  Reads bucket documents only;
    never writes.

Invariants enforced:
    - Read cost is bounded by the number of partitions overlapping the
      requested range: one month bucket per month (per-item) or one day
      bucket per day (global).  Missing buckets are skipped.
    - Results are ordered by (timestamp, id) descending and truncated to
      ``limit``.  Entries outside ``[start, end]`` are dropped even when
      their bucket overlaps the range.
    - An entry id appears at most once in a result, even if a bucket holds
      a duplicate copy.

Failure modes:
    - InvalidDateRangeError when ``start > end``.
    - InvalidQueryLimitError when ``limit < 0``.
    - Malformed entries in a bucket are logged (``history_entry_skipped``)
      and excluded; they never fail the query.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from toolcrib_kernel.domain.clock import Clock, SystemClock
from toolcrib_kernel.domain.partitions import day_keys_between, month_keys_between
from toolcrib_kernel.domain.types import HistoryAction, HistoryEntry, ItemKind
from toolcrib_kernel.exceptions import InvalidDateRangeError, InvalidQueryLimitError
from toolcrib_kernel.logging_config import get_logger
from toolcrib_kernel.selectors.base import BaseSelector
from toolcrib_kernel.store.base import DocumentRef, DocumentStore
from toolcrib_kernel.store.layout import global_history_ref, item_history_ref

logger = get_logger("selectors.history")

EntryFilter = Callable[[HistoryEntry], bool]

_UNBOUNDED = 1_000_000


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class HistorySelector(BaseSelector):
    """
    Queries over the history ledgers.

    Args:
        store: Document store holding the ledger buckets.
        clock: Used for relative windows (``recent_transactions``).
        default_limit: Limit applied when a caller passes ``limit=None``.
    """

    def __init__(
        self,
        store: DocumentStore,
        clock: Clock | None = None,
        default_limit: int = 50,
    ):
        super().__init__(store)
        self._clock = clock or SystemClock()
        self._default_limit = default_limit

    # -------------------------------------------------------------------------
    # Bucket reads
    # -------------------------------------------------------------------------

    def _read_bucket(self, ref: DocumentRef) -> list[HistoryEntry]:
        data = self.store.get(ref)
        if not data:
            return []
        entries: list[HistoryEntry] = []
        for raw in data.get("transactions", []):
            try:
                entries.append(HistoryEntry.from_document(raw))
            except (KeyError, ValueError, TypeError) as exc:
                logger.warning(
                    "history_entry_skipped",
                    extra={"partition": ref.path, "reason": f"{type(exc).__name__}: {exc}"},
                )
        return entries

    def _collect(
        self,
        refs: Iterable[DocumentRef],
        start: datetime,
        end: datetime,
        limit: int | None,
        predicate: EntryFilter | None = None,
    ) -> tuple[HistoryEntry, ...]:
        seen: set[str] = set()
        matched: list[HistoryEntry] = []
        for ref in refs:
            for entry in self._read_bucket(ref):
                if entry.id in seen:
                    continue
                timestamp = _as_utc(entry.timestamp)
                if timestamp < start or timestamp > end:
                    continue
                if predicate is not None and not predicate(entry):
                    continue
                seen.add(entry.id)
                matched.append(entry)

        matched.sort(key=lambda e: (_as_utc(e.timestamp), e.id), reverse=True)
        effective_limit = self._default_limit if limit is None else limit
        return tuple(matched[:effective_limit])

    @staticmethod
    def _validate_range(start: datetime, end: datetime) -> tuple[datetime, datetime]:
        start, end = _as_utc(start), _as_utc(end)
        if start > end:
            raise InvalidDateRangeError(start, end)
        return start, end

    @staticmethod
    def _validate_limit(limit: int | None) -> None:
        if limit is not None and limit < 0:
            raise InvalidQueryLimitError(limit)

    # -------------------------------------------------------------------------
    # Per-item ledger
    # -------------------------------------------------------------------------

    def query_item_history(
        self,
        item_id: str,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        item_kind: ItemKind = ItemKind.TOOL,
        fallback_to_global: bool = True,
    ) -> tuple[HistoryEntry, ...]:
        """
        History of one item, newest first.

        Reads one month bucket per month in range.  When the per-item ledger
        has nothing and ``fallback_to_global`` is set, the global ledger is
        scanned for the item instead (items recorded before per-item
        ledgers existed only appear there).
        """
        start, end = self._validate_range(start, end)
        self._validate_limit(limit)
        refs = [item_history_ref(item_kind, item_id, key) for key in month_keys_between(start, end)]
        entries = self._collect(refs, start, end, limit)

        if not entries and fallback_to_global:
            entries = self.query_global_history(start, end, limit, item_id=item_id)
            if entries:
                logger.info(
                    "item_history_global_fallback",
                    extra={"item_id": item_id, "entry_count": len(entries)},
                )

        logger.debug(
            "item_history_queried",
            extra={"item_id": item_id, "months": len(refs), "entry_count": len(entries)},
        )
        return entries

    # -------------------------------------------------------------------------
    # Global ledger
    # -------------------------------------------------------------------------

    def query_global_history(
        self,
        start: datetime,
        end: datetime,
        limit: int | None = None,
        item_id: str | None = None,
        staff_uid: str | None = None,
        action: HistoryAction | None = None,
        batch_id: str | None = None,
    ) -> tuple[HistoryEntry, ...]:
        """
        Fleet-wide history, newest first, with optional filters.

        ``staff_uid`` matches entries the staff member performed or was the
        assignee of.
        """
        start, end = self._validate_range(start, end)
        self._validate_limit(limit)

        def _matches(entry: HistoryEntry) -> bool:
            if item_id is not None and entry.item_id != item_id:
                return False
            if staff_uid is not None and staff_uid not in (
                entry.by_staff_uid,
                entry.assigned_to_staff_uid,
            ):
                return False
            if action is not None and entry.action != action:
                return False
            if batch_id is not None and entry.batch_id != batch_id:
                return False
            return True

        refs = [global_history_ref(key) for key in day_keys_between(start, end)]
        return self._collect(refs, start, end, limit, predicate=_matches)

    def query_batch(
        self,
        batch_id: str,
        start: datetime,
        end: datetime,
    ) -> tuple[HistoryEntry, ...]:
        """Every entry produced by one batch submission, newest first."""
        return self.query_global_history(start, end, limit=_UNBOUNDED, batch_id=batch_id)

    def query_staff_history(
        self,
        staff_uid: str,
        start: datetime,
        end: datetime,
        limit: int | None = None,
    ) -> tuple[HistoryEntry, ...]:
        return self.query_global_history(start, end, limit, staff_uid=staff_uid)

    def recent_transactions(
        self,
        days_back: int = 1,
        limit: int = 20,
    ) -> tuple[HistoryEntry, ...]:
        """Global entries from the last ``days_back`` days."""
        end = self._clock.now_utc()
        start = end - timedelta(days=days_back)
        return self.query_global_history(start, end, limit)

    @staticmethod
    def summarize(entries: Iterable[HistoryEntry]) -> dict[str, Any]:
        """Counts per action, for report headers."""
        counts: dict[str, int] = {action.value: 0 for action in HistoryAction}
        total = 0
        for entry in entries:
            counts[entry.action.value] += 1
            total += 1
        return {"total": total, "by_action": counts}
