"""
CustodyService -- transactional checkout/checkin and consumable stock moves.

Responsibility:
    Mutates custody state atomically (item document + staff document inside
    one store transaction), then records the resulting HistoryEntry in the
    per-item and global ledgers on a best-effort basis.

Architecture position:
    Kernel > Services.  Called by the batch coordinator and the CustodyAPI
    facade.  Uses ItemHistoryLedger / GlobalHistoryLedger for the
    best-effort phase.

Invariants enforced:
    - The source of truth for "who holds this item" is the atomic
      item/staff mutation.  Ledgers are written only after it commits and
      never roll it back.
    - Instant-status fields are written in the same transaction as the
      status change, so a status read never needs a ledger lookup.
    - Preconditions are evaluated against documents read inside the
      transaction; a concurrent change forces a retry, never a lost update.
    - Entry timestamps and partition keys come from the store's commit
      timestamp.

Failure modes:
    - ItemNotFoundError, StaffNotFoundError (NotFound).
    - AlreadyCheckedOutError, NotCheckedOutError, StaffInactiveError,
      InsufficientQuantityError, InvalidQuantityError (PreconditionFailed).
      No mutation is applied.
    - TransactionConflictError when store retries are exhausted.
    - Ledger failures are logged as ``ledger_write_failed`` and never raised.

Audit relevance:
    Every committed mutation produces exactly one HistoryEntry id, returned
    in the CustodyReceipt and carried by both ledger copies.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from toolcrib_kernel.domain.types import (
    Consumable,
    CustodyReceipt,
    HistoryAction,
    HistoryEntry,
    HistoryMetadata,
    ItemKind,
    Staff,
    Tool,
)
from toolcrib_kernel.exceptions import (
    AlreadyCheckedOutError,
    InsufficientQuantityError,
    InvalidQuantityError,
    ItemNotFoundError,
    NotCheckedOutError,
    StaffInactiveError,
    StaffNotFoundError,
)
from toolcrib_kernel.logging_config import LogContext, get_logger
from toolcrib_kernel.services.base import BaseService
from toolcrib_kernel.services.history_ledger import (
    GlobalHistoryLedger,
    ItemHistoryLedger,
)
from toolcrib_kernel.store.base import SERVER_TIMESTAMP, DocumentStore, Transaction
from toolcrib_kernel.store.layout import item_ref, staff_ref

logger = get_logger("services.custody")


@dataclass(frozen=True)
class _AtomicOutcome:
    """What the transaction function saw; turned into a HistoryEntry after commit."""

    metadata: HistoryMetadata
    assigned_to_staff_uid: str | None = None
    quantity_before: float | None = None
    quantity_after: float | None = None
    holder_record_missing: bool = False


def _read_tool(txn: Transaction, item_id: str) -> Tool:
    data = txn.get(item_ref(ItemKind.TOOL, item_id))
    if data is None:
        raise ItemNotFoundError(item_id, ItemKind.TOOL.value)
    return Tool.from_document(item_id, data)


def _read_consumable(txn: Transaction, item_id: str) -> Consumable:
    data = txn.get(item_ref(ItemKind.CONSUMABLE, item_id))
    if data is None:
        raise ItemNotFoundError(item_id, ItemKind.CONSUMABLE.value)
    return Consumable.from_document(item_id, data)


def _read_staff(txn: Transaction, staff_uid: str) -> Staff:
    data = txn.get(staff_ref(staff_uid))
    if data is None:
        raise StaffNotFoundError(staff_uid)
    return Staff.from_document(staff_uid, data)


def _tool_metadata(tool: Tool, staff: Staff | None, actor: Staff) -> HistoryMetadata:
    return HistoryMetadata(
        staff_name=staff.full_name if staff else None,
        staff_job_code=staff.job_code if staff else None,
        item_name=tool.name or None,
        item_unique_id=tool.unique_id or None,
        item_brand=tool.brand or None,
        item_model=tool.model or None,
        admin_name=actor.full_name,
    )


def _consumable_metadata(
    consumable: Consumable, staff: Staff | None, actor: Staff,
) -> HistoryMetadata:
    return HistoryMetadata(
        staff_name=staff.full_name if staff else None,
        staff_job_code=staff.job_code if staff else None,
        item_name=consumable.name or None,
        item_unique_id=consumable.unique_id or None,
        item_brand=consumable.brand or None,
        admin_name=actor.full_name,
    )


class CustodyService(BaseService):
    """
    Transaction engine for tools and consumables.

    Args:
        store: Document store holding items, staff and ledgers.
        item_ledger: Per-item ledger (defaults to ItemHistoryLedger(store)).
        global_ledger: Global ledger (defaults to GlobalHistoryLedger(store)).
        record_item_history: Append to the per-item ledger.
        record_global_history: Append to the global ledger.
    """

    def __init__(
        self,
        store: DocumentStore,
        item_ledger: ItemHistoryLedger | None = None,
        global_ledger: GlobalHistoryLedger | None = None,
        record_item_history: bool = True,
        record_global_history: bool = True,
    ):
        super().__init__(store)
        self._item_ledger = item_ledger or ItemHistoryLedger(store)
        self._global_ledger = global_ledger or GlobalHistoryLedger(store)
        self._ledgers = []
        if record_item_history:
            self._ledgers.append(self._item_ledger)
        if record_global_history:
            self._ledgers.append(self._global_ledger)

    # -------------------------------------------------------------------------
    # Tools
    # -------------------------------------------------------------------------

    def checkout(
        self,
        item_id: str,
        staff_uid: str,
        acting_staff_uid: str,
        notes: str | None = None,
        batch_id: str | None = None,
    ) -> CustodyReceipt:
        """
        Assign an available tool to ``staff_uid``.

        Raises:
            ItemNotFoundError, StaffNotFoundError, AlreadyCheckedOutError,
            StaffInactiveError, TransactionConflictError.
        """
        with LogContext.bind(item_id=item_id, actor_id=acting_staff_uid, batch_id=batch_id):

            def _atomic(txn: Transaction) -> _AtomicOutcome:
                tool = _read_tool(txn, item_id)
                staff = _read_staff(txn, staff_uid)
                actor = staff if acting_staff_uid == staff_uid else _read_staff(txn, acting_staff_uid)
                if not tool.is_available:
                    raise AlreadyCheckedOutError(item_id, tool.current_holder_uid)
                if not staff.is_active:
                    raise StaffInactiveError(staff_uid)

                txn.update(item_ref(ItemKind.TOOL, item_id), {
                    "status": "checked_out",
                    "currentHolder": staff_uid,
                    "lastAssignedToName": staff.full_name,
                    "lastAssignedToJobCode": staff.job_code,
                    "lastAssignedByName": actor.full_name,
                    "lastAssignedAt": SERVER_TIMESTAMP,
                    "updatedAt": SERVER_TIMESTAMP,
                })
                assigned = list(staff.assigned_item_ids)
                if item_id not in assigned:
                    assigned.append(item_id)
                txn.update(staff_ref(staff_uid), {
                    "assignedItemIds": assigned,
                    "updatedAt": SERVER_TIMESTAMP,
                })
                return _AtomicOutcome(
                    metadata=_tool_metadata(tool, staff, actor),
                    assigned_to_staff_uid=staff_uid,
                )

            committed = self.store.run_transaction(_atomic)
            return self._finish(
                action=HistoryAction.CHECKOUT,
                item_id=item_id,
                item_kind=ItemKind.TOOL,
                acting_staff_uid=acting_staff_uid,
                outcome=committed.value,
                committed_at=committed.committed_at,
                notes=notes,
                batch_id=batch_id,
            )

    def checkin(
        self,
        item_id: str,
        acting_staff_uid: str,
        notes: str | None = None,
        batch_id: str | None = None,
    ) -> CustodyReceipt:
        """
        Return a checked-out tool to stock.

        ``lastCheckinByName`` records the staff member who held the tool;
        when the holder record no longer exists the acting staff name is
        used and the holder's assignment list is left untouched.

        Raises:
            ItemNotFoundError, StaffNotFoundError, NotCheckedOutError,
            TransactionConflictError.
        """
        with LogContext.bind(item_id=item_id, actor_id=acting_staff_uid, batch_id=batch_id):

            def _atomic(txn: Transaction) -> _AtomicOutcome:
                tool = _read_tool(txn, item_id)
                actor = _read_staff(txn, acting_staff_uid)
                if tool.is_available:
                    raise NotCheckedOutError(item_id)

                holder_uid = tool.current_holder_uid
                holder: Staff | None = None
                if holder_uid == acting_staff_uid:
                    holder = actor
                elif holder_uid:
                    holder_data = txn.get(staff_ref(holder_uid))
                    if holder_data is not None:
                        holder = Staff.from_document(holder_uid, holder_data)

                txn.update(item_ref(ItemKind.TOOL, item_id), {
                    "status": "available",
                    "currentHolder": None,
                    "lastCheckinAt": SERVER_TIMESTAMP,
                    "lastCheckinByName": holder.full_name if holder else actor.full_name,
                    "updatedAt": SERVER_TIMESTAMP,
                })
                if holder is not None:
                    txn.update(staff_ref(holder.uid), {
                        "assignedItemIds": [i for i in holder.assigned_item_ids if i != item_id],
                        "updatedAt": SERVER_TIMESTAMP,
                    })
                return _AtomicOutcome(
                    metadata=_tool_metadata(tool, holder, actor),
                    assigned_to_staff_uid=holder_uid,
                    holder_record_missing=bool(holder_uid) and holder is None,
                )

            committed = self.store.run_transaction(_atomic)
            if committed.value.holder_record_missing:
                logger.warning(
                    "holder_record_missing",
                    extra={"item_id": item_id, "holder_uid": committed.value.assigned_to_staff_uid},
                )
            return self._finish(
                action=HistoryAction.CHECKIN,
                item_id=item_id,
                item_kind=ItemKind.TOOL,
                acting_staff_uid=acting_staff_uid,
                outcome=committed.value,
                committed_at=committed.committed_at,
                notes=notes,
                batch_id=batch_id,
            )

    # -------------------------------------------------------------------------
    # Consumables
    # -------------------------------------------------------------------------

    def record_usage(
        self,
        item_id: str,
        quantity: float,
        acting_staff_uid: str,
        assigned_to_staff_uid: str | None = None,
        notes: str | None = None,
        batch_id: str | None = None,
    ) -> CustodyReceipt:
        """
        Take ``quantity`` of a consumable out of stock.

        Raises:
            InvalidQuantityError, ItemNotFoundError, StaffNotFoundError,
            InsufficientQuantityError, TransactionConflictError.
        """
        if quantity <= 0:
            raise InvalidQuantityError(item_id, quantity)

        with LogContext.bind(item_id=item_id, actor_id=acting_staff_uid, batch_id=batch_id):

            def _atomic(txn: Transaction) -> _AtomicOutcome:
                consumable = _read_consumable(txn, item_id)
                actor = _read_staff(txn, acting_staff_uid)
                assignee = None
                if assigned_to_staff_uid and assigned_to_staff_uid != acting_staff_uid:
                    assignee = _read_staff(txn, assigned_to_staff_uid)
                elif assigned_to_staff_uid:
                    assignee = actor
                if consumable.current_quantity < quantity:
                    raise InsufficientQuantityError(item_id, quantity, consumable.current_quantity)

                after = consumable.current_quantity - quantity
                txn.update(item_ref(ItemKind.CONSUMABLE, item_id), {
                    "currentQuantity": after,
                    "lastUsedByName": (assignee or actor).full_name,
                    "lastUsedAt": SERVER_TIMESTAMP,
                    "updatedAt": SERVER_TIMESTAMP,
                })
                return _AtomicOutcome(
                    metadata=_consumable_metadata(consumable, assignee, actor),
                    assigned_to_staff_uid=assigned_to_staff_uid,
                    quantity_before=consumable.current_quantity,
                    quantity_after=after,
                )

            committed = self.store.run_transaction(_atomic)
            return self._finish(
                action=HistoryAction.USAGE,
                item_id=item_id,
                item_kind=ItemKind.CONSUMABLE,
                acting_staff_uid=acting_staff_uid,
                outcome=committed.value,
                committed_at=committed.committed_at,
                notes=notes,
                batch_id=batch_id,
            )

    def record_restock(
        self,
        item_id: str,
        quantity: float,
        acting_staff_uid: str,
        notes: str | None = None,
        batch_id: str | None = None,
    ) -> CustodyReceipt:
        """
        Return ``quantity`` of a consumable to stock.

        Raises:
            InvalidQuantityError, ItemNotFoundError, StaffNotFoundError,
            TransactionConflictError.
        """
        if quantity <= 0:
            raise InvalidQuantityError(item_id, quantity)

        with LogContext.bind(item_id=item_id, actor_id=acting_staff_uid, batch_id=batch_id):

            def _atomic(txn: Transaction) -> _AtomicOutcome:
                consumable = _read_consumable(txn, item_id)
                actor = _read_staff(txn, acting_staff_uid)
                after = consumable.current_quantity + quantity
                txn.update(item_ref(ItemKind.CONSUMABLE, item_id), {
                    "currentQuantity": after,
                    "lastRestockedByName": actor.full_name,
                    "lastRestockedAt": SERVER_TIMESTAMP,
                    "updatedAt": SERVER_TIMESTAMP,
                })
                return _AtomicOutcome(
                    metadata=_consumable_metadata(consumable, None, actor),
                    quantity_before=consumable.current_quantity,
                    quantity_after=after,
                )

            committed = self.store.run_transaction(_atomic)
            return self._finish(
                action=HistoryAction.RESTOCK,
                item_id=item_id,
                item_kind=ItemKind.CONSUMABLE,
                acting_staff_uid=acting_staff_uid,
                outcome=committed.value,
                committed_at=committed.committed_at,
                notes=notes,
                batch_id=batch_id,
            )

    # -------------------------------------------------------------------------
    # Best-effort phase
    # -------------------------------------------------------------------------

    def _finish(
        self,
        action: HistoryAction,
        item_id: str,
        item_kind: ItemKind,
        acting_staff_uid: str,
        outcome: _AtomicOutcome,
        committed_at,
        notes: str | None,
        batch_id: str | None,
    ) -> CustodyReceipt:
        quantity_change = None
        if outcome.quantity_before is not None and outcome.quantity_after is not None:
            quantity_change = outcome.quantity_after - outcome.quantity_before

        entry = HistoryEntry(
            id=uuid4().hex,
            action=action,
            item_id=item_id,
            item_kind=item_kind,
            by_staff_uid=acting_staff_uid,
            timestamp=committed_at,
            assigned_to_staff_uid=outcome.assigned_to_staff_uid,
            batch_id=batch_id,
            notes=notes,
            metadata=outcome.metadata,
            quantity_change=quantity_change,
            quantity_before=outcome.quantity_before,
            quantity_after=outcome.quantity_after,
        )

        log_extra: dict[str, Any] = {
            "item_id": item_id,
            "item_kind": item_kind.value,
            "entry_id": entry.id,
            "assigned_to_staff_uid": entry.assigned_to_staff_uid,
            "committed_at": committed_at,
        }
        if quantity_change is not None:
            log_extra["quantity_change"] = quantity_change
            log_extra["quantity_after"] = outcome.quantity_after
        logger.info(f"{action.value}_committed", extra=log_extra)

        self._record_history(entry)

        return CustodyReceipt(
            item_id=item_id,
            item_kind=item_kind,
            action=action,
            entry_id=entry.id,
            committed_at=committed_at,
            batch_id=batch_id,
        )

    def _record_history(self, entry: HistoryEntry) -> None:
        for ledger in self._ledgers:
            try:
                ledger.append(entry)
            except Exception as exc:
                logger.warning(
                    "ledger_write_failed",
                    extra={
                        "ledger": ledger.ledger_name,
                        "entry_id": entry.id,
                        "action": entry.action.value,
                        "reason": f"{type(exc).__name__}: {exc}",
                    },
                )
