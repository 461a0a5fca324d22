"""
toolcrib_kernel.domain.types -- Pure frozen dataclasses for custody records.

ZERO I/O.  Documents in the store use camelCase field names (the layout
existing tool, staff and history documents already have); the Python side
uses snake_case attributes.  Each record type owns its own
``from_document`` / ``to_document`` mapping so the store backends never
see a dataclass.

Invariants enforced:
    - Records are frozen: a HistoryEntry is never updated after creation.
    - Instant-status fields on Tool/Consumable are plain caches of the most
      recent history entry; only the custody engine writes them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# =============================================================================
# Enums
# =============================================================================


class ItemKind(str, Enum):
    """Kind of custody item."""

    TOOL = "tool"
    CONSUMABLE = "consumable"

    @property
    def collection(self) -> str:
        return "tools" if self is ItemKind.TOOL else "consumables"


class ToolStatus(str, Enum):
    """Custody status of a discrete tool."""

    AVAILABLE = "available"
    CHECKED_OUT = "checked_out"


class HistoryAction(str, Enum):
    """Action recorded in a history entry."""

    CHECKOUT = "checkout"
    CHECKIN = "checkin"
    USAGE = "usage"  # Consumable leaves stock
    RESTOCK = "restock"  # Consumable returns to stock


STAFF_COLLECTION = "staff"


# =============================================================================
# Items and staff
# =============================================================================


@dataclass(frozen=True)
class Tool:
    """Immutable snapshot of a tool document."""

    id: str
    unique_id: str  # Printed on the QR label, e.g. "T1234"
    name: str = ""
    brand: str = ""
    model: str = ""
    status: ToolStatus = ToolStatus.AVAILABLE
    current_holder_uid: str | None = None
    # Instant-status fields
    last_assigned_to_name: str | None = None
    last_assigned_to_job_code: str | None = None
    last_assigned_by_name: str | None = None
    last_assigned_at: datetime | None = None
    last_checkin_at: datetime | None = None
    last_checkin_by_name: str | None = None
    updated_at: datetime | None = None

    @property
    def is_available(self) -> bool:
        return self.status == ToolStatus.AVAILABLE

    @property
    def display_name(self) -> str:
        parts = [p for p in (self.brand, self.name or self.model) if p]
        return " ".join(parts) or self.unique_id

    @property
    def qr_payload(self) -> str:
        return f"TOOL#{self.unique_id}"

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> Tool:
        return cls(
            id=doc_id,
            unique_id=data.get("uniqueId", ""),
            name=data.get("name", ""),
            brand=data.get("brand", ""),
            model=data.get("model", ""),
            status=ToolStatus(data.get("status", ToolStatus.AVAILABLE.value)),
            current_holder_uid=data.get("currentHolder"),
            last_assigned_to_name=data.get("lastAssignedToName"),
            last_assigned_to_job_code=data.get("lastAssignedToJobCode"),
            last_assigned_by_name=data.get("lastAssignedByName"),
            last_assigned_at=data.get("lastAssignedAt"),
            last_checkin_at=data.get("lastCheckinAt"),
            last_checkin_by_name=data.get("lastCheckinByName"),
            updated_at=data.get("updatedAt"),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "uniqueId": self.unique_id,
            "name": self.name,
            "brand": self.brand,
            "model": self.model,
            "qrPayload": self.qr_payload,
            "status": self.status.value,
            "currentHolder": self.current_holder_uid,
            "lastAssignedToName": self.last_assigned_to_name,
            "lastAssignedToJobCode": self.last_assigned_to_job_code,
            "lastAssignedByName": self.last_assigned_by_name,
            "lastAssignedAt": self.last_assigned_at,
            "lastCheckinAt": self.last_checkin_at,
            "lastCheckinByName": self.last_checkin_by_name,
        }


@dataclass(frozen=True)
class Consumable:
    """Immutable snapshot of a consumable document."""

    id: str
    unique_id: str  # e.g. "C0001"
    name: str = ""
    brand: str = ""
    unit: str = "pieces"
    current_quantity: float = 0.0
    min_quantity: float = 0.0
    max_quantity: float = 100.0
    is_active: bool = True
    last_used_by_name: str | None = None
    last_used_at: datetime | None = None
    last_restocked_by_name: str | None = None
    last_restocked_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_low_stock(self) -> bool:
        return self.current_quantity <= self.min_quantity

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.brand, self.name) if p) or self.unique_id

    @property
    def qr_payload(self) -> str:
        return f"CONSUMABLE#{self.unique_id}"

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> Consumable:
        return cls(
            id=doc_id,
            unique_id=data.get("uniqueId", ""),
            name=data.get("name", ""),
            brand=data.get("brand", ""),
            unit=data.get("unit", "pieces"),
            current_quantity=float(data.get("currentQuantity", 0.0)),
            min_quantity=float(data.get("minQuantity", 0.0)),
            max_quantity=float(data.get("maxQuantity", 100.0)),
            is_active=bool(data.get("isActive", True)),
            last_used_by_name=data.get("lastUsedByName"),
            last_used_at=data.get("lastUsedAt"),
            last_restocked_by_name=data.get("lastRestockedByName"),
            last_restocked_at=data.get("lastRestockedAt"),
            updated_at=data.get("updatedAt"),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "uniqueId": self.unique_id,
            "name": self.name,
            "brand": self.brand,
            "unit": self.unit,
            "qrPayload": self.qr_payload,
            "currentQuantity": self.current_quantity,
            "minQuantity": self.min_quantity,
            "maxQuantity": self.max_quantity,
            "isActive": self.is_active,
            "lastUsedByName": self.last_used_by_name,
            "lastUsedAt": self.last_used_at,
            "lastRestockedByName": self.last_restocked_by_name,
            "lastRestockedAt": self.last_restocked_at,
        }


@dataclass(frozen=True)
class Staff:
    """Immutable snapshot of a staff document."""

    uid: str
    full_name: str
    job_code: str = ""
    is_active: bool = True
    assigned_item_ids: tuple[str, ...] = ()

    @classmethod
    def from_document(cls, uid: str, data: dict[str, Any]) -> Staff:
        return cls(
            uid=uid,
            full_name=data.get("fullName", ""),
            job_code=data.get("jobCode", ""),
            is_active=bool(data.get("isActive", True)),
            assigned_item_ids=tuple(data.get("assignedItemIds", ())),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            "fullName": self.full_name,
            "jobCode": self.job_code,
            "isActive": self.is_active,
            "assignedItemIds": list(self.assigned_item_ids),
        }


# =============================================================================
# History
# =============================================================================


@dataclass(frozen=True)
class HistoryMetadata:
    """Names captured at write time so history stays readable after renames."""

    staff_name: str | None = None
    staff_job_code: str | None = None
    item_name: str | None = None
    item_unique_id: str | None = None
    item_brand: str | None = None
    item_model: str | None = None
    admin_name: str | None = None

    _FIELDS = (
        ("staff_name", "staffName"),
        ("staff_job_code", "staffJobCode"),
        ("item_name", "itemName"),
        ("item_unique_id", "itemUniqueId"),
        ("item_brand", "itemBrand"),
        ("item_model", "itemModel"),
        ("admin_name", "adminName"),
    )

    @classmethod
    def from_document(cls, data: dict[str, Any] | None) -> HistoryMetadata:
        data = data or {}
        # Legacy global entries used toolName/toolUniqueId/toolBrand/toolModel.
        return cls(
            staff_name=data.get("staffName"),
            staff_job_code=data.get("staffJobCode"),
            item_name=data.get("itemName", data.get("toolName")),
            item_unique_id=data.get("itemUniqueId", data.get("toolUniqueId")),
            item_brand=data.get("itemBrand", data.get("toolBrand")),
            item_model=data.get("itemModel", data.get("toolModel")),
            admin_name=data.get("adminName"),
        )

    def to_document(self) -> dict[str, Any]:
        return {
            doc_key: getattr(self, attr)
            for attr, doc_key in self._FIELDS
            if getattr(self, attr) is not None
        }


def _parse_timestamp(value: Any) -> datetime:
    # Entries exported by older tooling carry ISO strings.
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    raise TypeError(f"timestamp must be a datetime, got {type(value).__name__}")


@dataclass(frozen=True)
class HistoryEntry:
    """Immutable audit record appended to the history ledgers."""

    id: str
    action: HistoryAction
    item_id: str
    item_kind: ItemKind
    by_staff_uid: str
    timestamp: datetime
    assigned_to_staff_uid: str | None = None
    batch_id: str | None = None
    notes: str | None = None
    metadata: HistoryMetadata = field(default_factory=HistoryMetadata)
    quantity_change: float | None = None
    quantity_before: float | None = None
    quantity_after: float | None = None

    @property
    def is_batch(self) -> bool:
        return self.batch_id is not None

    def sort_key(self) -> tuple[datetime, str]:
        return (self.timestamp, self.id)

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> HistoryEntry:
        return cls(
            id=str(data["id"]),
            action=HistoryAction(data["action"]),
            item_id=data.get("itemId") or data.get("toolId", ""),
            item_kind=ItemKind(data.get("itemKind", ItemKind.TOOL.value)),
            by_staff_uid=data.get("byStaffUid", "unknown"),
            timestamp=_parse_timestamp(data["timestamp"]),
            assigned_to_staff_uid=data.get("assignedToStaffUid"),
            batch_id=data.get("batchId"),
            notes=data.get("notes"),
            metadata=HistoryMetadata.from_document(data.get("metadata")),
            quantity_change=data.get("quantityChange"),
            quantity_before=data.get("quantityBefore"),
            quantity_after=data.get("quantityAfter"),
        )

    def to_document(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "id": self.id,
            "action": self.action.value,
            "itemId": self.item_id,
            "itemKind": self.item_kind.value,
            "byStaffUid": self.by_staff_uid,
            "assignedToStaffUid": self.assigned_to_staff_uid,
            "timestamp": self.timestamp,
            "notes": self.notes,
            "metadata": self.metadata.to_document(),
        }
        if self.batch_id is not None:
            doc["batchId"] = self.batch_id
            doc["isBatch"] = True
        if self.quantity_change is not None:
            doc["quantityChange"] = self.quantity_change
            doc["quantityBefore"] = self.quantity_before
            doc["quantityAfter"] = self.quantity_after
        return doc


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class CustodyReceipt:
    """Outcome of a committed custody mutation.

    Reports only the atomic phase.  Whether the history ledgers received the
    entry is deliberately not part of the receipt.
    """

    item_id: str
    item_kind: ItemKind
    action: HistoryAction
    entry_id: str
    committed_at: datetime
    batch_id: str | None = None


@dataclass(frozen=True)
class ToolStatusView:
    """Instant status of a tool, built from a single document read."""

    item_id: str
    unique_id: str
    status: ToolStatus
    current_holder_uid: str | None
    last_assigned_to_name: str | None
    last_assigned_to_job_code: str | None
    last_assigned_by_name: str | None
    last_assigned_at: datetime | None
    last_checkin_at: datetime | None
    last_checkin_by_name: str | None

    @property
    def can_check_out(self) -> bool:
        return self.status == ToolStatus.AVAILABLE

    @property
    def can_check_in(self) -> bool:
        return self.status == ToolStatus.CHECKED_OUT

    @classmethod
    def from_tool(cls, tool: Tool) -> ToolStatusView:
        return cls(
            item_id=tool.id,
            unique_id=tool.unique_id,
            status=tool.status,
            current_holder_uid=tool.current_holder_uid,
            last_assigned_to_name=tool.last_assigned_to_name,
            last_assigned_to_job_code=tool.last_assigned_to_job_code,
            last_assigned_by_name=tool.last_assigned_by_name,
            last_assigned_at=tool.last_assigned_at,
            last_checkin_at=tool.last_checkin_at,
            last_checkin_by_name=tool.last_checkin_by_name,
        )
