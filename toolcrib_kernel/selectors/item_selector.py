"""
Module: toolcrib_kernel.selectors.item_selector
Responsibility: Item and staff lookups, instant tool status, and scan-code
    resolution.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - ``tool_status`` is answered from exactly one document read: the
      instant-status fields on the tool document.  No ledger is consulted.
    - Unique-id resolution is memoized per selector; a cached mapping is
      re-verified against the document before use, so a stale entry falls
      back to a fresh lookup.

Failure modes:
    - ItemNotFoundError / StaffNotFoundError from the ``get_*`` methods.
    - ``parse_scan_code`` never raises; unparseable codes return None.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass

from toolcrib_kernel.domain.types import (
    STAFF_COLLECTION,
    Consumable,
    ItemKind,
    Staff,
    Tool,
    ToolStatusView,
)
from toolcrib_kernel.exceptions import ItemNotFoundError, StaffNotFoundError
from toolcrib_kernel.selectors.base import BaseSelector
from toolcrib_kernel.store.base import DocumentStore
from toolcrib_kernel.store.layout import item_ref, staff_ref

_PREFIXED_CODE = re.compile(r"^(TOOL|CONSUMABLE)#(.+)$", re.IGNORECASE)


@dataclass(frozen=True)
class ScanCode:
    """A parsed QR payload or typed id."""

    kind: ItemKind
    unique_id: str


def parse_scan_code(code: str) -> ScanCode | None:
    """
    Parse ``TOOL#T1234`` / ``CONSUMABLE#C0001`` or a bare ``T...`` / ``C...`` id.

    Returns None for anything else.
    """
    text = (code or "").strip()
    if not text:
        return None
    match = _PREFIXED_CODE.match(text)
    if match:
        kind = ItemKind.TOOL if match.group(1).upper() == "TOOL" else ItemKind.CONSUMABLE
        return ScanCode(kind, match.group(2).strip())
    if "#" in text:
        return None
    prefix = text[0].upper()
    if prefix == "T":
        return ScanCode(ItemKind.TOOL, text)
    if prefix == "C":
        return ScanCode(ItemKind.CONSUMABLE, text)
    return None


class ItemSelector(BaseSelector):
    """Read-only access to tools, consumables and staff."""

    parse_scan_code = staticmethod(parse_scan_code)

    def __init__(self, store: DocumentStore):
        super().__init__(store)
        self._id_cache: dict[tuple[ItemKind, str], str] = {}
        self._id_cache_lock = threading.Lock()

    def get_tool(self, item_id: str) -> Tool:
        data = self.store.get(item_ref(ItemKind.TOOL, item_id))
        if data is None:
            raise ItemNotFoundError(item_id, ItemKind.TOOL.value)
        return Tool.from_document(item_id, data)

    def get_consumable(self, item_id: str) -> Consumable:
        data = self.store.get(item_ref(ItemKind.CONSUMABLE, item_id))
        if data is None:
            raise ItemNotFoundError(item_id, ItemKind.CONSUMABLE.value)
        return Consumable.from_document(item_id, data)

    def get_staff(self, staff_uid: str) -> Staff:
        data = self.store.get(staff_ref(staff_uid))
        if data is None:
            raise StaffNotFoundError(staff_uid)
        return Staff.from_document(staff_uid, data)

    def tool_status(self, item_id: str) -> ToolStatusView:
        """Instant status from the tool document alone."""
        return ToolStatusView.from_tool(self.get_tool(item_id))

    def list_staff(self, active_only: bool = True) -> list[Staff]:
        staff = [
            Staff.from_document(ref.doc_id, data)
            for ref, data in self.store.list_documents(STAFF_COLLECTION)
        ]
        if active_only:
            staff = [s for s in staff if s.is_active]
        return staff

    def tools_held_by(self, staff_uid: str) -> list[Tool]:
        """Tools whose current holder is ``staff_uid``."""
        return [
            Tool.from_document(ref.doc_id, data)
            for ref, data in self.store.find(ItemKind.TOOL.collection, "currentHolder", staff_uid)
        ]

    # -------------------------------------------------------------------------
    # Unique-id resolution
    # -------------------------------------------------------------------------

    def resolve_unique_id(self, unique_id: str, kind: ItemKind = ItemKind.TOOL) -> str | None:
        """Internal document id for a printed unique id, or None."""
        key = (kind, unique_id)
        with self._id_cache_lock:
            cached = self._id_cache.get(key)
        if cached is not None:
            data = self.store.get(item_ref(kind, cached))
            if data is not None and data.get("uniqueId") == unique_id:
                return cached
            with self._id_cache_lock:
                self._id_cache.pop(key, None)

        matches = self.store.find(kind.collection, "uniqueId", unique_id)
        if not matches:
            # Some items are keyed by their unique id directly.
            data = self.store.get(item_ref(kind, unique_id))
            if data is None:
                return None
            resolved = unique_id
        else:
            resolved = matches[0][0].doc_id

        with self._id_cache_lock:
            self._id_cache[key] = resolved
        return resolved

    def resolve_scan(self, code: str) -> tuple[ItemKind, str] | None:
        """Kind and internal id for a scanned code, or None."""
        parsed = parse_scan_code(code)
        if parsed is None:
            return None
        item_id = self.resolve_unique_id(parsed.unique_id, parsed.kind)
        if item_id is None:
            return None
        return parsed.kind, item_id
