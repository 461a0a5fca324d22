"""
Document layout: where items, staff and history buckets live.

    tools/{id}                          tool document
    consumables/{id}                    consumable document
    staff/{uid}                         staff document
    {tools|consumables}/{id}/history/{MM-YYYY}   per-item month bucket
    tool_history/{YYYY/MM/DD}           global day bucket
"""

from __future__ import annotations

from toolcrib_kernel.domain.types import STAFF_COLLECTION, ItemKind
from toolcrib_kernel.store.base import DocumentRef

GLOBAL_HISTORY_COLLECTION = "tool_history"
HISTORY_SUBCOLLECTION = "history"


def item_ref(kind: ItemKind, item_id: str) -> DocumentRef:
    return DocumentRef(kind.collection, item_id)


def staff_ref(staff_uid: str) -> DocumentRef:
    return DocumentRef(STAFF_COLLECTION, staff_uid)


def item_history_ref(kind: ItemKind, item_id: str, month: str) -> DocumentRef:
    return item_ref(kind, item_id).child(HISTORY_SUBCOLLECTION, month)


def global_history_ref(day: str) -> DocumentRef:
    return DocumentRef(GLOBAL_HISTORY_COLLECTION, day)
