"""Tests for the custody record dataclasses and their document mapping."""

from datetime import datetime, timezone

import pytest

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

T0 = datetime(2025, 10, 20, 9, 0, tzinfo=timezone.utc)


class TestItemKind:
    def test_collections(self):
        assert ItemKind.TOOL.collection == "tools"
        assert ItemKind.CONSUMABLE.collection == "consumables"


class TestTool:
    def test_defaults_from_sparse_document(self):
        tool = Tool.from_document("tool-1", {"uniqueId": "T1234"})
        assert tool.status == ToolStatus.AVAILABLE
        assert tool.is_available
        assert tool.current_holder_uid is None
        assert tool.last_assigned_at is None

    def test_document_round_trip(self):
        tool = Tool(
            "tool-1", "T1234", name="Impact Driver", brand="Makita", model="XDT13",
            status=ToolStatus.CHECKED_OUT, current_holder_uid="W1",
            last_assigned_to_name="Wren Walker", last_assigned_at=T0,
        )
        assert Tool.from_document("tool-1", tool.to_document()) == tool

    def test_qr_payload_in_document(self):
        assert Tool("tool-1", "T1234").to_document()["qrPayload"] == "TOOL#T1234"

    def test_display_name(self):
        assert Tool("t", "T1", name="Drill", brand="Bosch").display_name == "Bosch Drill"
        assert Tool("t", "T1").display_name == "T1"

    def test_unknown_status_rejected(self):
        with pytest.raises(ValueError):
            Tool.from_document("tool-1", {"uniqueId": "T1", "status": "lost"})


class TestConsumable:
    def test_low_stock_at_minimum(self):
        assert Consumable("c", "C1", current_quantity=2, min_quantity=2).is_low_stock
        assert not Consumable("c", "C1", current_quantity=3, min_quantity=2).is_low_stock

    def test_quantities_coerced_to_float(self):
        consumable = Consumable.from_document("c", {"uniqueId": "C1", "currentQuantity": 7})
        assert consumable.current_quantity == 7.0
        assert isinstance(consumable.current_quantity, float)

    def test_qr_payload(self):
        assert Consumable("c", "C0001").qr_payload == "CONSUMABLE#C0001"


class TestStaff:
    def test_round_trip(self):
        staff = Staff("W1", "Wren Walker", "W-210", assigned_item_ids=("tool-1",))
        assert Staff.from_document("W1", staff.to_document()) == staff

    def test_missing_active_flag_defaults_true(self):
        assert Staff.from_document("W1", {"fullName": "Wren"}).is_active


class TestHistoryMetadata:
    def test_none_fields_omitted(self):
        assert HistoryMetadata(staff_name="Wren").to_document() == {"staffName": "Wren"}

    def test_legacy_tool_keys_accepted(self):
        metadata = HistoryMetadata.from_document(
            {"toolName": "Drill", "toolUniqueId": "T1", "toolBrand": "Bosch", "toolModel": "X"}
        )
        assert metadata.item_name == "Drill"
        assert metadata.item_unique_id == "T1"
        assert metadata.item_brand == "Bosch"
        assert metadata.item_model == "X"


class TestHistoryEntry:
    def _entry(self, **overrides) -> HistoryEntry:
        values = dict(
            id="e1",
            action=HistoryAction.CHECKOUT,
            item_id="tool-1",
            item_kind=ItemKind.TOOL,
            by_staff_uid="ADMIN1",
            timestamp=T0,
            assigned_to_staff_uid="W1",
        )
        values.update(overrides)
        return HistoryEntry(**values)

    def test_tool_entry_document_shape(self):
        doc = self._entry().to_document()
        assert doc["action"] == "checkout"
        assert doc["itemId"] == "tool-1"
        assert doc["timestamp"] == T0
        assert "batchId" not in doc
        assert "quantityChange" not in doc

    def test_batch_fields(self):
        doc = self._entry(batch_id="BATCH_1").to_document()
        assert doc["batchId"] == "BATCH_1"
        assert doc["isBatch"] is True

    def test_quantity_fields(self):
        entry = self._entry(
            action=HistoryAction.USAGE, item_kind=ItemKind.CONSUMABLE,
            quantity_change=-3.0, quantity_before=10.0, quantity_after=7.0,
        )
        assert HistoryEntry.from_document(entry.to_document()) == entry

    def test_legacy_tool_id_key(self):
        entry = HistoryEntry.from_document(
            {"id": "e1", "action": "checkin", "toolId": "tool-9", "timestamp": T0}
        )
        assert entry.item_id == "tool-9"
        assert entry.item_kind == ItemKind.TOOL
        assert entry.by_staff_uid == "unknown"

    def test_iso_string_timestamp_parsed(self):
        entry = HistoryEntry.from_document(
            {"id": "e1", "action": "checkin", "itemId": "t", "timestamp": "2025-10-20T09:00:00+00:00"}
        )
        assert entry.timestamp == T0

    def test_missing_timestamp_rejected(self):
        with pytest.raises(KeyError):
            HistoryEntry.from_document({"id": "e1", "action": "checkin"})

    def test_non_datetime_timestamp_rejected(self):
        with pytest.raises(TypeError):
            HistoryEntry.from_document({"id": "e1", "action": "checkin", "timestamp": 12})

    def test_sort_key_breaks_ties_by_id(self):
        a = self._entry(id="a")
        b = self._entry(id="b")
        assert sorted([b, a], key=HistoryEntry.sort_key) == [a, b]


class TestToolStatusView:
    def test_flags_follow_status(self):
        available = ToolStatusView.from_tool(Tool("t", "T1"))
        out = ToolStatusView.from_tool(Tool("t", "T1", status=ToolStatus.CHECKED_OUT))
        assert available.can_check_out and not available.can_check_in
        assert out.can_check_in and not out.can_check_out


class TestCustodyReceipt:
    def test_frozen(self):
        receipt = CustodyReceipt("tool-1", ItemKind.TOOL, HistoryAction.CHECKOUT, "e1", T0)
        with pytest.raises(AttributeError):
            receipt.entry_id = "other"
