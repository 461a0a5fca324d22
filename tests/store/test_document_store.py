"""
Contract tests for DocumentStore backends.

Every test in this module runs against both the in-memory store and the
SQLite-backed SQL store through the parametrized ``store`` fixture.
"""

from datetime import datetime, timedelta, timezone

import pytest

from toolcrib_kernel.exceptions import DocumentMissingError, TransactionConflictError
from toolcrib_kernel.store.base import (
    SERVER_TIMESTAMP,
    ArrayRemove,
    ArrayUnion,
    DocumentRef,
)

TOOL = DocumentRef("tools", "tool-1")
STAFF = DocumentRef("staff", "W1")


class TestReadsAndWrites:
    def test_missing_document_is_none(self, store):
        assert store.get(TOOL) is None

    def test_set_then_get(self, store):
        store.set(TOOL, {"uniqueId": "T1234", "status": "available"})
        assert store.get(TOOL) == {"uniqueId": "T1234", "status": "available"}

    def test_set_without_merge_replaces(self, store):
        store.set(TOOL, {"a": 1, "b": 2})
        store.set(TOOL, {"a": 3})
        assert store.get(TOOL) == {"a": 3}

    def test_merge_is_shallow(self, store):
        store.set(TOOL, {"a": 1, "meta": {"x": 1, "y": 2}})
        store.set(TOOL, {"meta": {"x": 9}}, merge=True)
        assert store.get(TOOL) == {"a": 1, "meta": {"x": 9}}

    def test_returned_documents_are_copies(self, store):
        store.set(TOOL, {"tags": ["a"]})
        fetched = store.get(TOOL)
        fetched["tags"].append("b")
        assert store.get(TOOL) == {"tags": ["a"]}

    def test_datetimes_round_trip(self, store):
        moment = datetime(2025, 10, 20, 9, 30, tzinfo=timezone.utc)
        store.set(TOOL, {"lastAssignedAt": moment, "nested": [{"at": moment}]})
        data = store.get(TOOL)
        assert data["lastAssignedAt"] == moment
        assert data["nested"][0]["at"] == moment

    def test_list_documents_sorted_by_id(self, store):
        for doc_id in ("b", "a", "c"):
            store.set(DocumentRef("tools", doc_id), {"uniqueId": doc_id.upper()})
        store.set(DocumentRef("staff", "W1"), {"fullName": "Wren"})
        ids = [ref.doc_id for ref, _ in store.list_documents("tools")]
        assert ids == ["a", "b", "c"]

    def test_subcollection_not_listed_with_parent(self, store):
        store.set(TOOL, {"uniqueId": "T1"})
        store.set(TOOL.child("history", "10-2025"), {"transactions": []})
        assert [ref.path for ref, _ in store.list_documents("tools")] == ["tools/tool-1"]
        assert [ref.path for ref, _ in store.list_documents("tools/tool-1/history")] == [
            "tools/tool-1/history/10-2025"
        ]

    def test_find_by_field(self, store):
        store.set(DocumentRef("tools", "a"), {"currentHolder": "W1"})
        store.set(DocumentRef("tools", "b"), {"currentHolder": "W2"})
        store.set(DocumentRef("tools", "c"), {"currentHolder": "W1"})
        assert [ref.doc_id for ref, _ in store.find("tools", "currentHolder", "W1")] == ["a", "c"]


class TestTransforms:
    def test_server_timestamp_resolved_to_commit_time(self, store, clock):
        stamped = store.set(TOOL, {"updatedAt": SERVER_TIMESTAMP})
        assert store.get(TOOL)["updatedAt"] == stamped
        assert stamped >= clock.now_utc()

    def test_timestamps_strictly_increase_with_frozen_clock(self, store):
        stamps = [store.set(TOOL, {"n": n}) for n in range(5)]
        assert all(later > earlier for earlier, later in zip(stamps, stamps[1:]))

    def test_timestamps_follow_clock(self, store, clock):
        first = store.set(TOOL, {"n": 1})
        clock.advance(3600)
        second = store.set(TOOL, {"n": 2})
        assert second - first >= timedelta(hours=1)

    def test_array_union_skips_existing(self, store):
        store.set(STAFF, {"assignedItemIds": ["tool-1"]})
        store.set(STAFF, {"assignedItemIds": ArrayUnion(["tool-1", "tool-2"])}, merge=True)
        assert store.get(STAFF)["assignedItemIds"] == ["tool-1", "tool-2"]

    def test_array_union_on_missing_field(self, store):
        store.set(STAFF, {"assignedItemIds": ArrayUnion([{"id": "e1"}])}, merge=True)
        assert store.get(STAFF)["assignedItemIds"] == [{"id": "e1"}]

    def test_array_remove(self, store):
        store.set(STAFF, {"assignedItemIds": ["tool-1", "tool-2", "tool-1"]})
        store.set(STAFF, {"assignedItemIds": ArrayRemove(["tool-1"])}, merge=True)
        assert store.get(STAFF)["assignedItemIds"] == ["tool-2"]


class TestTransactions:
    def test_returns_value_and_commit_time(self, store):
        store.set(TOOL, {"status": "available"})

        def _flip(txn):
            data = txn.get(TOOL)
            txn.update(TOOL, {"status": "checked_out", "updatedAt": SERVER_TIMESTAMP})
            return data["status"]

        committed = store.run_transaction(_flip)
        assert committed.value == "available"
        assert store.get(TOOL)["updatedAt"] == committed.committed_at

    def test_all_writes_share_one_timestamp(self, store):
        store.set(TOOL, {})
        store.set(STAFF, {})

        def _both(txn):
            txn.update(TOOL, {"at": SERVER_TIMESTAMP})
            txn.update(STAFF, {"at": SERVER_TIMESTAMP})

        committed = store.run_transaction(_both)
        assert store.get(TOOL)["at"] == store.get(STAFF)["at"] == committed.committed_at

    def test_writes_not_visible_until_commit(self, store):
        store.set(TOOL, {"n": 1})
        seen = []

        def _write_then_read(txn):
            txn.update(TOOL, {"n": 2})
            seen.append(store.get(TOOL)["n"])

        store.run_transaction(_write_then_read)
        assert seen == [1]
        assert store.get(TOOL)["n"] == 2

    def test_function_error_propagates_without_writes(self, store):
        store.set(TOOL, {"n": 1})
        calls = []

        def _fail(txn):
            calls.append(1)
            txn.update(TOOL, {"n": 2})
            raise RuntimeError("abort")

        with pytest.raises(RuntimeError, match="abort"):
            store.run_transaction(_fail)
        assert calls == [1]
        assert store.get(TOOL) == {"n": 1}

    def test_update_missing_document_applies_nothing(self, store):
        def _partial(txn):
            txn.set(STAFF, {"fullName": "Wren"})
            txn.update(TOOL, {"status": "checked_out"})

        with pytest.raises(DocumentMissingError) as exc_info:
            store.run_transaction(_partial)
        assert exc_info.value.path == "tools/tool-1"
        assert store.get(STAFF) is None

    def test_update_after_set_in_same_transaction(self, store):
        def _create_then_update(txn):
            txn.set(TOOL, {"a": 1})
            txn.update(TOOL, {"b": 2})

        store.run_transaction(_create_then_update)
        assert store.get(TOOL) == {"a": 1, "b": 2}

    def test_conflicting_write_forces_retry(self, store):
        store.set(TOOL, {"count": 0})
        attempts = []

        def _increment(txn):
            count = txn.get(TOOL)["count"]
            attempts.append(count)
            if len(attempts) == 1:
                store.set(TOOL, {"count": 10})
            txn.update(TOOL, {"count": count + 1})

        store.run_transaction(_increment)
        assert attempts == [0, 10]
        assert store.get(TOOL)["count"] == 11

    def test_conflict_on_read_only_document(self, store):
        store.set(TOOL, {"status": "available"})
        store.set(STAFF, {"isActive": True})
        attempts = []

        def _check_staff_then_write(txn):
            active = txn.get(STAFF)["isActive"]
            attempts.append(active)
            if len(attempts) == 1:
                store.set(STAFF, {"isActive": False})
            txn.update(TOOL, {"holderActive": active})

        store.run_transaction(_check_staff_then_write)
        assert attempts == [True, False]
        assert store.get(TOOL)["holderActive"] is False

    def test_conflict_exhaustion_raises(self, store):
        store.set(TOOL, {"count": 0})
        attempts = []

        def _always_contended(txn):
            count = txn.get(TOOL)["count"]
            attempts.append(count)
            store.set(TOOL, {"count": count + 100})
            txn.update(TOOL, {"count": count + 1})

        with pytest.raises(TransactionConflictError) as exc_info:
            store.run_transaction(_always_contended)
        assert exc_info.value.attempts == 5
        assert len(attempts) == 5
        assert exc_info.value.retryable
        assert "tools/tool-1" in exc_info.value.paths

    def test_conflict_exhaustion_logged(self, store, captured_logs):
        store.set(TOOL, {"count": 0})

        def _always_contended(txn):
            count = txn.get(TOOL)["count"]
            store.set(TOOL, {"count": count + 1})
            txn.update(TOOL, {"count": -1})

        with pytest.raises(TransactionConflictError):
            store.run_transaction(_always_contended)
        messages = [r["message"] for r in captured_logs()]
        assert messages.count("transaction_retry") == 5
        assert "transaction_conflict_exhausted" in messages
