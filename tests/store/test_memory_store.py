"""Tests specific to InMemoryDocumentStore: change feed, transform gating, delete."""

import threading
from datetime import timedelta

import pytest

from toolcrib_kernel.domain.types import HistoryAction
from toolcrib_kernel.exceptions import UnsupportedStoreOperationError
from toolcrib_kernel.selectors.history_selector import HistorySelector
from toolcrib_kernel.selectors.item_selector import ItemSelector
from toolcrib_kernel.services.custody_service import CustodyService
from toolcrib_kernel.store.base import SERVER_TIMESTAMP, ArrayUnion, DocumentRef
from toolcrib_kernel.store.memory import InMemoryDocumentStore

TOOL = DocumentRef("tools", "tool-1")


class TestChangeFeed:
    def test_subscriber_receives_committed_changes(self, memory_store):
        received = []
        memory_store.subscribe("tools", received.append)

        memory_store.set(TOOL, {"status": "available"})

        assert len(received) == 1
        (change,) = received[0]
        assert change.ref == TOOL
        assert change.data == {"status": "available"}

    def test_only_matching_collection_delivered(self, memory_store):
        received = []
        memory_store.subscribe("consumables", received.append)
        memory_store.set(TOOL, {"status": "available"})
        assert received == []

    def test_transaction_delivers_one_batch(self, memory_store):
        memory_store.set(TOOL, {"status": "available"})
        memory_store.set(DocumentRef("tools", "tool-2"), {"status": "available"})
        received = []
        memory_store.subscribe("tools", received.append)

        def _both(txn):
            txn.update(TOOL, {"status": "checked_out", "updatedAt": SERVER_TIMESTAMP})
            txn.update(DocumentRef("tools", "tool-2"), {"status": "checked_out"})

        committed = memory_store.run_transaction(_both)
        assert len(received) == 1
        assert {c.ref.doc_id for c in received[0]} == {"tool-1", "tool-2"}
        assert all(c.committed_at == committed.committed_at for c in received[0])

    def test_failed_transaction_not_delivered(self, memory_store):
        memory_store.set(TOOL, {"n": 1})
        received = []
        memory_store.subscribe("tools", received.append)

        def _fail(txn):
            txn.update(TOOL, {"n": 2})
            raise ValueError("no")

        with pytest.raises(ValueError):
            memory_store.run_transaction(_fail)
        assert received == []

    def test_closed_subscription_stops_delivery(self, memory_store):
        received = []
        subscription = memory_store.subscribe("tools", received.append)
        subscription.close()
        memory_store.set(TOOL, {"n": 1})
        assert received == []
        assert not subscription.active

    def test_store_close_ends_subscriptions(self, memory_store):
        subscription = memory_store.subscribe("tools", lambda changes: None)
        memory_store.close()
        assert not subscription.active

    def test_delete_delivers_none(self, memory_store):
        memory_store.set(TOOL, {"n": 1})
        received = []
        memory_store.subscribe("tools", received.append)
        memory_store.delete(TOOL)
        assert memory_store.get(TOOL) is None
        assert received[0][0].data is None

    def test_delete_missing_is_silent(self, memory_store):
        received = []
        memory_store.subscribe("tools", received.append)
        memory_store.delete(TOOL)
        assert received == []



class TestFailingSubscriber:
    @staticmethod
    def _explode(changes):
        raise RuntimeError("listener failed")

    def test_set_survives_raising_subscriber(self, memory_store, captured_logs):
        received = []
        memory_store.subscribe("tools", self._explode)
        memory_store.subscribe("tools", received.append)

        memory_store.set(TOOL, {"n": 1})

        assert memory_store.get(TOOL) == {"n": 1}
        assert len(received) == 1
        failed = [r for r in captured_logs() if r["message"] == "subscriber_failed"]
        assert failed[0]["paths"] == ["tools/tool-1"]
        assert "RuntimeError" in failed[0]["reason"]

    def test_checkout_completes_with_raising_subscriber(self, seeded_memory_store, clock):
        seeded_memory_store.subscribe("tools", self._explode)
        custody = CustodyService(seeded_memory_store)

        receipt = custody.checkout("tool-1", "W1", "ADMIN1")

        assert receipt.action == HistoryAction.CHECKOUT
        assert ItemSelector(seeded_memory_store).get_tool("tool-1").current_holder_uid == "W1"
        clock.advance(1)
        history = HistorySelector(seeded_memory_store, clock=clock)
        now = clock.now_utc()
        item_entries = history.query_item_history(
            "tool-1", now - timedelta(hours=1), now, fallback_to_global=False,
        )
        global_entries = history.query_global_history(now - timedelta(hours=1), now)
        assert [e.id for e in item_entries] == [receipt.entry_id]
        assert [e.id for e in global_entries] == [receipt.entry_id]


class TestArrayUnionGate:
    def test_supported_by_default(self, memory_store):
        assert memory_store.supports_atomic_array_union

    def test_disabled_store_rejects_union(self, clock):
        store = InMemoryDocumentStore(clock=clock, atomic_array_union=False)
        assert not store.supports_atomic_array_union
        with pytest.raises(UnsupportedStoreOperationError) as exc_info:
            store.set(TOOL, {"transactions": ArrayUnion([{"id": "e1"}])}, merge=True)
        assert exc_info.value.backend == "memory"
        assert store.get(TOOL) is None

    def test_disabled_store_rejects_union_in_transaction(self, clock):
        store = InMemoryDocumentStore(clock=clock, atomic_array_union=False)
        with pytest.raises(UnsupportedStoreOperationError):
            store.run_transaction(lambda txn: txn.set(TOOL, {"ids": ArrayUnion(["a"])}))


class TestThreadSafety:
    def test_concurrent_increments_are_not_lost(self, clock):
        store = InMemoryDocumentStore(clock=clock, max_attempts=1000)
        store.set(TOOL, {"count": 0})

        def _increment(txn):
            txn.update(TOOL, {"count": txn.get(TOOL)["count"] + 1})

        def _worker():
            for _ in range(50):
                store.run_transaction(_increment)

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get(TOOL)["count"] == 400
