"""
Tests for ItemCache: live snapshots over the change feed and bounded
staleness on stores without one.
"""

from toolcrib_kernel.domain.types import ItemKind, Tool, ToolStatus
from toolcrib_kernel.selectors.item_cache import ItemCache
from toolcrib_kernel.services.custody_service import CustodyService
from toolcrib_kernel.store.layout import item_ref


class TestLiveCache:
    def test_starts_live_on_memory_store(self, seeded_memory_store, clock):
        with ItemCache(seeded_memory_store, ItemKind.TOOL, clock=clock) as cache:
            assert cache.is_live
            assert cache.loaded_at == clock.now_utc()
            assert [t.unique_id for t in cache.all()] == ["T1234", "T1235", "T1236"]

    def test_committed_checkout_visible_without_reload(self, seeded_memory_store, clock):
        cache = ItemCache(seeded_memory_store, ItemKind.TOOL, clock=clock).start()
        loaded_at = cache.loaded_at

        CustodyService(seeded_memory_store).checkout("tool-1", "W1", "ADMIN1")

        tool = cache.get("tool-1")
        assert tool.status == ToolStatus.CHECKED_OUT
        assert tool.current_holder_uid == "W1"
        assert [t.id for t in cache.checked_out()] == ["tool-1"]
        assert cache.loaded_at == loaded_at
        cache.close()

    def test_new_and_deleted_documents(self, seeded_memory_store, clock):
        cache = ItemCache(seeded_memory_store, ItemKind.TOOL, clock=clock).start()
        seeded_memory_store.set(item_ref(ItemKind.TOOL, "tool-9"), Tool("tool-9", "T9999").to_document())
        assert cache.get_by_unique_id("T9999").id == "tool-9"

        seeded_memory_store.delete(item_ref(ItemKind.TOOL, "tool-9"))
        assert cache.get("tool-9") is None
        assert cache.get_by_unique_id("T9999") is None
        cache.close()

    def test_relabel_moves_unique_id_index(self, seeded_memory_store, clock):
        cache = ItemCache(seeded_memory_store, ItemKind.TOOL, clock=clock).start()
        seeded_memory_store.set(item_ref(ItemKind.TOOL, "tool-1"), {"uniqueId": "T5000"}, merge=True)
        assert cache.get_by_unique_id("T1234") is None
        assert cache.get_by_unique_id("T5000").id == "tool-1"
        cache.close()

    def test_close_stops_updates(self, seeded_memory_store, clock):
        cache = ItemCache(seeded_memory_store, ItemKind.TOOL, clock=clock).start()
        cache.close()
        assert not cache.is_live

        seeded_memory_store.set(item_ref(ItemKind.TOOL, "tool-9"), Tool("tool-9", "T9999").to_document())
        # Within the staleness window the closed cache serves its snapshot.
        assert cache.get("tool-9") is None

    def test_ignores_other_collections(self, seeded_memory_store, clock):
        cache = ItemCache(seeded_memory_store, ItemKind.CONSUMABLE, clock=clock).start()
        CustodyService(seeded_memory_store).checkout("tool-1", "W1", "ADMIN1")
        assert all(c.id.startswith("cons-") for c in cache.all())
        cache.close()



class TestReloadRace:
    def test_change_during_listing_survives_reload(self, seeded_memory_store, clock, monkeypatch):
        cache = ItemCache(seeded_memory_store, ItemKind.TOOL, clock=clock).start()
        list_documents = seeded_memory_store.list_documents

        def _listing_then_checkout(collection):
            rows = list_documents(collection)
            CustodyService(seeded_memory_store).checkout("tool-1", "W1", "ADMIN1")
            return rows

        monkeypatch.setattr(seeded_memory_store, "list_documents", _listing_then_checkout)
        cache.refresh()
        monkeypatch.undo()

        clock.advance(3600)
        assert cache.is_live
        assert cache.get("tool-1").status == ToolStatus.CHECKED_OUT
        assert cache.get("tool-1").current_holder_uid == "W1"
        cache.close()

    def test_changes_after_reload_apply_directly(self, seeded_memory_store, clock):
        cache = ItemCache(seeded_memory_store, ItemKind.TOOL, clock=clock).start()
        cache.refresh()
        custody = CustodyService(seeded_memory_store)
        custody.checkout("tool-2", "W2", "ADMIN1")
        custody.checkin("tool-2", "ADMIN1")
        assert cache.get("tool-2").status == ToolStatus.AVAILABLE
        assert cache._pending is None
        cache.close()


class TestStalenessBound:
    def test_live_only_with_change_feed(self, seeded_store, clock):
        cache = ItemCache(seeded_store, ItemKind.TOOL, clock=clock, max_staleness_seconds=30).start()
        if seeded_store.backend_name == "memory":
            assert cache.is_live
        else:
            assert not cache.is_live
        cache.close()

    def test_reloads_once_snapshot_is_too_old(self, seeded_store, clock):
        cache = ItemCache(seeded_store, ItemKind.TOOL, clock=clock, max_staleness_seconds=30).start()
        cache.close()  # force polling behaviour on every backend
        seeded_store.set(item_ref(ItemKind.TOOL, "tool-9"), Tool("tool-9", "T9999").to_document())

        clock.advance(10)
        assert cache.get("tool-9") is None

        clock.advance(25)
        assert cache.get("tool-9").unique_id == "T9999"
        assert cache.loaded_at == clock.now_utc()


class TestFilters:
    def test_available_and_checked_out(self, seeded_memory_store, clock):
        cache = ItemCache(seeded_memory_store, ItemKind.TOOL, clock=clock).start()
        CustodyService(seeded_memory_store).checkout("tool-2", "W2", "ADMIN1")
        assert [t.id for t in cache.available()] == ["tool-1", "tool-3"]
        assert [t.id for t in cache.checked_out()] == ["tool-2"]
        assert len(cache) == 3
        cache.close()

    def test_low_stock(self, seeded_store, clock):
        cache = ItemCache(seeded_store, ItemKind.CONSUMABLE, clock=clock).start()
        assert [c.id for c in cache.low_stock()] == ["cons-2"]
        assert cache.available() == []
        cache.close()
