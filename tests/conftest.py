"""
Pytest fixtures for the custody test suite.

Provides:
- Structured log capture
- Deterministic clock
- In-memory and SQLite-backed document stores (``store`` runs each test
  against both)
- A seeded workshop: staff, tools and consumables
- Kernel services and selectors wired to the seeded store

Environment Variables:
- TOOLCRIB_DATABASE_URL: PostgreSQL URL for tests marked ``postgres``.
  Those tests are skipped when it is not set.
"""

import json
import logging
import os
from datetime import datetime, timezone
from io import StringIO

import pytest

from toolcrib_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from toolcrib_kernel.domain.clock import DeterministicClock
from toolcrib_kernel.domain.types import Consumable, ItemKind, Staff, Tool
from toolcrib_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from toolcrib_kernel.selectors.history_selector import HistorySelector
from toolcrib_kernel.selectors.item_selector import ItemSelector
from toolcrib_kernel.services.custody_service import CustodyService
from toolcrib_kernel.store.layout import item_ref, staff_ref
from toolcrib_kernel.store.memory import InMemoryDocumentStore
from toolcrib_kernel.store.sql import SqlDocumentStore

# Monday 20 October 2025, 09:00 UTC
T0 = datetime(2025, 10, 20, 9, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture toolcrib logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, custody):
            custody.checkout(...)
            logs = captured_logs()
            assert any(r["message"] == "checkout_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("toolcrib")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as long-running"
    )


# =============================================================================
# Clock and stores
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(T0)


@pytest.fixture
def memory_store(clock):
    store = InMemoryDocumentStore(clock=clock)
    yield store
    store.close()


@pytest.fixture
def sql_store(tmp_path, clock):
    init_engine_from_url(f"sqlite:///{tmp_path / 'toolcrib.db'}")
    create_tables()
    store = SqlDocumentStore(get_session_factory(), clock=clock)
    yield store
    store.close()
    drop_tables()
    reset_engine()


@pytest.fixture
def postgres_store(clock):
    url = os.environ.get("TOOLCRIB_DATABASE_URL")
    if not url:
        pytest.skip("TOOLCRIB_DATABASE_URL not set")
    init_engine_from_url(url)
    drop_tables()
    create_tables()
    store = SqlDocumentStore(get_session_factory(), clock=clock)
    yield store
    store.close()
    drop_tables()
    reset_engine()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Runs the test once per backend."""
    return request.getfixturevalue(f"{request.param}_store")


# =============================================================================
# Seed data
# =============================================================================


STAFF = (
    Staff("ADMIN1", "Alex Admin", "A-100"),
    Staff("W1", "Wren Walker", "W-210"),
    Staff("W2", "Sam Ortiz", "W-220"),
    Staff("GONE1", "Former Fitter", "W-900", is_active=False),
)

TOOLS = (
    Tool("tool-1", "T1234", name="Impact Driver", brand="Makita", model="XDT13"),
    Tool("tool-2", "T1235", name="Hammer Drill", brand="DeWalt", model="DCD996"),
    Tool("tool-3", "T1236", name="Angle Grinder", brand="Bosch", model="GWS13"),
)

CONSUMABLES = (
    Consumable("cons-1", "C0001", name="Cutting Disc", brand="Bosch", current_quantity=10.0, min_quantity=2.0),
    Consumable("cons-2", "C0002", name="Cable Tie", brand="Hellermann", current_quantity=1.0, min_quantity=5.0),
)


def seed_workshop(store) -> None:
    for staff in STAFF:
        store.set(staff_ref(staff.uid), staff.to_document())
    for tool in TOOLS:
        store.set(item_ref(ItemKind.TOOL, tool.id), tool.to_document())
    for consumable in CONSUMABLES:
        store.set(item_ref(ItemKind.CONSUMABLE, consumable.id), consumable.to_document())


@pytest.fixture
def seed():
    """The seeding function, for tests that build their own store."""
    return seed_workshop


@pytest.fixture
def seeded_store(store):
    seed_workshop(store)
    return store


@pytest.fixture
def seeded_memory_store(memory_store):
    seed_workshop(memory_store)
    return memory_store


@pytest.fixture
def custody(seeded_store) -> CustodyService:
    return CustodyService(seeded_store)


@pytest.fixture
def items(seeded_store) -> ItemSelector:
    return ItemSelector(seeded_store)


@pytest.fixture
def history(seeded_store, clock) -> HistorySelector:
    return HistorySelector(seeded_store, clock=clock)
