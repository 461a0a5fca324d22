"""
CustodyConfig schema.

Frozen dataclasses parsed from YAML by ``toolcrib_config.loader``.  Every
section has defaults, so an empty file yields a working in-memory setup.
"""

from __future__ import annotations

from dataclasses import dataclass, field

STORE_BACKENDS = ("memory", "sql")


@dataclass(frozen=True)
class StoreConfig:
    """Which document store to build and how."""

    backend: str = "memory"  # memory | sql
    database_url: str | None = None  # Required for sql
    max_transaction_attempts: int = 5
    atomic_array_union: bool = True  # memory backend only
    echo_sql: bool = False


@dataclass(frozen=True)
class LedgerConfig:
    """Which history ledgers receive best-effort appends."""

    item_history_enabled: bool = True
    global_history_enabled: bool = True


@dataclass(frozen=True)
class HistoryConfig:
    """Query defaults."""

    default_limit: int = 50
    default_days_back: int = 90
    fallback_to_global: bool = True


@dataclass(frozen=True)
class BatchConfig:
    debounce_seconds: float = 2.0


@dataclass(frozen=True)
class CacheConfig:
    enabled: bool = True
    max_staleness_seconds: float = 30.0


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class CustodyConfig:
    """Complete runtime configuration."""

    config_id: str = "default"
    version: int = 1
    store: StoreConfig = field(default_factory=StoreConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
