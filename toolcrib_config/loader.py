"""
Configuration Loader (``toolcrib_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen dataclasses
of ``toolcrib_config.schema``.  Runtime callers use
``toolcrib_config.get_active_config()`` instead of calling this directly.

Invariants enforced
-------------------
* Unknown keys and invalid values raise ``ValueError`` naming the key;
  there are no silent fallbacks for values that are present but wrong.
* ``compute_checksum`` is deterministic for identical input.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from toolcrib_config.schema import (
    STORE_BACKENDS,
    BatchConfig,
    CacheConfig,
    CustodyConfig,
    HistoryConfig,
    LedgerConfig,
    LoggingConfig,
    StoreConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _section(data: dict[str, Any], name: str, cls: type) -> dict[str, Any]:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{name}: expected a mapping, got {type(raw).__name__}")
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - allowed)
    if unknown:
        raise ValueError(f"{name}: unknown key(s) {', '.join(unknown)}")
    return raw


def _positive(section: str, key: str, value: Any, allow_zero: bool = False) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{section}.{key}: expected a number, got {value!r}")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{section}.{key}: must be {'>= 0' if allow_zero else '> 0'}, got {value}")
    return value


def parse_store(data: dict[str, Any]) -> StoreConfig:
    raw = _section(data, "store", StoreConfig)
    config = StoreConfig(**raw)
    if config.backend not in STORE_BACKENDS:
        raise ValueError(f"store.backend: must be one of {STORE_BACKENDS}, got {config.backend!r}")
    if config.backend == "sql" and not config.database_url:
        raise ValueError("store.database_url: required when store.backend is 'sql'")
    _positive("store", "max_transaction_attempts", config.max_transaction_attempts)
    return config


def parse_history(data: dict[str, Any]) -> HistoryConfig:
    config = HistoryConfig(**_section(data, "history", HistoryConfig))
    _positive("history", "default_limit", config.default_limit)
    _positive("history", "default_days_back", config.default_days_back)
    return config


def parse_batch(data: dict[str, Any]) -> BatchConfig:
    config = BatchConfig(**_section(data, "batch", BatchConfig))
    _positive("batch", "debounce_seconds", config.debounce_seconds, allow_zero=True)
    return config


def parse_cache(data: dict[str, Any]) -> CacheConfig:
    config = CacheConfig(**_section(data, "cache", CacheConfig))
    _positive("cache", "max_staleness_seconds", config.max_staleness_seconds, allow_zero=True)
    return config


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    config = LoggingConfig(**_section(data, "logging", LoggingConfig))
    if logging.getLevelName(config.level.upper()) not in (
        logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL,
    ):
        raise ValueError(f"logging.level: unknown level {config.level!r}")
    return LoggingConfig(level=config.level.upper())


def parse_config(data: dict[str, Any]) -> CustodyConfig:
    """
    Parse a full CustodyConfig from a dict.

    Raises:
        ValueError: on unknown sections/keys or invalid values.
    """
    known = {"config_id", "version", "store", "ledger", "history", "batch", "cache", "logging"}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"unknown section(s) {', '.join(unknown)}")

    return CustodyConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        store=parse_store(data),
        ledger=LedgerConfig(**_section(data, "ledger", LedgerConfig)),
        history=parse_history(data),
        batch=parse_batch(data),
        cache=parse_cache(data),
        logging=parse_logging(data),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
