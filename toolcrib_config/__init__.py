"""
toolcrib_config -- single public entrypoint for custody configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    directly.

Architecture position:
    Configuration.  Sits above ``toolcrib_kernel`` and below
    ``toolcrib_services``.  The kernel MUST NEVER import from
    ``toolcrib_config``; the facade translates config values into
    constructor arguments.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Audit relevance:
    Every successful ``get_active_config()`` call emits a ``config_loaded``
    log line with the config id, version and checksum.
"""

from __future__ import annotations

from pathlib import Path

from toolcrib_config.loader import load_yaml_file, parse_config
from toolcrib_config.schema import (
    BatchConfig,
    CacheConfig,
    CustodyConfig,
    HistoryConfig,
    LedgerConfig,
    LoggingConfig,
    StoreConfig,
)
from toolcrib_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> CustodyConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to
            ``toolcrib_config/sets/default.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(path))

    _logger.info(
        "config_loaded",
        extra={
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "store_backend": config.store.backend,
            "path": str(path),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "CustodyConfig",
    "StoreConfig",
    "LedgerConfig",
    "HistoryConfig",
    "BatchConfig",
    "CacheConfig",
    "LoggingConfig",
]
