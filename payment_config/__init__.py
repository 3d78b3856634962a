"""
payment_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the resulting
    ``LedgerConfig`` (or one of its sections) by injection and never read
    files or environment variables themselves.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Load-time validation: a returned config has passed every section's
      ``validate()``.
    - ``DATABASE_URL`` in the environment overrides ``storage.database_url``.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` -- unknown keys or out-of-range values.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``payment_config_loaded`` log entry with the config_id and checksum.
"""

from __future__ import annotations

import os
from dataclasses import replace
from pathlib import Path

from payment_config.loader import compute_checksum, load_yaml_file, parse_config
from payment_config.schema import (
    LedgerConfig,
    LedgerSettings,
    LoggingConfig,
    NumberingConfig,
    ReportingConfig,
    StorageConfig,
)
from payment_kernel.logging_config import get_logger

logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

DATABASE_URL_ENV = "DATABASE_URL"


def get_active_config(config_path: Path | str | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to ``sets/default.yaml``.

    Returns:
        A validated, frozen ``LedgerConfig``.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    data = load_yaml_file(path)
    config = parse_config(data)

    env_url = os.environ.get(DATABASE_URL_ENV)
    if env_url:
        config = replace(config, storage=replace(config.storage, database_url=env_url))

    logger.info(
        "payment_config_loaded",
        extra={
            "config_id": config.config_id,
            "config_path": str(path),
            "checksum": compute_checksum(data),
            "database_url_from_env": bool(env_url),
        },
    )
    return config


__all__ = [
    "LedgerConfig",
    "LedgerSettings",
    "LoggingConfig",
    "NumberingConfig",
    "ReportingConfig",
    "StorageConfig",
    "DATABASE_URL_ENV",
    "get_active_config",
]
