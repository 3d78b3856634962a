"""
Configuration Loader (``payment_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``payment_config.schema`` dataclasses.  The single public entry point for
runtime config is ``payment_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from payment_config.schema import (
    LedgerConfig,
    LedgerSettings,
    LoggingConfig,
    NumberingConfig,
    ReportingConfig,
    StorageConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _parse_section(cls: type, data: dict[str, Any] | None, name: str):
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"Section {name!r} must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in section {name!r}: {unknown}")
    return cls(**data)


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """Parse and validate a LedgerConfig from a dict."""
    reporting = dict(data.get("reporting") or {})
    if "aging_boundaries" in reporting:
        reporting["aging_boundaries"] = tuple(
            int(v) for v in reporting["aging_boundaries"]
        )

    config = LedgerConfig(
        config_id=str(data.get("config_id", "default")),
        storage=_parse_section(StorageConfig, data.get("storage"), "storage"),
        numbering=_parse_section(NumberingConfig, data.get("numbering"), "numbering"),
        ledger=_parse_section(LedgerSettings, data.get("ledger"), "ledger"),
        reporting=_parse_section(ReportingConfig, reporting, "reporting"),
        logging=_parse_section(LoggingConfig, data.get("logging"), "logging"),
    )
    config.validate()
    return config


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form; identical data, identical checksum."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
