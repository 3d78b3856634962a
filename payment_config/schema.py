"""
Configuration Schema (``payment_config.schema``).

Responsibility
--------------
Frozen dataclasses describing every runtime setting of the payment ledger.
Every field has a default so a bare ``LedgerConfig()`` is a valid
single-node configuration (SQLite file next to the process).

Invariants enforced
-------------------
* Frozen: configuration objects are never mutated after load.
* ``validate()`` on each section rejects out-of-range values with
  ``ValueError`` so a bad file fails at load time, not mid-request.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class StorageConfig:
    database_url: str = "sqlite:///payment_ledger.db"
    pool_size: int = 10
    max_overflow: int = 10
    statement_timeout_seconds: float = 10.0
    echo: bool = False

    def validate(self) -> None:
        if not self.database_url:
            raise ValueError("storage.database_url must not be empty")
        if self.pool_size < 1:
            raise ValueError("storage.pool_size must be >= 1")
        if self.max_overflow < 0:
            raise ValueError("storage.max_overflow must be >= 0")
        if self.statement_timeout_seconds <= 0:
            raise ValueError("storage.statement_timeout_seconds must be > 0")


@dataclass(frozen=True)
class NumberingConfig:
    """Payment number format: ``<prefix><zero-padded counter>``."""

    prefix: str = "PAY-"
    width: int = 8

    def validate(self) -> None:
        if not self.prefix:
            raise ValueError("numbering.prefix must not be empty")
        if not 1 <= self.width <= 18:
            raise ValueError("numbering.width must be between 1 and 18")


@dataclass(frozen=True)
class LedgerSettings:
    max_conflict_retries: int = 3
    retry_backoff_seconds: float = 0.05

    def validate(self) -> None:
        if not 0 <= self.max_conflict_retries <= 10:
            raise ValueError("ledger.max_conflict_retries must be between 0 and 10")
        if self.retry_backoff_seconds < 0:
            raise ValueError("ledger.retry_backoff_seconds must be >= 0")


@dataclass(frozen=True)
class ReportingConfig:
    # Lower bounds (days) of the 30-59, 60-89 and 90+ aging buckets.
    aging_boundaries: tuple[int, int, int] = (30, 60, 90)
    default_page_size: int = 20
    history_page_size: int = 50
    max_page_size: int = 500

    def validate(self) -> None:
        bounds = self.aging_boundaries
        if len(bounds) != 3 or list(bounds) != sorted(set(bounds)) or bounds[0] <= 0:
            raise ValueError(
                "reporting.aging_boundaries must be three strictly increasing "
                "positive day counts"
            )
        if self.default_page_size < 1 or self.history_page_size < 1:
            raise ValueError("reporting page sizes must be >= 1")
        if self.max_page_size < max(self.default_page_size, self.history_page_size):
            raise ValueError("reporting.max_page_size must cover the default sizes")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def validate(self) -> None:
        if self.level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"logging.level {self.level!r} is not a logging level")


@dataclass(frozen=True)
class LedgerConfig:
    """Complete runtime configuration of the payment ledger."""

    config_id: str = "default"
    storage: StorageConfig = field(default_factory=StorageConfig)
    numbering: NumberingConfig = field(default_factory=NumberingConfig)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    reporting: ReportingConfig = field(default_factory=ReportingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> None:
        for section in (
            self.storage,
            self.numbering,
            self.ledger,
            self.reporting,
            self.logging,
        ):
            section.validate()
