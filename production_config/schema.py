"""
Configuration schema (``production_config.schema``).

Frozen dataclasses produced by ``production_config.loader``.  Every field
has a default so a partial YAML file is valid; unknown keys are rejected
by the loader.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///production_kernel.db"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class TransactionConfig:
    max_attempts: int = 3
    backoff_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"transactions.max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_seconds < 0:
            raise ValueError("transactions.backoff_seconds must be >= 0")


@dataclass(frozen=True)
class ReservationConfig:
    manual_expiry_hours: int = 24


@dataclass(frozen=True)
class RequestNumberingConfig:
    number_prefix: str = "PR"
    number_width: int = 6


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class ProductionConfig:
    """Root configuration object returned by ``get_active_config()``."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    transactions: TransactionConfig = field(default_factory=TransactionConfig)
    # operation name -> allowed role names; operations not listed keep defaults
    authorization: Mapping[str, tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    reservations: ReservationConfig = field(default_factory=ReservationConfig)
    requests: RequestNumberingConfig = field(default_factory=RequestNumberingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source: str | None = None
