"""
Configuration schema (``stock_config.schema``).

Frozen dataclasses for every configuration section.  Instances are only
produced by ``stock_config.loader.parse_config``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class LockStrategy(str, Enum):
    ROW = "row"
    ADVISORY = "advisory"


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class LedgerConfig:
    drift_epsilon: Decimal = Decimal("0.01")
    bootstrap_from_aggregate: bool = True
    propagation_warn_rows: int = 366
    propagation_max_rows: int | None = None


@dataclass(frozen=True)
class SettlementConfig:
    lock_strategy: LockStrategy = LockStrategy.ROW


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class StockLedgerConfig:
    database: DatabaseConfig
    ledger: LedgerConfig
    settlement: SettlementConfig
    logging: LoggingConfig
    checksum: str
    sources: tuple[str, ...] = ()
