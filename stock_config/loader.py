"""
Configuration Loader (``stock_config.loader``).

Responsibility
--------------
Loads YAML files, deep-merges overlays onto the packaged defaults and
parses the result into the frozen ``stock_config.schema`` dataclasses.
Runtime callers use ``stock_config.get_active_config()``, never this module.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` naming the offending key.
* ``compute_checksum`` is a deterministic SHA-256 over the merged data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import (
    DatabaseConfig,
    LedgerConfig,
    LockStrategy,
    LoggingConfig,
    SettlementConfig,
    StockLedgerConfig,
)

_VALID_LEVELS = frozenset(logging.getLevelNamesMapping())


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML mapping; an empty file yields {}."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")
    return data


def merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Recursive dict merge; overlay wins on scalar conflicts."""
    result = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge(result[key], value)
        else:
            result[key] = value
    return result


def compute_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Configuration section '{name}' must be a mapping")
    return section


def _positive_int(section: str, key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{section}.{key} must be a positive integer, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    url = data.get("url")
    if not url or not isinstance(url, str):
        raise ValueError("database.url is required")
    return DatabaseConfig(
        url=url,
        echo=bool(data.get("echo", False)),
        pool_size=_positive_int("database", "pool_size", data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
        pool_timeout=_positive_int("database", "pool_timeout", data.get("pool_timeout", 30)),
        pool_recycle=_positive_int("database", "pool_recycle", data.get("pool_recycle", 1800)),
    )


def parse_ledger(data: dict[str, Any]) -> LedgerConfig:
    raw_epsilon = data.get("drift_epsilon", "0.01")
    if isinstance(raw_epsilon, float):
        raw_epsilon = repr(raw_epsilon)
    try:
        epsilon = Decimal(str(raw_epsilon))
    except InvalidOperation:
        raise ValueError(f"ledger.drift_epsilon is not a number: {raw_epsilon!r}") from None
    if epsilon < 0:
        raise ValueError("ledger.drift_epsilon must not be negative")

    max_rows = data.get("propagation_max_rows")
    if max_rows is not None:
        max_rows = _positive_int("ledger", "propagation_max_rows", max_rows)

    return LedgerConfig(
        drift_epsilon=epsilon,
        bootstrap_from_aggregate=bool(data.get("bootstrap_from_aggregate", True)),
        propagation_warn_rows=_positive_int(
            "ledger", "propagation_warn_rows", data.get("propagation_warn_rows", 366)
        ),
        propagation_max_rows=max_rows,
    )


def parse_settlement(data: dict[str, Any]) -> SettlementConfig:
    raw = data.get("lock_strategy", LockStrategy.ROW.value)
    try:
        strategy = LockStrategy(raw)
    except ValueError:
        raise ValueError(
            f"settlement.lock_strategy must be one of "
            f"{[s.value for s in LockStrategy]}, got {raw!r}"
        ) from None
    return SettlementConfig(lock_strategy=strategy)


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if level not in _VALID_LEVELS:
        raise ValueError(f"logging.level is not a logging level: {level!r}")
    return LoggingConfig(level=level)


def parse_config(data: dict[str, Any], sources: tuple[str, ...] = ()) -> StockLedgerConfig:
    return StockLedgerConfig(
        database=parse_database(_section(data, "database")),
        ledger=parse_ledger(_section(data, "ledger")),
        settlement=parse_settlement(_section(data, "settlement")),
        logging=parse_logging(_section(data, "logging")),
        checksum=compute_checksum(data),
        sources=sources,
    )
