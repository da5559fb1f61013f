"""
stock_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the ONLY way to obtain configuration.  No
    other component reads configuration files or environment variables.

Architecture position:
    Sits above ``stock_kernel`` and below ``stock_services`` /
    ``stock_batch`` / scripts.  The kernel MUST NEVER import from here;
    ``stock_config.bridges`` translates configuration into kernel inputs.

Resolution order (later wins):
    1. ``stock_config/defaults.yaml``
    2. ``config_path`` argument, else the ``STOCK_LEDGER_CONFIG`` file
    3. ``STOCK_LEDGER_DATABASE_URL``

Failure modes:
    - ``FileNotFoundError`` for a named overlay file that does not exist.
    - ``ValueError`` on invalid values.

Audit relevance:
    Every call emits a ``STOCK_CONFIG_TRACE`` record with the checksum of
    the merged configuration and the files it came from.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from stock_config.loader import load_yaml_file, merge, parse_config
from stock_config.schema import (
    DatabaseConfig,
    LedgerConfig,
    LockStrategy,
    LoggingConfig,
    SettlementConfig,
    StockLedgerConfig,
)

_logger = logging.getLogger("stock_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "STOCK_LEDGER_CONFIG"
DATABASE_URL_ENV_VAR = "STOCK_LEDGER_DATABASE_URL"


def get_active_config(config_path: Path | str | None = None) -> StockLedgerConfig:
    """The ONLY public configuration entrypoint."""
    data = load_yaml_file(DEFAULTS_PATH)
    sources = [str(DEFAULTS_PATH)]

    overlay_path = config_path or os.environ.get(CONFIG_ENV_VAR)
    if overlay_path:
        path = Path(overlay_path)
        data = merge(data, load_yaml_file(path))
        sources.append(str(path))

    env_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if env_url:
        data = merge(data, {"database": {"url": env_url}})
        sources.append(f"env:{DATABASE_URL_ENV_VAR}")

    config = parse_config(data, sources=tuple(sources))

    _logger.info(
        "STOCK_CONFIG_TRACE",
        extra={
            "trace_type": "STOCK_CONFIG_TRACE",
            "checksum": config.checksum,
            "sources": list(config.sources),
            "lock_strategy": config.settlement.lock_strategy.value,
            "drift_epsilon": str(config.ledger.drift_epsilon),
        },
    )
    return config


__all__ = [
    "CONFIG_ENV_VAR",
    "DATABASE_URL_ENV_VAR",
    "DatabaseConfig",
    "LedgerConfig",
    "LockStrategy",
    "LoggingConfig",
    "SettlementConfig",
    "StockLedgerConfig",
    "get_active_config",
]
