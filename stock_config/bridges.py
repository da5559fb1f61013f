"""
Bridges from configuration to kernel inputs.

The kernel never imports ``stock_config``; callers translate the frozen
configuration into the plain values kernel services accept.
"""

from __future__ import annotations

import logging

from stock_kernel.db.engine import init_engine_from_url
from stock_kernel.logging_config import configure_logging
from stock_kernel.services.stock_movement_service import LedgerPolicy

from stock_config.schema import StockLedgerConfig


def ledger_policy(config: StockLedgerConfig) -> LedgerPolicy:
    return LedgerPolicy(
        bootstrap_from_aggregate=config.ledger.bootstrap_from_aggregate,
        propagation_warn_rows=config.ledger.propagation_warn_rows,
        propagation_max_rows=config.ledger.propagation_max_rows,
    )


def init_engine(config: StockLedgerConfig):
    """Configure logging at the configured level and initialize the engine."""
    configure_logging(level=logging.getLevelName(config.logging.level))
    db = config.database
    return init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
    )
