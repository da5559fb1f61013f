"""Database infrastructure for the stock kernel."""

from stock_kernel.db.base import Base, TimestampMixin, TrackedBase, UUIDString
from stock_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "TrackedBase",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session_factory",
    "init_engine_from_url",
    "is_postgres",
    "reset_engine",
]
