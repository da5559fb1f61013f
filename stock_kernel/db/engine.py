"""
Module: stock_kernel.db.engine
Responsibility: Process-wide engine and session factory for the stock
    tables, plus schema create/drop helpers.
Architecture position: Kernel > DB.  May import from db/base.py.  MUST NOT
    import from services/, selectors/, or outer layers (create_tables imports
    the models package so Base.metadata is complete).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED.  Stronger guarantees come from
      explicit row locks (SELECT ... FOR UPDATE) and advisory locks.
    - SQLite is supported for local runs and tests.  pysqlite's implicit
      transaction handling is disabled so SAVEPOINTs nest correctly, and
      in-memory databases share one connection (StaticPool).

Failure modes:
    - RuntimeError from get_engine/get_session_factory before
      init_engine_from_url().
"""

import atexit

from sqlalchemy import create_engine, event
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stock_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Engine not initialized. Call init_engine_from_url() first."


def _sqlite_engine(url: URL, echo: bool) -> Engine:
    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, echo=echo, **kwargs)

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works on pysqlite.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the engine and session factory for ``database_url``.

    A second call replaces the first.  Pool settings apply to server
    databases only.
    """
    global _engine, _session_factory

    url = make_url(database_url)
    dialect = url.get_backend_name()

    if dialect == "sqlite":
        engine = _sqlite_engine(url, echo)
    else:
        engine = create_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _engine = engine
    _session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": dialect,
            "database": url.database,
            "pool_size": None if dialect == "sqlite" else pool_size,
        },
    )
    return engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Session factory; concurrent callers open one session per thread."""
    if _session_factory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _session_factory


def create_tables() -> None:
    from stock_kernel.db.base import Base
    import stock_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    from stock_kernel.db.base import Base
    import stock_kernel.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory (test cleanup)."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


atexit.register(reset_engine)


def is_postgres(session_or_engine: Session | Engine | None = None) -> bool:
    """True when the given bind (or the global engine) is PostgreSQL."""
    if session_or_engine is None:
        bind = _engine
    elif isinstance(session_or_engine, Session):
        bind = session_or_engine.get_bind()
    else:
        bind = session_or_engine
    return bind is not None and bind.dialect.name == "postgresql"
