from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from reliable_queue.core.config import settings
from reliable_queue.core.logging import get_logger

logger = get_logger(__name__)


def _enable_sqlite_write_locking(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write; a poll must hold the
    # write lock from its SELECT onwards.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_queue_engine(url: Optional[str] = None, **kwargs) -> Engine:
    """
    Create a synchronous SQLAlchemy engine for the relational queue.
    """
    url = url or settings.DATABASE_URL

    if url.startswith("sqlite"):
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs.setdefault("poolclass", StaticPool)
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = create_engine(url, echo=settings.DEBUG, **kwargs)
        _enable_sqlite_write_locking(engine)
    else:
        kwargs.setdefault("pool_size", settings.DATABASE_POOL_SIZE)
        kwargs.setdefault("max_overflow", settings.DATABASE_MAX_OVERFLOW)
        engine = create_engine(url, pool_pre_ping=True, echo=settings.DEBUG, **kwargs)

    logger.info("Database engine created", dialect=engine.dialect.name)
    return engine


def dispose_engine(engine: Engine) -> None:
    """Close all pooled database connections."""
    try:
        engine.dispose()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error closing database connections: {e}")
        raise
