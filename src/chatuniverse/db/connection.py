"""
Database connection management for chatuniverse.

Provides database session management, connection handling, and transaction support.
"""

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import NullPool

from chatuniverse.config import settings

logger = logging.getLogger(__name__)


def enable_sqlite_savepoints(sqlite_engine: Engine) -> None:
    """
    Let pysqlite honour SAVEPOINT / nested transactions.

    The driver issues its own BEGIN lazily and silently commits around DDL,
    which breaks ``Session.begin_nested()``. Taking over transaction control
    on the engine fixes both.
    """

    @event.listens_for(sqlite_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):  # pragma: no cover
        dbapi_connection.isolation_level = None

    @event.listens_for(sqlite_engine, "begin")
    def _do_begin(conn):  # pragma: no cover
        conn.exec_driver_sql("BEGIN")


# Create engine instance (singleton pattern)
if settings.database_url.startswith("sqlite"):
    engine = create_engine(
        settings.database_url,
        echo=False,
        connect_args={"check_same_thread": False},
        pool_pre_ping=True,
    )
    enable_sqlite_savepoints(engine)

else:
    # Each process gets its own pool; tune via DB_POOL_* environment variables
    engine = create_engine(
        settings.database_url,
        echo=False,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_pool_max_overflow,
        pool_pre_ping=True,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )

# Background engine with NullPool, used by the reindex worker thread so it
# never competes with interactive sessions for pooled connections.
if settings.database_url.startswith("sqlite"):
    # SQLite doesn't need separate engine - use same one
    background_engine = engine
else:
    background_engine = create_engine(
        settings.database_url,
        echo=False,
        poolclass=NullPool,
    )

# Session factory for interactive use (CLI commands, ingest runs)
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

# Session factory for background workers (uses NullPool)
BackgroundSessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=background_engine,
)


@contextmanager
def db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic cleanup.

    Commits on success and rolls back on exception.

    Yields:
        Session: A SQLAlchemy session

    Example:
        >>> with db_session() as db:
        >>>     store = IndexingStore(db)
        >>>     print(store.get_universe_summary())
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def background_session() -> Generator[Session, None, None]:
    """
    Context manager for background worker database sessions.

    Uses the NullPool engine - creates a fresh connection each time.

    Yields:
        Session: A SQLAlchemy session
    """
    session = BackgroundSessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """
    Create all tables directly from the models.

    Note:
        Prefer using Alembic migrations: `alembic upgrade head`
    """
    from chatuniverse.models.db import Base

    Base.metadata.create_all(bind=engine)


def check_connection() -> bool:
    """
    Check if database connection is working.

    Returns:
        bool: True if connection successful, False otherwise
    """
    try:
        with db_session() as db:
            db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
