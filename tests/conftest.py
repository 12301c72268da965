"""
Pytest configuration and fixtures for ChatUniverse tests.

This module provides shared fixtures for testing the indexing store,
services and CLI against an in-memory SQLite database.
"""

import os

# Must be set before chatuniverse.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("LOG_FILE_ENABLED", "false")

from contextlib import contextmanager, nullcontext  # noqa: E402
from datetime import UTC, datetime  # noqa: E402
from typing import Callable, Generator, Optional  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from chatuniverse.db.connection import enable_sqlite_savepoints  # noqa: E402
from chatuniverse.indexing import IndexingStore  # noqa: E402
from chatuniverse.models.db import Base, ProviderId, TurnRole  # noqa: E402
from chatuniverse.models.normalized import (  # noqa: E402
    NormalizedConversation,
    NormalizedTurn,
)


@pytest.fixture(scope="session")
def test_engine():
    """Create a test database engine using SQLite in-memory."""
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(test_engine) -> Generator[Session, None, None]:
    """
    Create a new database session for a test.

    Each test gets a fresh session with a transaction that is rolled back
    after the test completes, ensuring test isolation.
    """
    connection = test_engine.connect()
    transaction = connection.begin()
    session = sessionmaker(bind=connection)()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def store(db_session: Session) -> IndexingStore:
    """Indexing store bound to the test session."""
    return IndexingStore(db_session)


@pytest.fixture
def session_factory(db_session: Session) -> Callable:
    """Session factory for services that reuses the test session."""
    return lambda: nullcontext(db_session)


@pytest.fixture
def file_session_factory(tmp_path):
    """
    Committing session factory over a file-backed SQLite database.

    Used where work crosses threads and must see committed data.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'universe.db'}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)

    @contextmanager
    def session_scope() -> Generator[Session, None, None]:
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    yield session_scope
    engine.dispose()


def make_turn(
    turn_index: int, role: TurnRole | str, content: str, **kwargs
) -> NormalizedTurn:
    return NormalizedTurn(
        turn_index=turn_index, role=TurnRole(role), content=content, **kwargs
    )


def make_conversation(
    provider: ProviderId | str = ProviderId.CHATGPT,
    source_path: str = "exports/chatgpt/conversation-1.json",
    title: str = "Test conversation",
    turns: Optional[list[NormalizedTurn]] = None,
    **kwargs,
) -> NormalizedConversation:
    return NormalizedConversation(
        provider=ProviderId.coerce(provider),
        title=title,
        source_path=source_path,
        turns=turns if turns is not None else [],
        **kwargs,
    )


@pytest.fixture
def nebula_threads(store: IndexingStore):
    """Two threads from different providers sharing the term ``nebula``."""
    first = store.ingest_normalized_thread(
        make_conversation(
            provider=ProviderId.CHATGPT,
            source_path="exports/chatgpt/t1.json",
            title="T1",
            turns=[
                make_turn(0, "user", "nebula question"),
                make_turn(1, "assistant", "nebula answer"),
            ],
            updated_at=datetime(2025, 1, 1, tzinfo=UTC),
        )
    )
    second = store.ingest_normalized_thread(
        make_conversation(
            provider=ProviderId.CLAUDE,
            source_path="exports/claude/t2.json",
            title="T2",
            turns=[make_turn(0, "user", "tell me about the nebula")],
            updated_at=datetime(2025, 1, 2, tzinfo=UTC),
        )
    )
    return first, second
