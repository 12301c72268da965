"""
SQLAlchemy database models for chatuniverse.

These models represent the relational schema for the aggregated chat corpus:
providers, accounts, threads and turns, the term lexicon with positional
occurrences, the thread co-occurrence graph, and ingest run bookkeeping.
"""

import enum
import json
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func
from sqlalchemy.types import TypeDecorator


class SafeJSON(TypeDecorator):
    """JSON column that never fails on read.

    Stored as JSONB on PostgreSQL and as text elsewhere. Text that does not
    decode to the expected container type (dict or list) reads back as an
    empty container.
    """

    impl = Text
    cache_ok = True

    def __init__(self, container: type = dict):
        super().__init__()
        self.container = container

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value: Any, dialect) -> Any:
        if value is None:
            value = self.container()
        if dialect.name == "postgresql":
            return value
        return json.dumps(value, default=str)

    def process_result_value(self, value: Any, dialect) -> Any:
        if isinstance(value, (str, bytes)):
            try:
                value = json.loads(value)
            except ValueError:
                return self.container()
        if not isinstance(value, self.container):
            return self.container()
        return value


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class ProviderId(str, enum.Enum):
    """Assistant providers whose exports can be ingested."""

    CHATGPT = "chatgpt"
    CLAUDE = "claude"
    GEMINI = "gemini"
    GROK = "grok"
    COPILOT = "copilot"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: "str | ProviderId") -> "ProviderId":
        """Map arbitrary provider strings onto a known id (``unknown`` otherwise)."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class TurnRole(str, enum.Enum):
    """Author role of a chat turn."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class IngestRunStatus(str, enum.Enum):
    """Lifecycle status of an ingest run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


COOCCURRENCE_EDGE = "cooccurrence"


class Provider(Base):
    """An assistant provider (one row per provider id)."""

    __tablename__ = "providers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    provider_id: Mapped[str] = mapped_column(
        String(32), nullable=False, unique=True, index=True
    )
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    extra_data: Mapped[dict] = mapped_column(
        "metadata", SafeJSON(dict), nullable=False, server_default="{}"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    # Relationships
    accounts: Mapped[list["ProviderAccount"]] = relationship(
        back_populates="provider", cascade="all, delete-orphan"
    )
    threads: Mapped[list["ChatThread"]] = relationship(
        back_populates="provider", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Provider(id={self.id}, provider_id={self.provider_id!r})>"


class ProviderAccount(Base):
    """An account within a provider.

    Accounts are unique per ``(provider_ref_id, external_account_id)``.
    Exports that carry no external account id all map to a single *default
    account* per provider: the row whose ``external_account_id`` is NULL.
    Two partial unique indexes encode both halves of that rule.
    """

    __tablename__ = "provider_accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    provider_ref_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    external_account_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    extra_data: Mapped[dict] = mapped_column(
        "metadata", SafeJSON(dict), nullable=False, server_default="{}"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index(
            "uq_provider_account_external",
            "provider_ref_id",
            "external_account_id",
            unique=True,
            postgresql_where=text("external_account_id IS NOT NULL"),
            sqlite_where=text("external_account_id IS NOT NULL"),
        ),
        Index(
            "uq_provider_default_account",
            "provider_ref_id",
            unique=True,
            postgresql_where=text("external_account_id IS NULL"),
            sqlite_where=text("external_account_id IS NULL"),
        ),
    )

    # Relationships
    provider: Mapped["Provider"] = relationship(back_populates="accounts")

    @property
    def is_default_account(self) -> bool:
        return self.external_account_id is None

    def __repr__(self) -> str:
        return (
            f"<ProviderAccount(id={self.id}, "
            f"external_account_id={self.external_account_id!r})>"
        )


class ChatThread(Base):
    """A single conversation imported from a provider export."""

    __tablename__ = "chat_threads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    provider_ref_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    account_ref_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("provider_accounts.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    external_thread_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    source_path: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    extra_data: Mapped[dict] = mapped_column(
        "metadata", SafeJSON(dict), nullable=False, server_default="{}"
    )

    __table_args__ = (
        UniqueConstraint(
            "provider_ref_id", "source_path", name="uq_chat_thread_source_path"
        ),
        Index("ix_chat_threads_external", "provider_ref_id", "external_thread_id"),
    )

    # Relationships
    provider: Mapped["Provider"] = relationship(back_populates="threads")
    account: Mapped[Optional["ProviderAccount"]] = relationship()
    turns: Mapped[list["ChatTurn"]] = relationship(
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by="ChatTurn.turn_index",
    )

    def __repr__(self) -> str:
        return f"<ChatThread(id={self.id}, title={self.title!r})>"


class ChatTurn(Base):
    """One message of a chat thread."""

    __tablename__ = "chat_turns"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    thread_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("chat_threads.id", ondelete="CASCADE"),
        nullable=False,
    )
    turn_index: Mapped[int] = mapped_column(Integer, nullable=False)  # 0-based
    role: Mapped[TurnRole] = mapped_column(
        Enum(
            TurnRole,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    pair_turn_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("chat_turns.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )  # Prompt <-> response link
    extra_data: Mapped[dict] = mapped_column(
        "metadata", SafeJSON(dict), nullable=False, server_default="{}"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("thread_id", "turn_index", name="uq_chat_turn_index"),
    )

    # Relationships
    thread: Mapped["ChatThread"] = relationship(back_populates="turns")

    def __repr__(self) -> str:
        return (
            f"<ChatTurn(id={self.id}, thread_id={self.thread_id}, "
            f"turn_index={self.turn_index}, role={self.role!r})>"
        )


class TermLexicon(Base):
    """Deduplicated vocabulary with corpus-wide document frequency."""

    __tablename__ = "term_lexicon"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    term: Mapped[str] = mapped_column(Text, nullable=False)  # first-seen surface form
    normalized_term: Mapped[str] = mapped_column(
        Text, nullable=False, unique=True, index=True
    )
    doc_freq: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0", default=0
    )  # distinct threads with >= 1 occurrence
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<TermLexicon(id={self.id}, normalized_term={self.normalized_term!r}, "
            f"doc_freq={self.doc_freq})>"
        )


class TermOccurrence(Base):
    """A positional hit of a lexicon term inside a thread."""

    __tablename__ = "term_occurrences"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    lexicon_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("term_lexicon.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    provider_ref_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("providers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    thread_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("chat_threads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    turn_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("chat_turns.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    context_before: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    context_after: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_term_occurrences_thread_lexicon", "thread_id", "lexicon_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<TermOccurrence(lexicon_id={self.lexicon_id}, "
            f"thread_id={self.thread_id}, position={self.position})>"
        )


class ThematicEdge(Base):
    """Directed, weighted relation between two threads."""

    __tablename__ = "thematic_edges"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    source_thread_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("chat_threads.id", ondelete="CASCADE"),
        nullable=False,
    )
    target_thread_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("chat_threads.id", ondelete="CASCADE"),
        nullable=False,
    )
    edge_type: Mapped[str] = mapped_column(
        String(50), nullable=False, server_default=COOCCURRENCE_EDGE
    )
    weight: Mapped[float] = mapped_column(Float, nullable=False)
    evidence: Mapped[dict] = mapped_column(
        SafeJSON(dict), nullable=False, server_default="{}"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "source_thread_id",
            "target_thread_id",
            "edge_type",
            name="uq_thematic_edge",
        ),
        Index("ix_thematic_edges_source", "source_thread_id", "edge_type", "weight"),
        Index("ix_thematic_edges_target", "target_thread_id", "edge_type", "weight"),
    )

    def __repr__(self) -> str:
        return (
            f"<ThematicEdge({self.source_thread_id} -> {self.target_thread_id}, "
            f"type={self.edge_type!r}, weight={self.weight})>"
        )


class IngestRun(Base):
    """Bookkeeping for one ingestion batch or reindex job."""

    __tablename__ = "ingest_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    source_root: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True
    )  # 'running', 'completed', 'failed'
    files_scanned: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0", default=0
    )
    files_ingested: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0", default=0
    )
    files_quarantined: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0", default=0
    )
    chats_ingested: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0", default=0
    )
    turns_ingested: Mapped[int] = mapped_column(
        Integer, nullable=False, server_default="0", default=0
    )
    policy_report_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    extra_data: Mapped[dict] = mapped_column(
        "metadata", SafeJSON(dict), nullable=False, server_default="{}"
    )

    def __repr__(self) -> str:
        return f"<IngestRun(id={self.id}, status={self.status!r})>"


class LegacyConversation(Base):
    """Bridge row for readers that predate the provider/thread schema.

    Keyed by the chat thread id; only display fields are kept in sync.
    """

    __tablename__ = "conversations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    created: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    exported_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    provider_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )
    provider_account_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )
    source_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True, index=True)
    source_type: Mapped[str] = mapped_column(
        String(20), nullable=False, server_default="chat"
    )

    def __repr__(self) -> str:
        return f"<LegacyConversation(id={self.id}, title={self.title!r})>"
