"""initial_universe_schema

Revision ID: 001
Revises:
Create Date: 2026-10-01 00:00:00

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _metadata_column(name: str = "metadata") -> sa.Column:
    return sa.Column(
        name,
        postgresql.JSONB(astext_type=sa.Text()),
        server_default=sa.text("'{}'::jsonb"),
        nullable=False,
    )


def _timestamp_column(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "providers",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("provider_id", sa.String(length=32), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        _metadata_column(),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("providers_pkey")),
    )
    op.create_index(
        op.f("ix_providers_provider_id"), "providers", ["provider_id"], unique=True
    )

    op.create_table(
        "provider_accounts",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("provider_ref_id", sa.UUID(), nullable=False),
        sa.Column("external_account_id", sa.String(length=255), nullable=True),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        _metadata_column(),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.ForeignKeyConstraint(
            ["provider_ref_id"],
            ["providers.id"],
            name=op.f("provider_accounts_provider_ref_id_fkey"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("provider_accounts_pkey")),
    )
    op.create_index(
        op.f("ix_provider_accounts_provider_ref_id"),
        "provider_accounts",
        ["provider_ref_id"],
        unique=False,
    )
    op.create_index(
        "uq_provider_account_external",
        "provider_accounts",
        ["provider_ref_id", "external_account_id"],
        unique=True,
        postgresql_where=sa.text("external_account_id IS NOT NULL"),
    )
    op.create_index(
        "uq_provider_default_account",
        "provider_accounts",
        ["provider_ref_id"],
        unique=True,
        postgresql_where=sa.text("external_account_id IS NULL"),
    )

    op.create_table(
        "chat_threads",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("provider_ref_id", sa.UUID(), nullable=False),
        sa.Column("account_ref_id", sa.UUID(), nullable=True),
        sa.Column("external_thread_id", sa.String(length=255), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("source_path", sa.Text(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _metadata_column(),
        sa.ForeignKeyConstraint(
            ["provider_ref_id"],
            ["providers.id"],
            name=op.f("chat_threads_provider_ref_id_fkey"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["account_ref_id"],
            ["provider_accounts.id"],
            name=op.f("chat_threads_account_ref_id_fkey"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("chat_threads_pkey")),
        sa.UniqueConstraint(
            "provider_ref_id", "source_path", name="uq_chat_thread_source_path"
        ),
    )
    op.create_index(
        op.f("ix_chat_threads_provider_ref_id"),
        "chat_threads",
        ["provider_ref_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_chat_threads_account_ref_id"),
        "chat_threads",
        ["account_ref_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_chat_threads_updated_at"),
        "chat_threads",
        ["updated_at"],
        unique=False,
    )
    op.create_index(
        "ix_chat_threads_external",
        "chat_threads",
        ["provider_ref_id", "external_thread_id"],
        unique=False,
    )

    op.create_table(
        "chat_turns",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("thread_id", sa.UUID(), nullable=False),
        sa.Column("turn_index", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=9), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("timestamp", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("pair_turn_id", sa.UUID(), nullable=True),
        _metadata_column(),
        _timestamp_column("created_at"),
        sa.ForeignKeyConstraint(
            ["thread_id"],
            ["chat_threads.id"],
            name=op.f("chat_turns_thread_id_fkey"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["pair_turn_id"],
            ["chat_turns.id"],
            name=op.f("chat_turns_pair_turn_id_fkey"),
            ondelete="SET NULL",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("chat_turns_pkey")),
        sa.UniqueConstraint("thread_id", "turn_index", name="uq_chat_turn_index"),
    )
    op.create_index(
        op.f("ix_chat_turns_pair_turn_id"),
        "chat_turns",
        ["pair_turn_id"],
        unique=False,
    )

    op.create_table(
        "term_lexicon",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("term", sa.Text(), nullable=False),
        sa.Column("normalized_term", sa.Text(), nullable=False),
        sa.Column("doc_freq", sa.Integer(), server_default="0", nullable=False),
        _timestamp_column("created_at"),
        sa.PrimaryKeyConstraint("id", name=op.f("term_lexicon_pkey")),
    )
    op.create_index(
        op.f("ix_term_lexicon_normalized_term"),
        "term_lexicon",
        ["normalized_term"],
        unique=True,
    )

    op.create_table(
        "term_occurrences",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("lexicon_id", sa.Integer(), nullable=False),
        sa.Column("provider_ref_id", sa.UUID(), nullable=False),
        sa.Column("thread_id", sa.UUID(), nullable=False),
        sa.Column("turn_id", sa.UUID(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("context_before", sa.Text(), nullable=True),
        sa.Column("context_after", sa.Text(), nullable=True),
        _timestamp_column("created_at"),
        sa.ForeignKeyConstraint(
            ["lexicon_id"],
            ["term_lexicon.id"],
            name=op.f("term_occurrences_lexicon_id_fkey"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["provider_ref_id"],
            ["providers.id"],
            name=op.f("term_occurrences_provider_ref_id_fkey"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["thread_id"],
            ["chat_threads.id"],
            name=op.f("term_occurrences_thread_id_fkey"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["turn_id"],
            ["chat_turns.id"],
            name=op.f("term_occurrences_turn_id_fkey"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("term_occurrences_pkey")),
    )
    for column in ("lexicon_id", "provider_ref_id", "thread_id", "turn_id"):
        op.create_index(
            op.f(f"ix_term_occurrences_{column}"),
            "term_occurrences",
            [column],
            unique=False,
        )
    op.create_index(
        "ix_term_occurrences_thread_lexicon",
        "term_occurrences",
        ["thread_id", "lexicon_id"],
        unique=False,
    )

    op.create_table(
        "thematic_edges",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("source_thread_id", sa.UUID(), nullable=False),
        sa.Column("target_thread_id", sa.UUID(), nullable=False),
        sa.Column(
            "edge_type",
            sa.String(length=50),
            server_default="cooccurrence",
            nullable=False,
        ),
        sa.Column("weight", sa.Float(), nullable=False),
        _metadata_column("evidence"),
        _timestamp_column("created_at"),
        _timestamp_column("updated_at"),
        sa.ForeignKeyConstraint(
            ["source_thread_id"],
            ["chat_threads.id"],
            name=op.f("thematic_edges_source_thread_id_fkey"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["target_thread_id"],
            ["chat_threads.id"],
            name=op.f("thematic_edges_target_thread_id_fkey"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("thematic_edges_pkey")),
        sa.UniqueConstraint(
            "source_thread_id",
            "target_thread_id",
            "edge_type",
            name="uq_thematic_edge",
        ),
    )
    op.create_index(
        "ix_thematic_edges_source",
        "thematic_edges",
        ["source_thread_id", "edge_type", "weight"],
        unique=False,
    )
    op.create_index(
        "ix_thematic_edges_target",
        "thematic_edges",
        ["target_thread_id", "edge_type", "weight"],
        unique=False,
    )

    op.create_table(
        "ingest_runs",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("source_root", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("files_scanned", sa.Integer(), server_default="0", nullable=False),
        sa.Column("files_ingested", sa.Integer(), server_default="0", nullable=False),
        sa.Column(
            "files_quarantined", sa.Integer(), server_default="0", nullable=False
        ),
        sa.Column("chats_ingested", sa.Integer(), server_default="0", nullable=False),
        sa.Column("turns_ingested", sa.Integer(), server_default="0", nullable=False),
        sa.Column("policy_report_path", sa.Text(), nullable=True),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _metadata_column(),
        sa.PrimaryKeyConstraint("id", name=op.f("ingest_runs_pkey")),
    )
    op.create_index(
        op.f("ix_ingest_runs_status"), "ingest_runs", ["status"], unique=False
    )
    op.create_index(
        op.f("ix_ingest_runs_started_at"), "ingest_runs", ["started_at"], unique=False
    )

    op.create_table(
        "conversations",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("created", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("url", sa.Text(), nullable=True),
        sa.Column("exported_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("provider_id", sa.UUID(), nullable=True),
        sa.Column("provider_account_id", sa.UUID(), nullable=True),
        sa.Column("source_path", sa.Text(), nullable=True),
        sa.Column(
            "source_type", sa.String(length=20), server_default="chat", nullable=False
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("conversations_pkey")),
    )
    for column in ("provider_id", "provider_account_id", "source_path"):
        op.create_index(
            op.f(f"ix_conversations_{column}"),
            "conversations",
            [column],
            unique=False,
        )


def downgrade() -> None:
    op.drop_table("conversations")
    op.drop_table("ingest_runs")
    op.drop_table("thematic_edges")
    op.drop_table("term_occurrences")
    op.drop_table("term_lexicon")
    op.drop_table("chat_turns")
    op.drop_table("chat_threads")
    op.drop_table("provider_accounts")
    op.drop_table("providers")
