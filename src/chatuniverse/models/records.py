"""
Read models for chatuniverse.

Pydantic models returned by the indexing store's read API. ORM rows convert
through ``model_validate(row)``; JSON metadata columns are exposed as
``metadata``.
"""

import uuid
from datetime import datetime
from typing import Generic, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from chatuniverse.models.db import IngestRunStatus, ProviderId, TurnRole

T = TypeVar("T")


def _metadata_field():
    return Field(
        default_factory=dict,
        validation_alias=AliasChoices("extra_data", "metadata"),
    )


class _Record(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    @field_validator("metadata", mode="before", check_fields=False)
    @classmethod
    def _coerce_metadata(cls, value):
        return value if isinstance(value, dict) else {}


class Page(BaseModel, Generic[T]):
    """One page of a paginated listing."""

    items: list[T]
    total: int
    limit: int
    offset: int


class ProviderRecord(_Record):
    id: uuid.UUID
    provider_id: str
    display_name: str
    metadata: dict = _metadata_field()
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProviderAccountRecord(_Record):
    id: uuid.UUID
    provider_ref_id: uuid.UUID
    external_account_id: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None
    metadata: dict = _metadata_field()
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ChatThreadRecord(_Record):
    id: uuid.UUID
    provider_ref_id: uuid.UUID
    account_ref_id: Optional[uuid.UUID] = None
    external_thread_id: Optional[str] = None
    title: str
    source_path: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: dict = _metadata_field()


class UniverseChat(ChatThreadRecord):
    """Thread enriched with its provider and turn count."""

    provider_id: ProviderId
    provider_name: str
    turn_count: int = 0


class ChatTurnRecord(_Record):
    id: uuid.UUID
    thread_id: uuid.UUID
    turn_index: int
    role: TurnRole
    content: str
    timestamp: Optional[datetime] = None
    pair_turn_id: Optional[uuid.UUID] = None
    metadata: dict = _metadata_field()


class TermOccurrenceRecord(BaseModel):
    """A term hit joined with its thread, turn and provider."""

    id: uuid.UUID
    term: str
    normalized_term: str
    provider_id: ProviderId
    thread_id: uuid.UUID
    turn_id: uuid.UUID
    chat_title: str
    turn_index: int
    role: TurnRole
    content: str
    position: int
    context_before: Optional[str] = None
    context_after: Optional[str] = None


class NetworkEdgeRecord(_Record):
    id: uuid.UUID
    source_thread_id: uuid.UUID
    target_thread_id: uuid.UUID
    edge_type: str
    weight: float
    evidence: dict = Field(default_factory=dict)

    @field_validator("evidence", mode="before")
    @classmethod
    def _coerce_evidence(cls, value):
        return value if isinstance(value, dict) else {}


class IngestRunCounts(BaseModel):
    files_scanned: int = 0
    files_ingested: int = 0
    files_quarantined: int = 0
    chats_ingested: int = 0
    turns_ingested: int = 0


class IngestRunRecord(_Record):
    id: uuid.UUID
    source_root: str
    status: IngestRunStatus
    files_scanned: int = 0
    files_ingested: int = 0
    files_quarantined: int = 0
    chats_ingested: int = 0
    turns_ingested: int = 0
    policy_report_path: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    metadata: dict = _metadata_field()


class UniverseSummary(BaseModel):
    providers: int
    accounts: int
    chats: int
    turns: int
    terms: int
    occurrences: int
    edges: int
    updated_at: datetime


class ReindexResult(BaseModel):
    threads_indexed: int
    turns_indexed: int
    terms_indexed: int
    occurrences_indexed: int
    network_edges_indexed: int


class IngestedThread(BaseModel):
    """Everything written by one ``ingest_normalized_thread`` call."""

    provider: ProviderRecord
    account: Optional[ProviderAccountRecord] = None
    thread: ChatThreadRecord
    turns: list[ChatTurnRecord]
