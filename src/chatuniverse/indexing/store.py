"""
Indexing store for the chat universe.

Persists providers, accounts, threads and turns, and keeps the lexical index
(term lexicon, positional term occurrences and the thread co-occurrence
graph) consistent with the stored turns.

Every mutating operation runs inside a SAVEPOINT: on success its writes join
the caller's transaction, on failure the whole operation is rolled back and
the error re-raised. Committing is the caller's job (see
``chatuniverse.db.connection.db_session``).
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from chatuniverse.db.repositories import (
    ChatThreadRepository,
    ChatTurnRepository,
    IngestRunRepository,
    LegacyConversationRepository,
    ProviderAccountRepository,
    ProviderRepository,
    TermLexiconRepository,
    TermOccurrenceRepository,
    ThematicEdgeRepository,
)
from chatuniverse.exceptions import IngestRunNotFoundError, ThreadNotFoundError
from chatuniverse.indexing.tokenizer import tokenize_with_context
from chatuniverse.models.db import ChatThread, IngestRunStatus, ProviderId
from chatuniverse.models.normalized import NormalizedConversation, NormalizedTurn
from chatuniverse.models.records import (
    ChatThreadRecord,
    ChatTurnRecord,
    IngestedThread,
    IngestRunCounts,
    IngestRunRecord,
    NetworkEdgeRecord,
    Page,
    ProviderAccountRecord,
    ProviderRecord,
    ReindexResult,
    TermOccurrenceRecord,
    UniverseChat,
    UniverseSummary,
)

logger = logging.getLogger(__name__)

# Outgoing co-occurrence edges kept per thread
MAX_COOCCURRENCE_EDGES = 100


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_uuid(value: uuid.UUID | str) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


def _parse_uuid(value: uuid.UUID | str) -> Optional[uuid.UUID]:
    """Parse an id for a read; None when it is not a UUID."""
    try:
        return _to_uuid(value)
    except ValueError:
        return None


class IndexingStore:
    """Relational store and lexical index over a SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session
        self.providers = ProviderRepository(session)
        self.accounts = ProviderAccountRepository(session)
        self.threads = ChatThreadRepository(session)
        self.legacy = LegacyConversationRepository(session)
        self.turns = ChatTurnRepository(session)
        self.lexicon = TermLexiconRepository(session)
        self.occurrences = TermOccurrenceRepository(session)
        self.edges = ThematicEdgeRepository(session)
        self.runs = IngestRunRepository(session)

    # ===== Upserts =====

    def upsert_provider(
        self,
        provider_id: ProviderId | str,
        display_name: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> ProviderRecord:
        """
        Insert or refresh a provider.

        Args:
            provider_id: Provider id; unknown strings are stored as ``unknown``
            display_name: Display name (defaults to the upper-cased id)
            metadata: Provider metadata, replacing any stored value; None
                keeps the stored value

        Returns:
            The stored provider
        """
        provider_id = ProviderId.coerce(provider_id).value
        with self.session.begin_nested():
            provider = self.providers.upsert(
                provider_id,
                display_name or provider_id.upper(),
                dict(metadata) if metadata is not None else None,
            )
        return ProviderRecord.model_validate(provider)

    def upsert_provider_account(
        self,
        provider_ref_id: uuid.UUID | str,
        external_account_id: Optional[str] = None,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> ProviderAccountRecord:
        """
        Insert or refresh a provider account.

        Without an external account id the provider's single default account
        is used. A None ``metadata`` keeps the stored value.

        Returns:
            The stored account
        """
        with self.session.begin_nested():
            account = self.accounts.upsert(
                _to_uuid(provider_ref_id),
                external_account_id or None,
                display_name,
                email,
                dict(metadata) if metadata is not None else None,
            )
        return ProviderAccountRecord.model_validate(account)

    def upsert_chat_thread(
        self,
        provider_ref_id: uuid.UUID | str,
        title: str,
        source_path: str,
        account_ref_id: Optional[uuid.UUID | str] = None,
        external_thread_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        metadata: Optional[dict] = None,
    ) -> ChatThreadRecord:
        """
        Insert or update a chat thread.

        An existing thread of the same provider matches by source path, or by
        external thread id when one is given. On update ``created_at`` keeps
        the stored value unless supplied and ``updated_at`` defaults to now.

        Returns:
            The stored thread
        """
        provider_ref_id = _to_uuid(provider_ref_id)
        account_ref_id = _to_uuid(account_ref_id) if account_ref_id else None
        now = _utc_now()

        with self.session.begin_nested():
            thread = self.threads.find_match(
                provider_ref_id, source_path, external_thread_id
            )
            if thread is None:
                thread = ChatThread(
                    id=uuid.uuid4(),
                    provider_ref_id=provider_ref_id,
                    account_ref_id=account_ref_id,
                    external_thread_id=external_thread_id,
                    title=title,
                    source_path=source_path,
                    created_at=created_at or now,
                    updated_at=updated_at or now,
                    extra_data=dict(metadata or {}),
                )
                self.session.add(thread)
            else:
                thread.account_ref_id = account_ref_id
                thread.external_thread_id = external_thread_id
                thread.title = title
                thread.source_path = source_path
                thread.created_at = created_at or thread.created_at
                thread.updated_at = updated_at or now
                thread.extra_data = dict(metadata or {})
            self.session.flush()
        return ChatThreadRecord.model_validate(thread)

    # ===== Turns and term indexing =====

    def replace_thread_turns(
        self,
        thread_id: uuid.UUID | str,
        provider_ref_id: uuid.UUID | str,
        turns: Sequence[NormalizedTurn],
    ) -> list[ChatTurnRecord]:
        """
        Replace a thread's turns and re-index it.

        Deletes the thread's occurrences and turns, inserts the new turns,
        tokenizes and indexes them and rebuilds the thread's outgoing
        co-occurrence edges, as one atomic unit. An empty list leaves the
        thread with no turns, terms or edges.

        Args:
            thread_id: Thread UUID
            provider_ref_id: Provider UUID recorded on each occurrence
            turns: New turn list

        Returns:
            Inserted turns ordered by turn index

        Raises:
            ThreadNotFoundError: If the thread does not exist
        """
        thread_id = _to_uuid(thread_id)
        provider_ref_id = _to_uuid(provider_ref_id)

        with self.session.begin_nested():
            if self.threads.get(thread_id) is None:
                raise ThreadNotFoundError(str(thread_id))

            previous_terms = self.occurrences.lexicon_ids_for_thread(thread_id)
            self.lexicon.adjust_doc_freq(previous_terms, -1)
            self.occurrences.delete_by_thread(thread_id)
            self.turns.delete_by_thread(thread_id)

            inserted = self.turns.insert_many(thread_id, turns)
            occurrence_count = self._index_thread_terms(thread_id, provider_ref_id)
            edge_count = self._rebuild_cooccurrence_edges(thread_id)

        logger.debug(
            f"Indexed thread {thread_id}: {len(inserted)} turns, "
            f"{occurrence_count} occurrences, {edge_count} edges"
        )
        records = [ChatTurnRecord.model_validate(row) for row in inserted]
        return sorted(records, key=lambda record: record.turn_index)

    def _index_thread_terms(
        self, thread_id: uuid.UUID, provider_ref_id: uuid.UUID
    ) -> int:
        """
        Tokenize a thread's stored turns and write its occurrences.

        Positions continue across turns in turn order. Each distinct term the
        thread now references gets its document frequency incremented.

        Returns:
            Number of occurrences written
        """
        hits = []
        position = 0
        for turn_id, content in self.turns.contents_by_thread(thread_id):
            tokens = tokenize_with_context(content, start_position=position)
            position += len(tokens)
            hits.extend((turn_id, token) for token in tokens)

        if not hits:
            return 0

        surface_forms: dict[str, str] = {}
        for _, token in hits:
            surface_forms.setdefault(token.normalized_term, token.term)
        lexicon_ids = self.lexicon.get_or_create_ids(surface_forms)

        now = _utc_now()
        self.occurrences.insert_many(
            [
                {
                    "id": uuid.uuid4(),
                    "lexicon_id": lexicon_ids[token.normalized_term],
                    "provider_ref_id": provider_ref_id,
                    "thread_id": thread_id,
                    "turn_id": turn_id,
                    "position": token.position,
                    "context_before": token.context_before,
                    "context_after": token.context_after,
                    "created_at": now,
                }
                for turn_id, token in hits
            ]
        )
        self.lexicon.adjust_doc_freq(set(lexicon_ids.values()), 1)
        return len(hits)

    def _rebuild_cooccurrence_edges(self, thread_id: uuid.UUID) -> int:
        """
        Rebuild a thread's outgoing co-occurrence edges.

        Edge weight is the number of distinct lexicon entries shared with the
        target thread. Other threads' outgoing edges are left untouched.

        Returns:
            Number of edges written
        """
        self.edges.delete_outgoing(thread_id)
        weights = self.occurrences.shared_term_counts(
            thread_id, MAX_COOCCURRENCE_EDGES
        )
        return self.edges.upsert_cooccurrence(thread_id, weights)

    def recompute_document_frequencies(self) -> None:
        """Batch repair: recompute every lexicon entry's document frequency."""
        with self.session.begin_nested():
            self.lexicon.recompute_doc_freq()

    def reindex_universe(self) -> ReindexResult:
        """
        Rebuild the whole lexical index from the stored turns.

        Wipes occurrences, edges and the lexicon, then indexes every thread,
        most recently updated first, in one atomic unit.

        Returns:
            Aggregate counts after the rebuild
        """
        with self.session.begin_nested():
            self.occurrences.delete_all()
            self.edges.delete_all()
            self.lexicon.delete_all()

            threads = self.threads.list_for_reindex()
            for thread_id, provider_ref_id in threads:
                self._index_thread_terms(thread_id, provider_ref_id)
                self._rebuild_cooccurrence_edges(thread_id)
            self.session.flush()

            result = ReindexResult(
                threads_indexed=len(threads),
                turns_indexed=self.turns.count(),
                terms_indexed=self.lexicon.count(),
                occurrences_indexed=self.occurrences.count(),
                network_edges_indexed=self.edges.count(),
            )

        logger.info(
            f"Reindexed {result.threads_indexed} threads: "
            f"{result.terms_indexed} terms, {result.occurrences_indexed} occurrences, "
            f"{result.network_edges_indexed} edges"
        )
        return result

    # ===== Import entry point =====

    def ingest_normalized_thread(
        self, conversation: NormalizedConversation
    ) -> IngestedThread:
        """
        Store one normalized conversation and index it.

        Upserts the provider, the account (only when the conversation carries
        an external account id) and the thread, mirrors the thread into the
        legacy ``conversations`` table and replaces its turns. The whole call
        is atomic.

        Returns:
            Provider, account (or None), thread and inserted turns
        """
        with self.session.begin_nested():
            provider = self.upsert_provider(
                conversation.provider,
                conversation.provider_display_name,
                conversation.provider_metadata,
            )
            account = None
            if conversation.external_account_id:
                account = self.upsert_provider_account(
                    provider.id,
                    external_account_id=conversation.external_account_id,
                    display_name=conversation.account_display_name,
                    email=conversation.account_email,
                    metadata=conversation.account_metadata,
                )

            thread = self.upsert_chat_thread(
                provider.id,
                title=conversation.title,
                source_path=conversation.source_path,
                account_ref_id=account.id if account else None,
                external_thread_id=conversation.external_thread_id,
                created_at=conversation.created_at,
                updated_at=conversation.updated_at,
                metadata=conversation.metadata,
            )
            self.legacy.sync_from_thread(self.threads.get(thread.id))

            turns = self.replace_thread_turns(
                thread.id, provider.id, conversation.turns
            )

        return IngestedThread(
            provider=provider, account=account, thread=thread, turns=turns
        )

    # ===== Reads =====

    def get_universe_summary(self) -> UniverseSummary:
        """Global row counts."""
        return UniverseSummary(
            providers=self.providers.count(),
            accounts=self.accounts.count(),
            chats=self.threads.count(),
            turns=self.turns.count(),
            terms=self.lexicon.count(),
            occurrences=self.occurrences.count(),
            edges=self.edges.count(),
            updated_at=_utc_now(),
        )

    def list_providers(self, limit: int = 25, offset: int = 0) -> Page[ProviderRecord]:
        rows = self.providers.list_page(limit, offset)
        return Page[ProviderRecord](
            items=[ProviderRecord.model_validate(row) for row in rows],
            total=self.providers.count(),
            limit=limit,
            offset=offset,
        )

    def list_provider_chats(
        self, provider_id: ProviderId | str, limit: int = 50, offset: int = 0
    ) -> Page[UniverseChat]:
        """
        List a provider's chats, most recently active first.

        An unknown provider yields an empty page.
        """
        provider_key = (
            provider_id.value if isinstance(provider_id, ProviderId) else provider_id
        )
        provider = self.providers.get_by_provider_id(provider_key)
        if provider is None:
            return Page[UniverseChat](items=[], total=0, limit=limit, offset=offset)

        rows = self.threads.list_with_turn_counts(provider.id, limit, offset)
        return Page[UniverseChat](
            items=[
                self._to_universe_chat(
                    thread, provider.provider_id, provider.display_name, count
                )
                for thread, count in rows
            ],
            total=self.threads.count_by_provider(provider.id),
            limit=limit,
            offset=offset,
        )

    def get_chat(self, chat_id: uuid.UUID | str) -> Optional[UniverseChat]:
        """Get one chat with its provider and turn count, or None."""
        chat_id = _parse_uuid(chat_id)
        if chat_id is None:
            return None
        found = self.threads.get_with_provider(chat_id)
        if found is None:
            return None
        thread, provider, count = found
        return self._to_universe_chat(
            thread, provider.provider_id, provider.display_name, count
        )

    def list_chat_turns(
        self, chat_id: uuid.UUID | str, limit: int = 200, offset: int = 0
    ) -> Page[ChatTurnRecord]:
        chat_id = _parse_uuid(chat_id)
        if chat_id is None:
            return Page[ChatTurnRecord](items=[], total=0, limit=limit, offset=offset)
        rows = self.turns.list_by_thread(chat_id, limit, offset)
        return Page[ChatTurnRecord](
            items=[ChatTurnRecord.model_validate(row) for row in rows],
            total=self.turns.count_by_thread(chat_id),
            limit=limit,
            offset=offset,
        )

    def get_chat_network(
        self, chat_id: uuid.UUID | str, limit: int = 100, offset: int = 0
    ) -> Page[NetworkEdgeRecord]:
        """Edges touching a chat in either direction, heaviest first."""
        chat_id = _parse_uuid(chat_id)
        if chat_id is None:
            return Page[NetworkEdgeRecord](
                items=[], total=0, limit=limit, offset=offset
            )
        rows = self.edges.list_for_thread(chat_id, limit, offset)
        return Page[NetworkEdgeRecord](
            items=[NetworkEdgeRecord.model_validate(row) for row in rows],
            total=self.edges.count_for_thread(chat_id),
            limit=limit,
            offset=offset,
        )

    def find_term_occurrences(
        self, term: str, limit: int = 100, offset: int = 0
    ) -> Page[TermOccurrenceRecord]:
        """Occurrences of a term (matched case-insensitively) across the corpus."""
        normalized = term.lower()
        rows = self.occurrences.find_for_term(normalized, limit, offset)
        items = []
        for row in rows:
            values = row._asdict()
            values["provider_id"] = ProviderId.coerce(values["provider_id"])
            items.append(TermOccurrenceRecord(**values))
        return Page[TermOccurrenceRecord](
            items=items,
            total=self.occurrences.count_for_term(normalized),
            limit=limit,
            offset=offset,
        )

    def list_parallel_networks(
        self, limit: int = 250, offset: int = 0, min_weight: float = 1
    ) -> Page[NetworkEdgeRecord]:
        """Co-occurrence edges at or above ``min_weight``, heaviest first."""
        rows = self.edges.list_min_weight(min_weight, limit, offset)
        return Page[NetworkEdgeRecord](
            items=[NetworkEdgeRecord.model_validate(row) for row in rows],
            total=self.edges.count_min_weight(min_weight),
            limit=limit,
            offset=offset,
        )

    @staticmethod
    def _to_universe_chat(
        thread: ChatThread, provider_id: str, provider_name: str, turn_count: int
    ) -> UniverseChat:
        base = ChatThreadRecord.model_validate(thread).model_dump()
        return UniverseChat(
            **base,
            provider_id=ProviderId.coerce(provider_id),
            provider_name=provider_name,
            turn_count=turn_count,
        )

    # ===== Ingest runs =====

    def create_ingest_run(
        self, source_root: str, metadata: Optional[dict] = None
    ) -> uuid.UUID:
        """Record a new ``running`` ingest run and return its id."""
        with self.session.begin_nested():
            run = self.runs.start(source_root, metadata)
        return run.id

    def complete_ingest_run(
        self,
        run_id: uuid.UUID | str,
        status: IngestRunStatus | str,
        counts: IngestRunCounts,
        policy_report_path: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> IngestRunRecord:
        """
        Finish an ingest run with its final status and counts.

        Raises:
            IngestRunNotFoundError: If the run does not exist
        """
        with self.session.begin_nested():
            run = self.runs.complete(
                _to_uuid(run_id),
                IngestRunStatus(status),
                files_scanned=counts.files_scanned,
                files_ingested=counts.files_ingested,
                files_quarantined=counts.files_quarantined,
                chats_ingested=counts.chats_ingested,
                turns_ingested=counts.turns_ingested,
                policy_report_path=policy_report_path,
                metadata=metadata,
            )
            if run is None:
                raise IngestRunNotFoundError(str(run_id))
        return IngestRunRecord.model_validate(run)

    def get_ingest_run(self, run_id: uuid.UUID | str) -> Optional[IngestRunRecord]:
        run_id = _parse_uuid(run_id)
        run = self.runs.get(run_id) if run_id is not None else None
        if run is None:
            return None
        self.session.refresh(run)
        return IngestRunRecord.model_validate(run)

    def list_ingest_runs(
        self, limit: int = 50, offset: int = 0
    ) -> Page[IngestRunRecord]:
        rows = self.runs.get_recent(limit, offset)
        return Page[IngestRunRecord](
            items=[IngestRunRecord.model_validate(row) for row in rows],
            total=self.runs.count(),
            limit=limit,
            offset=offset,
        )
