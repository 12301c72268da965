"""
Chat thread repository and the legacy conversation bridge.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from chatuniverse.db.repositories.base import BaseRepository
from chatuniverse.models.db import ChatThread, ChatTurn, LegacyConversation, Provider


def _turn_counts():
    return (
        select(ChatTurn.thread_id, func.count().label("turn_count"))
        .group_by(ChatTurn.thread_id)
        .subquery()
    )


class ChatThreadRepository(BaseRepository[ChatThread]):
    """Repository for ChatThread model."""

    def __init__(self, session: Session):
        super().__init__(ChatThread, session)

    def find_match(
        self,
        provider_ref_id: uuid.UUID,
        source_path: str,
        external_thread_id: Optional[str] = None,
    ) -> Optional[ChatThread]:
        """
        Find the thread an import refers to.

        A thread matches on its source path, or on its external thread id
        when one is given. Both keys are scoped to the provider.

        Args:
            provider_ref_id: Provider UUID
            source_path: Source path of the export
            external_thread_id: Provider-side conversation id

        Returns:
            ChatThread instance or None
        """
        match = ChatThread.source_path == source_path
        if external_thread_id is not None:
            match = or_(
                match,
                and_(
                    ChatThread.external_thread_id.is_not(None),
                    ChatThread.external_thread_id == external_thread_id,
                ),
            )
        return self.session.execute(
            select(ChatThread)
            .where(ChatThread.provider_ref_id == provider_ref_id, match)
            .order_by(ChatThread.id)
            .limit(1)
        ).scalar_one_or_none()

    def count_by_provider(self, provider_ref_id: uuid.UUID) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(ChatThread)
            .where(ChatThread.provider_ref_id == provider_ref_id)
        ).scalar_one()

    def list_with_turn_counts(
        self, provider_ref_id: uuid.UUID, limit: int, offset: int
    ) -> list[tuple[ChatThread, int]]:
        """
        List a provider's threads with their turn counts.

        Most recently active first (``updated_at``, falling back to
        ``created_at``), then by title.

        Returns:
            List of ``(thread, turn_count)`` tuples
        """
        counts = _turn_counts()
        rows = self.session.execute(
            select(ChatThread, func.coalesce(counts.c.turn_count, 0))
            .outerjoin(counts, counts.c.thread_id == ChatThread.id)
            .where(ChatThread.provider_ref_id == provider_ref_id)
            .order_by(
                func.coalesce(ChatThread.updated_at, ChatThread.created_at)
                .desc()
                .nulls_last(),
                ChatThread.title.asc(),
            )
            .limit(limit)
            .offset(offset)
        ).all()
        return [(thread, count) for thread, count in rows]

    def get_with_provider(
        self, thread_id: uuid.UUID
    ) -> Optional[tuple[ChatThread, Provider, int]]:
        """
        Get a thread together with its provider and turn count.

        Returns:
            ``(thread, provider, turn_count)`` or None
        """
        counts = _turn_counts()
        row = self.session.execute(
            select(ChatThread, Provider, func.coalesce(counts.c.turn_count, 0))
            .join(Provider, Provider.id == ChatThread.provider_ref_id)
            .outerjoin(counts, counts.c.thread_id == ChatThread.id)
            .where(ChatThread.id == thread_id)
        ).first()
        if row is None:
            return None
        return row[0], row[1], row[2]

    def list_for_reindex(self) -> list[tuple[uuid.UUID, uuid.UUID]]:
        """
        All ``(thread_id, provider_ref_id)`` pairs, most recently updated first.
        """
        rows = self.session.execute(
            select(ChatThread.id, ChatThread.provider_ref_id).order_by(
                func.coalesce(ChatThread.updated_at, ChatThread.created_at)
                .desc()
                .nulls_last(),
                ChatThread.id,
            )
        ).all()
        return [(thread_id, provider_ref_id) for thread_id, provider_ref_id in rows]


class LegacyConversationRepository(BaseRepository[LegacyConversation]):
    """Keeps the pre-universe ``conversations`` table in step with threads."""

    def __init__(self, session: Session):
        super().__init__(LegacyConversation, session)

    def sync_from_thread(self, thread: ChatThread) -> LegacyConversation:
        """
        Create or refresh the bridge row for a thread.

        ``created`` and ``url`` are only written on first insert.

        Args:
            thread: Chat thread to mirror

        Returns:
            LegacyConversation instance
        """
        now = datetime.now(timezone.utc)
        bridge = self.get(thread.id)
        if bridge is None:
            bridge = LegacyConversation(
                id=thread.id,
                title=thread.title,
                created=thread.created_at or now,
                url=None,
                exported_at=now,
                provider_id=thread.provider_ref_id,
                provider_account_id=thread.account_ref_id,
                source_path=thread.source_path,
                source_type="chat",
            )
            self.session.add(bridge)
        else:
            bridge.title = thread.title
            bridge.provider_id = thread.provider_ref_id
            bridge.provider_account_id = thread.account_ref_id
            bridge.source_path = thread.source_path
            bridge.source_type = "chat"
            bridge.exported_at = now
        self.session.flush()
        return bridge
