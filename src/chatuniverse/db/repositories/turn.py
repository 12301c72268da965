"""
Chat turn repository.
"""

import uuid
from typing import Iterable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from chatuniverse.db.repositories.base import BaseRepository
from chatuniverse.models.db import ChatTurn
from chatuniverse.models.normalized import NormalizedTurn


class ChatTurnRepository(BaseRepository[ChatTurn]):
    """Repository for ChatTurn model."""

    def __init__(self, session: Session):
        super().__init__(ChatTurn, session)

    def delete_by_thread(self, thread_id: uuid.UUID) -> int:
        """
        Delete every turn of a thread.

        Returns:
            Number of rows deleted
        """
        result = self.session.execute(
            delete(ChatTurn).where(ChatTurn.thread_id == thread_id)
        )
        return result.rowcount

    def insert_many(
        self, thread_id: uuid.UUID, turns: Iterable[NormalizedTurn]
    ) -> list[ChatTurn]:
        """
        Insert turns for a thread, then apply their prompt/response links.

        Rows go in without ``pair_turn_id`` so that a turn may reference a
        partner inserted after it; links are written in a second pass.

        Args:
            thread_id: Owning thread UUID
            turns: Turns to insert; ``id`` is generated when absent

        Returns:
            Inserted ChatTurn instances, in input order
        """
        rows = []
        links = []
        for turn in turns:
            row = ChatTurn(
                id=turn.id or uuid.uuid4(),
                thread_id=thread_id,
                turn_index=turn.turn_index,
                role=turn.role,
                content=turn.content,
                timestamp=turn.timestamp,
                extra_data=dict(turn.metadata or {}),
            )
            rows.append(row)
            if turn.pair_turn_id is not None:
                links.append((row, turn.pair_turn_id))

        self.session.add_all(rows)
        self.session.flush()

        for row, pair_turn_id in links:
            row.pair_turn_id = pair_turn_id
        if links:
            self.session.flush()
        return rows

    def list_by_thread(
        self, thread_id: uuid.UUID, limit: int | None = None, offset: int = 0
    ) -> list[ChatTurn]:
        """List a thread's turns ordered by turn index."""
        stmt = (
            select(ChatTurn)
            .where(ChatTurn.thread_id == thread_id)
            .order_by(ChatTurn.turn_index.asc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars())

    def contents_by_thread(self, thread_id: uuid.UUID) -> list[tuple[uuid.UUID, str]]:
        """``(turn_id, content)`` pairs of a thread, ordered by turn index."""
        rows = self.session.execute(
            select(ChatTurn.id, ChatTurn.content)
            .where(ChatTurn.thread_id == thread_id)
            .order_by(ChatTurn.turn_index.asc())
        ).all()
        return [(turn_id, content) for turn_id, content in rows]

    def count_by_thread(self, thread_id: uuid.UUID) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(ChatTurn)
            .where(ChatTurn.thread_id == thread_id)
        ).scalar_one()
