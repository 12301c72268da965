"""
Thematic edge repository.
"""

import uuid
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from chatuniverse.db.repositories.base import BaseRepository
from chatuniverse.models.db import COOCCURRENCE_EDGE, ThematicEdge


class ThematicEdgeRepository(BaseRepository[ThematicEdge]):
    """Repository for ThematicEdge model."""

    def __init__(self, session: Session):
        super().__init__(ThematicEdge, session)

    def delete_outgoing(
        self, source_thread_id: uuid.UUID, edge_type: str = COOCCURRENCE_EDGE
    ) -> None:
        """Delete a thread's outgoing edges of one type; incoming edges stay."""
        self.session.execute(
            delete(ThematicEdge)
            .where(
                ThematicEdge.source_thread_id == source_thread_id,
                ThematicEdge.edge_type == edge_type,
            )
            .execution_options(synchronize_session="fetch")
        )

    def delete_all(self) -> None:
        self.session.execute(
            delete(ThematicEdge).execution_options(synchronize_session="fetch")
        )

    def upsert_cooccurrence(
        self, source_thread_id: uuid.UUID, weights: Sequence[tuple[uuid.UUID, int]]
    ) -> int:
        """
        Write co-occurrence edges from one thread (race-safe).

        Existing edges for the same ``(source, target, type)`` get the new
        weight, evidence and ``updated_at``.

        Args:
            source_thread_id: Source thread UUID
            weights: ``(target_thread_id, shared_terms)`` tuples

        Returns:
            Number of edges written
        """
        if not weights:
            return 0

        now = datetime.now(timezone.utc)
        stmt = self._insert().values(
            [
                {
                    "id": uuid.uuid4(),
                    "source_thread_id": source_thread_id,
                    "target_thread_id": target_thread_id,
                    "edge_type": COOCCURRENCE_EDGE,
                    "weight": float(shared_terms),
                    "evidence": {"sharedTerms": shared_terms},
                    "created_at": now,
                    "updated_at": now,
                }
                for target_thread_id, shared_terms in weights
            ]
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["source_thread_id", "target_thread_id", "edge_type"],
            set_={
                "weight": stmt.excluded.weight,
                "evidence": stmt.excluded.evidence,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        self.session.execute(stmt)
        return len(weights)

    def list_for_thread(
        self, thread_id: uuid.UUID, limit: int, offset: int
    ) -> list[ThematicEdge]:
        """Edges touching a thread in either direction, heaviest first."""
        return list(
            self.session.execute(
                select(ThematicEdge)
                .where(
                    or_(
                        ThematicEdge.source_thread_id == thread_id,
                        ThematicEdge.target_thread_id == thread_id,
                    )
                )
                .order_by(ThematicEdge.weight.desc(), ThematicEdge.id)
                .limit(limit)
                .offset(offset)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def count_for_thread(self, thread_id: uuid.UUID) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(ThematicEdge)
            .where(
                or_(
                    ThematicEdge.source_thread_id == thread_id,
                    ThematicEdge.target_thread_id == thread_id,
                )
            )
        ).scalar_one()

    def list_min_weight(
        self, min_weight: float, limit: int, offset: int
    ) -> list[ThematicEdge]:
        """Edges at or above a weight, heaviest first."""
        return list(
            self.session.execute(
                select(ThematicEdge)
                .where(ThematicEdge.weight >= min_weight)
                .order_by(ThematicEdge.weight.desc(), ThematicEdge.id)
                .limit(limit)
                .offset(offset)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def count_min_weight(self, min_weight: float) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(ThematicEdge)
            .where(ThematicEdge.weight >= min_weight)
        ).scalar_one()
