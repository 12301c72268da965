"""
Term lexicon and term occurrence repositories.
"""

import uuid
from typing import Any, Iterable, Iterator, Sequence

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Row
from sqlalchemy.orm import Session

from chatuniverse.db.repositories.base import BaseRepository
from chatuniverse.models.db import (
    ChatThread,
    ChatTurn,
    Provider,
    TermLexicon,
    TermOccurrence,
)

# Stay well below SQLite's bound-parameter limit
_CHUNK_SIZE = 500


def _chunks(items: Sequence[Any], size: int = _CHUNK_SIZE) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class TermLexiconRepository(BaseRepository[TermLexicon]):
    """Repository for TermLexicon model."""

    def __init__(self, session: Session):
        super().__init__(TermLexicon, session)

    def ids_for_terms(self, normalized_terms: Iterable[str]) -> dict[str, int]:
        """Map existing normalized terms to their lexicon ids."""
        terms = list(normalized_terms)
        found: dict[str, int] = {}
        for chunk in _chunks(terms):
            rows = self.session.execute(
                select(TermLexicon.normalized_term, TermLexicon.id).where(
                    TermLexicon.normalized_term.in_(chunk)
                )
            ).all()
            found.update({term: lexicon_id for term, lexicon_id in rows})
        return found

    def get_or_create_ids(self, surface_forms: dict[str, str]) -> dict[str, int]:
        """
        Resolve lexicon ids, creating missing entries (race-safe).

        New entries start with ``doc_freq`` 0. An existing entry keeps its
        first-seen surface form.

        Args:
            surface_forms: Mapping of normalized term to the surface form to
                record if the term is new

        Returns:
            Mapping of normalized term to lexicon id
        """
        if not surface_forms:
            return {}

        ids = self.ids_for_terms(surface_forms.keys())
        missing = [term for term in surface_forms if term not in ids]
        for chunk in _chunks(missing):
            stmt = self._insert().values(
                [
                    {
                        "term": surface_forms[term],
                        "normalized_term": term,
                        "doc_freq": 0,
                    }
                    for term in chunk
                ]
            )
            self.session.execute(
                stmt.on_conflict_do_nothing(index_elements=["normalized_term"])
            )
        if missing:
            ids.update(self.ids_for_terms(missing))
        return ids

    def adjust_doc_freq(self, lexicon_ids: Iterable[int], delta: int) -> None:
        """
        Add ``delta`` to the document frequency of each lexicon entry.

        Args:
            lexicon_ids: Distinct lexicon ids
            delta: Amount to add (negative to decrement)
        """
        ids = list(lexicon_ids)
        for chunk in _chunks(ids):
            self.session.execute(
                update(TermLexicon)
                .where(TermLexicon.id.in_(chunk))
                .values(doc_freq=TermLexicon.doc_freq + delta)
                .execution_options(synchronize_session="fetch")
            )

    def recompute_doc_freq(self) -> None:
        """Recompute every document frequency from the stored occurrences."""
        distinct_threads = (
            select(func.count(func.distinct(TermOccurrence.thread_id)))
            .where(TermOccurrence.lexicon_id == TermLexicon.id)
            .scalar_subquery()
        )
        self.session.execute(
            update(TermLexicon)
            .values(doc_freq=distinct_threads)
            .execution_options(synchronize_session="fetch")
        )

    def delete_all(self) -> None:
        self.session.execute(
            delete(TermLexicon).execution_options(synchronize_session="fetch")
        )


class TermOccurrenceRepository(BaseRepository[TermOccurrence]):
    """Repository for TermOccurrence model."""

    def __init__(self, session: Session):
        super().__init__(TermOccurrence, session)

    def lexicon_ids_for_thread(self, thread_id: uuid.UUID) -> list[int]:
        """Distinct lexicon ids a thread currently references."""
        return list(
            self.session.execute(
                select(TermOccurrence.lexicon_id)
                .where(TermOccurrence.thread_id == thread_id)
                .distinct()
            ).scalars()
        )

    def insert_many(self, rows: Sequence[dict]) -> None:
        """Bulk insert occurrence rows (column-keyed dicts)."""
        for chunk in _chunks(rows):
            self.session.execute(insert(TermOccurrence.__table__), list(chunk))

    def delete_by_thread(self, thread_id: uuid.UUID) -> None:
        self.session.execute(
            delete(TermOccurrence)
            .where(TermOccurrence.thread_id == thread_id)
            .execution_options(synchronize_session=False)
        )

    def delete_all(self) -> None:
        self.session.execute(
            delete(TermOccurrence).execution_options(synchronize_session=False)
        )

    def shared_term_counts(
        self, thread_id: uuid.UUID, limit: int
    ) -> list[tuple[uuid.UUID, int]]:
        """
        Count the distinct terms every other thread shares with this one.

        Args:
            thread_id: Source thread UUID
            limit: Maximum number of threads to return

        Returns:
            ``(target_thread_id, shared_terms)`` tuples, highest count first,
            ties broken by target thread id
        """
        source_terms = (
            select(TermOccurrence.lexicon_id)
            .where(TermOccurrence.thread_id == thread_id)
            .distinct()
            .subquery()
        )
        shared = func.count(func.distinct(TermOccurrence.lexicon_id)).label(
            "shared_terms"
        )
        rows = self.session.execute(
            select(TermOccurrence.thread_id, shared)
            .join(source_terms, source_terms.c.lexicon_id == TermOccurrence.lexicon_id)
            .where(TermOccurrence.thread_id != thread_id)
            .group_by(TermOccurrence.thread_id)
            .order_by(shared.desc(), TermOccurrence.thread_id.asc())
            .limit(limit)
        ).all()
        return [(target, int(count)) for target, count in rows if count > 0]

    def count_for_term(self, normalized_term: str) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(TermOccurrence)
            .join(TermLexicon, TermLexicon.id == TermOccurrence.lexicon_id)
            .where(TermLexicon.normalized_term == normalized_term)
        ).scalar_one()

    def find_for_term(
        self, normalized_term: str, limit: int, offset: int
    ) -> list[Row]:
        """
        Occurrences of a term joined with lexicon, provider, thread and turn.

        Newest first, then by thread and position.
        """
        return list(
            self.session.execute(
                select(
                    TermOccurrence.id,
                    TermLexicon.term,
                    TermLexicon.normalized_term,
                    Provider.provider_id,
                    TermOccurrence.thread_id,
                    TermOccurrence.turn_id,
                    ChatThread.title.label("chat_title"),
                    ChatTurn.turn_index,
                    ChatTurn.role,
                    ChatTurn.content,
                    TermOccurrence.position,
                    TermOccurrence.context_before,
                    TermOccurrence.context_after,
                )
                .join(TermLexicon, TermLexicon.id == TermOccurrence.lexicon_id)
                .join(Provider, Provider.id == TermOccurrence.provider_ref_id)
                .join(ChatThread, ChatThread.id == TermOccurrence.thread_id)
                .join(ChatTurn, ChatTurn.id == TermOccurrence.turn_id)
                .where(TermLexicon.normalized_term == normalized_term)
                .order_by(
                    TermOccurrence.created_at.desc(),
                    TermOccurrence.thread_id.asc(),
                    TermOccurrence.position.asc(),
                )
                .limit(limit)
                .offset(offset)
            ).all()
        )
