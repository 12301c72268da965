"""
Hybrid search combining full-text and semantic retrieval.

Both retrieval paths run concurrently, semantic hits are reconciled against
the relational store, and the two ranked lists are merged with Reciprocal
Rank Fusion (RRF):

    score = sum(weight / (RRF_K + rank + 1))

Metadata filters, score boosts and the date range are applied to the fused
list before it is sorted and truncated.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

from chatuniverse.config import settings
from chatuniverse.exceptions import EmbeddingUnavailableError
from chatuniverse.search.backends import (
    EmbeddingBackend,
    FullTextBackend,
    KnowledgeUnit,
    SemanticHit,
    UnitCatalog,
    VectorIndex,
)

logger = logging.getLogger(__name__)

RRF_K = 60

CHUNK_STRATEGY_TAG_PREFIX = "chunk-strategy-"
CHUNK_STRATEGY_BOOST = 0.05

IMAGE_TAG = "has-image"
IMAGE_BOOST = 0.02

# Queries containing one of these words ask for visual content
VISUAL_INTENT_TERMS = frozenset(
    {
        "image",
        "images",
        "photo",
        "photos",
        "photograph",
        "photographs",
        "picture",
        "pictures",
        "diagram",
        "diagrams",
        "screenshot",
        "screenshots",
        "screenshotting",
        "mockup",
        "mockups",
        "wireframe",
        "wireframes",
        "chart",
        "charts",
        "graph",
        "graphs",
        "figure",
        "figures",
        "ui",
        "uis",
        "ux",
        "visual",
        "visuals",
    }
)

# Conversations imported from Claude exports carry no backing document
CONVERSATION_SOURCE_FALLBACK = "claude"

_WORD_PATTERN = re.compile(r"[a-z0-9]+")


@dataclass
class SearchWeights:
    """Per-list RRF weights."""

    fts: float = field(default_factory=lambda: settings.search_fts_weight)
    semantic: float = field(default_factory=lambda: settings.search_semantic_weight)


@dataclass
class SearchFilters:
    """Optional result filters; ``None`` leaves a dimension unfiltered."""

    source: Optional[str] = None
    format: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None

    @property
    def has_metadata_filters(self) -> bool:
        return bool(self.source or self.format)


@dataclass
class HybridSearchResult:
    """A fused search result."""

    unit: KnowledgeUnit
    fts_score: float
    semantic_score: float
    combined_score: float


def has_visual_intent(query: str) -> bool:
    """
    True if any whole word of the query is in the visual-intent vocabulary.

    Words are matched exactly rather than as substrings, so "graphql" or
    "figured" do not count; inflections must be listed in
    ``VISUAL_INTENT_TERMS`` to match.
    """
    return any(
        word in VISUAL_INTENT_TERMS for word in _WORD_PATTERN.findall(query.lower())
    )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class HybridSearchEngine:
    """
    Fan-out/fan-in hybrid search over injected retrieval backends.

    Args:
        full_text: Full-text query backend
        embeddings: Query embedding backend
        vector_index: Vector similarity backend
        catalog: Relational lookup of units and their documents
        enforce_parity: Drop semantic hits the catalog does not know
            (defaults to ``settings.search_enforce_parity``)
    """

    def __init__(
        self,
        full_text: FullTextBackend,
        embeddings: EmbeddingBackend,
        vector_index: VectorIndex,
        catalog: UnitCatalog,
        enforce_parity: Optional[bool] = None,
    ):
        self.full_text = full_text
        self.embeddings = embeddings
        self.vector_index = vector_index
        self.catalog = catalog
        self.enforce_parity = (
            settings.search_enforce_parity
            if enforce_parity is None
            else enforce_parity
        )

    def search(
        self,
        query: str,
        limit: int = 10,
        weights: Optional[SearchWeights] = None,
        filters: Optional[SearchFilters] = None,
    ) -> list[HybridSearchResult]:
        """
        Run a hybrid search.

        Args:
            query: Search text
            limit: Maximum number of results (also the per-backend fetch size)
            weights: RRF weights for the full-text and semantic lists
            filters: Source, format and date filters

        Returns:
            Results ordered by combined score, highest first

        Raises:
            EmbeddingUnavailableError: If the query cannot be embedded
        """
        weights = weights or SearchWeights()
        filters = filters or SearchFilters()

        with ThreadPoolExecutor(max_workers=2) as pool:
            fts_future = pool.submit(self.full_text.search_text, query, limit)
            semantic_future = pool.submit(self._semantic_search, query, limit)
            fts_units = list(fts_future.result())
            semantic_hits = list(semantic_future.result())

        logger.debug(
            f"Hybrid search '{query}': {len(fts_units)} full-text hits, "
            f"{len(semantic_hits)} semantic hits"
        )

        if self.enforce_parity:
            semantic_hits = self._enforce_parity(semantic_hits)

        results = self._fuse(fts_units, semantic_hits, weights)
        results = self._apply_metadata_filters(results, filters)
        self._apply_boosts(results, query)
        results = self._apply_date_range(results, filters)

        results.sort(key=lambda result: result.combined_score, reverse=True)
        return results[:limit]

    def _semantic_search(self, query: str, limit: int) -> Sequence[SemanticHit]:
        try:
            embedding = self.embeddings.embed(query)
        except EmbeddingUnavailableError:
            raise
        except Exception as e:
            raise EmbeddingUnavailableError(f"Query embedding failed: {e}") from e
        return self.vector_index.search_by_embedding(embedding, limit)

    def _enforce_parity(self, hits: list[SemanticHit]) -> list[SemanticHit]:
        """Keep semantic hits whose unit still exists, re-read from the catalog."""
        if not hits:
            return []
        ids = list(dict.fromkeys(hit.unit.id for hit in hits))
        known = {unit.id: unit for unit in self.catalog.get_units_by_ids(ids)}
        kept = [
            SemanticHit(unit=known[hit.unit.id], score=hit.score)
            for hit in hits
            if hit.unit.id in known
        ]
        dropped = len(hits) - len(kept)
        if dropped:
            logger.info(f"Dropped {dropped} semantic hits missing from the store")
        return kept

    def _fuse(
        self,
        fts_units: list[KnowledgeUnit],
        semantic_hits: list[SemanticHit],
        weights: SearchWeights,
    ) -> list[HybridSearchResult]:
        fused: dict[str, HybridSearchResult] = {}

        for rank, unit in enumerate(fts_units):
            if unit.id in fused:
                continue
            fused[unit.id] = HybridSearchResult(
                unit=unit,
                fts_score=1.0,
                semantic_score=0.0,
                combined_score=weights.fts / (RRF_K + rank + 1),
            )

        seen_semantic: set[str] = set()
        for rank, hit in enumerate(semantic_hits):
            if hit.unit.id in seen_semantic:
                continue
            seen_semantic.add(hit.unit.id)
            partial = weights.semantic / (RRF_K + rank + 1)
            existing = fused.get(hit.unit.id)
            if existing is None:
                fused[hit.unit.id] = HybridSearchResult(
                    unit=hit.unit,
                    fts_score=0.0,
                    semantic_score=hit.score,
                    combined_score=partial,
                )
            else:
                existing.semantic_score = hit.score
                existing.combined_score += partial

        return list(fused.values())

    def _apply_metadata_filters(
        self, results: list[HybridSearchResult], filters: SearchFilters
    ) -> list[HybridSearchResult]:
        if not filters.has_metadata_filters:
            return results

        document_ids = list(
            dict.fromkeys(
                result.unit.document_id
                for result in results
                if result.unit.document_id
            )
        )

        if not document_ids:
            if filters.source == CONVERSATION_SOURCE_FALLBACK:
                return [result for result in results if result.unit.conversation_id]
            return []

        documents = {
            document.id: document
            for document in self.catalog.get_documents_by_ids(document_ids)
        }

        kept = []
        for result in results:
            document = documents.get(result.unit.document_id or "")
            if document is None:
                continue
            if filters.format and document.format != filters.format:
                continue
            if filters.source and document.source_id != filters.source:
                continue
            kept.append(result)
        return kept

    def _apply_boosts(self, results: list[HybridSearchResult], query: str) -> None:
        visual_intent = has_visual_intent(query)
        for result in results:
            tags = result.unit.tags or []
            if any(tag.startswith(CHUNK_STRATEGY_TAG_PREFIX) for tag in tags):
                result.combined_score += CHUNK_STRATEGY_BOOST
            if visual_intent and IMAGE_TAG in tags:
                result.combined_score += IMAGE_BOOST

    def _apply_date_range(
        self, results: list[HybridSearchResult], filters: SearchFilters
    ) -> list[HybridSearchResult]:
        if filters.date_from is None and filters.date_to is None:
            return results

        date_from = _as_utc(filters.date_from) if filters.date_from else None
        date_to = _as_utc(filters.date_to) if filters.date_to else None

        kept = []
        for result in results:
            if result.unit.timestamp is None:
                continue
            timestamp = _as_utc(result.unit.timestamp)
            if date_from is not None and timestamp < date_from:
                continue
            if date_to is not None and timestamp > date_to:
                continue
            kept.append(result)
        return kept
