"""
Tests for the hybrid search engine.

Retrieval backends are replaced with in-memory fakes.
"""

import threading
from datetime import UTC, datetime

import pytest

from chatuniverse.exceptions import EmbeddingUnavailableError
from chatuniverse.search import (
    HybridSearchEngine,
    KnowledgeUnit,
    SearchFilters,
    SearchWeights,
    SemanticHit,
    UnitDocument,
)
from chatuniverse.search.hybrid import (
    CHUNK_STRATEGY_BOOST,
    IMAGE_BOOST,
    RRF_K,
    has_visual_intent,
)


def unit(unit_id: str, **kwargs) -> KnowledgeUnit:
    return KnowledgeUnit(
        id=unit_id, title=unit_id, content=f"content {unit_id}", **kwargs
    )


class FakeFullText:
    def __init__(self, units):
        self.units = list(units)
        self.calls = []

    def search_text(self, query, limit):
        self.calls.append((query, limit))
        return self.units[:limit]


class FakeEmbeddings:
    def __init__(self, error: Exception | None = None):
        self.error = error

    def embed(self, text):
        if self.error is not None:
            raise self.error
        return [0.1, 0.2, 0.3]


class FakeVectorIndex:
    def __init__(self, hits):
        self.hits = list(hits)

    def search_by_embedding(self, embedding, limit):
        return self.hits[:limit]


class FakeCatalog:
    def __init__(self, units=(), documents=()):
        self.units = {item.id: item for item in units}
        self.documents = {document.id: document for document in documents}
        self.unit_lookups = []

    def get_units_by_ids(self, ids):
        self.unit_lookups.append(list(ids))
        return [self.units[unit_id] for unit_id in ids if unit_id in self.units]

    def get_documents_by_ids(self, ids):
        return [self.documents[doc_id] for doc_id in ids if doc_id in self.documents]


def make_engine(
    fts_units=(),
    semantic_hits=(),
    catalog_units=None,
    documents=(),
    embeddings=None,
    enforce_parity=True,
):
    if catalog_units is None:
        catalog_units = list(fts_units) + [hit.unit for hit in semantic_hits]
    return HybridSearchEngine(
        full_text=FakeFullText(fts_units),
        embeddings=embeddings or FakeEmbeddings(),
        vector_index=FakeVectorIndex(semantic_hits),
        catalog=FakeCatalog(catalog_units, documents),
        enforce_parity=enforce_parity,
    )


class TestFusion:
    """Tests for reciprocal rank fusion."""

    def test_fts_only_weights_reproduce_fts_ranking(self):
        fts_units = [unit("a"), unit("b"), unit("c")]
        semantic = [SemanticHit(unit("c"), 0.9), SemanticHit(unit("b"), 0.8)]
        engine = make_engine(fts_units, semantic)

        results = engine.search(
            "query", limit=10, weights=SearchWeights(fts=1, semantic=0)
        )

        assert [result.unit.id for result in results] == ["a", "b", "c"]

    def test_scores_are_summed_across_lists(self):
        fts_units = [unit("a"), unit("b")]
        semantic = [SemanticHit(unit("b"), 0.75), SemanticHit(unit("a"), 0.5)]
        engine = make_engine(fts_units, semantic)

        results = engine.search(
            "query", weights=SearchWeights(fts=0.6, semantic=0.4)
        )
        by_id = {result.unit.id: result for result in results}

        assert by_id["a"].combined_score == pytest.approx(
            0.6 / (RRF_K + 1) + 0.4 / (RRF_K + 2)
        )
        assert by_id["b"].combined_score == pytest.approx(
            0.6 / (RRF_K + 2) + 0.4 / (RRF_K + 1)
        )

    def test_result_scores(self):
        engine = make_engine([unit("a")], [SemanticHit(unit("s"), 0.42)])

        results = {result.unit.id: result for result in engine.search("query")}

        assert results["a"].fts_score == 1
        assert results["a"].semantic_score == 0
        assert results["s"].fts_score == 0
        assert results["s"].semantic_score == 0.42

    def test_default_weights(self):
        engine = make_engine([unit("a")], [SemanticHit(unit("a"), 0.3)])

        (result,) = engine.search("query")

        assert result.combined_score == pytest.approx(
            0.6 / (RRF_K + 1) + 0.4 / (RRF_K + 1)
        )

    def test_results_sorted_and_truncated(self):
        fts_units = [unit(name) for name in "abcde"]
        engine = make_engine(fts_units, [])

        results = engine.search("query", limit=3)

        assert [result.unit.id for result in results] == ["a", "b", "c"]
        scores = [result.combined_score for result in results]
        assert scores == sorted(scores, reverse=True)

    def test_limit_is_the_fetch_size(self):
        engine = make_engine([unit("a")], [])

        engine.search("needle", limit=7)

        assert engine.full_text.calls == [("needle", 7)]

    def test_backends_run_concurrently(self):
        """The full-text and semantic calls overlap in time."""
        barrier = threading.Barrier(2, timeout=5)

        class BlockingFullText(FakeFullText):
            def search_text(self, query, limit):
                barrier.wait()
                return super().search_text(query, limit)

        class BlockingEmbeddings(FakeEmbeddings):
            def embed(self, text):
                barrier.wait()
                return super().embed(text)

        engine = HybridSearchEngine(
            full_text=BlockingFullText([unit("a")]),
            embeddings=BlockingEmbeddings(),
            vector_index=FakeVectorIndex([SemanticHit(unit("b"), 0.5)]),
            catalog=FakeCatalog([unit("a"), unit("b")]),
        )

        results = engine.search("query")

        assert {result.unit.id for result in results} == {"a", "b"}


class TestParity:
    """Tests for dropping semantic hits unknown to the relational store."""

    def test_unknown_semantic_hits_are_dropped(self):
        semantic = [SemanticHit(unit("ghost"), 0.99), SemanticHit(unit("real"), 0.5)]
        engine = make_engine([], semantic, catalog_units=[unit("real")])

        results = engine.search("query")

        assert [result.unit.id for result in results] == ["real"]
        # Surviving hits keep their semantic rank order
        assert results[0].combined_score == pytest.approx(0.4 / (RRF_K + 1))

    def test_fts_hits_are_not_rechecked(self):
        engine = make_engine([unit("fts-only")], [], catalog_units=[])

        results = engine.search("query")

        assert [result.unit.id for result in results] == ["fts-only"]
        assert engine.catalog.unit_lookups == []

    def test_parity_can_be_disabled(self):
        semantic = [SemanticHit(unit("ghost"), 0.99)]
        engine = make_engine([], semantic, catalog_units=[], enforce_parity=False)

        results = engine.search("query")

        assert [result.unit.id for result in results] == ["ghost"]


class TestEmbeddingFailure:
    """Tests for embedding backend failures."""

    def test_embedding_unavailable_propagates(self):
        engine = make_engine(
            [unit("a")],
            [],
            embeddings=FakeEmbeddings(EmbeddingUnavailableError("no key")),
        )

        with pytest.raises(EmbeddingUnavailableError, match="no key"):
            engine.search("query")

    def test_other_embedding_errors_are_wrapped(self):
        engine = make_engine(
            [unit("a")], [], embeddings=FakeEmbeddings(ConnectionError("down"))
        )

        with pytest.raises(EmbeddingUnavailableError, match="down"):
            engine.search("query")


class TestMetadataFilters:
    """Tests for source and format filters."""

    def test_filters_by_document_source_and_format(self):
        fts_units = [
            unit("pdf-a", document_id="doc-1"),
            unit("md-a", document_id="doc-2"),
            unit("pdf-b", document_id="doc-3"),
            unit("orphan"),
        ]
        documents = [
            UnitDocument("doc-1", "pdf", {"sourceId": "drive"}),
            UnitDocument("doc-2", "markdown", {"sourceId": "drive"}),
            UnitDocument("doc-3", "pdf", '{"sourceId": "notes"}'),
        ]
        engine = make_engine(fts_units, [], documents=documents)

        by_format = engine.search("query", filters=SearchFilters(format="pdf"))
        by_source = engine.search("query", filters=SearchFilters(source="drive"))
        both = engine.search(
            "query", filters=SearchFilters(source="notes", format="pdf")
        )

        assert [result.unit.id for result in by_format] == ["pdf-a", "pdf-b"]
        assert [result.unit.id for result in by_source] == ["pdf-a", "md-a"]
        assert [result.unit.id for result in both] == ["pdf-b"]

    def test_missing_or_malformed_documents_are_dropped(self):
        fts_units = [
            unit("missing", document_id="gone"),
            unit("broken", document_id="doc-bad"),
        ]
        documents = [UnitDocument("doc-bad", "pdf", "{not json")]
        engine = make_engine(fts_units, [], documents=documents)

        assert engine.search("query", filters=SearchFilters(source="drive")) == []

    def test_claude_fallback_keeps_conversation_units(self):
        fts_units = [unit("turn-1", conversation_id="conv-1"), unit("loose")]
        engine = make_engine(fts_units, [])

        results = engine.search("query", filters=SearchFilters(source="claude"))

        assert [result.unit.id for result in results] == ["turn-1"]

    def test_other_sources_without_documents_yield_nothing(self):
        fts_units = [unit("turn-1", conversation_id="conv-1")]
        engine = make_engine(fts_units, [])

        assert engine.search("query", filters=SearchFilters(source="chatgpt")) == []
        assert engine.search("query", filters=SearchFilters(format="pdf")) == []

    def test_no_filters_keeps_everything(self):
        engine = make_engine([unit("a", document_id="doc-x"), unit("b")], [])

        assert len(engine.search("query")) == 2


class TestBoosts:
    """Tests for tag boosts."""

    def test_chunk_strategy_boost(self):
        engine = make_engine(
            [unit("plain"), unit("chunked", tags=["chunk-strategy-semantic"])], []
        )

        results = {result.unit.id: result for result in engine.search("query")}

        assert results["chunked"].combined_score == pytest.approx(
            0.6 / (RRF_K + 2) + CHUNK_STRATEGY_BOOST
        )
        assert results["plain"].combined_score == pytest.approx(0.6 / (RRF_K + 1))

    def test_image_boost_requires_visual_intent(self):
        imaged = unit("img", tags=["has-image"])

        visual = make_engine([imaged], []).search("show me diagrams")
        factual = make_engine([imaged], []).search("show me facts")

        base = 0.6 / (RRF_K + 1)
        assert visual[0].combined_score == pytest.approx(base + IMAGE_BOOST)
        assert factual[0].combined_score == pytest.approx(base)

    def test_boosts_stack(self):
        tagged = unit("both", tags=["chunk-strategy-fixed", "has-image"])

        (result,) = make_engine([tagged], []).search("the UI screenshot")

        assert result.combined_score == pytest.approx(
            0.6 / (RRF_K + 1) + CHUNK_STRATEGY_BOOST + IMAGE_BOOST
        )

    @pytest.mark.parametrize(
        "query,expected",
        [
            ("show me diagrams", True),
            ("Chart of revenue", True),
            ("ui review", True),
            ("Photos from the trip", True),
            ("old photographs", True),
            ("screenshotting the app", True),
            ("compare both UIs", True),
            ("graphql schema", False),
            ("show me facts", False),
            ("build a guide", False),
            ("figurehead", False),
        ],
    )
    def test_visual_intent_matches_whole_words(self, query, expected):
        assert has_visual_intent(query) is expected


class TestDateRange:
    """Tests for the inclusive date filter."""

    def _engine(self):
        return make_engine(
            [
                unit("early", timestamp=datetime(2024, 1, 1, tzinfo=UTC)),
                unit("middle", timestamp=datetime(2024, 6, 1, tzinfo=UTC)),
                unit("late", timestamp=datetime(2024, 12, 31, tzinfo=UTC)),
                unit("undated"),
            ],
            [],
        )

    def test_inclusive_bounds(self):
        results = self._engine().search(
            "query",
            filters=SearchFilters(
                date_from=datetime(2024, 6, 1, tzinfo=UTC),
                date_to=datetime(2024, 12, 31, tzinfo=UTC),
            ),
        )

        assert [result.unit.id for result in results] == ["middle", "late"]

    def test_open_ended_bounds(self):
        engine = self._engine()

        after = engine.search(
            "query", filters=SearchFilters(date_from=datetime(2024, 6, 1))
        )
        before = engine.search(
            "query", filters=SearchFilters(date_to=datetime(2024, 6, 1, tzinfo=UTC))
        )

        assert [result.unit.id for result in after] == ["middle", "late"]
        assert [result.unit.id for result in before] == ["early", "middle"]

    def test_no_bounds_keeps_undated_units(self):
        assert len(self._engine().search("query")) == 4
