"""Hybrid full-text and semantic search."""

from chatuniverse.search.backends import (
    EmbeddingBackend,
    FullTextBackend,
    KnowledgeUnit,
    SemanticHit,
    UnitCatalog,
    UnitDocument,
    VectorIndex,
)
from chatuniverse.search.hybrid import (
    HybridSearchEngine,
    HybridSearchResult,
    SearchFilters,
    SearchWeights,
)

__all__ = [
    "EmbeddingBackend",
    "FullTextBackend",
    "HybridSearchEngine",
    "HybridSearchResult",
    "KnowledgeUnit",
    "SearchFilters",
    "SearchWeights",
    "SemanticHit",
    "UnitCatalog",
    "UnitDocument",
    "VectorIndex",
]
