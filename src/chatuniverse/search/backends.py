"""
Backend interfaces consumed by the hybrid search engine.

The engine is storage-agnostic: full-text search, query embedding, vector
similarity and unit/document lookup are supplied by the caller as objects
implementing these protocols.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass
class KnowledgeUnit:
    """A searchable unit of content (a chat turn, a document chunk, ...)."""

    id: str
    title: str = ""
    content: str = ""
    timestamp: Optional[datetime] = None
    tags: list[str] = field(default_factory=list)
    document_id: Optional[str] = None
    conversation_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class UnitDocument:
    """The document a knowledge unit was extracted from."""

    id: str
    format: str
    metadata: Any = None

    @property
    def source_id(self) -> Optional[str]:
        """
        ``sourceId`` from the document metadata.

        Metadata may arrive as a dict or as a JSON string; anything that does
        not decode to an object yields None.
        """
        metadata = self.metadata
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except json.JSONDecodeError:
                logger.debug(f"Malformed metadata on document {self.id}")
                return None
        if not isinstance(metadata, dict):
            return None
        source_id = metadata.get("sourceId")
        return str(source_id) if source_id is not None else None


@dataclass
class SemanticHit:
    """A unit returned by vector similarity search with its raw score."""

    unit: KnowledgeUnit
    score: float


@runtime_checkable
class FullTextBackend(Protocol):
    def search_text(self, query: str, limit: int) -> Sequence[KnowledgeUnit]:
        """Return units matching ``query``, best match first."""
        ...


@runtime_checkable
class EmbeddingBackend(Protocol):
    def embed(self, text: str) -> list[float]:
        """Return the embedding vector for ``text``."""
        ...


@runtime_checkable
class VectorIndex(Protocol):
    def search_by_embedding(
        self, embedding: Sequence[float], limit: int
    ) -> Sequence[SemanticHit]:
        """Return the units nearest to ``embedding``, most similar first."""
        ...


@runtime_checkable
class UnitCatalog(Protocol):
    def get_units_by_ids(self, ids: Sequence[str]) -> Sequence[KnowledgeUnit]:
        """Return the units that exist in the primary store."""
        ...

    def get_documents_by_ids(self, ids: Sequence[str]) -> Sequence[UnitDocument]:
        """Return the documents that exist in the primary store."""
        ...
