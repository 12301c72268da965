"""
Repository layer for database operations.

Provides a clean API for CRUD operations on database models.
"""

from chatuniverse.db.repositories.base import BaseRepository
from chatuniverse.db.repositories.edge import ThematicEdgeRepository
from chatuniverse.db.repositories.ingest_run import IngestRunRepository
from chatuniverse.db.repositories.lexicon import (
    TermLexiconRepository,
    TermOccurrenceRepository,
)
from chatuniverse.db.repositories.provider import (
    ProviderAccountRepository,
    ProviderRepository,
)
from chatuniverse.db.repositories.thread import (
    ChatThreadRepository,
    LegacyConversationRepository,
)
from chatuniverse.db.repositories.turn import ChatTurnRepository

__all__ = [
    "BaseRepository",
    "ChatThreadRepository",
    "ChatTurnRepository",
    "IngestRunRepository",
    "LegacyConversationRepository",
    "ProviderAccountRepository",
    "ProviderRepository",
    "TermLexiconRepository",
    "TermOccurrenceRepository",
    "ThematicEdgeRepository",
]
