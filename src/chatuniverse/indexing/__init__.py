"""Lexical indexing of the chat universe: tokenizer and indexing store."""

from chatuniverse.indexing.store import IndexingStore
from chatuniverse.indexing.tokenizer import TokenHit, tokenize_with_context

__all__ = [
    "IndexingStore",
    "TokenHit",
    "tokenize_with_context",
]
