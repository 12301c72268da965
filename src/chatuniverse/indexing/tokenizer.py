"""
Lexical tokenizer for turn content.

Tokens are runs of ASCII letters, digits, underscores, apostrophes and
hyphens. They are normalized by lowercasing; tokens shorter than two
characters are dropped and do not consume a position.
"""

import re
from dataclasses import dataclass
from typing import Iterator

TOKEN_PATTERN = re.compile(r"[A-Za-z0-9_'-]+")
MIN_TOKEN_LENGTH = 2
CONTEXT_WINDOW = 24


@dataclass(frozen=True)
class TokenHit:
    """One token with its position and surrounding text."""

    term: str
    normalized_term: str
    position: int
    context_before: str
    context_after: str


def tokenize_with_context(content: str, start_position: int = 0) -> list[TokenHit]:
    """
    Split content into tokens with positions and context windows.

    Args:
        content: Text to tokenize
        start_position: Position assigned to the first kept token, so that a
            caller can number tokens continuously across several texts

    Returns:
        Kept tokens in order of appearance
    """
    return list(_iter_tokens(content, start_position))


def _iter_tokens(content: str, position: int) -> Iterator[TokenHit]:
    for match in TOKEN_PATTERN.finditer(content):
        term = match.group(0)
        normalized = term.lower()
        if len(normalized) < MIN_TOKEN_LENGTH:
            continue

        start, end = match.span()
        yield TokenHit(
            term=term,
            normalized_term=normalized,
            position=position,
            context_before=content[max(0, start - CONTEXT_WINDOW) : start],
            context_after=content[end : end + CONTEXT_WINDOW],
        )
        position += 1
