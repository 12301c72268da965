"""Tests for the lexical tokenizer."""

from chatuniverse.indexing.tokenizer import (
    CONTEXT_WINDOW,
    TokenHit,
    tokenize_with_context,
)


class TestTokenizeWithContext:
    """Tests for tokenize_with_context."""

    def test_positions_and_normalization(self):
        """Repeated terms keep their own positions and share a normalized form."""
        hits = tokenize_with_context("Alpha beta, alpha!")

        assert [(hit.normalized_term, hit.position) for hit in hits] == [
            ("alpha", 0),
            ("beta", 1),
            ("alpha", 2),
        ]
        assert hits[0].term == "Alpha"

    def test_short_tokens_are_dropped_without_consuming_positions(self):
        hits = tokenize_with_context("I saw a big cat")

        assert [hit.normalized_term for hit in hits] == ["saw", "big", "cat"]
        assert [hit.position for hit in hits] == [0, 1, 2]

    def test_apostrophes_hyphens_and_underscores_stay_in_tokens(self):
        hits = tokenize_with_context("don't re-run snake_case v2")

        assert [hit.term for hit in hits] == ["don't", "re-run", "snake_case", "v2"]

    def test_non_ascii_letters_split_tokens(self):
        hits = tokenize_with_context("café")

        assert [hit.term for hit in hits] == ["caf"]

    def test_start_position_offsets_numbering(self):
        hits = tokenize_with_context("nebula answer", start_position=5)

        assert [hit.position for hit in hits] == [5, 6]

    def test_context_windows(self):
        """Context is the raw text around the match, capped on each side."""
        prefix = "x" * 40
        content = f"{prefix} nebula tail"

        hits = tokenize_with_context(content)
        nebula = next(hit for hit in hits if hit.normalized_term == "nebula")

        assert len(nebula.context_before) == CONTEXT_WINDOW
        assert nebula.context_before.endswith("x ")
        assert nebula.context_after == " tail"

    def test_context_at_text_edges(self):
        hits = tokenize_with_context("nebula")

        assert hits == [
            TokenHit(
                term="nebula",
                normalized_term="nebula",
                position=0,
                context_before="",
                context_after="",
            )
        ]

    def test_empty_content(self):
        assert tokenize_with_context("") == []
        assert tokenize_with_context("  ! ? a  ") == []
