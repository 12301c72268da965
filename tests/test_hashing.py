"""Tests for content hashing."""

from chatuniverse.utils.hashing import calculate_content_hash


class TestCalculateContentHash:
    """Tests for calculate_content_hash function."""

    def test_same_content_produces_same_hash(self):
        assert calculate_content_hash("export") == calculate_content_hash("export")

    def test_different_content_produces_different_hash(self):
        assert calculate_content_hash("export 1") != calculate_content_hash("export 2")

    def test_hash_is_64_characters(self):
        digest = calculate_content_hash("content")

        assert len(digest) == 64
        assert all(char in "0123456789abcdef" for char in digest)

    def test_string_and_bytes_produce_same_hash(self):
        text = '{"title": "Café ☕"}'

        assert calculate_content_hash(text) == calculate_content_hash(
            text.encode("utf-8")
        )

    def test_known_digest(self):
        assert calculate_content_hash("") == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )
