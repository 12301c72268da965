"""
Tests for normalized conversation loading.
"""

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from chatuniverse.exceptions import NormalizedConversationError
from chatuniverse.models.db import ProviderId, TurnRole
from chatuniverse.models.normalized import (
    NormalizedConversation,
    load_normalized_conversations,
    parse_timestamp,
)


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_zulu_suffix(self):
        assert parse_timestamp("2025-01-02T03:04:05Z") == datetime(
            2025, 1, 2, 3, 4, 5, tzinfo=UTC
        )

    def test_naive_values_are_utc(self):
        assert parse_timestamp("2025-01-02T03:04:05").tzinfo is not None

    @pytest.mark.parametrize("value", [None, "", "yesterday"])
    def test_unparseable_values(self, value):
        assert parse_timestamp(value) is None


class TestNormalizedConversation:
    """Tests for NormalizedConversation.from_dict."""

    def test_camel_case_payload(self):
        conversation = NormalizedConversation.from_dict(
            {
                "provider": "gemini",
                "title": "Trip planning",
                "sourcePath": "gemini/trip.json",
                "externalThreadId": "g-1",
                "externalAccountId": "acct",
                "createdAt": "2025-03-01T10:00:00Z",
                "metadata": {"lang": "en"},
                "turns": [
                    {"turnIndex": 0, "role": "user", "content": "Plan a trip"},
                    {
                        "turnIndex": 1,
                        "role": "assistant",
                        "content": "Sure",
                        "timestamp": "2025-03-01T10:00:05Z",
                        "metadata": {"model": "x"},
                    },
                ],
            }
        )

        assert conversation.provider == ProviderId.GEMINI
        assert conversation.external_thread_id == "g-1"
        assert conversation.external_account_id == "acct"
        assert conversation.created_at == datetime(2025, 3, 1, 10, tzinfo=UTC)
        assert conversation.metadata == {"lang": "en"}
        assert [turn.role for turn in conversation.turns] == [
            TurnRole.USER,
            TurnRole.ASSISTANT,
        ]
        assert conversation.turns[1].metadata == {"model": "x"}

    def test_snake_case_and_defaults(self):
        conversation = NormalizedConversation.from_dict(
            {
                "provider": "someone-else",
                "source_path": "x.json",
                "turns": [{"role": "tool", "content": None}],
            }
        )

        assert conversation.provider == ProviderId.UNKNOWN
        assert conversation.title == "Untitled chat"
        assert conversation.turns[0].turn_index == 0
        assert conversation.turns[0].content == ""
        assert conversation.provider_metadata is None
        assert conversation.account_metadata is None

    @pytest.mark.parametrize(
        "provider_key, account_key",
        [
            ("providerMetadata", "accountMetadata"),
            ("provider_metadata", "account_metadata"),
        ],
    )
    def test_provider_and_account_metadata(self, provider_key, account_key):
        conversation = NormalizedConversation.from_dict(
            {
                "sourcePath": "claude/c.json",
                provider_key: {"plan": "pro"},
                account_key: {"seat": 3},
            }
        )

        assert conversation.provider_metadata == {"plan": "pro"}
        assert conversation.account_metadata == {"seat": 3}

    def test_non_object_metadata_is_ignored(self):
        conversation = NormalizedConversation.from_dict(
            {"sourcePath": "x.json", "providerMetadata": ["pro"]}
        )

        assert conversation.provider_metadata is None

    def test_missing_source_path(self):
        with pytest.raises(NormalizedConversationError, match="sourcePath"):
            NormalizedConversation.from_dict({"provider": "claude"})

    def test_unsupported_role(self):
        with pytest.raises(NormalizedConversationError, match="role"):
            NormalizedConversation.from_dict(
                {"sourcePath": "x", "turns": [{"role": "narrator", "content": "hi"}]}
            )


class TestLoadNormalizedConversations:
    """Tests for load_normalized_conversations."""

    @pytest.mark.parametrize(
        "payload",
        [
            {"sourcePath": "a"},
            [{"sourcePath": "a"}],
            {"conversations": [{"sourcePath": "a"}]},
        ],
    )
    def test_accepted_shapes(self, tmp_path: Path, payload):
        path = tmp_path / "export.json"
        path.write_text(json.dumps(payload))

        conversations = load_normalized_conversations(path)

        assert [c.source_path for c in conversations] == ["a"]

    def test_invalid_json(self, tmp_path: Path):
        path = tmp_path / "broken.json"

        with pytest.raises(NormalizedConversationError, match="Invalid JSON"):
            load_normalized_conversations(path, "{oops")

    def test_unexpected_payload(self, tmp_path: Path):
        with pytest.raises(NormalizedConversationError, match="Unexpected payload"):
            load_normalized_conversations(tmp_path / "x.json", "42")
