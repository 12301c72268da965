"""
Normalized conversation data models.

These are intermediate Python dataclasses representing a provider-agnostic
conversation, as emitted by provider-specific export parsers and before it is
stored in the database. Used by the ingest runner and the indexing store.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from chatuniverse.exceptions import NormalizedConversationError
from chatuniverse.models.db import ProviderId, TurnRole


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or pass through a datetime); naive values are UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_dict(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


@dataclass
class NormalizedTurn:
    """Single turn in a normalized conversation."""

    turn_index: int
    role: TurnRole
    content: str
    timestamp: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)
    id: Optional[Any] = None  # Pre-assigned turn id (generated on insert if absent)
    pair_turn_id: Optional[Any] = None  # Prompt/response partner turn id


@dataclass
class NormalizedConversation:
    """Unified format for conversations from every provider."""

    provider: ProviderId
    title: str
    source_path: str
    turns: list[NormalizedTurn] = field(default_factory=list)
    external_thread_id: Optional[str] = None
    external_account_id: Optional[str] = None
    account_display_name: Optional[str] = None
    account_email: Optional[str] = None
    provider_display_name: Optional[str] = None
    provider_metadata: Optional[dict] = None  # None keeps stored provider metadata
    account_metadata: Optional[dict] = None  # None keeps stored account metadata
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "NormalizedConversation":
        """
        Build a conversation from its JSON form.

        Accepts camelCase keys (``sourcePath``, ``turnIndex``) as produced by
        the export parsers, and snake_case equivalents.

        Raises:
            NormalizedConversationError: If required fields are missing
        """
        if not isinstance(data, dict):
            raise NormalizedConversationError("Conversation must be an object")

        def pick(*keys: str, default: Any = None) -> Any:
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        source_path = pick("sourcePath", "source_path")
        if not source_path:
            raise NormalizedConversationError("Conversation is missing sourcePath")

        turns = []
        for position, raw_turn in enumerate(pick("turns", default=[])):
            if not isinstance(raw_turn, dict):
                raise NormalizedConversationError("Turn must be an object")
            try:
                role = TurnRole(raw_turn.get("role", ""))
            except ValueError as e:
                raise NormalizedConversationError(
                    f"Unsupported turn role {raw_turn.get('role')!r}"
                ) from e
            turn_index = raw_turn.get("turnIndex", raw_turn.get("turn_index"))
            metadata = raw_turn.get("metadata")
            turns.append(
                NormalizedTurn(
                    turn_index=int(turn_index) if turn_index is not None else position,
                    role=role,
                    content=str(raw_turn.get("content") or ""),
                    timestamp=parse_timestamp(raw_turn.get("timestamp")),
                    metadata=metadata if isinstance(metadata, dict) else {},
                )
            )

        metadata = pick("metadata", default={})
        return cls(
            provider=ProviderId.coerce(pick("provider", default="unknown")),
            title=str(pick("title", default="Untitled chat")),
            source_path=str(source_path),
            turns=turns,
            external_thread_id=pick("externalThreadId", "external_thread_id"),
            external_account_id=pick("externalAccountId", "external_account_id"),
            account_display_name=pick("accountDisplayName", "account_display_name"),
            account_email=pick("accountEmail", "account_email"),
            provider_display_name=pick(
                "providerDisplayName", "provider_display_name"
            ),
            provider_metadata=_optional_dict(
                pick("providerMetadata", "provider_metadata")
            ),
            account_metadata=_optional_dict(
                pick("accountMetadata", "account_metadata")
            ),
            created_at=parse_timestamp(pick("createdAt", "created_at")),
            updated_at=parse_timestamp(pick("updatedAt", "updated_at")),
            metadata=metadata if isinstance(metadata, dict) else {},
        )


def load_normalized_conversations(
    file_path: Path | str, raw_content: Optional[str] = None
) -> list[NormalizedConversation]:
    """
    Load conversations from a normalized export file.

    The file may hold a single conversation object, a list of them, or an
    object with a ``conversations`` list.

    Raises:
        NormalizedConversationError: If the file is not valid JSON or has an
            unexpected shape
    """
    file_path = Path(file_path)
    if raw_content is None:
        raw_content = file_path.read_text(encoding="utf-8")

    try:
        payload = json.loads(raw_content)
    except ValueError as e:
        raise NormalizedConversationError("Invalid JSON", str(file_path)) from e

    if isinstance(payload, dict) and isinstance(payload.get("conversations"), list):
        items = payload["conversations"]
    elif isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        items = [payload]
    else:
        raise NormalizedConversationError("Unexpected payload", str(file_path))

    return [NormalizedConversation.from_dict(item) for item in items]
