"""Content hashing for ingested export files."""

import hashlib


def calculate_content_hash(content: str | bytes) -> str:
    """
    SHA-256 hex digest of an export file's content.

    Stored on every thread ingested from the file (``contentHash`` metadata)
    so re-ingested exports can be traced back to the exact file version.

    Args:
        content: Text (encoded as UTF-8) or raw bytes
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()
