"""Custom exceptions for chatuniverse."""


class ChatUniverseError(Exception):
    """Base class for errors raised by chatuniverse."""


class ThreadNotFoundError(ChatUniverseError):
    """Raised when an operation targets a chat thread that does not exist."""

    def __init__(self, thread_id: str):
        self.thread_id = thread_id
        super().__init__(f"Chat thread not found: {thread_id}")


class IngestRunNotFoundError(ChatUniverseError):
    """Raised when completing or looking up an unknown ingest run."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Ingest run not found: {run_id}")


class EmbeddingUnavailableError(ChatUniverseError):
    """Raised when the embedding backend cannot produce a query vector."""


class NormalizedConversationError(ChatUniverseError):
    """Raised when a normalized export file cannot be decoded."""

    def __init__(self, message: str, file_path: str | None = None):
        self.file_path = file_path
        if file_path:
            message = f"{message}: {file_path}"
        super().__init__(message)
