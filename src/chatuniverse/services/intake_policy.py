"""
Intake policy for export files.

Decides whether a file found under the intake directory may be ingested or
must be quarantined: blocked locations (VCS metadata, dependency trees,
secret stores, dotenv files, SSH material), key and certificate extensions,
oversized files, and content carrying credentials such as private keys or API
tokens.
"""

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Optional, Pattern, Sequence

from chatuniverse.config import settings

DEFAULT_BLOCKED_PATH_PATTERNS: tuple[Pattern[str], ...] = (
    re.compile(r"(^|/)\.git(/|$)", re.IGNORECASE),
    re.compile(r"(^|/)node_modules(/|$)", re.IGNORECASE),
    re.compile(r"(^|/)artifacts/secrets(/|$)", re.IGNORECASE),
    re.compile(r"(^|/)\.env(\.|$)", re.IGNORECASE),
    re.compile(r"(^|/)\.ssh(/|$)", re.IGNORECASE),
)

DEFAULT_BLOCKED_EXTENSIONS: tuple[str, ...] = (
    ".pem",
    ".key",
    ".p12",
    ".pfx",
    ".der",
    ".crt",
    ".cer",
)

# High-confidence credential shapes; a match quarantines the whole file
DEFAULT_SENSITIVE_CONTENT_PATTERNS: tuple[Pattern[str], ...] = (
    re.compile(r"-----BEGIN (?:[A-Z]+ )?PRIVATE KEY-----"),
    re.compile(r"\b(?:AKIA|ASIA)[0-9A-Z]{16}\b"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{36,}\b"),
    re.compile(r"\bsk-(?:ant-|proj-)?[A-Za-z0-9_-]{32,}"),
    re.compile(r"\bxox[abprs]-[A-Za-z0-9-]{10,}"),
)

SENSITIVE_CONTENT_REASON = "high-confidence sensitive material detected"


@dataclass
class IntakeDecision:
    """Outcome of evaluating one file."""

    reasons: list[str] = field(default_factory=list)

    @property
    def quarantined(self) -> bool:
        return bool(self.reasons)

    @property
    def allowed(self) -> bool:
        return not self.reasons


class IntakePolicy:
    """Path, extension, size and content rules applied before ingesting a file."""

    def __init__(
        self,
        blocked_path_patterns: Optional[Sequence[Pattern[str]]] = None,
        blocked_extensions: Optional[Sequence[str]] = None,
        max_file_bytes: Optional[int] = None,
        sensitive_content_patterns: Optional[Sequence[Pattern[str]]] = None,
        sample_scan_bytes: Optional[int] = None,
    ):
        self.blocked_path_patterns = tuple(
            blocked_path_patterns
            if blocked_path_patterns is not None
            else DEFAULT_BLOCKED_PATH_PATTERNS
        )
        self.blocked_extensions = {
            ext.lower()
            for ext in (
                blocked_extensions
                if blocked_extensions is not None
                else DEFAULT_BLOCKED_EXTENSIONS
            )
        }
        self.max_file_bytes = (
            max_file_bytes
            if max_file_bytes is not None
            else settings.intake_max_file_bytes
        )
        self.sensitive_content_patterns = tuple(
            sensitive_content_patterns
            if sensitive_content_patterns is not None
            else DEFAULT_SENSITIVE_CONTENT_PATTERNS
        )
        self.sample_scan_bytes = (
            sample_scan_bytes
            if sample_scan_bytes is not None
            else settings.intake_sample_scan_bytes
        )

    def evaluate(
        self, relative_path: str, size_bytes: int, raw_content: Optional[str] = None
    ) -> IntakeDecision:
        """
        Evaluate a file against the policy.

        Args:
            relative_path: Path relative to the intake root, ``/``-separated
            size_bytes: File size in bytes
            raw_content: File text; only the first ``sample_scan_bytes``
                characters are scanned for credentials

        Returns:
            IntakeDecision listing every rule the file breaks
        """
        decision = IntakeDecision()
        lowered = relative_path.replace("\\", "/").lower()

        if size_bytes > self.max_file_bytes:
            decision.reasons.append(
                f"file exceeds max bytes ({size_bytes} > {self.max_file_bytes})"
            )

        if any(pattern.search(lowered) for pattern in self.blocked_path_patterns):
            decision.reasons.append("path blocked by policy")

        extension = PurePosixPath(lowered).suffix
        if extension and extension in self.blocked_extensions:
            decision.reasons.append(f"extension blocked by policy ({extension})")

        if raw_content and self.contains_sensitive_material(raw_content):
            decision.reasons.append(SENSITIVE_CONTENT_REASON)

        return decision

    def contains_sensitive_material(self, raw_content: str) -> bool:
        sample = raw_content[: self.sample_scan_bytes]
        return any(
            pattern.search(sample) for pattern in self.sensitive_content_patterns
        )
