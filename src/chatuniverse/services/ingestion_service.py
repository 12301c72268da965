"""
Batch ingestion of normalized chat exports.

Scans an intake directory for normalized conversation files (the JSON output
of the provider export parsers), applies the intake policy, pairs prompt and
response turns, and stores every conversation through the indexing store.

Each conversation is committed on its own, so a failure part-way through a
batch leaves earlier conversations indexed; the batch itself is tracked as an
ingest run that ends ``completed`` or ``failed``.
"""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import AbstractContextManager
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Callable, Optional, Sequence

from sqlalchemy.orm import Session

from chatuniverse.config import settings
from chatuniverse.exceptions import NormalizedConversationError
from chatuniverse.indexing.store import IndexingStore
from chatuniverse.models.db import IngestRunStatus, TurnRole
from chatuniverse.models.normalized import (
    NormalizedConversation,
    NormalizedTurn,
    load_normalized_conversations,
)
from chatuniverse.models.records import IngestRunCounts
from chatuniverse.services.intake_policy import IntakePolicy
from chatuniverse.utils.hashing import calculate_content_hash

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]

DEFAULT_FILE_PATTERNS: tuple[str, ...] = ("*.json",)


def pair_turns(turns: Sequence[NormalizedTurn]) -> list[NormalizedTurn]:
    """
    Clean up a conversation's turns and link prompts to responses.

    Blank turns are dropped and the rest renumbered from 0 in turn order.
    Every user turn immediately followed by an assistant turn is linked to it
    in both directions, through ``pair_turn_id`` and the ``pairToTurnIndex``
    metadata key.

    Args:
        turns: Turns as parsed from the export

    Returns:
        New turn list with ids assigned
    """
    kept = sorted(
        (turn for turn in turns if turn.content.strip()),
        key=lambda turn: turn.turn_index,
    )
    paired = [
        replace(
            turn,
            turn_index=index,
            id=turn.id or uuid.uuid4(),
            pair_turn_id=None,
            metadata=dict(turn.metadata or {}),
        )
        for index, turn in enumerate(kept)
    ]

    for current, following in zip(paired, paired[1:]):
        if current.role == TurnRole.USER and following.role == TurnRole.ASSISTANT:
            current.pair_turn_id = following.id
            following.pair_turn_id = current.id
            current.metadata["pairToTurnIndex"] = following.turn_index
            following.metadata["pairToTurnIndex"] = current.turn_index

    return paired


@dataclass
class IngestReport:
    """Summary of one ingest run, also written to disk as JSON."""

    run_id: str
    source_root: str
    mode: str
    status: str = IngestRunStatus.RUNNING.value
    files_scanned: int = 0
    files_ingested: int = 0
    files_quarantined: int = 0
    chats_ingested: int = 0
    turns_ingested: int = 0
    quarantined_files: list[dict] = field(default_factory=list)
    skipped_files: list[dict] = field(default_factory=list)
    failed_conversations: list[dict] = field(default_factory=list)
    report_path: Optional[str] = None

    @property
    def counts(self) -> IngestRunCounts:
        return IngestRunCounts(
            files_scanned=self.files_scanned,
            files_ingested=self.files_ingested,
            files_quarantined=self.files_quarantined,
            chats_ingested=self.chats_ingested,
            turns_ingested=self.turns_ingested,
        )

    def to_dict(self) -> dict:
        return asdict(self)


class UniverseIngestService:
    """
    Ingest normalized export files from an intake directory.

    Args:
        session_factory: Returns a context manager yielding a session that
            commits on exit (defaults to ``db_session``)
        policy: Intake policy (defaults to the configured limits)
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        policy: Optional[IntakePolicy] = None,
        file_patterns: Sequence[str] = DEFAULT_FILE_PATTERNS,
    ):
        if session_factory is None:
            from chatuniverse.db.connection import db_session

            session_factory = db_session
        self.session_factory = session_factory
        self.policy = policy or IntakePolicy()
        self.file_patterns = tuple(file_patterns)

    def run(
        self,
        root_dir: Optional[Path | str] = None,
        save: bool = False,
        limit: Optional[int] = None,
        report_dir: Optional[Path | str] = None,
    ) -> IngestReport:
        """
        Ingest every normalized export file under ``root_dir``.

        Args:
            root_dir: Intake directory (defaults to ``settings.intake_directory``)
            save: Store conversations; otherwise only count them (dry run)
            limit: Maximum number of files to scan
            report_dir: Where to write the JSON report when saving

        Returns:
            IngestReport for the run
        """
        source_root = Path(root_dir or settings.intake_directory).resolve()
        report_root = Path(report_dir or settings.intake_report_directory).resolve()
        limit = limit if limit is not None else settings.intake_file_limit
        mode = "save" if save else "dry-run"

        with self.session_factory() as session:
            run_id = IndexingStore(session).create_ingest_run(
                str(source_root), {"mode": mode}
            )
        logger.info(f"Started ingest run {run_id} ({mode}) over {source_root}")

        report = IngestReport(
            run_id=str(run_id), source_root=str(source_root), mode=mode
        )
        files = self._scan(source_root)[:limit]
        report.files_scanned = len(files)

        for file_path in files:
            self._ingest_file(file_path, source_root, save, report)

        report.status = (
            IngestRunStatus.FAILED.value
            if report.failed_conversations
            else IngestRunStatus.COMPLETED.value
        )

        if save:
            report_root.mkdir(parents=True, exist_ok=True)
            report_path = report_root / f"universe-ingest-{run_id}.json"
            report.report_path = str(report_path)
            report_path.write_text(
                json.dumps(report.to_dict(), indent=2, default=str) + "\n",
                encoding="utf-8",
            )

        with self.session_factory() as session:
            IndexingStore(session).complete_ingest_run(
                run_id,
                report.status,
                report.counts,
                policy_report_path=report.report_path,
                metadata={
                    "mode": mode,
                    "quarantinedFiles": len(report.quarantined_files),
                    "skippedFiles": len(report.skipped_files),
                    "failedConversations": len(report.failed_conversations),
                },
            )

        logger.info(
            f"Ingest run {run_id} {report.status}: "
            f"{report.files_ingested}/{report.files_scanned} files, "
            f"{report.chats_ingested} chats, {report.turns_ingested} turns, "
            f"{report.files_quarantined} quarantined"
        )
        return report

    def _scan(self, source_root: Path) -> list[Path]:
        if not source_root.is_dir():
            logger.warning(f"Intake directory does not exist: {source_root}")
            return []
        found = {
            path
            for pattern in self.file_patterns
            for path in source_root.rglob(pattern)
            if path.is_file()
        }
        return sorted(found, key=lambda path: path.relative_to(source_root).as_posix())

    def _ingest_file(
        self, file_path: Path, source_root: Path, save: bool, report: IngestReport
    ) -> None:
        relative_path = file_path.relative_to(source_root).as_posix()

        size_bytes = file_path.stat().st_size
        raw_content = None
        # Oversized files are quarantined on size alone and never read
        if size_bytes <= self.policy.max_file_bytes:
            raw_content = file_path.read_text(encoding="utf-8", errors="replace")

        decision = self.policy.evaluate(relative_path, size_bytes, raw_content)
        if decision.quarantined:
            report.files_quarantined += 1
            report.quarantined_files.append(
                {"path": relative_path, "reasons": decision.reasons}
            )
            logger.info(f"Quarantined {relative_path}: {'; '.join(decision.reasons)}")
            return

        try:
            conversations = load_normalized_conversations(file_path, raw_content)
        except NormalizedConversationError as e:
            report.skipped_files.append({"path": relative_path, "reason": str(e)})
            logger.warning(f"Skipping {relative_path}: {e}")
            return

        if not conversations:
            return
        report.files_ingested += 1

        if not save:
            report.chats_ingested += len(conversations)
            report.turns_ingested += sum(
                len(pair_turns(conversation.turns)) for conversation in conversations
            )
            return

        content_hash = calculate_content_hash(raw_content)
        for conversation in conversations:
            prepared = replace(
                conversation,
                turns=pair_turns(conversation.turns),
                metadata={
                    **conversation.metadata,
                    "sourceFileExtension": file_path.suffix,
                    "sourceRelativePath": relative_path,
                    "contentHash": content_hash,
                },
            )
            self._ingest_conversation(prepared, relative_path, report)

    def _ingest_conversation(
        self,
        conversation: NormalizedConversation,
        relative_path: str,
        report: IngestReport,
    ) -> None:
        try:
            with self.session_factory() as session:
                store = IndexingStore(session)
                ingested = store.ingest_normalized_thread(conversation)
        except Exception as e:
            logger.error(
                f"Failed to ingest {conversation.source_path} "
                f"from {relative_path}: {e}",
                exc_info=True,
            )
            report.failed_conversations.append(
                {
                    "path": relative_path,
                    "sourcePath": conversation.source_path,
                    "error": str(e),
                }
            )
            return

        report.chats_ingested += 1
        report.turns_ingested += len(ingested.turns)
