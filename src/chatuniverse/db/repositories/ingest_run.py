"""
Ingest run repository.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from chatuniverse.db.repositories.base import BaseRepository
from chatuniverse.models.db import IngestRun, IngestRunStatus


class IngestRunRepository(BaseRepository[IngestRun]):
    """Repository for IngestRun model."""

    def __init__(self, session: Session):
        super().__init__(IngestRun, session)

    def start(self, source_root: str, metadata: Optional[dict] = None) -> IngestRun:
        """
        Record a new run in the ``running`` state.

        Args:
            source_root: Directory (or pseudo-root) the run covers
            metadata: Initial run metadata

        Returns:
            Created IngestRun instance
        """
        return self.create(
            id=uuid.uuid4(),
            source_root=source_root,
            status=IngestRunStatus.RUNNING.value,
            started_at=datetime.now(timezone.utc),
            extra_data=dict(metadata or {}),
        )

    def complete(
        self,
        run_id: uuid.UUID,
        status: IngestRunStatus,
        files_scanned: int,
        files_ingested: int,
        files_quarantined: int,
        chats_ingested: int,
        turns_ingested: int,
        policy_report_path: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[IngestRun]:
        """
        Mark a run finished and store its final counts.

        Returns:
            Updated IngestRun instance, or None if the run does not exist
        """
        return self.update(
            run_id,
            status=IngestRunStatus(status).value,
            files_scanned=files_scanned,
            files_ingested=files_ingested,
            files_quarantined=files_quarantined,
            chats_ingested=chats_ingested,
            turns_ingested=turns_ingested,
            policy_report_path=policy_report_path,
            completed_at=datetime.now(timezone.utc),
            extra_data=dict(metadata or {}),
        )

    def get_recent(self, limit: int = 50, offset: int = 0) -> List[IngestRun]:
        """
        Get recent runs, newest first.

        Args:
            limit: Maximum number of records (default: 50)
            offset: Number of records to skip

        Returns:
            List of runs
        """
        return (
            self.session.query(IngestRun)
            .order_by(desc(IngestRun.started_at))
            .offset(offset)
            .limit(limit)
            .all()
        )
