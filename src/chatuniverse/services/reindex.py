"""
Asynchronous full reindex of the chat universe.

``start()`` records a ``running`` ingest run and rebuilds the lexical index on
a background thread with its own database session; the run ends as
``completed`` (with the reindex counts in its metadata) or ``failed`` (with
the error). ``status()`` looks a run up by id.
"""

import logging
import threading
import uuid
from contextlib import AbstractContextManager
from typing import Callable, Optional

from sqlalchemy.orm import Session

from chatuniverse.exceptions import IngestRunNotFoundError
from chatuniverse.indexing.store import IndexingStore
from chatuniverse.models.db import IngestRunStatus
from chatuniverse.models.records import IngestRunCounts, IngestRunRecord

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]

REINDEX_SOURCE_ROOT = "universe-reindex"


class ReindexService:
    """
    Trigger and track background reindex runs.

    Args:
        session_factory: Session context manager for run bookkeeping
            (defaults to ``db_session``)
        background_session_factory: Session context manager used by the
            worker thread (defaults to ``background_session``)
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        background_session_factory: Optional[SessionFactory] = None,
    ):
        if session_factory is None or background_session_factory is None:
            from chatuniverse.db.connection import background_session, db_session

            session_factory = session_factory or db_session
            background_session_factory = (
                background_session_factory or background_session
            )
        self.session_factory = session_factory
        self.background_session_factory = background_session_factory
        self._threads: dict[uuid.UUID, threading.Thread] = {}
        self._lock = threading.Lock()

    def start(self) -> uuid.UUID:
        """
        Start a full reindex in the background.

        Returns:
            Id of the ingest run tracking the reindex
        """
        with self.session_factory() as session:
            run_id = IndexingStore(session).create_ingest_run(
                REINDEX_SOURCE_ROOT, {"mode": "reindex"}
            )

        thread = threading.Thread(
            target=self._run,
            args=(run_id,),
            daemon=True,
            name=f"universe-reindex-{run_id}",
        )
        with self._lock:
            self._threads[run_id] = thread
        thread.start()
        logger.info(f"Started universe reindex run {run_id}")
        return run_id

    def join(self, run_id: uuid.UUID, timeout: Optional[float] = None) -> bool:
        """
        Wait for a reindex started by this service to finish.

        Returns:
            True if the run is no longer in progress
        """
        with self._lock:
            thread = self._threads.get(run_id)
        if thread is None:
            return True
        thread.join(timeout=timeout)
        return not thread.is_alive()

    def status(self, run_id: uuid.UUID | str) -> IngestRunRecord:
        """
        Look up a reindex (or ingest) run.

        Raises:
            IngestRunNotFoundError: If no such run exists
        """
        with self.session_factory() as session:
            run = IndexingStore(session).get_ingest_run(run_id)
        if run is None:
            raise IngestRunNotFoundError(str(run_id))
        return run

    def _run(self, run_id: uuid.UUID) -> None:
        try:
            with self.background_session_factory() as session:
                result = IndexingStore(session).reindex_universe()
        except Exception as e:
            logger.error(f"Universe reindex run {run_id} failed: {e}", exc_info=True)
            self._complete(
                run_id,
                IngestRunStatus.FAILED,
                IngestRunCounts(),
                {"mode": "reindex", "error": str(e)},
            )
            return

        self._complete(
            run_id,
            IngestRunStatus.COMPLETED,
            IngestRunCounts(
                chats_ingested=result.threads_indexed,
                turns_ingested=result.turns_indexed,
            ),
            {"mode": "reindex", "result": result.model_dump()},
        )
        logger.info(f"Universe reindex run {run_id} completed")

    def _complete(
        self,
        run_id: uuid.UUID,
        status: IngestRunStatus,
        counts: IngestRunCounts,
        metadata: dict,
    ) -> None:
        try:
            with self.background_session_factory() as session:
                IndexingStore(session).complete_ingest_run(
                    run_id, status, counts, metadata=metadata
                )
        except Exception as e:
            logger.error(
                f"Could not record outcome of reindex run {run_id}: {e}",
                exc_info=True,
            )
        finally:
            with self._lock:
                self._threads.pop(run_id, None)
