"""Background job adapter used by the import orchestrator for large files.

The orchestrator only sees the BackgroundJobAdapter protocol; the Celery
implementation owns its broker connection and writes progress through its
own short-lived sessions so polling clients see it while the import
transaction is still open.
"""
import logging
import uuid
from typing import Callable, Protocol

from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from app.models.import_history import BackgroundJob

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class BackgroundJobAdapter(Protocol):
    def enqueue(self, job: BackgroundJob) -> str | None:
        """Hand a persisted, committed job to the worker pool; returns the task id."""
        ...

    def progress_reporter(self, job_id: uuid.UUID) -> ProgressCallback:
        ...


class CeleryImportQueue:
    """Celery-backed adapter: one task per queued import."""

    task_name = "imports.process_bulk_import"

    def __init__(self, session_factory: sessionmaker | None = None):
        if session_factory is None:
            from app.db.session import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory

    def enqueue(self, job: BackgroundJob) -> str | None:
        from app.workers.celery_app import celery_app

        result = celery_app.send_task(self.task_name, args=[str(job.id)])
        logger.info("Queued import %s as job %s (task %s)", job.import_id, job.id, result.id)
        return result.id

    def progress_reporter(self, job_id: uuid.UUID) -> ProgressCallback:
        def report(processed_rows: int, total_rows: int) -> None:
            progress = int(processed_rows * 100 / total_rows) if total_rows else 100
            with self._session_factory() as session:
                _write_progress(session, job_id, processed_rows, progress)
                session.commit()
            logger.info("Job %s: %d/%d rows (%d%%)", job_id, processed_rows, total_rows, progress)

        return report


def _write_progress(session: Session, job_id: uuid.UUID, processed_rows: int, progress: int) -> None:
    session.execute(
        update(BackgroundJob)
        .where(BackgroundJob.id == job_id)
        .values(processed_rows=processed_rows, progress=min(progress, 99))
    )
