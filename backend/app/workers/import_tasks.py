"""Celery task that processes queued bulk imports."""
import logging
import uuid

from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ─── Sync DB session factory (Celery workers are synchronous) ───

def _get_sync_session():
    """Return a sync SQLAlchemy session. Caller must close it."""
    from app.db.session import SessionLocal

    return SessionLocal()


# ─── Main task ───

@celery_app.task(bind=True, name="imports.process_bulk_import")
def process_bulk_import(self, job_id: str) -> dict:
    """Run the import pipeline for one queued BackgroundJob.

    1. Skip if the job was cancelled (or already picked up)
    2. Apply every row in one transaction, reporting progress
    3. Write the terminal job and import-history state
    """
    from app.services.background import CeleryImportQueue
    from app.services.importer import ImportOrchestrator

    logger.info("process_bulk_import started: job %s", job_id)
    job_uuid = uuid.UUID(job_id)
    db = _get_sync_session()
    try:
        reporter = CeleryImportQueue().progress_reporter(job_uuid)
        result = ImportOrchestrator(db).process_job(job_uuid, progress=reporter)
        if result is None:
            return {"job_id": job_id, "status": "skipped"}
        return {
            "job_id": job_id,
            "import_id": str(result.import_id),
            "status": result.status,
            "processed_rows": result.processed_rows,
            "skipped_rows": result.skipped_rows,
        }
    finally:
        db.close()
