"""Bulk PLC import orchestrator.

    Validating ─┬─ validate_only ──────────────▶ ValidationPreview
                ├─ errors ─────────────────────▶ failed
                ├─ total_rows > threshold ─────▶ queued (BackgroundJob)
                └─ SyncProcessing ─┬─ no errors ▶ completed (commit)
                                   └─ errors ───▶ failed (rollback)

All row writes of one import share the caller's Session and are committed
or rolled back together. The worker runs the same SyncProcessing stage for
queued jobs.
"""
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.import_history import BackgroundJob, ImportHistory, ImportStatus, JobStatus
from app.schemas.imports import (
    CreatedEntityCounts,
    FieldDiagnostic,
    ImportOptions,
    ImportResult,
    ValidationPreview,
)
from app.services import audit as audit_svc
from app.services.background import BackgroundJobAdapter, ProgressCallback
from app.services.csv_parser import RawRow, decode
from app.services.duplicates import Action, create_plc, resolve_duplicate, update_plc
from app.services.errors import ImportNotFoundError, ImportTimeoutError
from app.services.hierarchy import HierarchyKey, HierarchyResolver
from app.services.row_validation import parse_row, validate_file

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _RunState:
    """Accumulated effects of SyncProcessing for one import."""

    resolver: HierarchyResolver
    processed: int = 0
    skipped: int = 0
    diagnostics: list[FieldDiagnostic] = field(default_factory=list)
    created_plcs: list[uuid.UUID] = field(default_factory=list)
    updated_plcs: list[uuid.UUID] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(d.severity == "error" for d in self.diagnostics)

    def counts(self) -> CreatedEntityCounts:
        created = self.resolver.created
        return CreatedEntityCounts(
            sites=len(created.sites),
            cells=len(created.cells),
            equipment=len(created.equipment),
            plcs=len(self.created_plcs),
        )

    def entity_ids(self) -> dict[str, list[str]]:
        created = self.resolver.created
        return {
            "sites": [str(i) for i in created.sites],
            "cells": [str(i) for i in created.cells],
            "equipment": [str(i) for i in created.equipment],
            "plcs": [str(i) for i in self.created_plcs],
            "updated_plcs": [str(i) for i in self.updated_plcs],
        }


class ImportOrchestrator:
    """Runs one import per call against an open Session.

    Args:
        db: Session owned by the caller (request scope or worker task).
        queue: Adapter used when a file exceeds the background threshold.
        clock: Monotonic clock, replaceable in tests for timeout checks.
    """

    def __init__(
        self,
        db: Session,
        queue: BackgroundJobAdapter | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.queue = queue
        self._clock = clock

    # ── Entry points ──────────────────────────────────────────────────

    def preview(self, raw: str | bytes) -> ValidationPreview:
        return validate_file(raw, settings.IMPORT_PREVIEW_ROWS).to_preview()

    def run(
        self,
        raw: str | bytes,
        filename: str,
        options: ImportOptions,
        user_id: uuid.UUID,
        user_email: str | None = None,
    ) -> ImportResult | ValidationPreview:
        """Validate, then queue or process the file.

        Raises MalformedInputError before any row is examined, ImportTimeoutError
        when ``options.timeout_seconds`` passes mid-transaction. Persistence
        faults are re-raised after rollback.
        """
        started = self._clock()
        validation = validate_file(raw, settings.IMPORT_PREVIEW_ROWS)

        if options.validate_only:
            return validation.to_preview()

        if not validation.is_valid:
            history = self._new_history(filename, options, user_id, validation.total_rows)
            self._finish_history(history, ImportStatus.failed, validation.diagnostics, started)
            self.db.add(history)
            self.db.commit()
            logger.info(
                "Import %s rejected: %d validation errors in %s",
                history.id, len(validation.errors), filename,
            )
            return self._result(history, validation.diagnostics)

        if validation.total_rows > options.background_threshold:
            return self._enqueue(decode(raw), filename, options, user_id, validation.total_rows, started)

        return self._process_sync(validation.rows, filename, options, user_id, user_email, started)

    def process_job(
        self, job_id: uuid.UUID, progress: ProgressCallback | None = None
    ) -> ImportResult | None:
        """Worker side of a queued import. Returns None when the job is no longer queued."""
        # Only a job still queued in the database is claimed; a committed
        # cancel leaves nothing to claim.
        claimed = self.db.execute(
            update(BackgroundJob)
            .where(BackgroundJob.id == job_id, BackgroundJob.status == JobStatus.queued.value)
            .values(status=JobStatus.processing.value, started_at=_utcnow())
            .execution_options(synchronize_session=False)
        ).rowcount
        self.db.commit()

        job = self.db.get(BackgroundJob, job_id, populate_existing=True)
        if job is None:
            raise ImportNotFoundError(f"Background job {job_id} not found")
        if not claimed:
            logger.info("Job %s is %s; not processing", job_id, job.status)
            return None

        history = job.import_history

        options = ImportOptions.model_validate(job.options)
        started = self._clock()
        logger.info("Job %s started: import %s, %d rows", job.id, history.id, job.total_rows)

        try:
            validation = validate_file(job.payload)
            if not validation.is_valid:
                state, diagnostics = None, validation.diagnostics
            else:
                state = self._apply_rows(
                    validation.rows, options, history.user_id, self._deadline(options, started),
                    progress,
                )
                diagnostics = state.diagnostics

            if state is None or state.has_errors:
                self.db.rollback()
                self._finish_history(history, ImportStatus.failed, diagnostics, started)
                job.status = JobStatus.failed.value
                job.error = f"{sum(d.severity == 'error' for d in diagnostics)} row errors"
            else:
                self._finish_history(history, ImportStatus.completed, diagnostics, started, state)
                job.status = JobStatus.completed.value
                job.progress = 100
                job.processed_rows = validation.total_rows
                audit_svc.record_import_event(
                    self.db, audit_svc.ImportEvent.completed, history, history.user_id,
                    after=history.created_entities,
                )
            job.finished_at = _utcnow()
            self.db.commit()
        except Exception as exc:
            logger.error("Job %s failed", job_id, exc_info=True)
            self.db.rollback()
            self._finish_history(history, ImportStatus.failed, [_general_error(str(exc))], started)
            job.status = JobStatus.failed.value
            job.error = str(exc)
            job.finished_at = _utcnow()
            self.db.commit()
            raise

        logger.info("Job %s finished: import %s %s", job.id, history.id, history.status)
        return self._result(history, diagnostics)

    # ── Stages ────────────────────────────────────────────────────────

    def _enqueue(
        self,
        payload: str,
        filename: str,
        options: ImportOptions,
        user_id: uuid.UUID,
        total_rows: int,
        started: float,
    ) -> ImportResult:
        if self.queue is None:
            raise RuntimeError("No background job adapter configured for large imports")

        history = self._new_history(filename, options, user_id, total_rows)
        history.status = ImportStatus.processing.value
        history.is_background = True
        job = BackgroundJob(
            import_history=history,
            status=JobStatus.queued.value,
            total_rows=total_rows,
            payload=payload,
            options=options.model_dump(mode="json"),
        )
        self.db.add_all([history, job])
        self.db.commit()

        try:
            job.celery_task_id = self.queue.enqueue(job)
        except Exception:
            logger.error("Could not enqueue import %s", history.id, exc_info=True)
            history.status = ImportStatus.failed.value
            history.completed_at = _utcnow()
            job.status = JobStatus.failed.value
            job.error = "Could not enqueue background job"
            self.db.commit()
            raise
        self.db.commit()

        logger.info(
            "Import %s queued: %d rows exceed threshold %d",
            history.id, total_rows, options.background_threshold,
        )
        return ImportResult(
            success=True,
            import_id=history.id,
            status=history.status,
            total_rows=total_rows,
            duration_ms=self._elapsed_ms(started),
            is_background=True,
        )

    def _process_sync(
        self,
        rows: list[RawRow],
        filename: str,
        options: ImportOptions,
        user_id: uuid.UUID,
        user_email: str | None,
        started: float,
    ) -> ImportResult:
        logger.info("Import of %s started: %d rows, user %s", filename, len(rows), user_id)
        done = False
        try:
            state = self._apply_rows(rows, options, user_id, self._deadline(options, started))
            history = self._new_history(filename, options, user_id, len(rows))

            if state.has_errors:
                self.db.rollback()
                self._finish_history(history, ImportStatus.failed, state.diagnostics, started)
                self.db.add(history)
                self.db.commit()
                done = True
                logger.info(
                    "Import %s rolled back: %d errors", history.id,
                    sum(d.severity == "error" for d in state.diagnostics),
                )
                return self._result(history, state.diagnostics)

            self._finish_history(history, ImportStatus.completed, state.diagnostics, started, state)
            self.db.add(history)
            self.db.flush()
            audit_svc.record_import_event(
                self.db, audit_svc.ImportEvent.completed, history, user_id, user_email,
                after=history.created_entities,
            )
            self.db.commit()
            done = True
            logger.info(
                "Import %s completed: %d processed, %d skipped, created %s",
                history.id, state.processed, state.skipped, history.created_entities,
            )
            return self._result(history, state.diagnostics)

        except ImportTimeoutError as exc:
            self.db.rollback()
            history = self._new_history(filename, options, user_id, len(rows))
            self._finish_history(history, ImportStatus.failed, [_general_error(str(exc))], started)
            self.db.add(history)
            self.db.commit()
            done = True
            logger.warning("Import %s timed out and was rolled back", history.id)
            raise
        except Exception:
            logger.error("Import of %s aborted by a persistence fault", filename, exc_info=True)
            raise
        finally:
            if not done:
                self.db.rollback()

    def _apply_rows(
        self,
        rows: list[RawRow],
        options: ImportOptions,
        user_id: uuid.UUID,
        deadline: float | None,
        progress: ProgressCallback | None = None,
    ) -> _RunState:
        state = _RunState(resolver=HierarchyResolver(self.db, user_id, options.create_missing))
        # Under skip the scan continues past failing rows; other policies
        # stop at the first error.
        abort_on_error = options.duplicate_handling != "skip"
        total = len(rows)

        for index, raw in enumerate(rows, start=1):
            if deadline is not None and self._clock() > deadline:
                raise ImportTimeoutError(
                    f"Import exceeded {options.timeout_seconds}s before row {raw.row_number}"
                )
            if not self._apply_row(raw, options, user_id, state) and abort_on_error:
                break
            if progress is not None and index % settings.IMPORT_PROGRESS_INTERVAL == 0:
                progress(index, total)

        return state

    def _apply_row(
        self, raw: RawRow, options: ImportOptions, user_id: uuid.UUID, state: _RunState
    ) -> bool:
        """Persist one row. Returns False when the row produced an error."""
        row = parse_row(raw)
        resolution = state.resolver.resolve(
            HierarchyKey(row.site_name, row.cell_name, row.equipment_name),
            raw.row_number,
            cell_type=row.cell_type,
            equipment_type=row.equipment_type,
        )
        if not resolution.ok:
            state.diagnostics.append(resolution.diagnostic)
            state.skipped += 1
            logger.debug("Row %d: %s", raw.row_number, resolution.diagnostic.message)
            return False

        decision = resolve_duplicate(self.db, row, raw.row_number, options.duplicate_handling)
        state.diagnostics.extend(decision.diagnostics)

        if decision.action is Action.conflict:
            state.skipped += 1
            return False
        if decision.action is Action.skip:
            state.skipped += 1
            logger.debug("Row %d: duplicate %s skipped", raw.row_number, row.tag_id)
            return True

        if decision.action is Action.update:
            update_plc(
                self.db, decision.target, row, resolution.equipment_id, user_id,
                options.duplicate_handling,
            )
            state.updated_plcs.append(decision.target.id)
        else:
            plc = create_plc(self.db, row, resolution.equipment_id, user_id)
            state.created_plcs.append(plc.id)
        state.processed += 1
        return True

    # ── History / result helpers ──────────────────────────────────────

    def _new_history(
        self, filename: str, options: ImportOptions, user_id: uuid.UUID, total_rows: int
    ) -> ImportHistory:
        return ImportHistory(
            id=uuid.uuid4(),
            user_id=user_id,
            filename=filename,
            status=ImportStatus.pending.value,
            total_rows=total_rows,
            is_background=False,
            options=options.model_dump(mode="json"),
            started_at=_utcnow(),
        )

    def _finish_history(
        self,
        history: ImportHistory,
        status: ImportStatus,
        diagnostics: list[FieldDiagnostic],
        started: float,
        state: _RunState | None = None,
    ) -> None:
        history.status = status.value
        history.errors = [d.model_dump() for d in diagnostics if d.severity == "error"]
        history.warnings = [d.model_dump() for d in diagnostics if d.severity == "warning"]
        if state is not None and status is ImportStatus.completed:
            history.successful_rows = state.processed
            history.failed_rows = state.skipped
            history.created_entities = state.counts().model_dump()
            history.created_entity_ids = state.entity_ids()
        else:
            # Nothing from a failed import survives.
            history.successful_rows = 0
            history.failed_rows = history.total_rows
            history.created_entities = CreatedEntityCounts().model_dump()
            history.created_entity_ids = None
        history.duration_ms = self._elapsed_ms(started)
        history.completed_at = _utcnow()

    def _result(self, history: ImportHistory, diagnostics: list[FieldDiagnostic]) -> ImportResult:
        completed = history.status == ImportStatus.completed.value
        return ImportResult(
            success=completed,
            import_id=history.id,
            status=history.status,
            total_rows=history.total_rows,
            processed_rows=history.successful_rows,
            skipped_rows=history.failed_rows,
            errors=[d for d in diagnostics if d.severity == "error"],
            warnings=[d for d in diagnostics if d.severity == "warning"],
            created_entities=CreatedEntityCounts(**(history.created_entities or {})),
            duration_ms=history.duration_ms or 0,
            is_background=history.is_background,
        )

    def _deadline(self, options: ImportOptions, started: float) -> float | None:
        if options.timeout_seconds is None:
            return None
        return started + options.timeout_seconds

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)


def _general_error(message: str) -> FieldDiagnostic:
    return FieldDiagnostic(row=0, column="general", message=message, severity="error")
