"""Import history queries and post-hoc transitions (cancel, rollback)."""
import logging
import math
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.hierarchy import Cell, Equipment, Site
from app.models.import_history import BackgroundJob, ImportHistory, ImportStatus, JobStatus
from app.models.plc import PLC
from app.schemas.imports import ImportHistoryListResponse, ImportHistoryOut, RollbackResult
from app.services import audit as audit_svc
from app.services.errors import ImportNotFoundError, ImportStateError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ─── Queries ───

def list_history(
    db: Session,
    user_id: uuid.UUID,
    page: int = 1,
    page_size: int = 20,
    status: str | None = None,
) -> ImportHistoryListResponse:
    """Newest first, scoped to one user. page_size is clamped, never rejected."""
    page = max(page, 1)
    page_size = min(max(page_size, 1), settings.IMPORT_HISTORY_MAX_PAGE_SIZE)

    stmt = select(ImportHistory).where(ImportHistory.user_id == user_id)
    if status:
        stmt = stmt.where(ImportHistory.status == status)

    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(
        stmt.order_by(ImportHistory.started_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).scalars().all()

    return ImportHistoryListResponse(
        items=[ImportHistoryOut.model_validate(r) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


def get_history(db: Session, import_id: uuid.UUID) -> ImportHistory:
    history = db.get(ImportHistory, import_id)
    if history is None:
        raise ImportNotFoundError(f"Import {import_id} not found")
    return history


def get_job(db: Session, import_id: uuid.UUID) -> BackgroundJob:
    job = db.execute(
        select(BackgroundJob).where(BackgroundJob.import_id == import_id)
    ).scalar_one_or_none()
    if job is None:
        raise ImportNotFoundError(f"No background job for import {import_id}")
    return job


# ─── Transitions ───

def cancel_import(
    db: Session,
    import_id: uuid.UUID,
    actor_id: uuid.UUID,
    actor_email: str | None = None,
) -> BackgroundJob:
    """Cancel a background import that no worker has picked up yet."""
    job = db.execute(
        select(BackgroundJob).where(BackgroundJob.import_id == import_id).with_for_update()
    ).scalar_one_or_none()
    if job is None:
        raise ImportNotFoundError(f"No background job for import {import_id}")
    if job.status != JobStatus.queued.value:
        raise ImportStateError(f"Only queued imports can be cancelled (job is {job.status})")

    now = _utcnow()
    job.status = JobStatus.cancelled.value
    job.finished_at = now
    history = job.import_history
    history.status = ImportStatus.cancelled.value
    history.completed_at = now

    audit_svc.record_import_event(
        db, audit_svc.ImportEvent.cancelled, history, actor_id, actor_email,
        before={"job_status": JobStatus.queued.value},
    )
    db.commit()
    logger.info("Import %s cancelled by %s", import_id, actor_id)
    return job


def rollback_import(
    db: Session,
    import_id: uuid.UUID,
    actor_id: uuid.UUID,
    actor_email: str | None = None,
) -> RollbackResult:
    """Undo what a completed import created.

    PLCs it created are soft-deleted. Equipment, cells and sites it created
    are deleted once they have no live children left. Records the import
    overwrote in place are not restored; their number is reported.
    """
    history = get_history(db, import_id)
    if history.status != ImportStatus.completed.value:
        raise ImportStateError(f"Only completed imports can be rolled back (import is {history.status})")

    ids = history.created_entity_ids or {}
    result = RollbackResult(
        import_id=import_id,
        status=ImportStatus.rolled_back.value,
        overwritten_not_restored=len(ids.get("updated_plcs", [])),
    )
    now = _utcnow()

    plc_ids = _uuids(ids.get("plcs"))
    if plc_ids:
        plcs = db.execute(
            select(PLC).where(PLC.id.in_(plc_ids), PLC.deleted_at.is_(None))
        ).scalars().all()
        for plc in plcs:
            plc.deleted_at = now
            plc.updated_by = actor_id
        result.plcs_removed = len(plcs)
        db.flush()

    result.equipment_removed = _delete_childless(
        db, Equipment, _uuids(ids.get("equipment")),
        select(PLC.id).where(PLC.equipment_id == Equipment.id, PLC.deleted_at.is_(None)),
    )
    result.cells_removed = _delete_childless(
        db, Cell, _uuids(ids.get("cells")),
        select(Equipment.id).where(Equipment.cell_id == Cell.id),
    )
    result.sites_removed = _delete_childless(
        db, Site, _uuids(ids.get("sites")),
        select(Cell.id).where(Cell.site_id == Site.id),
    )

    history.status = ImportStatus.rolled_back.value
    audit_svc.record_import_event(
        db, audit_svc.ImportEvent.rolled_back, history, actor_id, actor_email,
        before=history.created_entities, after=result.model_dump(mode="json"),
    )
    db.commit()
    logger.info(
        "Import %s rolled back: %d PLCs, %d equipment, %d cells, %d sites removed",
        import_id, result.plcs_removed, result.equipment_removed,
        result.cells_removed, result.sites_removed,
    )
    return result


def _delete_childless(db: Session, model, ids: list[uuid.UUID], children) -> int:
    if not ids:
        return 0
    rows = db.execute(
        select(model).where(model.id.in_(ids), ~children.exists())
    ).scalars().all()
    for row in rows:
        db.delete(row)
    db.flush()
    return len(rows)


def _uuids(values: list[str] | None) -> list[uuid.UUID]:
    return [uuid.UUID(v) for v in values or []]
