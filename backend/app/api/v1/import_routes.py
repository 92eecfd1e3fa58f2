"""CSV bulk import endpoints for the site → cell → equipment → PLC hierarchy."""
import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.deps import CurrentUser, get_current_user, require_role
from app.core.limiter import limiter
from app.db.session import get_session
from app.schemas.imports import (
    BackgroundJobOut,
    DuplicateHandling,
    ImportHistoryListResponse,
    ImportHistoryOut,
    ImportOptions,
    ImportResult,
    RollbackResult,
    ValidationPreview,
)
from app.services import import_history as history_svc
from app.services.background import BackgroundJobAdapter, CeleryImportQueue
from app.services.csv_parser import check_upload
from app.services.errors import (
    ImportEngineError,
    ImportNotFoundError,
    ImportStateError,
    ImportTimeoutError,
    MalformedInputError,
    UnsupportedUploadError,
    UploadTooLargeError,
)
from app.services.importer import ImportOrchestrator
from app.services.template import TEMPLATE_FILENAME, generate_template

logger = logging.getLogger(__name__)

router = APIRouter()

WRITE_ROLES = ("ADMIN", "DATA_ADMIN")

_STATUS_FOR_ERROR: dict[type[ImportEngineError], int] = {
    MalformedInputError: status.HTTP_400_BAD_REQUEST,
    UnsupportedUploadError: status.HTTP_400_BAD_REQUEST,
    UploadTooLargeError: status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
    ImportNotFoundError: status.HTTP_404_NOT_FOUND,
    ImportStateError: status.HTTP_409_CONFLICT,
    ImportTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
}


# ─── Helpers ───

def get_import_queue() -> BackgroundJobAdapter:
    return CeleryImportQueue()


def to_http_error(exc: ImportEngineError) -> HTTPException:
    code = _STATUS_FOR_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=code, detail=str(exc))


def _read_upload(file: UploadFile) -> bytes:
    # One byte past the limit is enough to know the upload is too large.
    content = file.file.read(settings.IMPORT_MAX_UPLOAD_BYTES + 1)
    try:
        check_upload(file.filename, file.content_type, len(content))
    except ImportEngineError as exc:
        raise to_http_error(exc)
    return content


def _ensure_owner(history_user_id: uuid.UUID, user: CurrentUser) -> None:
    if history_user_id != user.id and user.role != "ADMIN":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only access your own imports.",
        )


# ─── GET /import/template ───

@router.get("/template", summary="Download the CSV import template")
def download_template(
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
):
    return Response(
        content=generate_template(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{TEMPLATE_FILENAME}"'},
    )


# ─── POST /import/preview ───

@router.post("/preview", response_model=ValidationPreview, summary="Validate a CSV without importing it")
def preview_import(
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    file: UploadFile = File(...),
):
    content = _read_upload(file)
    try:
        return ImportOrchestrator(db).preview(content)
    except ImportEngineError as exc:
        raise to_http_error(exc)


# ─── POST /import/plcs ───

@router.post(
    "/plcs",
    response_model=ImportResult | ValidationPreview,
    summary="Bulk import PLCs from CSV (ADMIN, DATA_ADMIN)",
    responses={202: {"model": ImportResult, "description": "Queued for background processing"}},
)
@limiter.limit(settings.IMPORT_RATE_LIMIT)
def import_plcs(
    request: Request,
    db: Annotated[Session, Depends(get_session)],
    queue: Annotated[BackgroundJobAdapter, Depends(get_import_queue)],
    current_user: Annotated[CurrentUser, Depends(require_role(*WRITE_ROLES))],
    file: UploadFile = File(...),
    create_missing: bool = Form(default=False),
    duplicate_handling: DuplicateHandling = Form(default="skip"),
    background_threshold: int = Form(default=settings.IMPORT_BACKGROUND_THRESHOLD),
    validate_only: bool = Form(default=False),
    timeout_seconds: float | None = Form(default=None),
):
    try:
        options = ImportOptions(
            create_missing=create_missing,
            duplicate_handling=duplicate_handling,
            background_threshold=background_threshold,
            validate_only=validate_only,
            timeout_seconds=timeout_seconds,
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False),
        )

    content = _read_upload(file)
    orchestrator = ImportOrchestrator(db, queue=queue)
    try:
        result = orchestrator.run(
            content,
            file.filename or "upload.csv",
            options,
            user_id=current_user.id,
            user_email=current_user.email,
        )
    except ImportEngineError as exc:
        raise to_http_error(exc)

    if isinstance(result, ImportResult) and result.is_background:
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=result.model_dump(mode="json"))
    return result


# ─── GET /import/history ───

@router.get("/history", response_model=ImportHistoryListResponse, summary="List the caller's imports")
def list_import_history(
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1),
    status_filter: str | None = Query(default=None, alias="status"),
):
    return history_svc.list_history(
        db, current_user.id, page=page, page_size=page_size, status=status_filter
    )


# ─── GET /import/{import_id} ───

@router.get("/{import_id}", response_model=ImportHistoryOut, summary="Import detail (owner or ADMIN)")
def get_import(
    import_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
):
    try:
        history = history_svc.get_history(db, import_id)
    except ImportEngineError as exc:
        raise to_http_error(exc)
    _ensure_owner(history.user_id, current_user)
    return history


# ─── GET /import/{import_id}/job ───

@router.get("/{import_id}/job", response_model=BackgroundJobOut, summary="Background job progress")
def get_import_job(
    import_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
):
    try:
        history = history_svc.get_history(db, import_id)
        _ensure_owner(history.user_id, current_user)
        return history_svc.get_job(db, import_id)
    except ImportEngineError as exc:
        raise to_http_error(exc)


# ─── POST /import/{import_id}/cancel ───

@router.post("/{import_id}/cancel", response_model=BackgroundJobOut, summary="Cancel a queued import")
def cancel_import(
    import_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
):
    try:
        history = history_svc.get_history(db, import_id)
        _ensure_owner(history.user_id, current_user)
        return history_svc.cancel_import(db, import_id, current_user.id, current_user.email)
    except ImportEngineError as exc:
        raise to_http_error(exc)


# ─── POST /import/{import_id}/rollback ───

@router.post(
    "/{import_id}/rollback",
    response_model=RollbackResult,
    summary="Undo a completed import (ADMIN, DATA_ADMIN)",
)
def rollback_import(
    import_id: uuid.UUID,
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[CurrentUser, Depends(require_role(*WRITE_ROLES))],
):
    try:
        return history_svc.rollback_import(db, import_id, current_user.id, current_user.email)
    except ImportEngineError as exc:
        raise to_http_error(exc)
