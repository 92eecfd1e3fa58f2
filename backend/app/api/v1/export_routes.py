"""PLC export endpoint."""
import logging
from typing import Annotated

from fastapi import APIRouter, Body, Depends, Query, Response
from sqlalchemy.orm import Session

from app.core.deps import CurrentUser, get_current_user
from app.db.session import get_session
from app.schemas.exports import ExportFilters, ExportFormat, ExportOptions
from app.services import export as export_svc

logger = logging.getLogger(__name__)

router = APIRouter()


# ─── POST /export/plcs ───

@router.post("/plcs", summary="Export PLCs matching the given filters as CSV or JSON")
def export_plcs(
    db: Annotated[Session, Depends(get_session)],
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
    filters: Annotated[ExportFilters, Body()] = ExportFilters(),
    format: ExportFormat = Query(default="csv"),
    include_hierarchy: bool = Query(default=True),
    include_tags: bool = Query(default=False),
    include_audit_info: bool = Query(default=False),
):
    options = ExportOptions(
        format=format,
        include_hierarchy=include_hierarchy,
        include_tags=include_tags,
        include_audit_info=include_audit_info,
    )
    payload = export_svc.export_plcs(db, filters, options)
    logger.info("User %s exported %d PLCs", current_user.id, payload.count)
    return Response(
        content=payload.content,
        media_type=payload.media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{payload.filename}"',
            "X-Total-Count": str(payload.count),
        },
    )
