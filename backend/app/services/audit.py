"""Audit notifications for import lifecycle events.

Entries are appended to audit_logs inside the caller's transaction, so an
import that rolls back leaves no trace here.
"""
import enum
import json
import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from app.models.audit import AuditLog
from app.models.import_history import ImportHistory

logger = logging.getLogger(__name__)


class ImportEvent(str, enum.Enum):
    completed = "import.completed"
    cancelled = "import.cancelled"
    rolled_back = "import.rolled_back"


_NOTES = {
    ImportEvent.completed: "Imported {rows} of {total} rows from {filename}",
    ImportEvent.cancelled: "Cancelled queued import of {filename}",
    ImportEvent.rolled_back: "Rolled back import of {filename}",
}


def _snapshot(state: Any | None) -> str | None:
    if state is None:
        return None
    return json.dumps(state, default=str, sort_keys=True)


def record_import_event(
    db: Session,
    event: ImportEvent,
    history: ImportHistory,
    actor_id: uuid.UUID | None,
    actor_email: str | None = None,
    before: Any | None = None,
    after: Any | None = None,
) -> AuditLog:
    """Append one audit entry describing ``event`` on ``history``.

    ``before`` / ``after`` are JSON-serialisable snapshots; flushes but does
    not commit.
    """
    notes = _NOTES[event].format(
        rows=history.successful_rows,
        total=history.total_rows,
        filename=history.filename,
    )
    if history.is_background:
        notes += " (background)"

    entry = AuditLog(
        actor_id=actor_id,
        actor_email=actor_email,
        action=event.value,
        entity_type="import",
        entity_id=history.id,
        before_state=_snapshot(before),
        after_state=_snapshot(after),
        notes=notes,
    )
    db.add(entry)
    db.flush()
    logger.debug("Audit: %s import/%s", event.value, history.id)
    return entry
