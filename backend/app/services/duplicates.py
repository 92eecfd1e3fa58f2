"""Duplicate resolution for imported PLC rows.

A row collides with an existing (non-deleted) PLC when its tag_id or its
ip_address is already taken. Both keys are checked independently and either
one triggers the configured policy:

  skip       existing record left untouched, row not persisted, warning emitted
  overwrite  every mutable field replaced by the row (blank optionals clear)
  merge      only non-blank row values replace; tag sets are unioned
"""
import enum
import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.plc import PLC, Tag
from app.schemas.imports import DuplicateHandling, FieldDiagnostic
from app.services.row_validation import ImportRow

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    create = "create"
    update = "update"
    skip = "skip"
    conflict = "conflict"


@dataclass
class DuplicateDecision:
    action: Action
    target: PLC | None = None
    diagnostics: list[FieldDiagnostic] = field(default_factory=list)


# ─── Lookups ───

def find_by_tag(db: Session, tag_id: str) -> PLC | None:
    return db.execute(
        select(PLC).where(PLC.tag_id == tag_id, PLC.deleted_at.is_(None))
    ).scalars().first()


def find_by_ip(db: Session, ip_address: str | None) -> PLC | None:
    if not ip_address:
        return None
    return db.execute(
        select(PLC).where(PLC.ip_address == ip_address, PLC.deleted_at.is_(None))
    ).scalars().first()


# ─── Decision ───

def resolve_duplicate(
    db: Session,
    row: ImportRow,
    row_number: int,
    strategy: DuplicateHandling,
) -> DuplicateDecision:
    """Decide what to do with one validated row.

    Args:
        db: Session bound to the import transaction.
        row: Validated row.
        row_number: Source line, echoed into diagnostics.
        strategy: skip | overwrite | merge.

    Returns:
        DuplicateDecision. ``conflict`` carries an error diagnostic; the
        caller must not persist the row.
    """
    by_tag = find_by_tag(db, row.tag_id)
    by_ip = find_by_ip(db, row.ip_address)

    if by_tag is None and by_ip is None:
        return DuplicateDecision(Action.create)

    if strategy == "skip":
        diagnostics = []
        if by_tag is not None:
            diagnostics.append(_warning(
                row_number, "tag_id", row.tag_id,
                f"Duplicate tag_id '{row.tag_id}' found, skipping",
            ))
        if by_ip is not None and by_ip is not by_tag:
            diagnostics.append(_warning(
                row_number, "ip_address", row.ip_address,
                f"Duplicate ip_address '{row.ip_address}' found, skipping",
            ))
        return DuplicateDecision(Action.skip, target=by_tag or by_ip, diagnostics=diagnostics)

    # Tag and IP belong to two different records: no update can keep both unique.
    if by_tag is not None and by_ip is not None and by_tag is not by_ip:
        return DuplicateDecision(Action.conflict, target=by_tag, diagnostics=[FieldDiagnostic(
            row=row_number,
            column="ip_address",
            value=row.ip_address,
            message=f"IP address already assigned to tag '{by_ip.tag_id}'",
            severity="error",
        )])

    verb = "overwriting" if strategy == "overwrite" else "merging into"
    if by_tag is not None:
        message = f"Duplicate tag_id '{row.tag_id}' found, {verb} existing record"
        column, value = "tag_id", row.tag_id
    else:
        message = (
            f"Duplicate ip_address '{row.ip_address}' found on tag '{by_ip.tag_id}', "
            f"{verb} existing record"
        )
        column, value = "ip_address", row.ip_address
    return DuplicateDecision(
        Action.update,
        target=by_tag or by_ip,
        diagnostics=[_warning(row_number, column, value, message)],
    )


# ─── Persistence ───

def create_plc(db: Session, row: ImportRow, equipment_id: uuid.UUID, user_id: uuid.UUID) -> PLC:
    plc = PLC(
        equipment_id=equipment_id,
        tag_id=row.tag_id,
        description=row.description,
        make=row.make,
        model=row.model,
        ip_address=row.ip_address,
        firmware_version=row.firmware_version,
        created_by=user_id,
        updated_by=user_id,
    )
    plc.tags = [Tag(name=name) for name in row.tags]
    db.add(plc)
    db.flush()
    return plc


def update_plc(
    db: Session,
    plc: PLC,
    row: ImportRow,
    equipment_id: uuid.UUID,
    user_id: uuid.UUID,
    strategy: DuplicateHandling,
) -> PLC:
    """Apply an overwrite or merge onto an existing record."""
    merge = strategy == "merge"

    plc.equipment_id = equipment_id
    plc.tag_id = row.tag_id
    plc.description = row.description
    plc.make = row.make
    plc.model = row.model
    if not merge or row.ip_address is not None:
        plc.ip_address = row.ip_address
    if not merge or row.firmware_version is not None:
        plc.firmware_version = row.firmware_version
    plc.updated_by = user_id

    wanted = list(row.tags)
    if merge:
        wanted = plc.tag_names + [n for n in row.tags if n not in plc.tag_names]
    _sync_tags(plc, wanted)

    db.flush()
    logger.debug("%s PLC %s from import row", "Merged" if merge else "Overwrote", plc.id)
    return plc


def _sync_tags(plc: PLC, names: list[str]) -> None:
    # Existing Tag rows are kept so the (plc_id, name) constraint never sees a re-insert.
    for tag in list(plc.tags):
        if tag.name not in names:
            plc.tags.remove(tag)
    present = {t.name for t in plc.tags}
    for name in names:
        if name not in present:
            plc.tags.append(Tag(name=name))
            present.add(name)


def _warning(row: int, column: str, value: str | None, message: str) -> FieldDiagnostic:
    return FieldDiagnostic(row=row, column=column, value=value, message=message, severity="warning")
