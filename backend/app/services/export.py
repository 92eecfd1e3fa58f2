"""PLC export: one filtered query over the hierarchy, serialized to CSV or JSON.

Read-only; nothing here writes to the session.
"""
import csv
import io
import ipaddress
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import Select, or_, select
from sqlalchemy.orm import Session, selectinload

from app.models.hierarchy import Cell, Equipment, Site
from app.models.plc import PLC, Tag
from app.schemas.exports import ExportFilters, ExportOptions

logger = logging.getLogger(__name__)

HIERARCHY_COLUMNS = ("site_name", "cell_name", "cell_type", "equipment_name", "equipment_type")
PLC_COLUMNS = ("tag_id", "description", "make", "model", "ip_address", "firmware_version")
AUDIT_COLUMNS = ("created_by", "updated_by", "created_at", "updated_at")

MEDIA_TYPES = {
    "csv": "text/csv",
    "json": "application/json",
}


@dataclass(frozen=True)
class ExportRecord:
    plc: PLC
    equipment: Equipment
    cell: Cell
    site: Site


@dataclass(frozen=True)
class ExportPayload:
    content: bytes
    media_type: str
    filename: str
    count: int


# ─── Query builder ───

def build_export_query(filters: ExportFilters) -> Select:
    """Every present filter narrows the result; lists match by membership."""
    stmt = (
        select(PLC, Equipment, Cell, Site)
        .join(Equipment, PLC.equipment_id == Equipment.id)
        .join(Cell, Equipment.cell_id == Cell.id)
        .join(Site, Cell.site_id == Site.id)
        .where(PLC.deleted_at.is_(None))
        .options(selectinload(PLC.tags))
        .order_by(Site.name, Cell.name, Equipment.name, PLC.tag_id)
    )

    if filters.sites:
        stmt = stmt.where(Site.name.in_(filters.sites))
    if filters.site_ids:
        stmt = stmt.where(Site.id.in_(filters.site_ids))
    if filters.cells:
        stmt = stmt.where(Cell.name.in_(filters.cells))
    if filters.cell_ids:
        stmt = stmt.where(Cell.id.in_(filters.cell_ids))
    if filters.equipment_ids:
        stmt = stmt.where(Equipment.id.in_(filters.equipment_ids))
    if filters.cell_types:
        stmt = stmt.where(Cell.cell_type.in_([t.value for t in filters.cell_types]))
    if filters.equipment_types:
        stmt = stmt.where(Equipment.equipment_type.in_([t.value for t in filters.equipment_types]))
    if filters.manufacturers:
        stmt = stmt.where(PLC.make.in_(filters.manufacturers))
    if filters.models:
        stmt = stmt.where(PLC.model.in_(filters.models))
    if filters.date_from:
        stmt = stmt.where(PLC.created_at >= filters.date_from)
    if filters.date_to:
        stmt = stmt.where(PLC.created_at <= filters.date_to)
    if filters.search:
        term = filters.search
        stmt = stmt.where(or_(
            PLC.description.icontains(term, autoescape=True),
            PLC.make.icontains(term, autoescape=True),
            PLC.model.icontains(term, autoescape=True),
            PLC.tag_id.icontains(term, autoescape=True),
        ))
    if filters.tags:
        stmt = stmt.where(PLC.tags.any(Tag.name.in_(filters.tags)))

    return stmt


def fetch_export_records(db: Session, filters: ExportFilters) -> list[ExportRecord]:
    rows = db.execute(build_export_query(filters)).all()
    records = [ExportRecord(*row) for row in rows]

    # ip_address is stored as text; containment is evaluated in Python.
    if filters.ip_range:
        network = ipaddress.ip_network(filters.ip_range)
        records = [r for r in records if _in_network(r.plc.ip_address, network)]
    return records


def _in_network(address: str | None, network) -> bool:
    if not address:
        return False
    try:
        return ipaddress.ip_address(address) in network
    except ValueError:
        return False


# ─── Serializer ───

def columns_for(options: ExportOptions) -> list[str]:
    columns: list[str] = []
    if options.include_hierarchy:
        columns.extend(HIERARCHY_COLUMNS)
    columns.extend(PLC_COLUMNS)
    if options.include_tags:
        columns.append("tags")
    if options.include_audit_info:
        columns.extend(AUDIT_COLUMNS)
    return columns


def _record_dict(record: ExportRecord, columns: list[str]) -> dict:
    plc = record.plc
    values = {
        "site_name": record.site.name,
        "cell_name": record.cell.name,
        "cell_type": record.cell.cell_type,
        "equipment_name": record.equipment.name,
        "equipment_type": record.equipment.equipment_type,
        "tag_id": plc.tag_id,
        "description": plc.description,
        "make": plc.make,
        "model": plc.model,
        "ip_address": plc.ip_address,
        "firmware_version": plc.firmware_version,
        "tags": plc.tag_names,
        "created_by": str(plc.created_by),
        "updated_by": str(plc.updated_by),
        "created_at": plc.created_at.isoformat() if plc.created_at else None,
        "updated_at": plc.updated_at.isoformat() if plc.updated_at else None,
    }
    return {c: values[c] for c in columns}


def serialize_csv(records: list[ExportRecord], options: ExportOptions) -> bytes:
    columns = columns_for(options)
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=columns, lineterminator="\n")
    writer.writeheader()
    for record in records:
        row = _record_dict(record, columns)
        if "tags" in row:
            row["tags"] = ",".join(row["tags"])
        writer.writerow({k: "" if v is None else v for k, v in row.items()})
    return buf.getvalue().encode("utf-8")


def serialize_json(records: list[ExportRecord], options: ExportOptions) -> bytes:
    columns = columns_for(options)
    return json.dumps([_record_dict(r, columns) for r in records], indent=2).encode("utf-8")


def export_filename(fmt: str, now: datetime | None = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    return f"plc_export_{stamp}.{fmt}"


def export_plcs(db: Session, filters: ExportFilters, options: ExportOptions) -> ExportPayload:
    records = fetch_export_records(db, filters)
    if options.format == "json":
        content = serialize_json(records, options)
    else:
        content = serialize_csv(records, options)
    logger.info("Exported %d PLCs as %s", len(records), options.format)
    return ExportPayload(
        content=content,
        media_type=MEDIA_TYPES[options.format],
        filename=export_filename(options.format),
        count=len(records),
    )
