"""Pydantic schemas for PLC export filters and options."""
import ipaddress
import uuid
from datetime import date, datetime, time, timezone
from typing import Literal

from pydantic import BaseModel, ValidationInfo, field_validator, model_validator

from app.models.hierarchy import CellType, EquipmentType

ExportFormat = Literal["csv", "json"]


class ExportFilters(BaseModel):
    """Conjunction of optional predicates; an empty filter set matches every PLC."""

    sites: list[str] | None = None
    site_ids: list[uuid.UUID] | None = None
    cells: list[str] | None = None
    cell_ids: list[uuid.UUID] | None = None
    equipment_ids: list[uuid.UUID] | None = None
    cell_types: list[CellType] | None = None
    equipment_types: list[EquipmentType] | None = None
    manufacturers: list[str] | None = None
    models: list[str] | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    search: str | None = None
    ip_range: str | None = None  # CIDR, e.g. 192.168.1.0/24
    tags: list[str] | None = None

    @field_validator("date_from", "date_to", mode="before")
    @classmethod
    def _whole_days(cls, v, info: ValidationInfo):
        # A bare date covers the whole day: date_from at 00:00, date_to through 23:59:59.999999 UTC.
        if isinstance(v, str) and len(v) == 10:
            try:
                v = date.fromisoformat(v)
            except ValueError:
                return v
        if isinstance(v, date) and not isinstance(v, datetime):
            bound = time.max if info.field_name == "date_to" else time.min
            return datetime.combine(v, bound, tzinfo=timezone.utc)
        return v

    @field_validator("search")
    @classmethod
    def _blank_search_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("ip_range")
    @classmethod
    def _valid_cidr(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        try:
            return str(ipaddress.ip_network(v.strip(), strict=False))
        except ValueError:
            raise ValueError("IP range must be in CIDR notation (e.g., 192.168.1.0/24)")

    @model_validator(mode="after")
    def _date_order(self) -> "ExportFilters":
        if self.date_from and self.date_to and self.date_to < self.date_from:
            raise ValueError("date_to must not be earlier than date_from")
        return self


class ExportOptions(BaseModel):
    format: ExportFormat = "csv"
    include_hierarchy: bool = True
    include_tags: bool = False
    include_audit_info: bool = False
