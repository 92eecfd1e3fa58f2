"""Header and row validation for PLC import files.

Every row is checked against ImportRow; pydantic collects all field errors
instead of stopping at the first, so one row can carry several diagnostics.
Business logic only ever reads rows through a validated ImportRow.
"""
from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, ValidationError, ValidationInfo, field_validator
from pydantic_core import PydanticCustomError

from app.models.hierarchy import CellType, EquipmentType
from app.schemas.imports import FieldDiagnostic, RowErrors, ValidationPreview
from app.services.csv_parser import RawRow, parse_csv

logger = logging.getLogger(__name__)

# ─── File layout ───

IMPORT_COLUMNS = (
    "site_name",
    "cell_name",
    "cell_type",
    "equipment_name",
    "equipment_type",
    "tag_id",
    "description",
    "make",
    "model",
    "ip_address",
    "firmware_version",
    "tags",
)

REQUIRED_HEADERS = (
    "site_name",
    "cell_name",
    "equipment_name",
    "tag_id",
    "description",
    "make",
    "model",
)

MAX_LENGTHS = {
    "site_name": 100,
    "cell_name": 100,
    "equipment_name": 100,
    "description": 1000,
    "make": 100,
    "model": 100,
    "firmware_version": 50,
}
TAG_ID_MIN_LENGTH = 3
TAG_ID_MAX_LENGTH = 100
TAG_NAME_MAX_LENGTH = 100

CELL_TYPES = tuple(t.value for t in CellType)
EQUIPMENT_TYPES = tuple(t.value for t in EquipmentType)


class ImportRow(BaseModel):
    """A validated import line."""

    model_config = ConfigDict(frozen=True, extra="ignore", str_strip_whitespace=True)

    site_name: str
    cell_name: str
    cell_type: str | None = None
    equipment_name: str
    equipment_type: str | None = None
    tag_id: str
    description: str
    make: str
    model: str
    ip_address: str | None = None
    firmware_version: str | None = None
    tags: tuple[str, ...] = ()

    @field_validator("cell_type", "equipment_type", "ip_address", "firmware_version", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("site_name", "cell_name", "equipment_name", "description", "make", "model")
    @classmethod
    def _required_text(cls, v: str, info: ValidationInfo) -> str:
        if not v:
            raise PydanticCustomError("required", "Required field is empty")
        limit = MAX_LENGTHS[info.field_name]
        if len(v) > limit:
            raise PydanticCustomError(
                "too_long", "Must be at most {max_length} characters", {"max_length": limit}
            )
        return v

    @field_validator("tag_id")
    @classmethod
    def _tag_id(cls, v: str) -> str:
        if not v:
            raise PydanticCustomError("required", "Required field is empty")
        if not TAG_ID_MIN_LENGTH <= len(v) <= TAG_ID_MAX_LENGTH:
            raise PydanticCustomError(
                "tag_id_length",
                "Tag ID must be between {min_length} and {max_length} characters",
                {"min_length": TAG_ID_MIN_LENGTH, "max_length": TAG_ID_MAX_LENGTH},
            )
        return v

    @field_validator("cell_type")
    @classmethod
    def _cell_type(cls, v: str | None) -> str | None:
        return _enum_value(v, CELL_TYPES, "cell")

    @field_validator("equipment_type")
    @classmethod
    def _equipment_type(cls, v: str | None) -> str | None:
        return _enum_value(v, EQUIPMENT_TYPES, "equipment")

    @field_validator("ip_address")
    @classmethod
    def _ip_address(cls, v: str | None) -> str | None:
        if v is None:
            return None
        # Zone-scoped IPv6 literals (fe80::1%eth0) are rejected.
        try:
            address = ipaddress.ip_address(v)
        except ValueError:
            address = None
        if address is None or getattr(address, "scope_id", None) is not None or "%" in v:
            raise PydanticCustomError("ip_address", "Invalid IP address format")
        return str(address)

    @field_validator("firmware_version")
    @classmethod
    def _firmware_version(cls, v: str | None) -> str | None:
        if v is not None and len(v) > MAX_LENGTHS["firmware_version"]:
            raise PydanticCustomError(
                "too_long", "Must be at most {max_length} characters",
                {"max_length": MAX_LENGTHS["firmware_version"]},
            )
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, v):
        if v is None:
            return ()
        if isinstance(v, str):
            v = v.split(",")
        names: list[str] = []
        for name in v:
            name = name.strip()
            if not name:
                continue
            if len(name) > TAG_NAME_MAX_LENGTH:
                raise PydanticCustomError(
                    "too_long", "Tag name must be at most {max_length} characters",
                    {"max_length": TAG_NAME_MAX_LENGTH},
                )
            if name not in names:
                names.append(name)
        return tuple(names)


def _enum_value(value: str | None, allowed: tuple[str, ...], label: str) -> str | None:
    if value is None:
        return None
    if value not in allowed:
        raise PydanticCustomError(
            "enum",
            "Invalid {label} type '{value}' (allowed: {allowed})",
            {"label": label, "value": value, "allowed": ", ".join(allowed)},
        )
    return value


# ─── Header validator ───

def validate_headers(headers: list[str]) -> list[str]:
    """Return the required headers absent from the file, in canonical order."""
    present = set(headers)
    return [h for h in REQUIRED_HEADERS if h not in present]


# ─── Row validator ───

def _row_data(raw: RawRow) -> dict[str, str]:
    return {column: raw.get(column) for column in IMPORT_COLUMNS}


def parse_row(raw: RawRow) -> ImportRow:
    """Raises pydantic.ValidationError; call validate_row first for diagnostics."""
    return ImportRow.model_validate(_row_data(raw))


def validate_row(raw: RawRow) -> list[FieldDiagnostic]:
    try:
        parse_row(raw)
    except ValidationError as exc:
        return [_to_diagnostic(raw.row_number, err) for err in exc.errors()]
    return []


def _to_diagnostic(row_number: int, err: dict) -> FieldDiagnostic:
    loc = err.get("loc") or ("general",)
    value = err.get("input")
    return FieldDiagnostic(
        row=row_number,
        column=str(loc[0]),
        value=None if value is None else str(value),
        message=err["msg"],
        severity="error",
    )


# ─── File-level validation ───

@dataclass
class ValidationResult:
    headers: list[str]
    total_rows: int = 0
    rows: list[RawRow] = field(default_factory=list)
    preview_rows: list[RawRow] = field(default_factory=list)
    header_errors: list[str] = field(default_factory=list)
    diagnostics: list[FieldDiagnostic] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not any(d.severity == "error" for d in self.diagnostics)

    @property
    def errors(self) -> list[FieldDiagnostic]:
        return [d for d in self.diagnostics if d.severity == "error"]

    @property
    def warnings(self) -> list[FieldDiagnostic]:
        return [d for d in self.diagnostics if d.severity == "warning"]

    def to_preview(self) -> ValidationPreview:
        by_row: dict[int, list[FieldDiagnostic]] = {}
        for diag in self.diagnostics:
            if diag.row > 0:
                by_row.setdefault(diag.row, []).append(diag)
        return ValidationPreview(
            is_valid=self.is_valid,
            headers=self.headers,
            total_rows=self.total_rows,
            header_errors=self.header_errors,
            row_errors=[RowErrors(row=row, errors=errs) for row, errs in by_row.items()],
            preview=[r.as_dict() for r in self.preview_rows],
        )


def validate_file(raw: str | bytes, preview_limit: int = 10) -> ValidationResult:
    """Parse the upload, check headers once, then check every row.

    Row checks are skipped entirely when required headers are missing.
    Raises MalformedInputError when the bytes are not readable CSV.
    """
    parsed = parse_csv(raw)
    result = ValidationResult(headers=parsed.headers)

    missing = validate_headers(parsed.headers)
    if missing:
        result.header_errors = [f"Missing required header: {h}" for h in missing]
        result.diagnostics.append(FieldDiagnostic(
            row=0,
            column="headers",
            value=",".join(parsed.headers),
            message=f"Missing required headers: {', '.join(missing)}",
            severity="error",
        ))

    for raw_row in parsed.rows:
        result.rows.append(raw_row)
        if len(result.preview_rows) < preview_limit:
            result.preview_rows.append(raw_row)
        if not missing:
            result.diagnostics.extend(validate_row(raw_row))

    result.total_rows = len(result.rows)
    logger.debug(
        "validate_file: %d rows, %d header errors, %d diagnostics",
        result.total_rows, len(missing), len(result.diagnostics),
    )
    return result
