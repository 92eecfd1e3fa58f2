"""Pydantic schemas for CSV bulk import requests, results and history."""
import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from app.core.config import settings

Severity = Literal["error", "warning"]
DuplicateHandling = Literal["skip", "overwrite", "merge"]


class FieldDiagnostic(BaseModel):
    model_config = ConfigDict(frozen=True)

    row: int
    column: str
    value: str | None = None
    message: str
    severity: Severity = "error"


class ImportOptions(BaseModel):
    create_missing: bool = False
    duplicate_handling: DuplicateHandling = "skip"
    background_threshold: int = Field(
        default=settings.IMPORT_BACKGROUND_THRESHOLD,
        ge=settings.IMPORT_BACKGROUND_THRESHOLD_MIN,
        le=settings.IMPORT_BACKGROUND_THRESHOLD_MAX,
    )
    validate_only: bool = False
    timeout_seconds: float | None = Field(default=None, gt=0)


class CreatedEntityCounts(BaseModel):
    sites: int = 0
    cells: int = 0
    equipment: int = 0
    plcs: int = 0

    @property
    def total(self) -> int:
        return self.sites + self.cells + self.equipment + self.plcs


class ImportResult(BaseModel):
    success: bool
    import_id: uuid.UUID
    status: str
    total_rows: int
    processed_rows: int = 0
    skipped_rows: int = 0
    errors: list[FieldDiagnostic] = []
    warnings: list[FieldDiagnostic] = []
    created_entities: CreatedEntityCounts = Field(default_factory=CreatedEntityCounts)
    duration_ms: int = 0
    is_background: bool = False

    @computed_field
    @property
    def successful_rows(self) -> int:
        return self.processed_rows

    @computed_field
    @property
    def failed_rows(self) -> int:
        return self.skipped_rows


# ─── Validate-only / preview ───

class RowErrors(BaseModel):
    row: int
    errors: list[FieldDiagnostic]


class ValidationPreview(BaseModel):
    is_valid: bool
    headers: list[str]
    total_rows: int
    header_errors: list[str] = []
    row_errors: list[RowErrors] = []
    preview: list[dict[str, str]] = []


# ─── History ───

class ImportHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    filename: str
    status: str
    total_rows: int
    successful_rows: int
    failed_rows: int
    is_background: bool
    options: dict
    errors: list[FieldDiagnostic] | None = None
    warnings: list[FieldDiagnostic] | None = None
    created_entities: CreatedEntityCounts | None = None
    duration_ms: int | None = None
    started_at: datetime
    completed_at: datetime | None = None


class ImportHistoryListResponse(BaseModel):
    items: list[ImportHistoryOut]
    total: int
    page: int
    page_size: int
    total_pages: int


class BackgroundJobOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    import_id: uuid.UUID
    status: str
    progress: int
    total_rows: int
    processed_rows: int
    error: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class RollbackResult(BaseModel):
    import_id: uuid.UUID
    status: str
    plcs_removed: int = 0
    equipment_removed: int = 0
    cells_removed: int = 0
    sites_removed: int = 0
    overwritten_not_restored: int = 0
