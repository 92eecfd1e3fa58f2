"""Site → cell → equipment resolution for import rows.

Lookups run inside the caller's transaction. Entities created here are flushed
immediately and cached, so later rows of the same file reuse them instead of
creating duplicates.
"""
import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Generic, NamedTuple, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.hierarchy import Cell, CellType, Equipment, EquipmentType, Site
from app.schemas.imports import FieldDiagnostic

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Outcome(str, enum.Enum):
    found = "found"
    created = "created"
    not_found = "not_found"


@dataclass(frozen=True)
class Lookup(Generic[T]):
    outcome: Outcome
    entity: T | None = None


class HierarchyKey(NamedTuple):
    site_name: str
    cell_name: str
    equipment_name: str


@dataclass(frozen=True)
class HierarchyResolution:
    site: Lookup[Site] | None = None
    cell: Lookup[Cell] | None = None
    equipment: Lookup[Equipment] | None = None
    diagnostic: FieldDiagnostic | None = None

    @property
    def ok(self) -> bool:
        return self.diagnostic is None

    @property
    def equipment_id(self) -> uuid.UUID | None:
        if self.equipment is None or self.equipment.entity is None:
            return None
        return self.equipment.entity.id


@dataclass
class CreatedIds:
    sites: list[uuid.UUID] = field(default_factory=list)
    cells: list[uuid.UUID] = field(default_factory=list)
    equipment: list[uuid.UUID] = field(default_factory=list)


class HierarchyResolver:
    """Resolve (and optionally create) the ancestors of one import's rows."""

    def __init__(self, db: Session, user_id: uuid.UUID, create_missing: bool):
        self.db = db
        self.user_id = user_id
        self.create_missing = create_missing
        self.created = CreatedIds()
        self._sites: dict[str, Site] = {}
        self._cells: dict[tuple[uuid.UUID, str], Cell] = {}
        self._equipment: dict[tuple[uuid.UUID, str], Equipment] = {}

    def resolve(
        self,
        key: HierarchyKey,
        row_number: int,
        cell_type: str | None = None,
        equipment_type: str | None = None,
    ) -> HierarchyResolution:
        """Short-circuits at the first missing level; lower levels are not attempted."""
        site = self._site(key.site_name)
        if site.outcome is Outcome.not_found:
            return HierarchyResolution(
                site=site,
                diagnostic=_missing(row_number, "site_name", key.site_name, "Site does not exist"),
            )

        cell = self._cell(site.entity, key.cell_name, cell_type)
        if cell.outcome is Outcome.not_found:
            return HierarchyResolution(
                site=site,
                cell=cell,
                diagnostic=_missing(row_number, "cell_name", key.cell_name, "Cell does not exist"),
            )

        equipment = self._equipment_in(cell.entity, key.equipment_name, equipment_type)
        if equipment.outcome is Outcome.not_found:
            return HierarchyResolution(
                site=site,
                cell=cell,
                equipment=equipment,
                diagnostic=_missing(
                    row_number, "equipment_name", key.equipment_name, "Equipment does not exist"
                ),
            )

        return HierarchyResolution(site=site, cell=cell, equipment=equipment)

    # ── Private helpers ────────────────────────────────────────────────

    def _site(self, name: str) -> Lookup[Site]:
        if name in self._sites:
            return Lookup(Outcome.found, self._sites[name])

        site = self.db.execute(select(Site).where(Site.name == name)).scalar_one_or_none()
        if site is not None:
            self._sites[name] = site
            return Lookup(Outcome.found, site)
        if not self.create_missing:
            return Lookup(Outcome.not_found)

        site = Site(name=name, location="", created_by=self.user_id, updated_by=self.user_id)
        self.db.add(site)
        self.db.flush()
        self._sites[name] = site
        self.created.sites.append(site.id)
        logger.debug("Created site %r (%s)", name, site.id)
        return Lookup(Outcome.created, site)

    def _cell(self, site: Site, name: str, cell_type: str | None) -> Lookup[Cell]:
        key = (site.id, name)
        if key in self._cells:
            return Lookup(Outcome.found, self._cells[key])

        cell = self.db.execute(
            select(Cell).where(Cell.site_id == site.id, Cell.name == name)
        ).scalar_one_or_none()
        if cell is not None:
            self._cells[key] = cell
            return Lookup(Outcome.found, cell)
        if not self.create_missing:
            return Lookup(Outcome.not_found)

        cell = Cell(
            site_id=site.id,
            name=name,
            cell_type=cell_type or CellType.production.value,
            created_by=self.user_id,
            updated_by=self.user_id,
        )
        self.db.add(cell)
        self.db.flush()
        self._cells[key] = cell
        self.created.cells.append(cell.id)
        logger.debug("Created cell %r in site %s", name, site.id)
        return Lookup(Outcome.created, cell)

    def _equipment_in(
        self, cell: Cell, name: str, equipment_type: str | None
    ) -> Lookup[Equipment]:
        key = (cell.id, name)
        if key in self._equipment:
            return Lookup(Outcome.found, self._equipment[key])

        equipment = self.db.execute(
            select(Equipment).where(Equipment.cell_id == cell.id, Equipment.name == name)
        ).scalar_one_or_none()
        if equipment is not None:
            self._equipment[key] = equipment
            return Lookup(Outcome.found, equipment)
        if not self.create_missing:
            return Lookup(Outcome.not_found)

        equipment = Equipment(
            cell_id=cell.id,
            name=name,
            equipment_type=equipment_type or EquipmentType.plc.value,
            created_by=self.user_id,
            updated_by=self.user_id,
        )
        self.db.add(equipment)
        self.db.flush()
        self._equipment[key] = equipment
        self.created.equipment.append(equipment.id)
        logger.debug("Created equipment %r in cell %s", name, cell.id)
        return Lookup(Outcome.created, equipment)


def _missing(row: int, column: str, value: str, message: str) -> FieldDiagnostic:
    return FieldDiagnostic(row=row, column=column, value=value, message=message, severity="error")
