import enum
import uuid

from sqlalchemy import ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import AuthorMixin, Base, TimestampMixin, UUIDMixin


class CellType(str, enum.Enum):
    production = "production"
    warehouse = "warehouse"
    testing = "testing"
    packaging = "packaging"


class EquipmentType(str, enum.Enum):
    plc = "plc"
    hmi = "hmi"
    robot = "robot"
    sensor = "sensor"
    controller = "controller"


class Site(Base, UUIDMixin, TimestampMixin, AuthorMixin):
    __tablename__ = "sites"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    cells: Mapped[list["Cell"]] = relationship(
        "Cell", back_populates="site", cascade="all, delete-orphan", passive_deletes=True
    )


class Cell(Base, UUIDMixin, TimestampMixin, AuthorMixin):
    __tablename__ = "cells"
    __table_args__ = (UniqueConstraint("site_id", "name", name="uq_cells_site_name"),)

    site_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    cell_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default=CellType.production.value
    )  # production, warehouse, testing, packaging

    site: Mapped["Site"] = relationship("Site", back_populates="cells")
    equipment: Mapped[list["Equipment"]] = relationship(
        "Equipment", back_populates="cell", cascade="all, delete-orphan", passive_deletes=True
    )


class Equipment(Base, UUIDMixin, TimestampMixin, AuthorMixin):
    __tablename__ = "equipment"
    __table_args__ = (UniqueConstraint("cell_id", "name", name="uq_equipment_cell_name"),)

    cell_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("cells.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    equipment_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default=EquipmentType.plc.value
    )  # plc, hmi, robot, sensor, controller

    cell: Mapped["Cell"] = relationship("Cell", back_populates="equipment")
    plcs: Mapped[list["PLC"]] = relationship(  # noqa: F821
        "PLC", back_populates="equipment", cascade="all, delete-orphan", passive_deletes=True
    )
