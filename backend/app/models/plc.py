import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import AuthorMixin, Base, TimestampMixin, UUIDMixin

_LIVE = text("deleted_at IS NULL")
_LIVE_WITH_IP = text("ip_address IS NOT NULL AND deleted_at IS NULL")


class PLC(Base, UUIDMixin, TimestampMixin, AuthorMixin):
    """Controller record: the leaf of the site → cell → equipment hierarchy."""

    __tablename__ = "plcs"
    __table_args__ = (
        Index("uq_plcs_tag_id_live", "tag_id", unique=True,
              postgresql_where=_LIVE, sqlite_where=_LIVE),
        Index("uq_plcs_ip_address_live", "ip_address", unique=True,
              postgresql_where=_LIVE_WITH_IP, sqlite_where=_LIVE_WITH_IP),
        Index("ix_plcs_make_model", "make", "model"),
    )

    equipment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tag_id: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    make: Mapped[str] = mapped_column(String(100), nullable=False)  # manufacturer
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    firmware_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    equipment: Mapped["Equipment"] = relationship("Equipment", back_populates="plcs")  # noqa: F821
    tags: Mapped[list["Tag"]] = relationship(
        "Tag", back_populates="plc", cascade="all, delete-orphan", order_by="Tag.name"
    )

    @property
    def tag_names(self) -> list[str]:
        return [t.name for t in self.tags]


class Tag(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("plc_id", "name", name="uq_tags_plc_name"),)

    plc_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("plcs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    plc: Mapped["PLC"] = relationship("PLC", back_populates="tags")
