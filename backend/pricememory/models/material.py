"""Material catalog ORM model."""

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pricememory.models.base import Base, IdMixin, TimestampMixin

PROVENANCE_MASTER = "master"
PROVENANCE_INGESTED = "ingested"
PROVENANCE_MANUAL = "manual"
PROVENANCES = (PROVENANCE_MASTER, PROVENANCE_INGESTED, PROVENANCE_MANUAL)


class Material(Base, IdMixin, TimestampMixin):
    """Known material (product) that can appear on a quotation."""

    __tablename__ = "materials"
    __table_args__ = (UniqueConstraint("normalized_name", "provenance", name="uq_materials_normalized_provenance"),)

    name: Mapped[str] = mapped_column(String(512), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(512), index=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    hsn_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    provenance: Mapped[str] = mapped_column(String(16), default=PROVENANCE_MASTER, nullable=False)
