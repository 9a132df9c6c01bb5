"""Append-only price history ORM model."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from pricememory.models.base import Base, CreatedAtMixin, IdMixin


class PriceHistoryEntry(Base, IdMixin, CreatedAtMixin):
    """One quoted rate for a material to a client."""

    __tablename__ = "price_history"
    __table_args__ = (
        Index("ix_price_history_lookup", "material_id", "client_id", "quoted_at"),
    )

    material_id: Mapped[int] = mapped_column(
        ForeignKey("materials.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    client_id: Mapped[int] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    rate: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="INR", nullable=False)
    unit: Mapped[str] = mapped_column(String(16), nullable=False)
    quantity: Mapped[float | None] = mapped_column(Float, nullable=True)
    delivery_location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    delivery_terms: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tax_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    quoted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    provenance: Mapped[str] = mapped_column(String(16), nullable=False)
    source_thread_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_message_id: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
