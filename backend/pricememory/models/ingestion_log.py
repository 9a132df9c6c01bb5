"""Ingestion ledger ORM model."""

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pricememory.models.base import Base, CreatedAtMixin, IdMixin

INGESTION_STATUSES = ("success", "partial", "failed")


class IngestionLogRecord(Base, IdMixin, CreatedAtMixin):
    """One row per processed source message; its presence blocks reprocessing."""

    __tablename__ = "ingestion_log"

    message_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    thread_id: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    subject: Mapped[str | None] = mapped_column(String(998), nullable=True)
    sender: Mapped[str | None] = mapped_column(String(320), nullable=True)
    items_extracted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="success", nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
