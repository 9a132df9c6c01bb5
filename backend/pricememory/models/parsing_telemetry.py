"""Parsing attempt telemetry ORM models."""

from sqlalchemy import Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from pricememory.models.base import Base, CreatedAtMixin, IdMixin


class ParsingHistoryRecord(Base, IdMixin, CreatedAtMixin):
    """Successful (or human-confirmed) extraction attempt."""

    __tablename__ = "parsing_history"

    message_id: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    method: Mapped[str] = mapped_column(String(32), index=True, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    items_extracted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost_usd: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    input_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class ParsingFailureRecord(Base, IdMixin, CreatedAtMixin):
    """Failed extraction attempt kept for failure-pattern analysis."""

    __tablename__ = "parsing_failures"

    message_id: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    method: Mapped[str] = mapped_column(String(32), nullable=False)
    error: Mapped[str] = mapped_column(Text, nullable=False)
    email_subject: Mapped[str | None] = mapped_column(String(998), nullable=True)
    email_body_length: Mapped[int | None] = mapped_column(Integer, nullable=True)
