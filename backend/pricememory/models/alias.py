"""Learned alias ORM models."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from pricememory.models.base import Base, IdMixin

ALIAS_ORIGINS = ("manual", "learned", "correction")


class MaterialAlias(Base, IdMixin):
    """Normalized free-text alias that resolves to one material."""

    __tablename__ = "material_aliases"

    material_id: Mapped[int] = mapped_column(
        ForeignKey("materials.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    alias: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    origin: Mapped[str] = mapped_column(String(16), default="manual", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def entity_id(self) -> int:
        return self.material_id


class ClientAlias(Base, IdMixin):
    """Normalized free-text alias that resolves to one client."""

    __tablename__ = "client_aliases"

    client_id: Mapped[int] = mapped_column(
        ForeignKey("clients.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    alias: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    origin: Mapped[str] = mapped_column(String(16), default="manual", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def entity_id(self) -> int:
        return self.client_id
