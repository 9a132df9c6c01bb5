"""Client catalog ORM model."""

from sqlalchemy import String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pricememory.models.base import Base, IdMixin, TimestampMixin
from pricememory.models.material import PROVENANCE_MASTER


class Client(Base, IdMixin, TimestampMixin):
    """Known client (quotation recipient)."""

    __tablename__ = "clients"
    __table_args__ = (UniqueConstraint("normalized_name", "provenance", name="uq_clients_normalized_provenance"),)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_name: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), index=True, nullable=True)
    contact_person: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provenance: Mapped[str] = mapped_column(String(16), default=PROVENANCE_MASTER, nullable=False)
