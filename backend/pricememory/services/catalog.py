"""Catalog and price-history store operations."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pricememory.entity_resolution.normalization import EntityKind, normalize_client, normalize_material
from pricememory.extraction.types import CatalogSample
from pricememory.models import Client, Material, PriceHistoryEntry
from pricememory.models.material import PROVENANCE_INGESTED

logger = logging.getLogger(__name__)

_PROVENANCE_PRIORITY = {"master": 0, "manual": 1, "ingested": 2}


class CatalogConflictError(RuntimeError):
    """Raised when a uniqueness violation cannot be resolved by re-querying."""


class UnknownCatalogEntityError(LookupError):
    """Raised when a referenced material or client id does not exist."""


def find_material_by_normalized_name(
    db: Session,
    normalized_name: str,
    provenance: str | None = None,
) -> Material | None:
    stmt = select(Material).where(Material.normalized_name == normalized_name)
    if provenance is not None:
        stmt = stmt.where(Material.provenance == provenance)
    rows = db.scalars(stmt.order_by(Material.id.asc())).all()
    return _preferred(rows)


def find_client_by_normalized_name(
    db: Session,
    normalized_name: str,
    provenance: str | None = None,
) -> Client | None:
    stmt = select(Client).where(Client.normalized_name == normalized_name)
    if provenance is not None:
        stmt = stmt.where(Client.provenance == provenance)
    rows = db.scalars(stmt.order_by(Client.id.asc())).all()
    return _preferred(rows)


def find_client_by_email(db: Session, email: str) -> Client | None:
    if not email:
        return None
    return db.scalars(
        select(Client).where(func.lower(Client.email) == email.strip().lower()).order_by(Client.id.asc()).limit(1)
    ).first()


def get_entity(db: Session, kind: EntityKind, entity_id: int) -> Material | Client:
    model = Material if kind == "material" else Client
    entity = db.get(model, entity_id)
    if entity is None:
        raise UnknownCatalogEntityError(f"{kind} {entity_id} does not exist")
    return entity


def get_or_create_material(
    db: Session,
    name: str,
    *,
    hsn_code: str | None = None,
    provenance: str = PROVENANCE_INGESTED,
) -> tuple[Material, bool]:
    """Return an existing material with the same normalized name and provenance, or create one.

    Creation runs in a SAVEPOINT; a concurrent insert that wins the uniqueness race is
    recovered by re-querying instead of failing the surrounding transaction.
    """

    normalized = normalize_material(name)
    existing = find_material_by_normalized_name(db, normalized, provenance)
    if existing is not None:
        return existing, False

    material = Material(name=name.strip(), normalized_name=normalized, hsn_code=hsn_code, provenance=provenance)
    try:
        with db.begin_nested():
            db.add(material)
            db.flush()
    except IntegrityError as exc:
        logger.info("catalog.material_conflict normalized_name=%s provenance=%s", normalized, provenance)
        recovered = find_material_by_normalized_name(db, normalized, provenance) or find_material_by_normalized_name(
            db, normalized
        )
        if recovered is None:
            raise CatalogConflictError(f"material {normalized!r} conflicts but cannot be found") from exc
        return recovered, False
    return material, True


def get_or_create_client(
    db: Session,
    name: str,
    *,
    email: str | None = None,
    contact_person: str | None = None,
    provenance: str = PROVENANCE_INGESTED,
) -> tuple[Client, bool]:
    """Client counterpart of `get_or_create_material`; email is tried before names on conflict."""

    normalized = normalize_client(name)
    existing = find_client_by_normalized_name(db, normalized, provenance)
    if existing is not None:
        return existing, False

    client = Client(
        name=name.strip(),
        normalized_name=normalized,
        email=(email or "").strip().lower() or None,
        contact_person=(contact_person or "").strip() or None,
        provenance=provenance,
    )
    try:
        with db.begin_nested():
            db.add(client)
            db.flush()
    except IntegrityError as exc:
        logger.info("catalog.client_conflict normalized_name=%s provenance=%s", normalized, provenance)
        recovered = (
            find_client_by_email(db, email or "")
            or find_client_by_normalized_name(db, normalized, provenance)
            or find_client_by_normalized_name(db, normalized)
        )
        if recovered is None:
            raise CatalogConflictError(f"client {normalized!r} conflicts but cannot be found") from exc
        return recovered, False
    return client, True


def append_price_entry(
    db: Session,
    *,
    material_id: int,
    client_id: int,
    rate: float,
    currency: str,
    unit: str,
    quoted_at: datetime,
    provenance: str = PROVENANCE_INGESTED,
    quantity: float | None = None,
    delivery_location: str | None = None,
    delivery_terms: str | None = None,
    tax_code: str | None = None,
    source_thread_id: str | None = None,
    source_message_id: str | None = None,
) -> PriceHistoryEntry:
    entry = PriceHistoryEntry(
        material_id=material_id,
        client_id=client_id,
        rate=rate,
        currency=currency,
        unit=unit,
        quantity=quantity,
        delivery_location=delivery_location,
        delivery_terms=delivery_terms,
        tax_code=tax_code,
        quoted_at=quoted_at,
        provenance=provenance,
        source_thread_id=source_thread_id,
        source_message_id=source_message_id,
    )
    db.add(entry)
    db.flush()
    return entry


def latest_price(db: Session, material_id: int, client_id: int | None = None) -> PriceHistoryEntry | None:
    """Most recent quoted price for a material, optionally for one client."""

    stmt = select(PriceHistoryEntry).where(PriceHistoryEntry.material_id == material_id)
    if client_id is not None:
        stmt = stmt.where(PriceHistoryEntry.client_id == client_id)
    stmt = stmt.order_by(PriceHistoryEntry.quoted_at.desc(), PriceHistoryEntry.id.desc()).limit(1)
    return db.scalars(stmt).first()


def catalog_sample(db: Session, *, materials: int = 50, clients: int = 30) -> CatalogSample:
    """Catalog names handed to the language model, master data first."""

    material_names = db.scalars(
        select(Material.name).order_by(Material.provenance == PROVENANCE_INGESTED, Material.id.asc()).limit(materials)
    ).all()
    client_names = db.scalars(
        select(Client.name).order_by(Client.provenance == PROVENANCE_INGESTED, Client.id.asc()).limit(clients)
    ).all()
    return CatalogSample(materials=list(material_names), clients=list(client_names))


def _preferred(rows):
    if not rows:
        return None
    return min(rows, key=lambda row: (_PROVENANCE_PRIORITY.get(row.provenance, 99), row.id))
