"""Resolve a merged extraction against the catalog and append price history."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from pricememory.entity_resolution.normalization import normalize_material
from pricememory.entity_resolution.resolver import EntityResolver, Matched
from pricememory.extraction.types import ExtractedClient, MergedExtraction
from pricememory.models import Client, Material
from pricememory.models.material import PROVENANCE_INGESTED
from pricememory.services.catalog import (
    append_price_entry,
    get_entity,
    get_or_create_client,
    get_or_create_material,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PersistOutcome:
    """Counters for one persisted extraction."""

    price_entries_created: int = 0
    materials_created: int = 0
    clients_created: int = 0
    client_id: int | None = None
    skipped_items: list[str] = field(default_factory=list)
    new_materials: list[Material] = field(default_factory=list)
    new_clients: list[Client] = field(default_factory=list)


class QuotationWriter:
    """Turns extracted items into catalog ids and append-only price entries."""

    def __init__(self, resolver: EntityResolver) -> None:
        self._resolver = resolver

    def persist(
        self,
        db: Session,
        extraction: MergedExtraction,
        *,
        message_id: str | None,
        thread_id: str | None = None,
        received_at: datetime | None = None,
        material_overrides: dict[str, int] | None = None,
        client_override: int | None = None,
    ) -> PersistOutcome:
        """Resolve client and items, creating ingested catalog entries for misses.

        Runs inside the caller's transaction; the caller commits once per email
        and then hands the outcome to `publish`.
        """

        outcome = PersistOutcome()
        outcome.client_id = self._resolve_client(db, extraction.client, client_override, outcome)
        overrides = {normalize_material(text): entity_id for text, entity_id in (material_overrides or {}).items()}
        quoted_at = extraction.quoted_at or received_at or datetime.now(timezone.utc)

        for item in extraction.items:
            material_id = self._resolve_material(db, item.material, item.tax_code, overrides, outcome)
            if material_id is None or outcome.client_id is None or item.rate <= 0:
                outcome.skipped_items.append(item.material)
                continue
            append_price_entry(
                db,
                material_id=material_id,
                client_id=outcome.client_id,
                rate=item.rate,
                currency=item.currency,
                unit=item.unit,
                quantity=item.quantity,
                delivery_location=item.delivery_location,
                delivery_terms=item.delivery_terms,
                tax_code=item.tax_code,
                quoted_at=quoted_at,
                provenance=PROVENANCE_INGESTED,
                source_thread_id=thread_id,
                source_message_id=message_id,
            )
            outcome.price_entries_created += 1

        logger.info(
            "persistence.quotation_written message_id=%s client_id=%s entries=%s materials_created=%s "
            "clients_created=%s skipped=%s",
            message_id,
            outcome.client_id,
            outcome.price_entries_created,
            outcome.materials_created,
            outcome.clients_created,
            len(outcome.skipped_items),
        )
        return outcome

    def publish(self, outcome: PersistOutcome) -> None:
        """Expose entities created by a committed `persist` to the shared resolver."""

        if outcome.new_materials or outcome.new_clients:
            self._resolver.publish(materials=outcome.new_materials, clients=outcome.new_clients)

    def _resolve_client(
        self,
        db: Session,
        client: ExtractedClient,
        client_override: int | None,
        outcome: PersistOutcome,
    ) -> int | None:
        if client_override is not None:
            return get_entity(db, "client", client_override).id
        if client.is_empty():
            return None

        result = self._resolver.match_client(client.name, client.email, client.domain)
        if isinstance(result, Matched):
            return result.entity_id

        row, created = get_or_create_client(
            db,
            client.name or client.email,
            email=client.email or None,
            contact_person=client.contact_person or None,
            provenance=PROVENANCE_INGESTED,
        )
        if created:
            outcome.clients_created += 1
            outcome.new_clients.append(row)
        return row.id

    def _resolve_material(
        self,
        db: Session,
        text: str,
        tax_code: str | None,
        overrides: dict[str, int],
        outcome: PersistOutcome,
    ) -> int | None:
        normalized = normalize_material(text)
        if not normalized:
            return None
        override = overrides.get(normalized)
        if override is not None:
            return get_entity(db, "material", override).id

        result = self._resolver.match_material(text)
        if isinstance(result, Matched):
            return result.entity_id

        row, created = get_or_create_material(db, text, hsn_code=tax_code, provenance=PROVENANCE_INGESTED)
        if created:
            outcome.materials_created += 1
            outcome.new_materials.append(row)
        return row.id
