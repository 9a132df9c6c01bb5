"""Integration tests for catalog creation, conflict recovery and price lookups."""

from __future__ import annotations

import unittest
from datetime import datetime, timezone
from unittest import mock

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pricememory.db.base import Base
from pricememory.db.session import build_engine
from pricememory.models import Client, Material, PriceHistoryEntry
from pricememory.models.material import PROVENANCE_INGESTED, PROVENANCE_MASTER
from pricememory.services import catalog


class CatalogStoreTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = build_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        self.db: Session = self.SessionLocal()
        self.db.execute(delete(PriceHistoryEntry))
        self.db.execute(delete(Material))
        self.db.execute(delete(Client))
        self.db.commit()

    def tearDown(self) -> None:
        self.db.close()

    def test_get_or_create_returns_existing_row(self) -> None:
        first, created = catalog.get_or_create_material(self.db, "Fire  brick IS8")
        second, created_again = catalog.get_or_create_material(self.db, "FIRE BRICK is8")

        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertEqual(first.id, second.id)
        self.assertEqual(first.normalized_name, "FIRE BRICK IS8")

    def test_uniqueness_conflict_is_recovered_by_requery(self) -> None:
        existing, _ = catalog.get_or_create_material(self.db, "Fire brick IS8")
        self.db.commit()
        real_lookup = catalog.find_material_by_normalized_name
        calls = []

        def stale_first_lookup(db, normalized_name, provenance=None):  # noqa: ANN001
            calls.append(normalized_name)
            if len(calls) == 1:
                return None
            return real_lookup(db, normalized_name, provenance)

        with mock.patch.object(catalog, "find_material_by_normalized_name", side_effect=stale_first_lookup):
            recovered, created = catalog.get_or_create_material(self.db, "fire brick is8")

        self.assertFalse(created)
        self.assertEqual(recovered.id, existing.id)
        self.assertEqual(self.db.scalar(select(func.count(Material.id))), 1)

    def test_master_row_is_preferred_across_provenances(self) -> None:
        ingested, _ = catalog.get_or_create_material(self.db, "Mortar", provenance=PROVENANCE_INGESTED)
        master, _ = catalog.get_or_create_material(self.db, "MORTAR", provenance=PROVENANCE_MASTER)
        self.db.commit()

        found = catalog.find_material_by_normalized_name(self.db, "MORTAR")

        self.assertNotEqual(ingested.id, master.id)
        self.assertEqual(found.id, master.id)

    def test_client_lookup_by_email_ignores_case(self) -> None:
        client, _ = catalog.get_or_create_client(self.db, "Acme Steel Ltd", email="Purchase@Acme-Steel.co.in")
        self.db.commit()

        self.assertEqual(client.email, "purchase@acme-steel.co.in")
        self.assertEqual(catalog.find_client_by_email(self.db, "PURCHASE@acme-steel.co.in").id, client.id)
        self.assertIsNone(catalog.find_client_by_email(self.db, ""))

    def test_unknown_entity_raises(self) -> None:
        with self.assertRaises(catalog.UnknownCatalogEntityError):
            catalog.get_entity(self.db, "client", 424242)

    def test_latest_price_orders_by_quoted_at(self) -> None:
        material, _ = catalog.get_or_create_material(self.db, "Mortar")
        acme, _ = catalog.get_or_create_client(self.db, "Acme")
        tata, _ = catalog.get_or_create_client(self.db, "Tata Steel")
        for client, rate, month in ((acme, 880.0, 1), (acme, 910.0, 3), (tata, 950.0, 2)):
            catalog.append_price_entry(
                self.db,
                material_id=material.id,
                client_id=client.id,
                rate=rate,
                currency="INR",
                unit="BAG",
                quoted_at=datetime(2026, month, 1, tzinfo=timezone.utc),
            )
        self.db.commit()

        self.assertEqual(catalog.latest_price(self.db, material.id).rate, 910.0)
        self.assertEqual(catalog.latest_price(self.db, material.id, tata.id).rate, 950.0)
        self.assertIsNone(catalog.latest_price(self.db, material.id + 1))

    def test_catalog_sample_lists_master_data_first(self) -> None:
        catalog.get_or_create_material(self.db, "Castable LC 70", provenance=PROVENANCE_INGESTED)
        catalog.get_or_create_material(self.db, "Fire brick IS8", provenance=PROVENANCE_MASTER)
        catalog.get_or_create_client(self.db, "Acme", provenance=PROVENANCE_MASTER)
        self.db.commit()

        sample = catalog.catalog_sample(self.db, materials=1, clients=5)

        self.assertEqual(sample.materials, ["Fire brick IS8"])
        self.assertEqual(sample.clients, ["Acme"])


if __name__ == "__main__":
    unittest.main()
