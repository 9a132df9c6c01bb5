"""Catalog rows created by the writer stay out of the shared resolver until committed."""

from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from pricememory.db.base import Base
from pricememory.db.session import build_engine
from pricememory.entity_resolution.resolver import EntityResolver, Matched
from pricememory.extraction.types import ExtractedClient, ExtractedItem, MergedExtraction
from pricememory.models import Client, Material
from pricememory.services.persistence import QuotationWriter


def _extraction() -> MergedExtraction:
    return MergedExtraction(
        method="structured",
        confidence=0.95,
        items=[ExtractedItem(material="Zircon Sand Special", rate=61.5, unit="KG", currency="INR", confidence=0.95)],
        client=ExtractedClient(name="Zircon Traders", email="buy@zircon-traders.example"),
        quoted_at=datetime(2026, 6, 1, tzinfo=timezone.utc),
    )


class QuotationWriterVisibilityTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmpdir = tempfile.TemporaryDirectory()
        database = Path(self._tmpdir.name) / "pricememory.db"
        self.engine = build_engine(f"sqlite+pysqlite:///{database}")
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False, future=True)

        self.db = self.SessionLocal()
        self.resolver = EntityResolver()
        self.resolver.reload(self.db)
        self.writer = QuotationWriter(self.resolver)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()
        self._tmpdir.cleanup()

    def _committed_material(self, material_id: int) -> Material | None:
        with self.SessionLocal() as other:
            return other.get(Material, material_id)

    def test_new_entities_are_published_only_after_commit(self) -> None:
        outcome = self.writer.persist(self.db, _extraction(), message_id="msg-zircon-1")
        material_id = outcome.new_materials[0].id
        client_id = outcome.new_clients[0].id

        self.assertEqual(outcome.materials_created, 1)
        self.assertFalse(self.resolver.match_material("ZIRCON SAND SPECIAL").matched)
        self.assertFalse(self.resolver.match_client("Zircon Traders", "buy@zircon-traders.example").matched)
        self.assertIsNone(self._committed_material(material_id))

        self.db.commit()
        self.writer.publish(outcome)

        self.assertIsNotNone(self._committed_material(material_id))
        self.assertEqual(self.resolver.match_material("zircon sand special"), Matched(material_id, 1.0, "exact"))
        self.assertEqual(
            self.resolver.match_client("Someone", "buy@zircon-traders.example"),
            Matched(client_id, 1.0, "email"),
        )

    def test_rolled_back_entities_never_reach_the_resolver(self) -> None:
        self.writer.persist(self.db, _extraction(), message_id="msg-zircon-2")
        self.db.rollback()

        self.assertFalse(self.resolver.match_material("ZIRCON SAND SPECIAL").matched)
        self.assertEqual(self.resolver.stats()["materials_indexed"], 0)
        with self.SessionLocal() as other:
            self.assertEqual(other.scalar(select(func.count(Material.id))), 0)
            self.assertEqual(other.scalar(select(func.count(Client.id))), 0)

        retried = self.writer.persist(self.db, _extraction(), message_id="msg-zircon-2")
        self.db.commit()
        self.writer.publish(retried)

        self.assertEqual(retried.materials_created, 1)
        self.assertTrue(self.resolver.match_material("ZIRCON SAND SPECIAL").matched)


if __name__ == "__main__":
    unittest.main()
