"""Integration tests for tiered material and client resolution."""

from __future__ import annotations

import unittest

from sqlalchemy import delete
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from pricememory.db.base import Base
from pricememory.db.session import build_engine
from pricememory.entity_resolution.resolver import EntityResolver, Matched, Unmatched
from pricememory.models import Client, ClientAlias, Material, MaterialAlias
from pricememory.models.material import PROVENANCE_INGESTED, PROVENANCE_MASTER
from pricememory.services.catalog import get_or_create_client, get_or_create_material


class EntityResolverTests(unittest.TestCase):
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
        self.db.execute(delete(MaterialAlias))
        self.db.execute(delete(ClientAlias))
        self.db.execute(delete(Material))
        self.db.execute(delete(Client))
        self.db.commit()

        self.fire_brick, _ = get_or_create_material(
            self.db, "Calderys Fire Brick IS 8 230x114x75", hsn_code="6902", provenance=PROVENANCE_MASTER
        )
        self.mortar, _ = get_or_create_material(self.db, "High Alumina Mortar", provenance=PROVENANCE_MASTER)
        self.acme, _ = get_or_create_client(
            self.db,
            "Acme Steel Pvt Ltd",
            email="purchase@acme-steel.co.in",
            contact_person="Ravi Kumar",
            provenance=PROVENANCE_MASTER,
        )
        self.jindal, _ = get_or_create_client(self.db, "Jindal Steel & Power Ltd", provenance=PROVENANCE_MASTER)
        self.db.commit()

        self.resolver = EntityResolver(public_email_domains=["gmail.com"])
        self.resolver.reload(self.db)

    def tearDown(self) -> None:
        self.db.close()

    def test_exact_normalized_material_match(self) -> None:
        result = self.resolver.match_material("calderys   fire brick is 8 230 x 114 x 75")

        self.assertEqual(result, Matched(self.fire_brick.id, 1.0, "exact"))

    def test_near_duplicate_material_commits_through_fuzzy_tier(self) -> None:
        result = self.resolver.match_material("Calderys Fire Brick IS8 230x114x75")

        self.assertTrue(result.matched)
        self.assertEqual(result.tier, "fuzzy")
        self.assertEqual(result.entity_id, self.fire_brick.id)
        self.assertGreaterEqual(result.confidence, 0.85)

    def test_unrelated_material_is_unmatched(self) -> None:
        result = self.resolver.match_material("MS seamless pipe 40 NB sch 80")

        self.assertIsInstance(result, Unmatched)
        self.assertFalse(result.matched)
        self.assertIsNone(result.entity_id)

    def test_resolution_is_deterministic(self) -> None:
        first = self.resolver.match_material("Calderys Fire Brick IS8 230x114x75")
        second = self.resolver.match_material("Calderys Fire Brick IS8 230x114x75")

        self.assertEqual(first, second)

    def test_alias_tier_wins_and_last_write_wins(self) -> None:
        self.resolver.learn_alias(self.db, "material", "HA mortar", self.fire_brick.id, "correction")
        self.resolver.learn_alias(self.db, "material", "HA mortar", self.mortar.id, "correction")
        self.db.commit()
        self.resolver.reload(self.db)

        self.assertEqual(self.resolver.match_material("ha  MORTAR"), Matched(self.mortar.id, 1.0, "alias"))

    def test_master_data_wins_exact_ties(self) -> None:
        ingested, created = get_or_create_material(self.db, "high alumina mortar", provenance=PROVENANCE_INGESTED)
        self.db.commit()
        self.assertTrue(created)
        self.resolver.reload(self.db)

        result = self.resolver.match_material("HIGH ALUMINA MORTAR")

        self.assertEqual(result.entity_id, self.mortar.id)
        self.assertNotEqual(result.entity_id, ingested.id)

    def test_published_material_is_visible_without_reload(self) -> None:
        castable, _ = get_or_create_material(self.db, "Low cement castable LC 70")
        self.db.commit()
        self.assertFalse(self.resolver.match_material("LOW CEMENT CASTABLE LC 70").matched)

        self.resolver.publish(materials=[castable])

        self.assertEqual(
            self.resolver.match_material("low cement castable lc 70"),
            Matched(castable.id, 1.0, "exact"),
        )

    def test_client_email_then_domain_tiers(self) -> None:
        by_email = self.resolver.match_client("Someone Else", "Purchase@Acme-Steel.co.in")
        by_domain = self.resolver.match_client("Unknown Buyer", "stores@acme-steel.co.in")

        self.assertEqual(by_email, Matched(self.acme.id, 1.0, "email"))
        self.assertEqual(by_domain, Matched(self.acme.id, 0.95, "domain"))

    def test_public_mail_domains_never_match_by_domain(self) -> None:
        get_or_create_client(self.db, "Ravi Traders", email="ravi.traders@gmail.com", provenance=PROVENANCE_MASTER)
        self.db.commit()
        self.resolver.reload(self.db)

        result = self.resolver.match_client("Completely Different Buyer", "someone@gmail.com")

        self.assertFalse(result.matched)

    def test_client_exact_and_fuzzy_name_tiers(self) -> None:
        self.assertEqual(self.resolver.match_client("M/s. Acme Steel Limited"), Matched(self.acme.id, 1.0, "exact"))

        result = self.resolver.match_client("Jindal Steel and Power")

        self.assertTrue(result.matched)
        self.assertEqual(result.tier, "fuzzy")
        self.assertEqual(result.entity_id, self.jindal.id)

    def test_stats_reflect_index(self) -> None:
        self.resolver.learn_alias(self.db, "client", "ACME", self.acme.id)
        self.db.commit()
        self.resolver.reload(self.db)

        stats = self.resolver.stats()

        self.assertEqual(stats["materials_indexed"], 2)
        self.assertEqual(stats["clients_indexed"], 2)
        self.assertEqual(stats["client_aliases"], 1)
        self.assertEqual(stats["material_aliases"], 0)


if __name__ == "__main__":
    unittest.main()
