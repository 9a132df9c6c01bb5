"""Unit tests for reconciling structured and fallback extraction results."""

import unittest
from datetime import datetime, timezone

from pricememory.extraction.merge import merge_extractions
from pricememory.extraction.types import ExtractedClient, ExtractedItem, ExtractionResult, ExtractionUsage


def _item(material: str, rate: float) -> ExtractedItem:
    return ExtractedItem(material=material, rate=rate, unit="NOS", currency="INR", confidence=0.9)


def _structured(items: list[ExtractedItem], confidence: float = 0.88) -> ExtractionResult:
    return ExtractionResult(
        success=True,
        method="structured",
        confidence=confidence,
        items=items,
        client=ExtractedClient(name="ACME STEEL", email="purchase@acme-steel.co.in", contact_person="Ravi"),
        quoted_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )


def _fallback(items: list[ExtractedItem], confidence: float = 0.8) -> ExtractionResult:
    return ExtractionResult(
        success=True,
        method="fallback",
        confidence=confidence,
        items=items,
        client=ExtractedClient(name="Acme Steel Ltd"),
        terms={"payment": "30 days"},
        usage=ExtractionUsage(input_tokens=100, output_tokens=50, cost_usd=0.001),
    )


class MergeArbiterTests(unittest.TestCase):
    def test_agreeing_item_counts_earn_the_bonus(self) -> None:
        structured = _structured([_item("FIRE BRICK", 45.5), _item("MORTAR", 900)])
        fallback = _fallback([_item("FIRE BRICK IS8", 45.5), _item("HIGH ALUMINA MORTAR", 900)])

        merged = merge_extractions(structured, fallback, agreement_bonus=0.05)

        self.assertEqual(merged.method, "hybrid")
        self.assertEqual(merged.confidence, 0.85)
        self.assertEqual([item.material for item in merged.items], ["FIRE BRICK IS8", "HIGH ALUMINA MORTAR"])
        self.assertEqual(merged.usage.cost_usd, 0.001)
        self.assertEqual(merged.terms, {"payment": "30 days"})

    def test_client_and_date_gaps_are_filled_from_structured(self) -> None:
        merged = merge_extractions(_structured([_item("A", 1)]), _fallback([_item("A", 1)]))

        self.assertEqual(merged.client.name, "Acme Steel Ltd")
        self.assertEqual(merged.client.email, "purchase@acme-steel.co.in")
        self.assertEqual(merged.client.contact_person, "Ravi")
        self.assertEqual(merged.quoted_at, datetime(2026, 3, 1, tzinfo=timezone.utc))

    def test_disagreeing_counts_keep_fallback_confidence(self) -> None:
        merged = merge_extractions(
            _structured([_item("A", 1)]),
            _fallback([_item("A", 1), _item("B", 2)], confidence=0.8),
        )

        self.assertEqual(merged.confidence, 0.8)
        self.assertEqual(len(merged.items), 2)

    def test_bonus_is_capped_at_one(self) -> None:
        merged = merge_extractions(_structured([_item("A", 1)]), _fallback([_item("A", 1)], confidence=0.98))

        self.assertEqual(merged.confidence, 1.0)

    def test_single_successful_result_passes_through(self) -> None:
        structured = _structured([_item("A", 1)], confidence=0.97)

        merged = merge_extractions(structured, None)

        self.assertEqual(merged.method, "structured")
        self.assertEqual(merged.confidence, 0.97)
        self.assertEqual(merged.client.name, "ACME STEEL")

        failed = ExtractionResult.failure("structured", "no quotation table found")
        merged = merge_extractions(failed, _fallback([_item("A", 1)], confidence=0.7))

        self.assertEqual(merged.method, "fallback")
        self.assertEqual(merged.confidence, 0.7)
        self.assertEqual(merged.notes, ["structured: no quotation table found"])

    def test_nothing_extracted(self) -> None:
        merged = merge_extractions(
            ExtractionResult.failure("structured", "empty body"),
            ExtractionResult.failure("fallback", "no line items found"),
        )

        self.assertEqual(merged.method, "none")
        self.assertEqual(merged.confidence, 0.0)
        self.assertEqual(merged.items, [])
        self.assertTrue(merged.client.is_empty())

    def test_merge_does_not_mutate_inputs(self) -> None:
        structured = _structured([_item("A", 1)])
        fallback = _fallback([_item("A", 1)])

        merged = merge_extractions(structured, fallback)
        merged.items.append(_item("B", 2))
        merged.client.name = "changed"

        self.assertEqual(len(fallback.items), 1)
        self.assertEqual(fallback.client.name, "Acme Steel Ltd")
        self.assertEqual(structured.client.name, "ACME STEEL")


if __name__ == "__main__":
    unittest.main()
