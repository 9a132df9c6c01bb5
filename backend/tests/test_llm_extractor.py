"""Unit tests for the language-model fallback extractor contract."""

from __future__ import annotations

import json
import unittest
from datetime import datetime, timezone
from unittest import mock

from pricememory.extraction import llm_extractor
from pricememory.extraction.llm_extractor import (
    FallbackLLMExtractor,
    LLMCompletion,
    LLMExtractionError,
    OpenAIChatCompletionsClient,
)
from pricememory.extraction.types import CatalogSample
from pricememory.mail.types import EmailMessage


class _StubClient:
    model = "stub-model-v1"

    def __init__(self, payload: dict | None = None, *, error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error
        self.calls: list[tuple[dict, dict]] = []

    def extract_structured(self, email, *, catalog_hints):  # noqa: ANN001
        self.calls.append((email, catalog_hints))
        if self.error is not None:
            raise self.error
        return LLMCompletion(payload=self.payload, input_tokens=1200, output_tokens=300)


def _message(**overrides) -> EmailMessage:
    values = {
        "message_id": "msg-llm-001",
        "subject": "Revised offer",
        "sender": "sales@supplier.example",
        "recipient": "Ravi Kumar <ravi@acme-steel.co.in>",
        "sent_at": datetime(2026, 4, 1, 8, 0, tzinfo=timezone.utc),
        "text_body": "Fire brick IS8 - Rs 48 per piece, 1000 pcs, ex works Katni.",
    }
    values.update(overrides)
    return EmailMessage(**values)


class FallbackLLMExtractorTests(unittest.TestCase):
    def test_payload_is_normalized_into_items(self) -> None:
        client = _StubClient(
            {
                "confidence": 0.82,
                "client": {"name": "Acme Steel Ltd", "email": "", "contact_person": None},
                "items": [
                    {
                        "material": "Fire brick IS8",
                        "quantity": "1,000",
                        "unit": "pcs",
                        "rate": "Rs 48",
                        "tax_code": 6902,
                        "delivery_location": "Katni (MP)",
                    },
                    {"material": "", "rate": 10},
                    {"material": "Mortar", "rate": None},
                ],
                "terms": {"payment": "30 days", "freight": None},
                "metadata": {"quotation_date": "2026-03-28", "reference_number": 4411},
            }
        )
        extractor = FallbackLLMExtractor(client, public_email_domains=["gmail.com"])

        result = extractor.extract(_message(), catalog=CatalogSample(materials=["FIRE BRICK IS8"], clients=["ACME"]))

        self.assertTrue(result.success)
        self.assertEqual(result.method, "fallback")
        self.assertEqual(result.confidence, 0.82)
        self.assertEqual(len(result.items), 1)
        item = result.items[0]
        self.assertEqual(item.material, "FIRE BRICK IS8")
        self.assertEqual(item.rate, 48.0)
        self.assertEqual(item.quantity, 1000.0)
        self.assertEqual(item.unit, "PCS")
        self.assertEqual(item.currency, "INR")
        self.assertEqual(item.tax_code, "6902")
        self.assertEqual(item.delivery_location, "KATNI")
        self.assertEqual(item.confidence, 0.9)
        self.assertEqual(result.client.name, "Acme Steel Ltd")
        self.assertEqual(result.client.email, "ravi@acme-steel.co.in")
        self.assertEqual(result.client.contact_person, "Ravi Kumar")
        self.assertEqual(result.terms, {"payment": "30 days"})
        self.assertEqual(result.quoted_at, datetime(2026, 3, 28, tzinfo=timezone.utc))

        email, hints = client.calls[0]
        self.assertIn("Fire brick IS8", email["body"])
        self.assertEqual(hints["materials"], ["FIRE BRICK IS8"])

    def test_usage_and_cost_are_tracked(self) -> None:
        extractor = FallbackLLMExtractor(
            _StubClient({"items": [{"material": "Mortar", "rate": 900}]}),
            input_cost_per_million=0.15,
            output_cost_per_million=0.60,
        )

        result = extractor.extract(_message())

        self.assertEqual(result.usage.input_tokens, 1200)
        self.assertEqual(result.usage.output_tokens, 300)
        self.assertAlmostEqual(result.usage.cost_usd, 0.00036)
        stats = extractor.stats()
        self.assertTrue(stats["enabled"])
        self.assertEqual(stats["model"], "stub-model-v1")
        self.assertEqual(stats["total_calls"], 1)
        self.assertEqual(stats["total_tokens"], 1500)
        self.assertEqual(stats["avg_tokens_per_call"], 1500.0)

        extractor.reset_stats()
        self.assertEqual(extractor.stats()["total_calls"], 0)

    def test_missing_date_falls_back_to_sent_at(self) -> None:
        extractor = FallbackLLMExtractor(_StubClient({"items": [{"material": "Mortar", "rate": 900}]}))

        result = extractor.extract(_message())

        self.assertEqual(result.quoted_at, datetime(2026, 4, 1, 8, 0, tzinfo=timezone.utc))
        self.assertEqual(result.confidence, 0.9)

    def test_disabled_extractor_returns_failure(self) -> None:
        extractor = FallbackLLMExtractor(None)

        result = extractor.extract(_message())

        self.assertFalse(extractor.enabled)
        self.assertFalse(result.success)
        self.assertIn("disabled", result.reason)

    def test_provider_error_becomes_failure_result(self) -> None:
        extractor = FallbackLLMExtractor(_StubClient(error=LLMExtractionError("OpenAI request timed out")))

        result = extractor.extract(_message())

        self.assertFalse(result.success)
        self.assertEqual(result.reason, "OpenAI request timed out")

    def test_invalid_payload_becomes_failure_result(self) -> None:
        extractor = FallbackLLMExtractor(_StubClient({"items": "not a list"}))

        result = extractor.extract(_message())

        self.assertFalse(result.success)
        self.assertTrue(result.reason.startswith("payload failed validation"))
        self.assertEqual(extractor.last_raw_output, {"items": "not a list"})

    def test_payload_without_items_fails(self) -> None:
        extractor = FallbackLLMExtractor(_StubClient({"confidence": 0.4, "items": []}))

        result = extractor.extract(_message())

        self.assertFalse(result.success)
        self.assertEqual(result.reason, "no line items found")

    def test_html_tables_are_rendered_as_pipe_rows(self) -> None:
        client = _StubClient({"items": [{"material": "Mortar", "rate": 900}]})
        extractor = FallbackLLMExtractor(client)

        extractor.extract(
            _message(
                html_body="<table><tr><th>Material</th><th>Rate</th></tr><tr><td>Mortar</td><td>900</td></tr></table>",
                text_body="",
            )
        )

        body = client.calls[0][0]["body"]
        self.assertIn("Material | Rate", body)
        self.assertIn("Mortar | 900", body)


class _HTTPResponse:
    def __init__(self, body: dict) -> None:
        self._raw = json.dumps(body).encode("utf-8")

    def __enter__(self) -> "_HTTPResponse":
        return self

    def __exit__(self, *exc_info) -> None:  # noqa: ANN002
        return None

    def read(self) -> bytes:
        return self._raw


def _completion(usage: dict) -> dict:
    content = json.dumps({"items": [{"material": "Mortar", "rate": 900, "unit": "bag"}]})
    return {"choices": [{"message": {"content": content}}], "usage": usage}


class OpenAIChatCompletionsClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = OpenAIChatCompletionsClient(api_key="sk-test", model="gpt-4o-mini")

    def test_usage_counts_are_read(self) -> None:
        response = _HTTPResponse(_completion({"prompt_tokens": 812, "completion_tokens": 95}))
        with mock.patch.object(llm_extractor.urllib_request, "urlopen", return_value=response):
            completion = self.client.extract_structured({"body": "Mortar 900"}, catalog_hints={})

        self.assertEqual((completion.input_tokens, completion.output_tokens), (812, 95))
        self.assertEqual(completion.payload["items"][0]["material"], "Mortar")

    def test_non_numeric_usage_becomes_a_failure_result(self) -> None:
        response = _HTTPResponse(_completion({"prompt_tokens": "n/a", "completion_tokens": 95}))
        with mock.patch.object(llm_extractor.urllib_request, "urlopen", return_value=response):
            with self.assertRaises(LLMExtractionError):
                self.client.extract_structured({"body": "Mortar 900"}, catalog_hints={})

            result = FallbackLLMExtractor(self.client).extract(_message())

        self.assertFalse(result.success)
        self.assertEqual(result.method, "fallback")
        self.assertEqual(result.reason, "OpenAI returned an unexpected or non-JSON response")


if __name__ == "__main__":
    unittest.main()
