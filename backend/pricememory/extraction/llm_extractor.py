"""Language-model fallback extractor for quotation emails."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from time import perf_counter
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from bs4 import BeautifulSoup
from pydantic import BaseModel, Field, ValidationError, field_validator

from pricememory.extraction.extractor_interface import ExtractorInterface
from pricememory.extraction.parsing import (
    clamp,
    clean_material_text,
    detect_currency,
    normalize_delivery_location,
    normalize_unit,
    parse_email_date,
    parse_quantity,
    parse_rate,
)
from pricememory.extraction.table_extractor import client_from_message
from pricememory.extraction.types import (
    CatalogSample,
    ExtractedClient,
    ExtractedItem,
    ExtractionResult,
    ExtractionUsage,
)
from pricememory.mail.types import EmailMessage

logger = logging.getLogger(__name__)

LLM_EXTRACTION_PROMPT_VERSION = "quotation.v1"
_PROMPT_FILES: dict[str, Path] = {
    "quotation.v1": Path(__file__).resolve().parent / "prompts" / "quotation_v1.txt",
}
_MAX_BODY_CHARS = 12000
_DEFAULT_CONFIDENCE = 0.9


class LLMExtractionError(RuntimeError):
    """Raised when AI extraction is misconfigured or the provider response is invalid."""


@dataclass(slots=True)
class LLMCompletion:
    """Decoded JSON payload plus token usage reported by the provider."""

    payload: dict[str, Any]
    input_tokens: int = 0
    output_tokens: int = 0


class LLMClient(Protocol):
    """Protocol for pluggable LLM clients used by the extractor."""

    def extract_structured(self, email: dict[str, Any], *, catalog_hints: dict[str, Any]) -> LLMCompletion:
        """Return a structured quotation payload."""


@dataclass(slots=True)
class OpenAIChatCompletionsClient:
    """Minimal OpenAI Chat Completions client using stdlib HTTP."""

    api_key: str
    model: str
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: int = 60
    max_tokens: int = 2000
    temperature: float = 0.1

    def extract_structured(self, email: dict[str, Any], *, catalog_hints: dict[str, Any]) -> LLMCompletion:
        """Call OpenAI and return parsed JSON extraction output."""

        system_prompt = _get_extraction_system_prompt()
        user_prompt = json.dumps(
            {
                "task": "Extract the quotation from this email.",
                "email": email,
                "known_materials": catalog_hints.get("materials", []),
                "known_clients": catalog_hints.get("clients", []),
            },
            ensure_ascii=False,
        )

        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        req = urllib_request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise LLMExtractionError(f"OpenAI HTTP {exc.code}: {detail}") from exc
        except urllib_error.URLError as exc:
            raise LLMExtractionError(f"OpenAI request failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise LLMExtractionError("OpenAI request timed out") from exc

        try:
            decoded = json.loads(raw)
            message = decoded["choices"][0]["message"]
            refusal = message.get("refusal")
            if isinstance(refusal, str) and refusal.strip():
                raise LLMExtractionError(f"OpenAI refused extraction request: {refusal.strip()}")
            content = message["content"]
            if not isinstance(content, str):
                raise TypeError("OpenAI response content is not a string")
            parsed = json.loads(content)
            if not isinstance(parsed, dict):
                raise TypeError("OpenAI response content is not a JSON object")
            usage = decoded.get("usage") or {}
            input_tokens = int(usage.get("prompt_tokens") or 0)
            output_tokens = int(usage.get("completion_tokens") or 0)
        except LLMExtractionError:
            raise
        except (KeyError, IndexError, TypeError, AttributeError, ValueError) as exc:
            raise LLMExtractionError("OpenAI returned an unexpected or non-JSON response") from exc

        return LLMCompletion(payload=parsed, input_tokens=input_tokens, output_tokens=output_tokens)


@lru_cache(maxsize=8)
def _get_extraction_system_prompt(version: str = LLM_EXTRACTION_PROMPT_VERSION) -> str:
    prompt_file = _PROMPT_FILES.get(version)
    if prompt_file is None:
        raise LLMExtractionError(f"Extraction prompt version is not registered: {version}")
    try:
        prompt_text = prompt_file.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise LLMExtractionError(f"Failed to load extraction prompt file: {prompt_file}") from exc
    if not prompt_text:
        raise LLMExtractionError(f"Extraction prompt file is empty: {prompt_file}")
    return prompt_text


def _coerce_text(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class _RawClient(BaseModel):
    name: str | None = None
    email: str | None = None
    contact_person: str | None = None


class _RawItem(BaseModel):
    material: str | None = None
    quantity: float | str | None = None
    unit: str | None = None
    rate: float | str | None = None
    currency: str | None = None
    tax_code: str | None = None
    delivery_location: str | None = None
    delivery_terms: str | None = None
    confidence: float | None = None

    @field_validator("tax_code", "delivery_location", "delivery_terms", mode="before")
    @classmethod
    def coerce_codes(cls, value: Any) -> Any:
        return _coerce_text(value)


class _RawMetadata(BaseModel):
    quotation_date: str | None = None
    reference_number: str | None = None
    valid_until: str | None = None

    @field_validator("reference_number", mode="before")
    @classmethod
    def coerce_reference(cls, value: Any) -> Any:
        return _coerce_text(value)


class _RawQuotationPayload(BaseModel):
    confidence: float | None = None
    client: _RawClient | None = None
    items: list[_RawItem] = Field(default_factory=list)
    terms: dict[str, Any] | None = None
    metadata: _RawMetadata | None = None


class FallbackLLMExtractor(ExtractorInterface):
    """AI-powered extractor that normalizes structured LLM output.

    Without a client the extractor is disabled and every call returns a failure
    result, so the pipeline degrades to structured-only extraction.
    """

    def __init__(
        self,
        client: LLMClient | None,
        *,
        input_cost_per_million: float = 0.15,
        output_cost_per_million: float = 0.60,
        material_sample_size: int = 50,
        client_sample_size: int = 30,
        default_currency: str = "INR",
        public_email_domains: tuple[str, ...] | list[str] = (),
    ) -> None:
        self._client = client
        self._input_cost_per_million = input_cost_per_million
        self._output_cost_per_million = output_cost_per_million
        self._material_sample_size = material_sample_size
        self._client_sample_size = client_sample_size
        self._default_currency = default_currency
        self._public_email_domains = {domain.lower() for domain in public_email_domains}
        self._stats_lock = threading.Lock()
        self._total_calls = 0
        self._total_tokens = 0
        self._total_cost = 0.0
        self._last_raw_output: dict[str, Any] | None = None

    @property
    def enabled(self) -> bool:
        return self._client is not None

    @property
    def model_name(self) -> str:
        if self._client is None:
            return "disabled"
        return str(getattr(self._client, "model", self._client.__class__.__name__))

    @property
    def prompt_version(self) -> str:
        return LLM_EXTRACTION_PROMPT_VERSION

    @property
    def last_raw_output(self) -> dict[str, Any] | None:
        return self._last_raw_output

    def extract(self, message: EmailMessage, *, catalog: CatalogSample | None = None) -> ExtractionResult:
        """Extract a quotation with the language model; provider errors become failure results."""

        self._last_raw_output = None
        if self._client is None:
            return ExtractionResult.failure("fallback", "fallback extractor disabled: no API key configured")

        body = _render_body(message)
        if not body.strip():
            return ExtractionResult.failure("fallback", "empty body")

        catalog = catalog or CatalogSample()
        started = perf_counter()
        try:
            completion = self._client.extract_structured(
                {
                    "subject": message.subject,
                    "from": message.sender,
                    "to": message.recipient,
                    "date": message.sent_at.isoformat() if message.sent_at else None,
                    "body": body,
                },
                catalog_hints={
                    "materials": catalog.materials[: self._material_sample_size],
                    "clients": catalog.clients[: self._client_sample_size],
                },
            )
        except LLMExtractionError as exc:
            logger.warning("fallback.extract_failed message_id=%s error=%s", message.message_id, exc)
            return ExtractionResult.failure("fallback", str(exc))

        usage = self._record_usage(completion)
        self._last_raw_output = completion.payload if isinstance(completion.payload, dict) else {}
        if not self._last_raw_output:
            return ExtractionResult.failure("fallback", "empty response payload", usage=usage)
        try:
            validated = _RawQuotationPayload.model_validate(self._last_raw_output)
        except ValidationError as exc:
            logger.warning("fallback.payload_invalid message_id=%s error=%s", message.message_id, exc)
            return ExtractionResult.failure("fallback", f"payload failed validation: {exc}", usage=usage)

        result = self._build_result(validated, message, usage)
        logger.info(
            "fallback.extract message_id=%s prompt=%s items=%s confidence=%.3f tokens=%s cost_usd=%.6f total_ms=%.2f",
            message.message_id,
            self.prompt_version,
            len(result.items),
            result.confidence,
            usage.total_tokens,
            usage.cost_usd,
            (perf_counter() - started) * 1000,
        )
        return result

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            input_tokens / 1_000_000 * self._input_cost_per_million
            + output_tokens / 1_000_000 * self._output_cost_per_million
        )

    def stats(self) -> dict[str, Any]:
        with self._stats_lock:
            calls = self._total_calls
            return {
                "enabled": self.enabled,
                "model": self.model_name,
                "total_calls": calls,
                "total_tokens": self._total_tokens,
                "total_cost_usd": round(self._total_cost, 6),
                "avg_cost_per_call_usd": round(self._total_cost / calls, 6) if calls else 0.0,
                "avg_tokens_per_call": round(self._total_tokens / calls, 2) if calls else 0.0,
            }

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._total_calls = 0
            self._total_tokens = 0
            self._total_cost = 0.0

    def _record_usage(self, completion: LLMCompletion) -> ExtractionUsage:
        usage = ExtractionUsage(
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            cost_usd=self.estimate_cost(completion.input_tokens, completion.output_tokens),
        )
        with self._stats_lock:
            self._total_calls += 1
            self._total_tokens += usage.total_tokens
            self._total_cost += usage.cost_usd
        return usage

    def _build_result(
        self,
        validated: _RawQuotationPayload,
        message: EmailMessage,
        usage: ExtractionUsage,
    ) -> ExtractionResult:
        terms = {
            str(key): str(value).strip()
            for key, value in (validated.terms or {}).items()
            if value is not None and str(value).strip()
        }
        items: list[ExtractedItem] = []
        for raw_item in validated.items:
            material = clean_material_text(raw_item.material or "")
            rate = _to_float(raw_item.rate)
            if not material or rate is None or rate <= 0:
                continue
            currency_hint = raw_item.currency or (raw_item.rate if isinstance(raw_item.rate, str) else None)
            items.append(
                ExtractedItem(
                    material=material,
                    rate=rate,
                    unit=normalize_unit(raw_item.unit),
                    currency=detect_currency(currency_hint, self._default_currency),
                    quantity=_to_quantity(raw_item.quantity),
                    tax_code=(raw_item.tax_code or "").replace(" ", "") or None,
                    delivery_location=normalize_delivery_location(raw_item.delivery_location),
                    delivery_terms=(raw_item.delivery_terms or terms.get("delivery") or None),
                    confidence=clamp(
                        raw_item.confidence if raw_item.confidence is not None else _DEFAULT_CONFIDENCE
                    ),
                )
            )

        if not items:
            return ExtractionResult.failure("fallback", "no line items found", usage=usage)

        client = self._client_identity(validated.client, message)
        metadata = validated.metadata or _RawMetadata()
        quoted_at = parse_email_date(metadata.quotation_date) or message.sent_at
        confidence = validated.confidence if validated.confidence is not None else _DEFAULT_CONFIDENCE
        return ExtractionResult(
            success=True,
            method="fallback",
            confidence=clamp(confidence),
            items=items,
            client=client,
            terms=terms,
            quoted_at=quoted_at,
            usage=usage,
        )

    def _client_identity(self, raw: _RawClient | None, message: EmailMessage) -> ExtractedClient:
        default = client_from_message(message, self._public_email_domains)
        if raw is None:
            return default
        return ExtractedClient(
            name=(raw.name or "").strip() or default.name,
            email=(raw.email or "").strip().lower() or default.email,
            contact_person=(raw.contact_person or "").strip() or default.contact_person,
        )


def _to_float(value: float | str | None) -> float | None:
    if isinstance(value, str):
        return parse_rate(value)
    return float(value) if value is not None else None


def _to_quantity(value: float | str | None) -> float | None:
    quantity = parse_quantity(value)
    return quantity if quantity else None


def _render_body(message: EmailMessage) -> str:
    """Render the body as text, keeping table rows on one line with '|' separators."""

    if not message.html_body.strip():
        return message.text_body[:_MAX_BODY_CHARS]
    soup = BeautifulSoup(message.html_body, "html.parser")
    for element in soup(["script", "style", "head"]):
        element.decompose()
    for row in soup.find_all("tr"):
        cells = [" ".join(cell.get_text(" ").split()) for cell in row.find_all(["td", "th"], recursive=False)]
        row.replace_with(soup.new_string("\n" + " | ".join(cells) + "\n"))
    lines = [" ".join(line.split()) for line in soup.get_text("\n").splitlines()]
    text = "\n".join(line for line in lines if line)
    return text[:_MAX_BODY_CHARS]
