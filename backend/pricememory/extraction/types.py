"""Typed extraction outputs independent of persistence."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

ExtractionMethod = Literal["structured", "fallback", "hybrid", "none"]


@dataclass(slots=True)
class ExtractedItem:
    """One quotation line item."""

    material: str
    rate: float
    unit: str
    currency: str
    quantity: float | None = None
    tax_code: str | None = None
    delivery_location: str | None = None
    delivery_terms: str | None = None
    confidence: float = 0.0


@dataclass(slots=True)
class ExtractedClient:
    """Quotation recipient as observed in the email."""

    name: str = ""
    email: str = ""
    contact_person: str = ""

    @property
    def domain(self) -> str:
        _, _, domain = self.email.rpartition("@")
        return domain.strip().lower()

    def is_empty(self) -> bool:
        return not (self.name.strip() or self.email.strip())


@dataclass(slots=True)
class ExtractionUsage:
    """Language-model usage attached to one extraction."""

    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(slots=True)
class ExtractionResult:
    """Output of one extractor; failures are values, not exceptions."""

    success: bool
    method: ExtractionMethod
    confidence: float
    items: list[ExtractedItem] = field(default_factory=list)
    client: ExtractedClient | None = None
    terms: dict[str, str] = field(default_factory=dict)
    quoted_at: datetime | None = None
    reason: str | None = None
    usage: ExtractionUsage | None = None

    @classmethod
    def failure(
        cls,
        method: ExtractionMethod,
        reason: str,
        *,
        confidence: float = 0.0,
        usage: ExtractionUsage | None = None,
    ) -> "ExtractionResult":
        return cls(success=False, method=method, confidence=confidence, reason=reason, usage=usage)


@dataclass(slots=True)
class MergedExtraction:
    """Reconciled extraction consumed by resolution and persistence.

    Built only by the merge arbiter (or rebuilt from a stored review payload), so
    every field is present: items may be empty, the client may be blank.
    """

    method: ExtractionMethod
    confidence: float
    items: list[ExtractedItem]
    client: ExtractedClient
    terms: dict[str, str] = field(default_factory=dict)
    quoted_at: datetime | None = None
    usage: ExtractionUsage = field(default_factory=ExtractionUsage)
    notes: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CatalogSample:
    """Known catalog names handed to the language model as matching hints."""

    materials: list[str] = field(default_factory=list)
    clients: list[str] = field(default_factory=list)
