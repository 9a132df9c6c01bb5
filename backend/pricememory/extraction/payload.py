"""JSON form of a merged extraction, stored on review queue items."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from pricememory.extraction.types import (
    ExtractedClient,
    ExtractedItem,
    ExtractionMethod,
    ExtractionUsage,
    MergedExtraction,
)


class ItemPayload(BaseModel):
    material: str
    rate: float
    unit: str
    currency: str
    quantity: float | None = None
    tax_code: str | None = None
    delivery_location: str | None = None
    delivery_terms: str | None = None
    confidence: float = 0.0


class ClientPayload(BaseModel):
    name: str = ""
    email: str = ""
    contact_person: str = ""


class ExtractionPayload(BaseModel):
    method: ExtractionMethod
    confidence: float
    items: list[ItemPayload] = Field(default_factory=list)
    client: ClientPayload = Field(default_factory=ClientPayload)
    terms: dict[str, str] = Field(default_factory=dict)
    quoted_at: datetime | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    notes: list[str] = Field(default_factory=list)

    @classmethod
    def from_merged(cls, merged: MergedExtraction) -> "ExtractionPayload":
        return cls(
            method=merged.method,
            confidence=merged.confidence,
            items=[
                ItemPayload(
                    material=item.material,
                    rate=item.rate,
                    unit=item.unit,
                    currency=item.currency,
                    quantity=item.quantity,
                    tax_code=item.tax_code,
                    delivery_location=item.delivery_location,
                    delivery_terms=item.delivery_terms,
                    confidence=item.confidence,
                )
                for item in merged.items
            ],
            client=ClientPayload(
                name=merged.client.name,
                email=merged.client.email,
                contact_person=merged.client.contact_person,
            ),
            terms=dict(merged.terms),
            quoted_at=merged.quoted_at,
            input_tokens=merged.usage.input_tokens,
            output_tokens=merged.usage.output_tokens,
            cost_usd=merged.usage.cost_usd,
            notes=list(merged.notes),
        )

    def to_merged(self) -> MergedExtraction:
        return MergedExtraction(
            method=self.method,
            confidence=self.confidence,
            items=[ExtractedItem(**item.model_dump()) for item in self.items],
            client=ExtractedClient(**self.client.model_dump()),
            terms=dict(self.terms),
            quoted_at=self.quoted_at,
            usage=ExtractionUsage(
                input_tokens=self.input_tokens,
                output_tokens=self.output_tokens,
                cost_usd=self.cost_usd,
            ),
            notes=list(self.notes),
        )

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
