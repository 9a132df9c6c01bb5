"""Reconcile structured and fallback extraction results."""

from __future__ import annotations

from pricememory.extraction.parsing import clamp
from pricememory.extraction.types import ExtractedClient, ExtractionResult, ExtractionUsage, MergedExtraction


def merge_extractions(
    structured: ExtractionResult | None,
    fallback: ExtractionResult | None,
    *,
    agreement_bonus: float = 0.05,
) -> MergedExtraction:
    """Merge extractor outputs into one validated result without side effects.

    When both extractors succeeded the fallback items win, the confidence gains
    `agreement_bonus` if both found the same number of items, and empty client or
    date fields are filled from the structured result. A single successful result
    passes through unchanged.
    """

    usage = _copy_usage(fallback.usage if fallback is not None else None)
    notes = [
        f"{result.method}: {result.reason}"
        for result in (structured, fallback)
        if result is not None and not result.success and result.reason
    ]
    structured_ok = structured if structured is not None and structured.success else None
    fallback_ok = fallback if fallback is not None and fallback.success else None

    if structured_ok is not None and fallback_ok is not None:
        structured, fallback = structured_ok, fallback_ok
        confidence = fallback.confidence
        if len(fallback.items) == len(structured.items):
            confidence += agreement_bonus
            notes.append("item counts agree")
        return MergedExtraction(
            method="hybrid",
            confidence=round(clamp(confidence), 4),
            items=list(fallback.items),
            client=_backfill_client(fallback.client, structured.client),
            terms=dict(fallback.terms or structured.terms),
            quoted_at=fallback.quoted_at or structured.quoted_at,
            usage=usage,
            notes=notes,
        )

    chosen = fallback_ok or structured_ok
    if chosen is None:
        return MergedExtraction(
            method="none",
            confidence=0.0,
            items=[],
            client=ExtractedClient(),
            usage=usage,
            notes=notes,
        )
    return MergedExtraction(
        method=chosen.method,
        confidence=chosen.confidence,
        items=list(chosen.items),
        client=_copy_client(chosen.client),
        terms=dict(chosen.terms),
        quoted_at=chosen.quoted_at,
        usage=usage,
        notes=notes,
    )


def _backfill_client(primary: ExtractedClient | None, secondary: ExtractedClient | None) -> ExtractedClient:
    primary = primary or ExtractedClient()
    secondary = secondary or ExtractedClient()
    return ExtractedClient(
        name=primary.name or secondary.name,
        email=primary.email or secondary.email,
        contact_person=primary.contact_person or secondary.contact_person,
    )


def _copy_client(client: ExtractedClient | None) -> ExtractedClient:
    return _backfill_client(client, None)


def _copy_usage(usage: ExtractionUsage | None) -> ExtractionUsage:
    if usage is None:
        return ExtractionUsage()
    return ExtractionUsage(
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        cost_usd=usage.cost_usd,
    )
