"""Schemas for the review queue surface."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from pricememory.extraction.payload import ClientPayload, ItemPayload

ReviewStatusFilter = Literal["pending", "approved", "rejected", "corrected", "all"]


class ReviewQueueEntry(BaseModel):
    id: int
    source_message_id: str
    thread_id: str | None
    subject: str | None
    sender: str | None
    confidence: float
    method: str
    status: str
    extracted_payload: dict[str, Any]
    reviewed_by: str | None
    reviewed_at: datetime | None
    corrections: dict[str, Any] | None
    created_at: datetime


class ReviewQueueListResponse(BaseModel):
    items: list[ReviewQueueEntry]
    total: int
    limit: int
    offset: int


class ReviewQueueStats(BaseModel):
    pending: int
    approved: int
    rejected: int
    corrected: int
    total: int
    avg_pending_confidence: float | None


class ReviewDecisionRequest(BaseModel):
    reviewed_by: str | None = None


class ReviewCorrections(BaseModel):
    """Reviewer edits merged over the stored extraction before replay.

    `materials` and `clients` map raw extracted text to the catalog id it should
    resolve to; every entry becomes a learned alias.
    """

    items: list[ItemPayload] | None = None
    client: ClientPayload | None = None
    quoted_at: datetime | None = None
    materials: dict[str, int] = Field(default_factory=dict)
    clients: dict[str, int] = Field(default_factory=dict)


class ReviewCorrectionRequest(BaseModel):
    reviewed_by: str | None = None
    corrections: ReviewCorrections


class ReviewDecisionResult(BaseModel):
    id: int
    status: str
    price_entries_created: int
    aliases_learned: int = 0
