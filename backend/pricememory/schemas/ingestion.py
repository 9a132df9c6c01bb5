"""Schemas for ingestion runs and the ingestion ledger."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

RunStatus = Literal["completed", "busy", "unavailable", "failed"]


class IngestionRunRequest(BaseModel):
    after: datetime | None = None
    before: datetime | None = None
    max_messages: int | None = Field(default=None, ge=1, le=5000)


class IngestionRunSummary(BaseModel):
    """Outcome counters for one ingestion run."""

    status: RunStatus
    started_at: datetime | None = None
    finished_at: datetime | None = None
    messages_seen: int = 0
    skipped_duplicates: int = 0
    processed: int = 0
    succeeded: int = 0
    partial: int = 0
    failed: int = 0
    queued_for_review: int = 0
    price_entries_created: int = 0
    materials_created: int = 0
    clients_created: int = 0
    detail: str | None = None


class IngestionLogEntry(BaseModel):
    message_id: str
    thread_id: str | None
    subject: str | None
    sender: str | None
    items_extracted: int
    status: str
    error_message: str | None
    created_at: datetime


class IngestionLogResponse(BaseModel):
    items: list[IngestionLogEntry]
    total: int
    limit: int
    offset: int


class IngestionStats(BaseModel):
    total_processed: int
    succeeded: int
    partial: int
    failed: int
    total_items_extracted: int
    price_entries: int
    pending_reviews: int
    last_processed_at: datetime | None
    running: bool
