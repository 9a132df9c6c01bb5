"""Schemas for parsing telemetry and learned aliases."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class OverallParsingStats(BaseModel):
    total_attempts: int
    high_confidence: int
    medium_confidence: int
    low_confidence: int
    avg_confidence: float | None
    total_items_extracted: int
    total_cost_usd: float


class MethodParsingStats(BaseModel):
    method: str
    count: int
    avg_confidence: float | None
    total_items: int
    total_cost_usd: float


class FailurePattern(BaseModel):
    method: str
    error: str
    failure_count: int


class ParsingStats(BaseModel):
    """Parsing attempts over a trailing day window."""

    days: int
    overall: OverallParsingStats
    by_method: list[MethodParsingStats]
    failures: list[FailurePattern]


class ImprovementSuggestion(BaseModel):
    type: str
    priority: Literal["high", "medium", "low"]
    message: str


class AliasRecord(BaseModel):
    kind: Literal["material", "client"]
    alias: str
    entity_id: int
    origin: str = "manual"
    created_at: datetime | None = None


class ParsingHistoryItem(BaseModel):
    message_id: str | None
    method: str
    confidence: float
    items_extracted: int
    processing_time_ms: int | None
    cost_usd: float
    created_at: datetime


class ParsingFailureItem(BaseModel):
    message_id: str | None
    method: str
    error: str
    email_subject: str | None
    created_at: datetime


class LearningExport(BaseModel):
    """Portable dump of learned aliases plus recent telemetry."""

    aliases: list[AliasRecord]
    parsing_history: list[ParsingHistoryItem] = Field(default_factory=list)
    failures: list[ParsingFailureItem] = Field(default_factory=list)
    exported_at: datetime


class LearningImportRequest(BaseModel):
    aliases: list[AliasRecord] = Field(default_factory=list)


class LearningImportResult(BaseModel):
    imported: int
    skipped: int


class CleanupResult(BaseModel):
    deleted_history: int
    deleted_failures: int


class LLMUsageStats(BaseModel):
    enabled: bool
    model: str
    total_calls: int
    total_tokens: int
    total_cost_usd: float
    avg_cost_per_call_usd: float
    avg_tokens_per_call: float


class ResolverStats(BaseModel):
    materials_indexed: int
    clients_indexed: int
    material_aliases: int
    client_aliases: int


class MatchDiagnostic(BaseModel):
    """Outcome of one ad hoc resolution for debugging thresholds."""

    matched: bool
    entity_id: int | None
    confidence: float
    tier: str | None
    best_candidate_name: str | None = None
    normalized_text: str
