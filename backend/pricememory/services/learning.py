"""Telemetry and learning store: parsing history, failures and learned aliases."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pricememory.entity_resolution.normalization import EntityKind, normalize
from pricememory.extraction.types import ExtractionUsage
from pricememory.models import ClientAlias, MaterialAlias, ParsingFailureRecord, ParsingHistoryRecord
from pricememory.models.alias import ALIAS_ORIGINS
from pricememory.schemas.learning import (
    AliasRecord,
    CleanupResult,
    FailurePattern,
    ImprovementSuggestion,
    LearningExport,
    LearningImportResult,
    MethodParsingStats,
    OverallParsingStats,
    ParsingFailureItem,
    ParsingHistoryItem,
    ParsingStats,
)
from pricememory.services.catalog import UnknownCatalogEntityError, get_entity

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE = 0.9
MEDIUM_CONFIDENCE = 0.7
_EXPORT_HISTORY_LIMIT = 1000
_EXPORT_FAILURE_LIMIT = 100
_MAX_ERROR_CHARS = 2000


def _alias_model(kind: EntityKind) -> type[MaterialAlias] | type[ClientAlias]:
    return MaterialAlias if kind == "material" else ClientAlias


def _alias_target_column(kind: EntityKind):
    return MaterialAlias.material_id if kind == "material" else ClientAlias.client_id


def upsert_alias(
    db: Session,
    kind: EntityKind,
    text: str,
    entity_id: int,
    origin: str = "learned",
) -> MaterialAlias | ClientAlias | None:
    """Map the normalized text to an entity; a later write for the same text replaces the target."""

    if origin not in ALIAS_ORIGINS:
        raise ValueError(f"unknown alias origin: {origin}")
    alias_text = normalize(kind, text)
    if not alias_text:
        return None
    get_entity(db, kind, entity_id)

    model = _alias_model(kind)
    row = db.scalars(select(model).where(model.alias == alias_text)).first()
    if row is None:
        row = model(alias=alias_text, origin=origin)
        _set_alias_target(row, kind, entity_id)
        try:
            with db.begin_nested():
                db.add(row)
                db.flush()
        except IntegrityError:
            row = db.scalars(select(model).where(model.alias == alias_text)).one()
            _overwrite_alias(db, row, kind, entity_id, origin)
    else:
        _overwrite_alias(db, row, kind, entity_id, origin)

    logger.info("learning.alias_upserted kind=%s alias=%s entity_id=%s origin=%s", kind, alias_text, entity_id, origin)
    return row


def _set_alias_target(row: MaterialAlias | ClientAlias, kind: EntityKind, entity_id: int) -> None:
    if kind == "material":
        row.material_id = entity_id
    else:
        row.client_id = entity_id


def _overwrite_alias(
    db: Session, row: MaterialAlias | ClientAlias, kind: EntityKind, entity_id: int, origin: str
) -> None:
    _set_alias_target(row, kind, entity_id)
    row.origin = origin
    row.created_at = datetime.now(timezone.utc)
    db.flush()


def load_aliases(db: Session, kind: EntityKind) -> dict[str, int]:
    """Return normalized alias text -> entity id for one entity kind."""

    model = _alias_model(kind)
    target = _alias_target_column(kind)
    rows = db.execute(select(model.alias, target).order_by(model.id.asc())).all()
    return {alias: entity_id for alias, entity_id in rows}


def list_aliases(db: Session, kind: EntityKind) -> list[AliasRecord]:
    model = _alias_model(kind)
    rows = db.scalars(select(model).order_by(model.created_at.desc(), model.id.desc())).all()
    return [
        AliasRecord(kind=kind, alias=row.alias, entity_id=row.entity_id, origin=row.origin, created_at=row.created_at)
        for row in rows
    ]


def record_parsing_success(
    db: Session,
    *,
    message_id: str | None,
    method: str,
    confidence: float,
    items_extracted: int,
    processing_time_ms: int | None = None,
    usage: ExtractionUsage | None = None,
) -> ParsingHistoryRecord:
    usage = usage or ExtractionUsage()
    record = ParsingHistoryRecord(
        message_id=message_id,
        method=method,
        confidence=confidence,
        items_extracted=items_extracted,
        processing_time_ms=processing_time_ms,
        cost_usd=usage.cost_usd,
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
    )
    db.add(record)
    db.flush()
    return record


def record_parsing_failure(
    db: Session,
    *,
    message_id: str | None,
    method: str,
    error: str,
    email_subject: str | None = None,
    email_body_length: int | None = None,
) -> ParsingFailureRecord:
    record = ParsingFailureRecord(
        message_id=message_id,
        method=method,
        error=(error or "unknown error")[:_MAX_ERROR_CHARS],
        email_subject=email_subject,
        email_body_length=email_body_length,
    )
    db.add(record)
    db.flush()
    return record


def get_parsing_stats(db: Session, *, days: int = 30) -> ParsingStats:
    """Aggregate parsing attempts and failures over the last `days` days."""

    since = datetime.now(timezone.utc) - timedelta(days=days)
    overall_row = db.execute(
        select(
            func.count(ParsingHistoryRecord.id),
            func.sum(case((ParsingHistoryRecord.confidence >= HIGH_CONFIDENCE, 1), else_=0)),
            func.sum(
                case(
                    (
                        (ParsingHistoryRecord.confidence >= MEDIUM_CONFIDENCE)
                        & (ParsingHistoryRecord.confidence < HIGH_CONFIDENCE),
                        1,
                    ),
                    else_=0,
                )
            ),
            func.sum(case((ParsingHistoryRecord.confidence < MEDIUM_CONFIDENCE, 1), else_=0)),
            func.avg(ParsingHistoryRecord.confidence),
            func.sum(ParsingHistoryRecord.items_extracted),
            func.sum(ParsingHistoryRecord.cost_usd),
        ).where(ParsingHistoryRecord.created_at >= since)
    ).one()
    total, high, medium, low, avg_confidence, items, cost = overall_row

    method_rows = db.execute(
        select(
            ParsingHistoryRecord.method,
            func.count(ParsingHistoryRecord.id).label("count"),
            func.avg(ParsingHistoryRecord.confidence),
            func.sum(ParsingHistoryRecord.items_extracted),
            func.sum(ParsingHistoryRecord.cost_usd),
        )
        .where(ParsingHistoryRecord.created_at >= since)
        .group_by(ParsingHistoryRecord.method)
        .order_by(func.count(ParsingHistoryRecord.id).desc(), ParsingHistoryRecord.method.asc())
    ).all()

    failure_rows = db.execute(
        select(
            ParsingFailureRecord.method,
            ParsingFailureRecord.error,
            func.count(ParsingFailureRecord.id).label("failure_count"),
        )
        .where(ParsingFailureRecord.created_at >= since)
        .group_by(ParsingFailureRecord.method, ParsingFailureRecord.error)
        .order_by(func.count(ParsingFailureRecord.id).desc(), ParsingFailureRecord.method.asc())
        .limit(10)
    ).all()

    return ParsingStats(
        days=days,
        overall=OverallParsingStats(
            total_attempts=int(total or 0),
            high_confidence=int(high or 0),
            medium_confidence=int(medium or 0),
            low_confidence=int(low or 0),
            avg_confidence=round(float(avg_confidence), 4) if avg_confidence is not None else None,
            total_items_extracted=int(items or 0),
            total_cost_usd=round(float(cost or 0.0), 6),
        ),
        by_method=[
            MethodParsingStats(
                method=method,
                count=int(count),
                avg_confidence=round(float(method_avg), 4) if method_avg is not None else None,
                total_items=int(method_items or 0),
                total_cost_usd=round(float(method_cost or 0.0), 6),
            )
            for method, count, method_avg, method_items, method_cost in method_rows
        ],
        failures=[
            FailurePattern(method=method, error=error, failure_count=int(failure_count))
            for method, error, failure_count in failure_rows
        ],
    )


def suggest_improvements(db: Session, *, days: int = 30) -> list[ImprovementSuggestion]:
    """Turn parsing statistics into tuning hints."""

    stats = get_parsing_stats(db, days=days)
    suggestions: list[ImprovementSuggestion] = []
    overall = stats.overall

    if overall.total_attempts:
        low_rate = overall.low_confidence / overall.total_attempts
        if low_rate > 0.1:
            suggestions.append(
                ImprovementSuggestion(
                    type="confidence",
                    priority="high",
                    message=(
                        f"{low_rate * 100:.1f}% of parsing attempts have low confidence. "
                        "Consider reviewing parsing rules."
                    ),
                )
            )

    by_method = {row.method: row for row in stats.by_method}
    structured = by_method.get("structured")
    fallback_count = sum(by_method[name].count for name in ("fallback", "hybrid") if name in by_method)
    if structured is not None and fallback_count:
        if structured.avg_confidence is not None and structured.avg_confidence < 0.8:
            suggestions.append(
                ImprovementSuggestion(
                    type="structured_extractor",
                    priority="medium",
                    message="Table extractor has low average confidence. Consider improving table detection rules.",
                )
            )
        if fallback_count > structured.count * 0.5:
            suggestions.append(
                ImprovementSuggestion(
                    type="cost_optimization",
                    priority="medium",
                    message="The language-model fallback is used frequently. Improving table extraction would reduce cost.",
                )
            )

    if stats.failures:
        top = stats.failures[0]
        suggestions.append(
            ImprovementSuggestion(
                type="failure_pattern",
                priority="high",
                message=f"Most common failure: {top.error} ({top.failure_count} times)",
            )
        )
    return suggestions


def export_learning_data(db: Session) -> LearningExport:
    history = db.scalars(
        select(ParsingHistoryRecord)
        .order_by(ParsingHistoryRecord.created_at.desc(), ParsingHistoryRecord.id.desc())
        .limit(_EXPORT_HISTORY_LIMIT)
    ).all()
    failures = db.scalars(
        select(ParsingFailureRecord)
        .order_by(ParsingFailureRecord.created_at.desc(), ParsingFailureRecord.id.desc())
        .limit(_EXPORT_FAILURE_LIMIT)
    ).all()
    return LearningExport(
        aliases=list_aliases(db, "material") + list_aliases(db, "client"),
        parsing_history=[
            ParsingHistoryItem(
                message_id=row.message_id,
                method=row.method,
                confidence=row.confidence,
                items_extracted=row.items_extracted,
                processing_time_ms=row.processing_time_ms,
                cost_usd=row.cost_usd,
                created_at=row.created_at,
            )
            for row in history
        ],
        failures=[
            ParsingFailureItem(
                message_id=row.message_id,
                method=row.method,
                error=row.error,
                email_subject=row.email_subject,
                created_at=row.created_at,
            )
            for row in failures
        ],
        exported_at=datetime.now(timezone.utc),
    )


def import_aliases(db: Session, aliases: list[AliasRecord]) -> LearningImportResult:
    """Upsert exported aliases; entries pointing at unknown entities are skipped."""

    imported = 0
    skipped = 0
    for record in aliases:
        origin = record.origin if record.origin in ALIAS_ORIGINS else "manual"
        try:
            row = upsert_alias(db, record.kind, record.alias, record.entity_id, origin)
        except UnknownCatalogEntityError:
            logger.warning(
                "learning.alias_import_skipped kind=%s alias=%s entity_id=%s",
                record.kind,
                record.alias,
                record.entity_id,
            )
            skipped += 1
            continue
        if row is None:
            skipped += 1
        else:
            imported += 1
    return LearningImportResult(imported=imported, skipped=skipped)


def cleanup_telemetry(db: Session, *, days_to_keep: int = 365) -> CleanupResult:
    cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
    deleted_history = db.execute(delete(ParsingHistoryRecord).where(ParsingHistoryRecord.created_at < cutoff))
    deleted_failures = db.execute(delete(ParsingFailureRecord).where(ParsingFailureRecord.created_at < cutoff))
    logger.info(
        "learning.cleanup days_to_keep=%s deleted_history=%s deleted_failures=%s",
        days_to_keep,
        deleted_history.rowcount,
        deleted_failures.rowcount,
    )
    return CleanupResult(
        deleted_history=int(deleted_history.rowcount or 0),
        deleted_failures=int(deleted_failures.rowcount or 0),
    )
