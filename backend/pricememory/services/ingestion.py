"""Ingestion orchestration: discover, extract, resolve, persist or queue, log."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
import logging
import threading
import time
from time import perf_counter
from typing import Callable, Iterator

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from pricememory.config import Settings, get_settings
from pricememory.db.session import SessionLocal
from pricememory.entity_resolution.resolver import EntityResolver, ResolverThresholds
from pricememory.extraction.extractor_interface import ExtractorInterface
from pricememory.extraction.llm_extractor import FallbackLLMExtractor, OpenAIChatCompletionsClient
from pricememory.extraction.merge import merge_extractions
from pricememory.extraction.table_extractor import HTMLTableExtractor
from pricememory.mail.provider import EmailProvider, EmailProviderError, build_email_provider
from pricememory.mail.types import EmailMessage
from pricememory.models import IngestionLogRecord, PriceHistoryEntry, ReviewQueueItem
from pricememory.models.review_queue_item import REVIEW_PENDING
from pricememory.schemas.ingestion import IngestionLogEntry, IngestionLogResponse, IngestionRunSummary, IngestionStats
from pricememory.services import learning
from pricememory.services.catalog import catalog_sample
from pricememory.services.persistence import PersistOutcome, QuotationWriter
from pricememory.services.review_queue import enqueue_for_review

logger = logging.getLogger(__name__)

_MAX_SUBJECT_CHARS = 998
_MAX_SENDER_CHARS = 320


@dataclass(slots=True)
class MessageOutcome:
    """What happened to one email inside a run."""

    status: str
    method: str
    confidence: float
    items_extracted: int = 0
    queued_for_review: bool = False
    persisted: PersistOutcome | None = None


class IngestionOrchestrator:
    """Runs the quotation pipeline over candidate emails, one message at a time.

    At most one run executes per orchestrator; a concurrent trigger gets a
    `busy` summary back immediately. Every email is committed (or rolled back)
    as one unit, and a failing email never stops the run.
    """

    def __init__(
        self,
        session_factory: sessionmaker | Callable[[], Session],
        provider: EmailProvider | None,
        structured: ExtractorInterface,
        fallback: ExtractorInterface | None,
        resolver: EntityResolver,
        writer: QuotationWriter | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._provider = provider
        self._structured = structured
        self._fallback = fallback
        self._resolver = resolver
        self._writer = writer or QuotationWriter(resolver)
        self._settings = settings or get_settings()
        self._run_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    @property
    def provider_available(self) -> bool:
        return self._provider is not None

    def run(
        self,
        *,
        after: datetime | None = None,
        before: datetime | None = None,
        max_messages: int | None = None,
    ) -> IngestionRunSummary:
        """Process new candidate emails within the lookback window."""

        return self._guarded_run(after=after, before=before, max_messages=max_messages)

    def run_backfill(
        self,
        *,
        since: datetime,
        until: datetime | None = None,
        batch_size: int | None = None,
        pause_seconds: float | None = None,
        max_messages: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> IngestionRunSummary:
        """Historical import in batches with a pause between batches."""

        return self._guarded_run(
            after=since,
            before=until,
            max_messages=max_messages,
            batch_size=batch_size or self._settings.backfill_batch_size,
            pause_seconds=self._settings.backfill_pause_seconds if pause_seconds is None else pause_seconds,
            sleep=sleep,
        )

    def process_message(self, db: Session, message: EmailMessage) -> MessageOutcome:
        """Extract, merge and persist (or queue) one email inside the caller's transaction."""

        started = perf_counter()
        settings = self._settings

        structured = self._structured.extract(message)
        extract_ms = (perf_counter() - started) * 1000.0

        fallback = None
        fallback_ms = 0.0
        if self._fallback is not None and (
            not structured.success or structured.confidence < settings.structured_skip_fallback_threshold
        ):
            fallback_started = perf_counter()
            catalog = catalog_sample(
                db,
                materials=settings.llm_material_sample_size,
                clients=settings.llm_client_sample_size,
            )
            fallback = self._fallback.extract(message, catalog=catalog)
            fallback_ms = (perf_counter() - fallback_started) * 1000.0

        merged = merge_extractions(structured, fallback, agreement_bonus=settings.merge_agreement_bonus)
        if merged.quoted_at is None:
            merged.quoted_at = message.sent_at

        if not merged.items:
            self._write_log(db, message, items_extracted=0, status="success")
            logger.info(
                "ingestion.no_quotation message_id=%s method=%s notes=%s total_ms=%.2f",
                message.message_id,
                merged.method,
                "; ".join(merged.notes) or "-",
                (perf_counter() - started) * 1000.0,
            )
            return MessageOutcome(status="success", method=merged.method, confidence=merged.confidence)

        persist_started = perf_counter()
        persisted = None
        queued = enqueue_for_review(db, merged, message, threshold=settings.review_threshold) is not None
        if queued:
            status = "partial"
        else:
            persisted = self._writer.persist(
                db,
                merged,
                message_id=message.message_id,
                thread_id=message.thread_id,
                received_at=message.sent_at,
            )
            status = "partial" if persisted.skipped_items else "success"
        persist_ms = (perf_counter() - persist_started) * 1000.0

        total_ms = (perf_counter() - started) * 1000.0
        learning.record_parsing_success(
            db,
            message_id=message.message_id,
            method=merged.method,
            confidence=merged.confidence,
            items_extracted=len(merged.items),
            processing_time_ms=int(round(total_ms)),
            usage=merged.usage,
        )
        self._write_log(db, message, items_extracted=len(merged.items), status=status)
        logger.info(
            (
                "ingestion.message_processed message_id=%s method=%s confidence=%.3f items=%d "
                "status=%s queued_for_review=%s cost_usd=%.6f structured_ms=%.2f fallback_ms=%.2f "
                "persist_ms=%.2f total_ms=%.2f"
            ),
            message.message_id,
            merged.method,
            merged.confidence,
            len(merged.items),
            status,
            queued,
            merged.usage.cost_usd,
            extract_ms,
            fallback_ms,
            persist_ms,
            total_ms,
        )
        return MessageOutcome(
            status=status,
            method=merged.method,
            confidence=merged.confidence,
            items_extracted=len(merged.items),
            queued_for_review=queued,
            persisted=persisted,
        )

    def _guarded_run(
        self,
        *,
        after: datetime | None,
        before: datetime | None,
        max_messages: int | None,
        batch_size: int | None = None,
        pause_seconds: float = 0.0,
        sleep: Callable[[float], None] | None = None,
    ) -> IngestionRunSummary:
        if self._provider is None:
            logger.warning("ingestion.run_unavailable reason=no_email_provider")
            return IngestionRunSummary(status="unavailable", detail="email provider is not configured")
        if not self._run_lock.acquire(blocking=False):
            logger.info("ingestion.run_busy")
            return IngestionRunSummary(status="busy", detail="an ingestion run is already in progress")
        try:
            return self._execute(
                after=after,
                before=before,
                max_messages=max_messages,
                batch_size=batch_size,
                pause_seconds=pause_seconds,
                sleep=sleep,
            )
        finally:
            self._run_lock.release()

    def _execute(
        self,
        *,
        after: datetime | None,
        before: datetime | None,
        max_messages: int | None,
        batch_size: int | None,
        pause_seconds: float,
        sleep: Callable[[float], None] | None,
    ) -> IngestionRunSummary:
        total_started = perf_counter()
        started_at = datetime.now(timezone.utc)
        window_start = after or months_before(started_at, self._settings.ingestion_lookback_months)
        limit = max_messages or self._settings.ingestion_max_messages
        summary = IngestionRunSummary(status="completed", started_at=started_at)

        db = self._session_factory()
        try:
            self._resolver.ensure_loaded(db)
            for message_id in self._candidate_ids(window_start, before, limit):
                summary.messages_seen += 1
                if self._already_processed(db, message_id):
                    summary.skipped_duplicates += 1
                    continue
                if batch_size and sleep is not None and summary.processed and summary.processed % batch_size == 0:
                    logger.info(
                        "ingestion.backfill_pause processed=%d pause_seconds=%.1f",
                        summary.processed,
                        pause_seconds,
                    )
                    sleep(pause_seconds)
                self._process_candidate(db, message_id, summary)
        except (EmailProviderError, SQLAlchemyError) as exc:
            db.rollback()
            logger.exception(
                "ingestion.run_failed processed=%d elapsed_ms=%.2f",
                summary.processed,
                (perf_counter() - total_started) * 1000.0,
            )
            summary.status = "failed"
            summary.detail = str(exc)
        finally:
            db.close()

        summary.finished_at = datetime.now(timezone.utc)
        logger.info(
            (
                "ingestion.run_timing status=%s seen=%d duplicates=%d processed=%d succeeded=%d partial=%d "
                "failed=%d queued=%d entries=%d total_ms=%.2f"
            ),
            summary.status,
            summary.messages_seen,
            summary.skipped_duplicates,
            summary.processed,
            summary.succeeded,
            summary.partial,
            summary.failed,
            summary.queued_for_review,
            summary.price_entries_created,
            (perf_counter() - total_started) * 1000.0,
        )
        return summary

    def _candidate_ids(self, after: datetime, before: datetime | None, limit: int) -> Iterator[str]:
        page_token = None
        yielded = 0
        while yielded < limit:
            page = self._provider.search_message_ids(
                self._settings.ingestion_keywords,
                after=after,
                before=before,
                page_token=page_token,
                page_size=min(self._settings.ingestion_page_size, limit - yielded),
            )
            for message_id in page.message_ids:
                if yielded >= limit:
                    return
                yielded += 1
                yield message_id
            page_token = page.next_page_token
            if not page_token:
                return

    def _process_candidate(self, db: Session, message_id: str, summary: IngestionRunSummary) -> None:
        started = perf_counter()
        summary.processed += 1
        message = None
        try:
            message = self._provider.fetch_message(message_id)
            outcome = self.process_message(db, message)
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.exception(
                "ingestion.message_failed message_id=%s elapsed_ms=%.2f",
                message_id,
                (perf_counter() - started) * 1000.0,
            )
            summary.failed += 1
            self._record_failed_message(db, message_id, message, exc)
            return

        if outcome.status == "success":
            summary.succeeded += 1
        else:
            summary.partial += 1
        if outcome.queued_for_review:
            summary.queued_for_review += 1
        if outcome.persisted is not None:
            self._writer.publish(outcome.persisted)
            summary.price_entries_created += outcome.persisted.price_entries_created
            summary.materials_created += outcome.persisted.materials_created
            summary.clients_created += outcome.persisted.clients_created

    def _record_failed_message(
        self,
        db: Session,
        message_id: str,
        message: EmailMessage | None,
        exc: Exception,
    ) -> None:
        error = str(exc) or type(exc).__name__
        try:
            learning.record_parsing_failure(
                db,
                message_id=message_id,
                method="provider" if message is None else "pipeline",
                error=error,
                email_subject=message.subject[:_MAX_SUBJECT_CHARS] if message is not None else None,
                email_body_length=len(message.body) if message is not None else None,
            )
            if message is None:
                message = EmailMessage(message_id=message_id)
            self._write_log(db, message, items_extracted=0, status="failed", error_message=error)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("ingestion.failure_not_recorded message_id=%s", message_id)

    def _already_processed(self, db: Session, message_id: str) -> bool:
        return db.scalar(select(IngestionLogRecord.id).where(IngestionLogRecord.message_id == message_id)) is not None

    def _write_log(
        self,
        db: Session,
        message: EmailMessage,
        *,
        items_extracted: int,
        status: str,
        error_message: str | None = None,
    ) -> IngestionLogRecord:
        record = IngestionLogRecord(
            message_id=message.message_id,
            thread_id=message.thread_id,
            subject=(message.subject or None) and message.subject[:_MAX_SUBJECT_CHARS],
            sender=(message.sender or None) and message.sender[:_MAX_SENDER_CHARS],
            items_extracted=items_extracted,
            status=status,
            error_message=error_message,
        )
        db.add(record)
        db.flush()
        return record


def months_before(moment: datetime, months: int) -> datetime:
    """Same day-of-month `months` earlier, clamped to the last day of shorter months."""

    year, month = divmod(moment.year * 12 + (moment.month - 1) - months, 12)
    month += 1
    day = moment.day
    while day > 28:
        try:
            return moment.replace(year=year, month=month, day=day)
        except ValueError:
            day -= 1
    return moment.replace(year=year, month=month, day=day)


def list_ingestion_log(
    db: Session,
    *,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> IngestionLogResponse:
    filters = [IngestionLogRecord.status == status] if status else []
    total = db.scalar(select(func.count(IngestionLogRecord.id)).where(*filters)) or 0
    rows = db.scalars(
        select(IngestionLogRecord)
        .where(*filters)
        .order_by(IngestionLogRecord.created_at.desc(), IngestionLogRecord.id.desc())
        .limit(limit)
        .offset(offset)
    ).all()
    return IngestionLogResponse(
        items=[
            IngestionLogEntry(
                message_id=row.message_id,
                thread_id=row.thread_id,
                subject=row.subject,
                sender=row.sender,
                items_extracted=row.items_extracted,
                status=row.status,
                error_message=row.error_message,
                created_at=row.created_at,
            )
            for row in rows
        ],
        total=int(total),
        limit=limit,
        offset=offset,
    )


def get_ingestion_stats(db: Session, *, running: bool = False) -> IngestionStats:
    counts = dict(
        db.execute(
            select(IngestionLogRecord.status, func.count(IngestionLogRecord.id)).group_by(IngestionLogRecord.status)
        ).all()
    )
    items = db.scalar(select(func.coalesce(func.sum(IngestionLogRecord.items_extracted), 0)))
    return IngestionStats(
        total_processed=int(sum(counts.values())),
        succeeded=int(counts.get("success", 0)),
        partial=int(counts.get("partial", 0)),
        failed=int(counts.get("failed", 0)),
        total_items_extracted=int(items or 0),
        price_entries=int(db.scalar(select(func.count(PriceHistoryEntry.id))) or 0),
        pending_reviews=int(
            db.scalar(select(func.count(ReviewQueueItem.id)).where(ReviewQueueItem.status == REVIEW_PENDING)) or 0
        ),
        last_processed_at=db.scalar(select(func.max(IngestionLogRecord.created_at))),
        running=running,
    )


@lru_cache
def get_entity_resolver() -> EntityResolver:
    """Process-wide resolver; loaded lazily on first use."""

    settings = get_settings()
    return EntityResolver(
        thresholds=ResolverThresholds(
            material_commit=settings.material_match_threshold,
            client_commit=settings.client_match_threshold,
            material_search=settings.material_search_threshold,
            client_search=settings.client_search_threshold,
        ),
        public_email_domains=settings.public_email_domains,
    )


@lru_cache
def get_fallback_extractor() -> FallbackLLMExtractor:
    """Fallback extractor; disabled when no language-model key is configured."""

    settings = get_settings()
    client = None
    if settings.openai_api_key:
        client = OpenAIChatCompletionsClient(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.openai_timeout_seconds,
            max_tokens=settings.openai_max_tokens,
        )
    else:
        logger.warning("ingestion.fallback_disabled reason=no_openai_api_key")
    return FallbackLLMExtractor(
        client,
        input_cost_per_million=settings.llm_input_cost_per_million,
        output_cost_per_million=settings.llm_output_cost_per_million,
        material_sample_size=settings.llm_material_sample_size,
        client_sample_size=settings.llm_client_sample_size,
        default_currency=settings.default_currency,
        public_email_domains=settings.public_email_domains,
    )


@lru_cache
def get_ingestion_orchestrator() -> IngestionOrchestrator:
    settings = get_settings()
    try:
        provider = build_email_provider(settings)
    except EmailProviderError:
        logger.exception("ingestion.provider_init_failed")
        provider = None
    return IngestionOrchestrator(
        SessionLocal,
        provider,
        HTMLTableExtractor(
            default_currency=settings.default_currency,
            public_email_domains=settings.public_email_domains,
        ),
        get_fallback_extractor(),
        get_entity_resolver(),
        settings=settings,
    )

