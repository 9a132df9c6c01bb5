"""Review queue state machine: pending -> approved | rejected | corrected."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pricememory.entity_resolution.resolver import EntityResolver
from pricememory.extraction.payload import ExtractionPayload
from pricememory.extraction.types import MergedExtraction
from pricememory.mail.types import EmailMessage
from pricememory.models import ReviewQueueItem
from pricememory.models.review_queue_item import (
    REVIEW_APPROVED,
    REVIEW_CORRECTED,
    REVIEW_PENDING,
    REVIEW_REJECTED,
)
from pricememory.schemas.review import (
    ReviewCorrections,
    ReviewDecisionResult,
    ReviewQueueEntry,
    ReviewQueueListResponse,
    ReviewQueueStats,
    ReviewStatusFilter,
)
from pricememory.services import learning
from pricememory.services.persistence import QuotationWriter

logger = logging.getLogger(__name__)

REVIEW_METHOD = "review"


class ReviewNotFoundError(LookupError):
    """Raised when a review queue item id does not exist."""


class ReviewTransitionError(RuntimeError):
    """Raised when a disposition targets an item that already left `pending`."""


def enqueue_for_review(
    db: Session,
    extraction: MergedExtraction,
    message: EmailMessage,
    *,
    threshold: float,
) -> ReviewQueueItem | None:
    """Create the pending item for a low-confidence extraction; at most one per source message."""

    if extraction.confidence >= threshold:
        return None
    existing = _find_by_message(db, message.message_id)
    if existing is not None:
        return existing

    item = ReviewQueueItem(
        source_message_id=message.message_id,
        thread_id=message.thread_id,
        subject=message.subject or None,
        sender=message.sender or None,
        extracted_payload=ExtractionPayload.from_merged(extraction).to_json_dict(),
        confidence=extraction.confidence,
        method=extraction.method,
        status=REVIEW_PENDING,
    )
    try:
        with db.begin_nested():
            db.add(item)
            db.flush()
    except IntegrityError:
        recovered = _find_by_message(db, message.message_id)
        if recovered is None:
            raise
        return recovered
    logger.info(
        "review.enqueued message_id=%s confidence=%.3f method=%s items=%s",
        message.message_id,
        extraction.confidence,
        extraction.method,
        len(extraction.items),
    )
    return item


def list_review_items(
    db: Session,
    *,
    status: ReviewStatusFilter = "pending",
    search: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> ReviewQueueListResponse:
    filters = []
    if status != "all":
        filters.append(ReviewQueueItem.status == status)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        filters.append(or_(ReviewQueueItem.subject.ilike(pattern), ReviewQueueItem.sender.ilike(pattern)))

    total = db.scalar(select(func.count(ReviewQueueItem.id)).where(*filters)) or 0
    rows = db.scalars(
        select(ReviewQueueItem)
        .where(*filters)
        .order_by(ReviewQueueItem.created_at.desc(), ReviewQueueItem.id.desc())
        .limit(limit)
        .offset(offset)
    ).all()
    return ReviewQueueListResponse(
        items=[_to_entry(row) for row in rows],
        total=int(total),
        limit=limit,
        offset=offset,
    )


def get_review_stats(db: Session) -> ReviewQueueStats:
    counts = dict(
        db.execute(select(ReviewQueueItem.status, func.count(ReviewQueueItem.id)).group_by(ReviewQueueItem.status)).all()
    )
    avg_pending = db.scalar(
        select(func.avg(ReviewQueueItem.confidence)).where(ReviewQueueItem.status == REVIEW_PENDING)
    )
    return ReviewQueueStats(
        pending=int(counts.get(REVIEW_PENDING, 0)),
        approved=int(counts.get(REVIEW_APPROVED, 0)),
        rejected=int(counts.get(REVIEW_REJECTED, 0)),
        corrected=int(counts.get(REVIEW_CORRECTED, 0)),
        total=int(sum(counts.values())),
        avg_pending_confidence=round(float(avg_pending), 4) if avg_pending is not None else None,
    )


def approve_review_item(
    db: Session,
    item_id: int,
    writer: QuotationWriter,
    *,
    reviewed_by: str | None = None,
) -> ReviewDecisionResult:
    """Persist the stored extraction as-is and record a human-confirmed success."""

    try:
        item = _claim(db, item_id, REVIEW_APPROVED, reviewed_by=reviewed_by)
        extraction = ExtractionPayload.model_validate(item.extracted_payload).to_merged()
        outcome = writer.persist(
            db,
            extraction,
            message_id=item.source_message_id,
            thread_id=item.thread_id,
            received_at=item.created_at,
        )
        learning.record_parsing_success(
            db,
            message_id=item.source_message_id,
            method=REVIEW_METHOD,
            confidence=1.0,
            items_extracted=len(extraction.items),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    writer.publish(outcome)
    logger.info(
        "review.approved item_id=%s message_id=%s entries=%s reviewed_by=%s",
        item_id,
        item.source_message_id,
        outcome.price_entries_created,
        reviewed_by,
    )
    return ReviewDecisionResult(id=item_id, status=REVIEW_APPROVED, price_entries_created=outcome.price_entries_created)


def reject_review_item(db: Session, item_id: int, *, reviewed_by: str | None = None) -> ReviewDecisionResult:
    try:
        _claim(db, item_id, REVIEW_REJECTED, reviewed_by=reviewed_by)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("review.rejected item_id=%s reviewed_by=%s", item_id, reviewed_by)
    return ReviewDecisionResult(id=item_id, status=REVIEW_REJECTED, price_entries_created=0)


def correct_review_item(
    db: Session,
    item_id: int,
    corrections: ReviewCorrections,
    writer: QuotationWriter,
    resolver: EntityResolver,
    *,
    reviewed_by: str | None = None,
) -> ReviewDecisionResult:
    """Merge reviewer edits over the stored extraction, learn aliases, then persist."""

    aliases_learned = 0
    try:
        item = _claim(
            db,
            item_id,
            REVIEW_CORRECTED,
            reviewed_by=reviewed_by,
            corrections_json=corrections.model_dump(mode="json", exclude_none=True),
        )
        payload = ExtractionPayload.model_validate(item.extracted_payload)
        updates = corrections.model_dump(include={"items", "client", "quoted_at"}, exclude_none=True)
        corrected = payload.model_copy(update={key: getattr(corrections, key) for key in updates})

        for text, material_id in corrections.materials.items():
            if resolver.learn_alias(db, "material", text, material_id, "correction"):
                aliases_learned += 1
        client_override = None
        for text, client_id in corrections.clients.items():
            if resolver.learn_alias(db, "client", text, client_id, "correction"):
                aliases_learned += 1
            client_override = client_id

        extraction = corrected.to_merged()
        outcome = writer.persist(
            db,
            extraction,
            message_id=item.source_message_id,
            thread_id=item.thread_id,
            received_at=item.created_at,
            material_overrides=corrections.materials,
            client_override=client_override,
        )
        learning.record_parsing_success(
            db,
            message_id=item.source_message_id,
            method=REVIEW_METHOD,
            confidence=1.0,
            items_extracted=len(extraction.items),
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    if aliases_learned:
        resolver.reload(db)
    else:
        writer.publish(outcome)
    logger.info(
        "review.corrected item_id=%s message_id=%s entries=%s aliases_learned=%s reviewed_by=%s",
        item_id,
        item.source_message_id,
        outcome.price_entries_created,
        aliases_learned,
        reviewed_by,
    )
    return ReviewDecisionResult(
        id=item_id,
        status=REVIEW_CORRECTED,
        price_entries_created=outcome.price_entries_created,
        aliases_learned=aliases_learned,
    )


def _claim(
    db: Session,
    item_id: int,
    new_status: str,
    *,
    reviewed_by: str | None,
    corrections_json: dict | None = None,
) -> ReviewQueueItem:
    """Move a pending item to a terminal status; only one caller can ever win."""

    values = {
        "status": new_status,
        "reviewed_by": reviewed_by,
        "reviewed_at": datetime.now(timezone.utc),
    }
    if corrections_json is not None:
        values["corrections_json"] = corrections_json
    result = db.execute(
        update(ReviewQueueItem)
        .where(ReviewQueueItem.id == item_id, ReviewQueueItem.status == REVIEW_PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    item = db.get(ReviewQueueItem, item_id, populate_existing=True)
    if item is None:
        raise ReviewNotFoundError(f"review item {item_id} not found")
    if result.rowcount != 1:
        raise ReviewTransitionError(f"review item {item_id} is already {item.status}")
    return item


def _find_by_message(db: Session, message_id: str) -> ReviewQueueItem | None:
    return db.scalars(select(ReviewQueueItem).where(ReviewQueueItem.source_message_id == message_id)).first()


def _to_entry(row: ReviewQueueItem) -> ReviewQueueEntry:
    return ReviewQueueEntry(
        id=row.id,
        source_message_id=row.source_message_id,
        thread_id=row.thread_id,
        subject=row.subject,
        sender=row.sender,
        confidence=row.confidence,
        method=row.method,
        status=row.status,
        extracted_payload=row.extracted_payload,
        reviewed_by=row.reviewed_by,
        reviewed_at=row.reviewed_at,
        corrections=row.corrections_json,
        created_at=row.created_at,
    )
