"""Review queue routes."""

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from pricememory.db.dependencies import get_db
from pricememory.entity_resolution.resolver import EntityResolver
from pricememory.schemas.common import ApiResponse
from pricememory.schemas.review import (
    ReviewCorrectionRequest,
    ReviewDecisionRequest,
    ReviewDecisionResult,
    ReviewQueueListResponse,
    ReviewQueueStats,
    ReviewStatusFilter,
)
from pricememory.services.catalog import UnknownCatalogEntityError
from pricememory.services.ingestion import get_entity_resolver
from pricememory.services.persistence import QuotationWriter
from pricememory.services.review_queue import (
    ReviewNotFoundError,
    ReviewTransitionError,
    approve_review_item,
    correct_review_item,
    get_review_stats,
    list_review_items,
    reject_review_item,
)

router = APIRouter(prefix="/review-queue")

ReviewItemIdParam = Path(..., ge=1)


def get_loaded_resolver(
    db: Session = Depends(get_db),
    resolver: EntityResolver = Depends(get_entity_resolver),
) -> EntityResolver:
    resolver.ensure_loaded(db)
    return resolver


@router.get("", response_model=ApiResponse[ReviewQueueListResponse])
def get_review_queue(
    status: ReviewStatusFilter = Query(default="pending"),
    q: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> ApiResponse[ReviewQueueListResponse]:
    """List review items, newest first, optionally searching subject and sender."""

    return ApiResponse(data=list_review_items(db, status=status, search=q, limit=limit, offset=offset))


@router.get("/stats", response_model=ApiResponse[ReviewQueueStats])
def get_review_queue_stats(db: Session = Depends(get_db)) -> ApiResponse[ReviewQueueStats]:
    return ApiResponse(data=get_review_stats(db))


@router.post("/{item_id}/approve", response_model=ApiResponse[ReviewDecisionResult])
def approve_item(
    payload: ReviewDecisionRequest | None = None,
    item_id: int = ReviewItemIdParam,
    db: Session = Depends(get_db),
    resolver: EntityResolver = Depends(get_loaded_resolver),
) -> ApiResponse[ReviewDecisionResult]:
    reviewed_by = payload.reviewed_by if payload is not None else None
    try:
        result = approve_review_item(db, item_id, QuotationWriter(resolver), reviewed_by=reviewed_by)
    except ReviewNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ReviewTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return ApiResponse(data=result)


@router.post("/{item_id}/reject", response_model=ApiResponse[ReviewDecisionResult])
def reject_item(
    payload: ReviewDecisionRequest | None = None,
    item_id: int = ReviewItemIdParam,
    db: Session = Depends(get_db),
) -> ApiResponse[ReviewDecisionResult]:
    reviewed_by = payload.reviewed_by if payload is not None else None
    try:
        result = reject_review_item(db, item_id, reviewed_by=reviewed_by)
    except ReviewNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ReviewTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return ApiResponse(data=result)


@router.post("/{item_id}/correct", response_model=ApiResponse[ReviewDecisionResult])
def correct_item(
    payload: ReviewCorrectionRequest,
    item_id: int = ReviewItemIdParam,
    db: Session = Depends(get_db),
    resolver: EntityResolver = Depends(get_loaded_resolver),
) -> ApiResponse[ReviewDecisionResult]:
    """Apply reviewer corrections, learn aliases from them and persist the result."""

    try:
        result = correct_review_item(
            db,
            item_id,
            payload.corrections,
            QuotationWriter(resolver),
            resolver,
            reviewed_by=payload.reviewed_by,
        )
    except ReviewNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ReviewTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except UnknownCatalogEntityError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return ApiResponse(data=result)
