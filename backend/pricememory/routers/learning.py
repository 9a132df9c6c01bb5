"""Telemetry, learning data and resolver diagnostic routes."""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pricememory.db.dependencies import get_db
from pricememory.entity_resolution.normalization import normalize
from pricememory.entity_resolution.resolver import EntityResolver
from pricememory.extraction.llm_extractor import FallbackLLMExtractor
from pricememory.routers.review_queue import get_loaded_resolver
from pricememory.schemas.common import ApiResponse
from pricememory.schemas.learning import (
    AliasRecord,
    CleanupResult,
    ImprovementSuggestion,
    LearningExport,
    LearningImportRequest,
    LearningImportResult,
    LLMUsageStats,
    MatchDiagnostic,
    ParsingStats,
    ResolverStats,
)
from pricememory.services import learning
from pricememory.services.ingestion import get_fallback_extractor

router = APIRouter(prefix="/learning")

DaysParam = Query(default=30, ge=1, le=3650)


@router.get("/stats", response_model=ApiResponse[ParsingStats])
def get_parsing_statistics(days: int = DaysParam, db: Session = Depends(get_db)) -> ApiResponse[ParsingStats]:
    """Confidence buckets, per-method breakdown and top failures over a day window."""

    return ApiResponse(data=learning.get_parsing_stats(db, days=days))


@router.get("/suggestions", response_model=ApiResponse[list[ImprovementSuggestion]])
def get_improvement_suggestions(
    days: int = DaysParam,
    db: Session = Depends(get_db),
) -> ApiResponse[list[ImprovementSuggestion]]:
    return ApiResponse(data=learning.suggest_improvements(db, days=days))


@router.get("/aliases", response_model=ApiResponse[list[AliasRecord]])
def get_aliases(
    kind: Literal["material", "client"] = Query(default="material"),
    db: Session = Depends(get_db),
) -> ApiResponse[list[AliasRecord]]:
    return ApiResponse(data=learning.list_aliases(db, kind))


@router.get("/export", response_model=ApiResponse[LearningExport])
def export_learning(db: Session = Depends(get_db)) -> ApiResponse[LearningExport]:
    return ApiResponse(data=learning.export_learning_data(db))


@router.post("/import", response_model=ApiResponse[LearningImportResult])
def import_learning(
    payload: LearningImportRequest,
    db: Session = Depends(get_db),
    resolver: EntityResolver = Depends(get_loaded_resolver),
) -> ApiResponse[LearningImportResult]:
    """Upsert exported aliases and refresh the resolver index."""

    try:
        result = learning.import_aliases(db, payload.aliases)
        db.commit()
    except Exception:
        db.rollback()
        raise
    resolver.reload(db)
    return ApiResponse(data=result)


@router.post("/cleanup", response_model=ApiResponse[CleanupResult])
def cleanup_learning(
    days_to_keep: int = Query(default=365, ge=1, le=3650),
    db: Session = Depends(get_db),
) -> ApiResponse[CleanupResult]:
    result = learning.cleanup_telemetry(db, days_to_keep=days_to_keep)
    db.commit()
    return ApiResponse(data=result)


@router.get("/llm-usage", response_model=ApiResponse[LLMUsageStats])
def get_llm_usage(
    extractor: FallbackLLMExtractor = Depends(get_fallback_extractor),
) -> ApiResponse[LLMUsageStats]:
    return ApiResponse(data=LLMUsageStats(**extractor.stats()))


@router.get("/resolver/stats", response_model=ApiResponse[ResolverStats])
def get_resolver_stats(resolver: EntityResolver = Depends(get_loaded_resolver)) -> ApiResponse[ResolverStats]:
    return ApiResponse(data=ResolverStats(**resolver.stats()))


@router.get("/resolver/match", response_model=ApiResponse[MatchDiagnostic])
def diagnose_match(
    kind: Literal["material", "client"] = Query(...),
    text: str = Query(..., min_length=1),
    email: str | None = Query(default=None),
    resolver: EntityResolver = Depends(get_loaded_resolver),
) -> ApiResponse[MatchDiagnostic]:
    """Resolve one name without writing anything, for tuning thresholds."""

    if kind == "client":
        result = resolver.match_client(text, email)
    else:
        result = resolver.match_material(text)
    best_name = (
        resolver.entity_name(kind, result.entity_id)
        if result.matched
        else result.best_candidate_name
    )
    return ApiResponse(
        data=MatchDiagnostic(
            matched=result.matched,
            entity_id=result.entity_id,
            confidence=result.confidence,
            tier=result.tier,
            best_candidate_name=best_name,
            normalized_text=normalize(kind, text),
        )
    )
