"""Ingestion run and ledger routes."""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from pricememory.db.dependencies import get_db
from pricememory.schemas.common import ApiResponse
from pricememory.schemas.ingestion import IngestionLogResponse, IngestionRunRequest, IngestionRunSummary, IngestionStats
from pricememory.services.ingestion import (
    IngestionOrchestrator,
    get_ingestion_orchestrator,
    get_ingestion_stats,
    list_ingestion_log,
)

router = APIRouter(prefix="/ingestion")


@router.post("/run", response_model=ApiResponse[IngestionRunSummary])
def trigger_ingestion_run(
    payload: IngestionRunRequest | None = None,
    orchestrator: IngestionOrchestrator = Depends(get_ingestion_orchestrator),
) -> ApiResponse[IngestionRunSummary]:
    """Run ingestion synchronously; refuses when another run is active."""

    payload = payload or IngestionRunRequest()
    summary = orchestrator.run(after=payload.after, before=payload.before, max_messages=payload.max_messages)
    if summary.status == "busy":
        raise HTTPException(status_code=409, detail=summary.detail)
    if summary.status == "unavailable":
        raise HTTPException(status_code=503, detail=summary.detail)
    return ApiResponse(data=summary)


@router.get("/log", response_model=ApiResponse[IngestionLogResponse])
def get_ingestion_log(
    status: Literal["success", "partial", "failed"] | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> ApiResponse[IngestionLogResponse]:
    return ApiResponse(data=list_ingestion_log(db, status=status, limit=limit, offset=offset))


@router.get("/stats", response_model=ApiResponse[IngestionStats])
def get_ingestion_statistics(
    db: Session = Depends(get_db),
    orchestrator: IngestionOrchestrator = Depends(get_ingestion_orchestrator),
) -> ApiResponse[IngestionStats]:
    return ApiResponse(data=get_ingestion_stats(db, running=orchestrator.running))
