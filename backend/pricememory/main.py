"""FastAPI application entrypoint."""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from pricememory.config import get_settings
from pricememory.db.session import SessionLocal
from pricememory.logging_config import configure_logging
from pricememory.routers import ingestion, learning, review_queue
from pricememory.services.ingestion import get_entity_resolver, get_ingestion_orchestrator
from pricememory.services.scheduler import IngestionScheduler

logger = logging.getLogger(__name__)


def _warm_backend_state() -> None:
    """Prime the DB connection and the resolver index at process start."""

    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
            get_entity_resolver().reload(db)
    except Exception:
        logger.exception("Backend warm-up failed; continuing without startup pre-warm.")


def _start_scheduler() -> IngestionScheduler | None:
    settings = get_settings()
    if not settings.ingestion_schedule_enabled:
        return None
    scheduler = IngestionScheduler(
        get_ingestion_orchestrator().run,
        interval_seconds=settings.ingestion_interval_hours * 3600.0,
    )
    scheduler.start()
    return scheduler


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(get_settings().log_level)
    _warm_backend_state()
    scheduler = _start_scheduler()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.stop()


app = FastAPI(title=get_settings().app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(ingestion.router, tags=["ingestion"])
app.include_router(review_queue.router, tags=["review-queue"])
app.include_router(learning.router, tags=["learning"])


@app.get("/health")
def health() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}
