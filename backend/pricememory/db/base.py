"""SQLAlchemy metadata registry import for Alembic."""

from pricememory.models import (
    Client,
    ClientAlias,
    IngestionLogRecord,
    Material,
    MaterialAlias,
    ParsingFailureRecord,
    ParsingHistoryRecord,
    PriceHistoryEntry,
    ReviewQueueItem,
)
from pricememory.models.base import Base

__all__ = [
    "Base",
    "Material",
    "Client",
    "MaterialAlias",
    "ClientAlias",
    "PriceHistoryEntry",
    "IngestionLogRecord",
    "ParsingHistoryRecord",
    "ParsingFailureRecord",
    "ReviewQueueItem",
]
