"""ORM models package exports."""

from pricememory.models.alias import ClientAlias, MaterialAlias
from pricememory.models.client import Client
from pricememory.models.ingestion_log import IngestionLogRecord
from pricememory.models.material import Material
from pricememory.models.parsing_telemetry import ParsingFailureRecord, ParsingHistoryRecord
from pricememory.models.price_history import PriceHistoryEntry
from pricememory.models.review_queue_item import ReviewQueueItem

__all__ = [
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
