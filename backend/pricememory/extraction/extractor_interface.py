"""Extractor interface for pluggable extraction implementations."""

from abc import ABC, abstractmethod

from pricememory.extraction.types import CatalogSample, ExtractionResult
from pricememory.mail.types import EmailMessage


class ExtractorInterface(ABC):
    """Abstract extractor interface."""

    @abstractmethod
    def extract(self, message: EmailMessage, *, catalog: CatalogSample | None = None) -> ExtractionResult:
        """Extract quotation line items and client identity from one email."""
