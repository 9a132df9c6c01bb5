"""Deterministic quotation-table extractor for HTML email bodies."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from time import perf_counter

from bs4 import BeautifulSoup
from bs4.element import Tag

from pricememory.extraction.extractor_interface import ExtractorInterface
from pricememory.extraction.parsing import (
    FALLBACK_UNIT,
    clamp,
    clean_material_text,
    detect_currency,
    normalize_delivery_location,
    normalize_unit,
    parse_quantity,
    parse_rate,
)
from pricememory.extraction.types import CatalogSample, ExtractedClient, ExtractedItem, ExtractionResult
from pricememory.mail.types import EmailMessage

logger = logging.getLogger(__name__)

# Field -> header keywords, most specific first. Fields are tried in this order and a
# header is assigned to the first field with a matching keyword.
COLUMN_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "rate",
        ("rate rs./unit", "rs./unit", "rs/unit", "rate/unit", "price/unit", "unit price", "rate", "price", "amount"),
    ),
    ("delivery_location", ("ex work", "ex works", "ex-works", "exworks", "ex factory", "location")),
    ("tax_code", ("hsn code", "hsn", "tax code", "code")),
    ("quantity", ("qty", "quantity", "qnty", "quan")),
    ("unit", ("unit", "uom", "measure")),
    ("material", ("material", "product", "item", "description", "particulars")),
    ("serial", ("no", "sr", "serial", "#")),
)
REQUIRED_COLUMNS = ("material", "rate")
OPTIONAL_COLUMNS = ("quantity", "unit", "tax_code", "delivery_location")

# Table text keyword -> score contribution.
TABLE_KEYWORD_SCORES: tuple[tuple[tuple[str, ...], int], ...] = (
    (("material",), 3),
    (("rate", "price"), 3),
    (("qty", "quantity"), 2),
    (("unit",), 2),
    (("hsn",), 1),
    (("ex work",), 1),
)
MAX_ROW_SCORE = 5

_TAX_CODE_RE = re.compile(r"^(?:\d{4}|\d{6}|\d{8})$")
_DOMAIN_LABEL_SPLIT_RE = re.compile(r"[-_.]+")


@dataclass(frozen=True, slots=True)
class StructuredConfidenceRules:
    """Named confidence adjustments for table extraction."""

    item_baseline: float = 0.90
    missing_quantity: float = 0.10
    fallback_unit: float = 0.05
    missing_tax_code: float = 0.05
    missing_delivery_location: float = 0.05
    category_term: float = 0.05
    well_formed_tax_code: float = 0.05
    item_floor: float = 0.50
    column_baseline: float = 0.70
    required_column: float = 0.10
    optional_column: float = 0.05
    many_items_threshold: int = 3
    many_items_bonus: float = 0.05
    missing_columns_confidence: float = 0.30
    category_terms: tuple[str, ...] = ("CALDERYS", "FIRE BRICK")


class HTMLTableExtractor(ExtractorInterface):
    """Locate the most quotation-like table in an email and read its rows."""

    def __init__(
        self,
        *,
        default_currency: str = "INR",
        public_email_domains: tuple[str, ...] | list[str] = (),
        rules: StructuredConfidenceRules | None = None,
    ) -> None:
        self._default_currency = default_currency
        self._public_email_domains = {domain.lower() for domain in public_email_domains}
        self._rules = rules or StructuredConfidenceRules()

    def extract(self, message: EmailMessage, *, catalog: CatalogSample | None = None) -> ExtractionResult:
        started = perf_counter()
        result = self.extract_html(message.html_body, client=client_from_message(message, self._public_email_domains))
        logger.debug(
            "structured.extract message_id=%s success=%s items=%s confidence=%.3f total_ms=%.2f",
            message.message_id,
            result.success,
            len(result.items),
            result.confidence,
            (perf_counter() - started) * 1000,
        )
        return result

    def extract_html(self, html: str, *, client: ExtractedClient | None = None) -> ExtractionResult:
        """Extract line items from raw markup; irregular input yields a failure result."""

        if not html or not html.strip():
            return ExtractionResult.failure("structured", "empty body")

        soup = BeautifulSoup(html, "html.parser")
        table = self._find_quotation_table(soup)
        if table is None:
            return ExtractionResult.failure("structured", "no quotation table found")

        rows = own_rows(table)
        headers = [_cell_text(cell).lower() for cell in _row_cells(rows[0])] if rows else []
        column_map = map_columns(headers)
        if any(column not in column_map for column in REQUIRED_COLUMNS):
            return ExtractionResult.failure(
                "structured",
                "required columns (material, rate) not found",
                confidence=self._rules.missing_columns_confidence,
            )

        items: list[ExtractedItem] = []
        for row in rows[1:]:
            cells = _row_cells(row)
            if not cells:
                continue
            item = self._extract_row([_cell_text(cell) for cell in cells], column_map)
            if item is not None:
                items.append(item)

        if not items:
            return ExtractionResult.failure("structured", "no line items found")

        return ExtractionResult(
            success=True,
            method="structured",
            confidence=self._overall_confidence(items, column_map),
            items=items,
            client=client,
        )

    def _find_quotation_table(self, soup: BeautifulSoup) -> Tag | None:
        best_table: Tag | None = None
        best_score = 0
        for table in soup.find_all("table"):
            score = score_table(table)
            # Strictly greater keeps the first of equally scored tables, unless
            # the later one is nested inside it.
            if score > best_score or (score == best_score and _is_nested_in(table, best_table)):
                best_score = score
                best_table = table
        return best_table

    def _extract_row(self, cells: list[str], column_map: dict[str, int]) -> ExtractedItem | None:
        def value(field_name: str) -> str | None:
            index = column_map.get(field_name)
            if index is None or index >= len(cells):
                return None
            text = cells[index].strip()
            return text or None

        material_text = value("material")
        rate_text = value("rate")
        if not material_text or not rate_text:
            return None
        rate = parse_rate(rate_text)
        if rate is None or rate <= 0:
            return None

        tax_code = value("tax_code")
        item = ExtractedItem(
            material=clean_material_text(material_text),
            rate=rate,
            unit=normalize_unit(value("unit")),
            currency=detect_currency(rate_text, self._default_currency),
            quantity=parse_quantity(value("quantity")),
            tax_code=tax_code.replace(" ", "") if tax_code else None,
            delivery_location=normalize_delivery_location(value("delivery_location")),
        )
        item.confidence = self._item_confidence(item)
        return item

    def _item_confidence(self, item: ExtractedItem) -> float:
        rules = self._rules
        confidence = rules.item_baseline
        if not item.quantity:
            confidence -= rules.missing_quantity
        if item.unit == FALLBACK_UNIT:
            confidence -= rules.fallback_unit
        if not item.tax_code:
            confidence -= rules.missing_tax_code
        if not item.delivery_location:
            confidence -= rules.missing_delivery_location
        if any(term in item.material for term in rules.category_terms):
            confidence += rules.category_term
        if item.tax_code and _TAX_CODE_RE.match(item.tax_code):
            confidence += rules.well_formed_tax_code
        return round(clamp(confidence, rules.item_floor, 1.0), 4)

    def _overall_confidence(self, items: list[ExtractedItem], column_map: dict[str, int]) -> float:
        rules = self._rules
        column_score = rules.column_baseline
        column_score += rules.required_column * sum(1 for name in REQUIRED_COLUMNS if name in column_map)
        column_score += rules.optional_column * sum(1 for name in OPTIONAL_COLUMNS if name in column_map)
        mean_item = sum(item.confidence for item in items) / len(items)
        confidence = (column_score + mean_item) / 2
        if len(items) > rules.many_items_threshold:
            confidence += rules.many_items_bonus
        return round(min(1.0, confidence), 4)


def score_table(table: Tag) -> int:
    """Score a table by quotation header keywords and row count."""

    text = table.get_text(" ").lower()
    score = 0
    for keywords, weight in TABLE_KEYWORD_SCORES:
        if any(keyword in text for keyword in keywords):
            score += weight
    row_count = len(own_rows(table))
    if row_count > 2:
        score += min(row_count - 2, MAX_ROW_SCORE)
    return score


def own_rows(table: Tag) -> list[Tag]:
    """Rows that belong to `table` itself, not to tables nested in its cells."""

    return [row for row in table.find_all("tr") if row.find_parent("table") is table]


def map_columns(headers: list[str]) -> dict[str, int]:
    """Map header cells to fields; the first column claiming a field keeps it."""

    column_map: dict[str, int] = {}
    for index, header in enumerate(headers):
        normalized = " ".join(header.lower().split())
        if not normalized:
            continue
        for field_name, keywords in COLUMN_KEYWORDS:
            if any(normalized == keyword or keyword in normalized for keyword in keywords):
                column_map.setdefault(field_name, index)
                break
    return column_map


def client_from_message(message: EmailMessage, public_email_domains: set[str] | frozenset[str] = frozenset()) -> ExtractedClient:
    """Derive the quoted client from the recipient header."""

    display_name, address = message.recipient_address
    if not address and not display_name:
        return ExtractedClient()
    local_part, _, domain = address.partition("@")
    name = display_name
    if not name:
        if domain and domain not in public_email_domains:
            label = domain.split(".")[0]
        else:
            label = local_part
        name = " ".join(part for part in _DOMAIN_LABEL_SPLIT_RE.split(label) if part).upper()
    return ExtractedClient(name=name, email=address, contact_person=display_name)


def _cell_text(cell: Tag) -> str:
    return " ".join(cell.get_text(" ").split())


def _row_cells(row: Tag) -> list[Tag]:
    return row.find_all(["td", "th"], recursive=False)


def _is_nested_in(table: Tag, outer: Tag | None) -> bool:
    return outer is not None and any(parent is outer for parent in table.parents)
