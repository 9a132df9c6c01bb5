"""Value parsers shared by the structured and fallback extractors."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

FALLBACK_UNIT = "MT"

UNIT_SYNONYMS: dict[str, str] = {
    "kg": "KG",
    "kgs": "KG",
    "kilogram": "KG",
    "kilograms": "KG",
    "nos": "NOS",
    "no": "NOS",
    "number": "NOS",
    "numbers": "NOS",
    "pcs": "PCS",
    "pc": "PCS",
    "piece": "PCS",
    "pieces": "PCS",
    "box": "BOX",
    "boxes": "BOX",
    "bag": "BAG",
    "bags": "BAG",
    "ltr": "LTR",
    "litre": "LTR",
    "liter": "LTR",
    "litres": "LTR",
    "liters": "LTR",
    "roll": "ROLL",
    "rolls": "ROLL",
    "mt": "MT",
    "metric ton": "MT",
    "metric tonne": "MT",
    "ton": "MT",
    "tons": "MT",
    "tonne": "MT",
    "tonnes": "MT",
}

_CURRENCY_MARKERS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"₹|\bRs\.?|\bINR\b", re.IGNORECASE), "INR"),
    (re.compile(r"\$|\bUSD\b", re.IGNORECASE), "USD"),
    (re.compile(r"€|\bEUR\b", re.IGNORECASE), "EUR"),
    (re.compile(r"£|\bGBP\b", re.IGNORECASE), "GBP"),
)
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_PARENTHETICAL_RE = re.compile(r"\s*\([^)]*\)\s*")
_MULTISPACE_RE = re.compile(r"\s+")


def parse_rate(value: str | None) -> float | None:
    """Parse a currency-agnostic decimal such as 'Rs. 1,250.00/-'."""

    if not value:
        return None
    cleaned = value
    for pattern, _ in _CURRENCY_MARKERS:
        cleaned = pattern.sub(" ", cleaned)
    cleaned = cleaned.replace(",", "")
    match = _NUMBER_RE.search(cleaned)
    if match is None:
        return None
    return float(match.group(0))


def parse_quantity(value: str | float | int | None) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    match = _NUMBER_RE.search(value.replace(",", ""))
    if match is None:
        return None
    return float(match.group(0))


def detect_currency(value: str | None, default: str) -> str:
    if value:
        for pattern, code in _CURRENCY_MARKERS:
            if pattern.search(value):
                return code
    return default


def normalize_unit(value: str | None) -> str:
    """Map a unit through the synonym table; unknown or missing units fall back to MT."""

    if not value:
        return FALLBACK_UNIT
    key = _MULTISPACE_RE.sub(" ", value.strip().lower()).rstrip(".")
    return UNIT_SYNONYMS.get(key, FALLBACK_UNIT)


def normalize_delivery_location(value: str | None) -> str | None:
    """Uppercase a delivery location and drop qualifiers like '(GUJARAT)'."""

    if not value or not value.strip():
        return None
    cleaned = _PARENTHETICAL_RE.sub(" ", value.upper())
    cleaned = _MULTISPACE_RE.sub(" ", cleaned).strip(" ,.-")
    return cleaned or None


def clean_material_text(value: str) -> str:
    return _MULTISPACE_RE.sub(" ", value).strip().upper()


def parse_email_date(value: str | None) -> datetime | None:
    """Parse an RFC 2822 header or ISO-8601 date into an aware UTC datetime."""

    if not value or not value.strip():
        return None
    text = value.strip()
    parsed: datetime | None
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        parsed = None
    if parsed is None:
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, float(value)))
