"""Canonical forms for material and client names."""

from __future__ import annotations

import re
from typing import Literal

EntityKind = Literal["material", "client"]

_MULTISPACE_RE = re.compile(r"\s+")
_DIMENSION_RE = re.compile(r"(\d+)\s*[xX×*]\s*(\d+)\s*[xX×*]\s*(\d+)")
_PERCENT_RANGE_RE = re.compile(r"(\d+)\s*%\s*-\s*(\d+)\s*%")
_MATERIAL_PUNCT_RE = re.compile(r"[^\w\s%-]")
_MAKE_PREFIX_RE = re.compile(r"^(\w+)\s+(?:MAKE\s+)+")

_CLIENT_PREFIX_RE = re.compile(r"^(?:M\s*/\s*S\.?|MESSRS\.?)\s*")
_CLIENT_SUFFIX_RE = re.compile(
    r"\b(?:PVT\.?\s*LTD\.?|PRIVATE\s+LIMITED|LTD\.?|LIMITED|LLP|LLC|INC\.?|INCORPORATED"
    r"|CORPORATION|CORP\.?|COMPANY|CO\.?)(?=\W|$)"
)
_CLIENT_PUNCT_RE = re.compile(r"[^\w\s&]")

# Each pass only shortens or keeps its input; a few rounds always reach the fixpoint.
_MAX_PASSES = 8


def normalize(kind: EntityKind, text: str | None) -> str:
    """Return the canonical comparison form of a name; idempotent and total."""

    if not text:
        return ""
    step = _material_pass if kind == "material" else _client_pass
    current = text
    for _ in range(_MAX_PASSES):
        following = step(current)
        if following == current:
            break
        current = following
    return current


def normalize_material(text: str | None) -> str:
    return normalize("material", text)


def normalize_client(text: str | None) -> str:
    return normalize("client", text)


def _collapse(value: str) -> str:
    return _MULTISPACE_RE.sub(" ", value).strip()


def _material_pass(value: str) -> str:
    result = _collapse(value.upper())
    result = _DIMENSION_RE.sub(r"\1X\2X\3", result)
    result = _collapse(_MATERIAL_PUNCT_RE.sub(" ", result))
    result = _PERCENT_RANGE_RE.sub(r"\1%-\2%", result)
    result = _DIMENSION_RE.sub(r"\1X\2X\3", result)
    result = _MAKE_PREFIX_RE.sub(r"\1 ", result)
    return _collapse(result)


def _client_pass(value: str) -> str:
    result = _collapse(value.upper())
    result = _CLIENT_PREFIX_RE.sub("", result)
    result = _CLIENT_SUFFIX_RE.sub(" ", result)
    result = _collapse(_CLIENT_PUNCT_RE.sub(" ", result))
    return result
