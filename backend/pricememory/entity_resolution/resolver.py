"""Tiered material and client resolution against the catalog."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Iterable, Literal

from rapidfuzz import fuzz, process
from sqlalchemy import select
from sqlalchemy.orm import Session

from pricememory.entity_resolution.normalization import EntityKind, normalize, normalize_client, normalize_material
from pricememory.models import Client, Material
from pricememory.services import learning

logger = logging.getLogger(__name__)

MatchTier = Literal["alias", "exact", "email", "domain", "fuzzy"]

_PROVENANCE_PRIORITY = {"master": 0, "manual": 1, "ingested": 2}
_CANDIDATE_LIMIT = 5
_MIN_SHARED_WORD_LENGTH = 3


@dataclass(frozen=True, slots=True)
class Matched:
    """Committed resolution to one catalog entity."""

    entity_id: int
    confidence: float
    tier: MatchTier

    @property
    def matched(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Unmatched:
    """No committed match; carries the best rejected candidate for review context."""

    best_candidate_id: int | None = None
    best_candidate_name: str | None = None
    best_score: float = 0.0

    @property
    def matched(self) -> bool:
        return False

    @property
    def entity_id(self) -> None:
        return None

    @property
    def confidence(self) -> float:
        return self.best_score

    @property
    def tier(self) -> None:
        return None


MatchResult = Matched | Unmatched


@dataclass(frozen=True, slots=True)
class MatchAdjustments:
    """Business-rule adjustments applied to approximate-search scores."""

    material_category: float = 0.10
    material_shared_words: float = 0.05
    material_length_penalty: float = 0.10
    client_shared_words: float = 0.10
    client_contact_person: float = 0.05
    shared_words_required: int = 2
    length_ratio_floor: float = 0.5
    categories: tuple[str, ...] = (
        "CALDERYS",
        "FIRE BRICK",
        "CERAMIC",
        "INSULATION",
        "REFRACTORY",
        "CASTABLE",
        "MORTAR",
    )


@dataclass(frozen=True, slots=True)
class ResolverThresholds:
    material_commit: float = 0.85
    client_commit: float = 0.85
    material_search: float = 0.70
    client_search: float = 0.60


@dataclass(slots=True)
class _Entry:
    entity_id: int
    name: str
    normalized: str
    provenance: str
    email: str | None = None
    contact_person: str | None = None


@dataclass(slots=True)
class _Index:
    materials: dict[int, _Entry] = field(default_factory=dict)
    clients: dict[int, _Entry] = field(default_factory=dict)
    material_exact: dict[str, int] = field(default_factory=dict)
    client_exact: dict[str, int] = field(default_factory=dict)
    client_email: dict[str, int] = field(default_factory=dict)
    client_domain: dict[str, int] = field(default_factory=dict)
    material_aliases: dict[str, int] = field(default_factory=dict)
    client_aliases: dict[str, int] = field(default_factory=dict)
    material_choices: dict[int, str] = field(default_factory=dict)
    client_choices: dict[int, str] = field(default_factory=dict)


class EntityResolver:
    """Resolve extracted names to catalog ids through alias, exact and fuzzy tiers.

    The in-memory index is an immutable snapshot swapped on `reload()`, so a reader
    never sees a half-built index. Create one resolver per process (or per test).
    """

    def __init__(
        self,
        *,
        thresholds: ResolverThresholds | None = None,
        adjustments: MatchAdjustments | None = None,
        public_email_domains: tuple[str, ...] | list[str] = (),
    ) -> None:
        self._thresholds = thresholds or ResolverThresholds()
        self._adjustments = adjustments or MatchAdjustments()
        self._public_email_domains = frozenset(domain.lower() for domain in public_email_domains)
        self._index = _Index()
        self._write_lock = threading.Lock()
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def reload(self, db: Session) -> None:
        """Rebuild the catalog index and alias tables from the store."""

        index = _Index()
        for material in db.scalars(select(Material).order_by(Material.id.asc())).all():
            _add_material(index, material.id, material.name, material.normalized_name, material.provenance)
        for client in db.scalars(select(Client).order_by(Client.id.asc())).all():
            _add_client(
                index,
                client.id,
                client.name,
                client.normalized_name,
                client.provenance,
                client.email,
                client.contact_person,
                self._public_email_domains,
            )
        index.material_aliases = {
            alias: entity_id
            for alias, entity_id in learning.load_aliases(db, "material").items()
            if entity_id in index.materials
        }
        index.client_aliases = {
            alias: entity_id
            for alias, entity_id in learning.load_aliases(db, "client").items()
            if entity_id in index.clients
        }
        with self._write_lock:
            self._index = index
            self._loaded = True
        logger.info(
            "resolver.reloaded materials=%s clients=%s material_aliases=%s client_aliases=%s",
            len(index.materials),
            len(index.clients),
            len(index.material_aliases),
            len(index.client_aliases),
        )

    def ensure_loaded(self, db: Session) -> None:
        if not self._loaded:
            self.reload(db)

    def publish(self, *, materials: Iterable[Material] = (), clients: Iterable[Client] = ()) -> None:
        """Add committed catalog rows to the index without a full reload.

        Call only after the transaction that created the rows has committed;
        readers on other threads resolve against whatever is published here.
        """

        with self._write_lock:
            index = _copy_index(self._index)
            for material in materials:
                _add_material(index, material.id, material.name, material.normalized_name, material.provenance)
            for client in clients:
                _add_client(
                    index,
                    client.id,
                    client.name,
                    client.normalized_name,
                    client.provenance,
                    client.email,
                    client.contact_person,
                    self._public_email_domains,
                )
            self._index = index

    def learn_alias(self, db: Session, kind: EntityKind, text: str, entity_id: int, origin: str = "learned") -> str:
        """Persist an alias (last write wins); `reload` after the commit makes it matchable."""

        row = learning.upsert_alias(db, kind, text, entity_id, origin)
        return row.alias if row is not None else ""

    def match_material(self, text: str | None) -> MatchResult:
        index = self._index
        normalized = normalize_material(text)
        if not normalized:
            return Unmatched()

        alias_target = index.material_aliases.get(normalized)
        if alias_target is not None:
            return Matched(alias_target, 1.0, "alias")
        exact_target = index.material_exact.get(normalized)
        if exact_target is not None:
            return Matched(exact_target, 1.0, "exact")

        best = self._best_candidate(
            normalized,
            index.material_choices,
            index.materials,
            search_threshold=self._thresholds.material_search,
            adjust=self._adjust_material,
        )
        return _commit(best, self._thresholds.material_commit)

    def match_client(self, name: str | None, email: str | None = None, domain: str | None = None) -> MatchResult:
        index = self._index
        email_key = (email or "").strip().lower()
        if email_key:
            email_target = index.client_email.get(email_key)
            if email_target is not None:
                return Matched(email_target, 1.0, "email")

        domain_key = (domain or email_key.rpartition("@")[2]).strip().lower()
        if domain_key and domain_key not in self._public_email_domains:
            domain_target = index.client_domain.get(domain_key)
            if domain_target is not None:
                return Matched(domain_target, 0.95, "domain")

        normalized = normalize_client(name)
        if not normalized:
            return Unmatched()
        alias_target = index.client_aliases.get(normalized)
        if alias_target is not None:
            return Matched(alias_target, 1.0, "alias")
        exact_target = index.client_exact.get(normalized)
        if exact_target is not None:
            return Matched(exact_target, 1.0, "exact")

        original_upper = " ".join((name or "").upper().split())
        best = self._best_candidate(
            normalized,
            index.client_choices,
            index.clients,
            search_threshold=self._thresholds.client_search,
            adjust=lambda query, entry, score: self._adjust_client(query, original_upper, entry, score),
        )
        return _commit(best, self._thresholds.client_commit)

    def match(self, kind: EntityKind, text: str) -> MatchResult:
        if kind == "material":
            return self.match_material(text)
        return self.match_client(text)

    def entity_name(self, kind: EntityKind, entity_id: int) -> str | None:
        entries = self._index.materials if kind == "material" else self._index.clients
        entry = entries.get(entity_id)
        return entry.name if entry is not None else None

    def stats(self) -> dict[str, int]:
        index = self._index
        return {
            "materials_indexed": len(index.materials),
            "clients_indexed": len(index.clients),
            "material_aliases": len(index.material_aliases),
            "client_aliases": len(index.client_aliases),
        }

    def _best_candidate(self, query, choices, entries, *, search_threshold, adjust) -> Unmatched:
        if not choices:
            return Unmatched()
        candidates = process.extract(
            query,
            choices,
            scorer=fuzz.WRatio,
            limit=_CANDIDATE_LIMIT,
            score_cutoff=search_threshold * 100,
        )
        best: Unmatched | None = None
        for _choice, score, entity_id in candidates:
            entry = entries[entity_id]
            confidence = round(max(0.0, min(1.0, adjust(query, entry, score / 100))), 4)
            # Strictly greater keeps the higher-ranked search hit on ties.
            if best is None or confidence > best.best_score:
                best = Unmatched(entity_id, entry.name, confidence)
        return best or Unmatched()

    def _adjust_material(self, query: str, entry: _Entry, score: float) -> float:
        rules = self._adjustments
        candidate = entry.normalized
        if any(category in query and category in candidate for category in rules.categories):
            score += rules.material_category
        if _shared_word_count(query, candidate) >= rules.shared_words_required:
            score += rules.material_shared_words
        shorter, longer = sorted((len(query), len(candidate)))
        if longer and shorter / longer < rules.length_ratio_floor:
            score -= rules.material_length_penalty
        return score

    def _adjust_client(self, query: str, original_upper: str, entry: _Entry, score: float) -> float:
        rules = self._adjustments
        if _shared_word_count(query, entry.normalized) >= rules.shared_words_required:
            score += rules.client_shared_words
        contact = " ".join((entry.contact_person or "").upper().split())
        if contact and contact in original_upper:
            score += rules.client_contact_person
        return score


def _commit(best: Unmatched, threshold: float) -> MatchResult:
    if best.best_candidate_id is not None and best.best_score >= threshold:
        return Matched(best.best_candidate_id, best.best_score, "fuzzy")
    return best


def _shared_word_count(left: str, right: str) -> int:
    right_words = set(right.split())
    return len({word for word in left.split() if len(word) >= _MIN_SHARED_WORD_LENGTH and word in right_words})


def _prefers(index_entries: dict[int, _Entry], current_id: int | None, candidate: _Entry) -> bool:
    if current_id is None:
        return True
    current = index_entries[current_id]
    return (_PROVENANCE_PRIORITY.get(candidate.provenance, 99), candidate.entity_id) < (
        _PROVENANCE_PRIORITY.get(current.provenance, 99),
        current.entity_id,
    )


def _add_material(index: _Index, entity_id: int, name: str, normalized: str, provenance: str) -> None:
    entry = _Entry(entity_id, name, normalized or normalize("material", name), provenance)
    index.materials[entity_id] = entry
    if not entry.normalized:
        return
    index.material_choices[entity_id] = entry.normalized
    if _prefers(index.materials, index.material_exact.get(entry.normalized), entry):
        index.material_exact[entry.normalized] = entity_id


def _add_client(
    index: _Index,
    entity_id: int,
    name: str,
    normalized: str,
    provenance: str,
    email: str | None,
    contact_person: str | None,
    public_domains: frozenset[str],
) -> None:
    email_key = (email or "").strip().lower() or None
    entry = _Entry(entity_id, name, normalized or normalize("client", name), provenance, email_key, contact_person)
    index.clients[entity_id] = entry
    if entry.normalized:
        index.client_choices[entity_id] = entry.normalized
        if _prefers(index.clients, index.client_exact.get(entry.normalized), entry):
            index.client_exact[entry.normalized] = entity_id
    if email_key:
        if _prefers(index.clients, index.client_email.get(email_key), entry):
            index.client_email[email_key] = entity_id
        domain = email_key.rpartition("@")[2]
        if domain and domain not in public_domains:
            if _prefers(index.clients, index.client_domain.get(domain), entry):
                index.client_domain[domain] = entity_id


def _copy_index(index: _Index) -> _Index:
    return replace(
        index,
        materials=dict(index.materials),
        clients=dict(index.clients),
        material_exact=dict(index.material_exact),
        client_exact=dict(index.client_exact),
        client_email=dict(index.client_email),
        client_domain=dict(index.client_domain),
        material_aliases=dict(index.material_aliases),
        client_aliases=dict(index.client_aliases),
        material_choices=dict(index.material_choices),
        client_choices=dict(index.client_choices),
    )
