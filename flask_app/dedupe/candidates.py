"""
Candidate generation: find probable duplicate pairs within one entity table.

Exact signals (registration number, phone, email) are found by bucketing
records on their canonical key, so only records sharing a key are paired.
Name similarity is inherently pairwise: every normalized name is compared
with every later name in its blocking pool. With the default ``none``
blocking the pool is the whole table, which is O(n^2) comparisons. That is
fine for tens of thousands of rows (rapidfuzz does the inner loop in C) but
it is the scaling limit of the scan, and a warning is logged once a pool
exceeds ``all_pairs_warning_size``. ``first_letter`` blocking bounds the
pools at the cost of missing pairs whose names differ in the first letter.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass
from itertools import combinations
from typing import Callable, Dict, Iterable, List, Sequence, Tuple

from flask import current_app, has_app_context
from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

from config.dedupe import DEFAULT_SETTINGS, DedupeSettings
from flask_app.dedupe.normalize import normalize
from flask_app.dedupe.similarity import email_key, identifier_key, normalized_similarity, phone_key
from flask_app.models import Contact, EntityType, MatchType, Organization, db

EXACT_SCORE = 100
PREFILTER_SLACK = 0.01

# Priority order; a pair is reported under the first signal that matches.
SIGNAL_ORDER = (
    MatchType.EXACT_BUSINESS_ID,
    MatchType.EXACT_PHONE,
    MatchType.EXACT_EMAIL,
    MatchType.NAME_SIMILARITY,
)


@dataclass(frozen=True)
class MatchRecord:
    """The comparable slice of an entity row."""

    id: int
    name: str
    phone: str | None = None
    email: str | None = None
    identifier: str | None = None


@dataclass(frozen=True)
class DuplicateCandidate:
    """An unpersisted, algorithmically detected pair. Primary is the lower id."""

    entity_type: EntityType
    primary_id: int
    secondary_id: int
    match_type: MatchType
    algorithm_score: int

    @property
    def pair_key(self) -> Tuple[int, int]:
        return (self.primary_id, self.secondary_id)

    @property
    def is_exact(self) -> bool:
        return self.algorithm_score >= EXACT_SCORE


def _exact_key_builders(settings: DedupeSettings) -> Dict[MatchType, Callable[[MatchRecord], str]]:
    return {
        MatchType.EXACT_BUSINESS_ID: lambda record: identifier_key(
            record.identifier, min_length=settings.min_identifier_length
        ),
        MatchType.EXACT_PHONE: lambda record: phone_key(
            record.phone, min_digits=settings.min_phone_digits, country_code=settings.phone_country_code
        ),
        MatchType.EXACT_EMAIL: lambda record: email_key(record.email),
    }


def _bucket(records: Iterable[MatchRecord], key_fn: Callable[[MatchRecord], str]) -> Dict[str, List[int]]:
    buckets: Dict[str, List[int]] = defaultdict(list)
    for record in records:
        key = key_fn(record)
        if key:
            buckets[key].append(record.id)
    return buckets


def _name_pools(
    records: Sequence[MatchRecord], settings: DedupeSettings
) -> Iterable[List[Tuple[int, str]]]:
    named = [(record.id, normalize(record.name)) for record in records]
    named = [(record_id, name) for record_id, name in named if name]
    if settings.name_blocking == "first_letter":
        pools: Dict[str, List[Tuple[int, str]]] = defaultdict(list)
        for record_id, name in named:
            pools[name[0]].append((record_id, name))
        return pools.values()
    return [named]


def _similar_pairs(pool: List[Tuple[int, str]], threshold: float) -> Iterable[Tuple[int, int, float]]:
    """
    Yield ``(id_a, id_b, score)`` for every pair scoring at least ``threshold``.

    rapidfuzz only prefilters: its cutoff is converted to an edit distance
    and drops exact ties, so it runs with a slack and every survivor is
    rescored with ``normalized_similarity``.
    """

    names = [name for _, name in pool]
    prefilter = max(0.0, threshold - PREFILTER_SLACK)
    for index, (record_id, name) in enumerate(pool[:-1]):
        offset = index + 1
        matches = process.extract(
            name,
            names[offset:],
            scorer=Levenshtein.normalized_similarity,
            processor=None,
            score_cutoff=prefilter,
            limit=None,
        )
        for choice, _prefilter_score, match_index in matches:
            score = normalized_similarity(name, choice)
            if score >= threshold:
                yield record_id, pool[offset + match_index][0], score


def to_percent(score: float) -> int:
    """Scale a 0..1 similarity to 0..100, rounding halves up."""
    return int(math.floor(score * 100 + 0.5))


def generate_candidates(
    entity_type: EntityType,
    records: Sequence[MatchRecord],
    settings: DedupeSettings = DEFAULT_SETTINGS,
) -> List[DuplicateCandidate]:
    """
    Produce candidate pairs for ``records`` of one entity type.

    Each unordered pair appears at most once, under its highest-priority
    signal. No ordering is guaranteed between candidates.
    """

    rules = settings.rules_for(entity_type.value)
    ordered = sorted(records, key=lambda record: record.id)
    found: Dict[Tuple[int, int], DuplicateCandidate] = {}

    def _record(first_id: int, second_id: int, match_type: MatchType, score: int) -> None:
        if first_id == second_id:
            return
        key = (min(first_id, second_id), max(first_id, second_id))
        if key in found:
            return
        found[key] = DuplicateCandidate(
            entity_type=entity_type,
            primary_id=key[0],
            secondary_id=key[1],
            match_type=match_type,
            algorithm_score=score,
        )

    builders = _exact_key_builders(settings)
    for match_type in SIGNAL_ORDER:
        if match_type == MatchType.NAME_SIMILARITY or not rules.enabled(match_type.value):
            continue
        for ids in _bucket(ordered, builders[match_type]).values():
            for first_id, second_id in combinations(ids, 2):
                _record(first_id, second_id, match_type, EXACT_SCORE)

    if rules.enabled(MatchType.NAME_SIMILARITY.value):
        for pool in _name_pools(ordered, settings):
            if len(pool) > settings.all_pairs_warning_size and has_app_context():
                current_app.logger.warning(
                    "Name similarity pool of %s %s records exceeds %s; pairwise comparison is O(n^2)",
                    len(pool),
                    entity_type.value,
                    settings.all_pairs_warning_size,
                    extra={"entity_type": entity_type.value, "pool_size": len(pool)},
                )
            for first_id, second_id, score in _similar_pairs(pool, settings.name_similarity_threshold):
                _record(first_id, second_id, MatchType.NAME_SIMILARITY, to_percent(score))

    return list(found.values())


def load_match_records(entity_type: EntityType, session=None) -> List[MatchRecord]:
    """Fetch the comparable columns of every live row of ``entity_type``."""

    session = session or db.session
    if entity_type == EntityType.ORGANIZATION:
        rows = (
            session.query(
                Organization.id,
                Organization.name,
                Organization.phone,
                Organization.email,
                Organization.business_id,
            )
            .order_by(Organization.id)
            .all()
        )
        return [
            MatchRecord(id=row.id, name=row.name or "", phone=row.phone, email=row.email, identifier=row.business_id)
            for row in rows
        ]
    if entity_type == EntityType.CONTACT:
        rows = (
            session.query(Contact.id, Contact.first_name, Contact.last_name, Contact.phone, Contact.email)
            .order_by(Contact.id)
            .all()
        )
        return [
            MatchRecord(
                id=row.id,
                name=f"{row.first_name or ''} {row.last_name or ''}".strip(),
                phone=row.phone,
                email=row.email,
            )
            for row in rows
        ]
    raise ValueError(f"Unsupported entity type: {entity_type}")


def find_candidates(
    entity_type: EntityType,
    *,
    session=None,
    settings: DedupeSettings = DEFAULT_SETTINGS,
) -> List[DuplicateCandidate]:
    """Load every record of ``entity_type`` and return its candidate pairs."""

    return generate_candidates(entity_type, load_match_records(entity_type, session), settings)


__all__ = [
    "DuplicateCandidate",
    "EXACT_SCORE",
    "MatchRecord",
    "SIGNAL_ORDER",
    "find_candidates",
    "generate_candidates",
    "load_match_records",
    "to_percent",
]
