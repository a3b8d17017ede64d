"""
Similarity scoring and exact-signal classification.

The candidate generator buckets records on the ``*_key`` helpers and scores
name pairs with ``normalized_similarity``; the ``*_match`` predicates are the
pairwise form of the same rules.
"""

from __future__ import annotations

from rapidfuzz.distance import Levenshtein

from config.dedupe import DEFAULT_SETTINGS
from flask_app.dedupe.normalize import normalize, normalize_email, normalize_identifier, normalize_phone


def normalized_similarity(left: str, right: str) -> float:
    """
    Levenshtein similarity of two already-normalized strings.

    Equal strings (including two empty strings) score 1.0. Callers that do
    not want blank-vs-blank to count as a match must skip blank values
    before calling.
    """

    if left == right:
        return 1.0
    max_len = max(len(left), len(right))
    distance = Levenshtein.distance(left, right)
    return float(max(0.0, min(1.0, (max_len - distance) / max_len)))


def similarity(left: object | None, right: object | None) -> float:
    """Return edit-distance similarity (0..1) between two raw strings."""

    return normalized_similarity(normalize(left), normalize(right))


def phone_key(
    value: object | None,
    *,
    min_digits: int = DEFAULT_SETTINGS.min_phone_digits,
    country_code: str | None = DEFAULT_SETTINGS.phone_country_code,
) -> str:
    """Canonical phone digits, or ``""`` for short or partial numbers."""

    key = normalize_phone(value, country_code=country_code)
    return key if len(key) >= min_digits else ""


def email_key(value: object | None) -> str:
    return normalize_email(value)


def identifier_key(
    value: object | None,
    *,
    min_length: int = DEFAULT_SETTINGS.min_identifier_length,
) -> str:
    key = normalize_identifier(value)
    return key if len(key) >= min_length else ""


def phone_match(
    left: object | None,
    right: object | None,
    *,
    min_digits: int = DEFAULT_SETTINGS.min_phone_digits,
    country_code: str | None = DEFAULT_SETTINGS.phone_country_code,
) -> bool:
    """Digits-only equality, ignoring short or partial numbers."""

    left_key = phone_key(left, min_digits=min_digits, country_code=country_code)
    return bool(left_key) and left_key == phone_key(right, min_digits=min_digits, country_code=country_code)


def email_match(left: object | None, right: object | None) -> bool:
    left_key = email_key(left)
    return bool(left_key) and left_key == email_key(right)


def identifier_match(
    left: object | None,
    right: object | None,
    *,
    min_length: int = DEFAULT_SETTINGS.min_identifier_length,
) -> bool:
    left_key = identifier_key(left, min_length=min_length)
    return bool(left_key) and left_key == identifier_key(right, min_length=min_length)


__all__ = [
    "email_key",
    "email_match",
    "identifier_key",
    "identifier_match",
    "normalized_similarity",
    "phone_key",
    "phone_match",
    "similarity",
]
