"""
Canonical forms used for duplicate comparison.

``normalize`` prepares free text (mostly names) for edit-distance scoring.
The ``normalize_*`` key helpers produce the exact-match keys used for
phone, email and registration-number bucketing.
"""

from __future__ import annotations

import re

# Hyphen, the U+2010..U+2015 dash block, minus sign and the Hebrew maqaf
_DASHES = re.compile("[-‐-―−־]")
# ASCII quotes, backtick, acute accent, curly quotes, Hebrew geresh/gershayim
_QUOTES = re.compile("[\"'`´‘’“”׳״]")
_WHITESPACE = re.compile(r"\s+")
_LEGAL_SUFFIXES = re.compile(
    r"(?<!\w)(?:ltd|limited|inc|incorporated|llc|corp|corporation|בעמ|ח\.?פ)\.?(?!\w)",
    re.IGNORECASE,
)
_NON_DIGITS = re.compile(r"[^0-9]")
_IDENTIFIER_SEPARATORS = re.compile(r"[\s\-./\\]")


def normalize(text: object | None) -> str:
    """
    Canonicalize free text for comparison.

    Trims, lowercases, turns dashes into spaces, drops quote characters,
    collapses whitespace and strips legal-entity suffixes. Suffix stripping
    repeats until nothing changes, so the result is a fixed point:
    ``normalize(normalize(x)) == normalize(x)``.
    """

    if text is None:
        return ""
    value = str(text).strip().lower()
    value = _DASHES.sub(" ", value)
    value = _QUOTES.sub("", value)
    value = _WHITESPACE.sub(" ", value)
    while True:
        stripped = _WHITESPACE.sub(" ", _LEGAL_SUFFIXES.sub(" ", value)).strip()
        if stripped == value:
            return value
        value = stripped


def normalize_phone(value: object | None, *, country_code: str | None = "972") -> str:
    """
    Reduce a phone number to digits in national form.

    Numbers written with an international marker (``+`` or ``00``) that
    start with ``country_code`` have it replaced by the trunk ``0``, so
    ``+972-50-1234567`` and ``050-1234567`` share a key. Returns ``""`` when
    no digits are present.
    """

    if value is None:
        return ""
    raw = str(value).strip()
    digits = _NON_DIGITS.sub("", raw)
    if not digits:
        return ""
    international = raw.startswith("+")
    if digits.startswith("00"):
        digits = digits[2:]
        international = True
    if international and country_code and digits.startswith(country_code):
        digits = "0" + digits[len(country_code):]
    return digits


def normalize_email(value: object | None) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def normalize_identifier(value: object | None) -> str:
    """Registration numbers compare without separators and case."""
    if value is None:
        return ""
    return _IDENTIFIER_SEPARATORS.sub("", str(value)).upper()


__all__ = [
    "normalize",
    "normalize_email",
    "normalize_identifier",
    "normalize_phone",
]
