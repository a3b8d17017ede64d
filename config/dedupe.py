"""
Thresholds and per-entity scan rules for the duplicate engine.

The defaults live here as a frozen dataclass so services and tests read one
typed object instead of scattered literals. Values are taken from the Flask
config (``DEDUPE_*`` keys, populated from the environment by
``config.base.Config``). Operators can additionally point
``DEDUPE_SETTINGS_PATH`` at a JSON or YAML file whose keys mirror the
dataclass fields; file values win over config keys.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Mapping, Sequence

import yaml

# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

KNOWN_SIGNALS = ("exact_business_id", "exact_phone", "exact_email", "name_similarity")
NAME_BLOCKING_STRATEGIES = ("none", "first_letter")


@dataclass(frozen=True)
class EntityScanRules:
    """
    Which match signals apply to one entity type.

    Attributes:
        entity_type: ``organization`` or ``contact``.
        signals: Enabled signals, a subset of ``KNOWN_SIGNALS``. Priority is
            always the order of ``KNOWN_SIGNALS`` regardless of the order given.
    """

    entity_type: str
    signals: Sequence[str]

    def enabled(self, signal: str) -> bool:
        return signal in self.signals


DEFAULT_ENTITY_RULES = {
    "organization": EntityScanRules(
        entity_type="organization",
        signals=("exact_business_id", "exact_phone", "exact_email", "name_similarity"),
    ),
    "contact": EntityScanRules(
        entity_type="contact",
        signals=("exact_phone", "exact_email", "name_similarity"),
    ),
}


@dataclass(frozen=True)
class DedupeSettings:
    """Tunable knobs for candidate generation, scoring and validation."""

    persistence_threshold: int = 70
    name_similarity_threshold: float = 0.85
    min_phone_digits: int = 9
    phone_country_code: str = "972"
    min_identifier_length: int = 8
    name_blocking: str = "none"
    all_pairs_warning_size: int = 20000
    validator_url: str | None = None
    validator_timeout: float = 10.0
    validator_api_key: str | None = None
    entity_rules: Mapping[str, EntityScanRules] = field(default_factory=lambda: dict(DEFAULT_ENTITY_RULES))

    def rules_for(self, entity_type: str) -> EntityScanRules:
        try:
            return self.entity_rules[entity_type]
        except KeyError as exc:
            raise DedupeConfigError(f"No scan rules configured for entity type {entity_type!r}.") from exc


DEFAULT_SETTINGS = DedupeSettings()


class DedupeConfigError(RuntimeError):
    """Raised when dedupe configuration cannot be parsed or is out of range."""


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------

_CONFIG_KEYS = {
    "DEDUPE_PERSIST_THRESHOLD": ("persistence_threshold", int),
    "DEDUPE_NAME_SIMILARITY_THRESHOLD": ("name_similarity_threshold", float),
    "DEDUPE_MIN_PHONE_DIGITS": ("min_phone_digits", int),
    "DEDUPE_PHONE_COUNTRY_CODE": ("phone_country_code", str),
    "DEDUPE_MIN_IDENTIFIER_LENGTH": ("min_identifier_length", int),
    "DEDUPE_NAME_BLOCKING": ("name_blocking", str),
    "DEDUPE_ALL_PAIRS_WARNING_SIZE": ("all_pairs_warning_size", int),
    "DEDUPE_VALIDATOR_URL": ("validator_url", str),
    "DEDUPE_VALIDATOR_TIMEOUT": ("validator_timeout", float),
    "DEDUPE_VALIDATOR_API_KEY": ("validator_api_key", str),
}

_FIELD_TYPES = {name: caster for name, caster in _CONFIG_KEYS.values()}


def _coerce(name: str, value: object, caster) -> object:
    try:
        return caster(value)
    except (TypeError, ValueError) as exc:
        raise DedupeConfigError(f"Invalid value for {name}: {value!r}") from exc


def _load_override(path: Path) -> dict:
    if not path.exists():
        raise DedupeConfigError(f"Dedupe settings file {path} does not exist.")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:  # pragma: no cover - filesystem failure
        raise DedupeConfigError(f"Unable to read dedupe settings file {path}: {exc}") from exc

    if path.suffix.lower() in {".yaml", ".yml"}:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise DedupeConfigError(f"Dedupe settings file {path} is not valid YAML: {exc}") from exc
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise DedupeConfigError(f"Dedupe settings file {path} is not valid JSON: {exc}") from exc

    if not isinstance(data, Mapping):
        raise DedupeConfigError("Dedupe settings override must be a JSON/YAML object.")
    return dict(data)


def _coerce_entity_rules(raw: object) -> dict[str, EntityScanRules]:
    if not isinstance(raw, Mapping):
        raise DedupeConfigError("entity_rules must be an object keyed by entity type.")
    rules = dict(DEFAULT_ENTITY_RULES)
    for entity_type, body in raw.items():
        if entity_type not in DEFAULT_ENTITY_RULES:
            raise DedupeConfigError(f"Unknown entity type in entity_rules: {entity_type!r}")
        signals = body.get("signals") if isinstance(body, Mapping) else body
        if not isinstance(signals, Sequence) or isinstance(signals, (str, bytes)):
            raise DedupeConfigError(f"entity_rules.{entity_type}.signals must be a list.")
        unknown = [signal for signal in signals if signal not in KNOWN_SIGNALS]
        if unknown:
            raise DedupeConfigError(f"Unknown signals for {entity_type}: {', '.join(map(str, unknown))}")
        rules[entity_type] = EntityScanRules(entity_type=entity_type, signals=tuple(signals))
    return rules


def _validate(settings: DedupeSettings) -> DedupeSettings:
    if not 0 <= settings.persistence_threshold <= 100:
        raise DedupeConfigError("persistence_threshold must be between 0 and 100.")
    if not 0 < settings.name_similarity_threshold <= 1:
        raise DedupeConfigError("name_similarity_threshold must be in (0, 1].")
    if settings.min_phone_digits < 1:
        raise DedupeConfigError("min_phone_digits must be positive.")
    if settings.min_identifier_length < 1:
        raise DedupeConfigError("min_identifier_length must be positive.")
    if settings.name_blocking not in NAME_BLOCKING_STRATEGIES:
        raise DedupeConfigError(
            f"name_blocking must be one of {', '.join(NAME_BLOCKING_STRATEGIES)}; got {settings.name_blocking!r}."
        )
    if settings.validator_timeout <= 0:
        raise DedupeConfigError("validator_timeout must be positive.")
    return settings


def load_settings(config: Mapping[str, object] | None = None) -> DedupeSettings:
    """
    Build the active settings from a Flask config mapping.

    Unset or ``None`` keys keep their defaults. When ``DEDUPE_SETTINGS_PATH``
    is present, the referenced file is applied on top.
    """

    config_map = config or {}
    overrides: dict[str, object] = {}
    for key, (name, caster) in _CONFIG_KEYS.items():
        value = config_map.get(key)
        if value is None or value == "":
            continue
        overrides[name] = _coerce(key, value, caster)

    override_path = config_map.get("DEDUPE_SETTINGS_PATH")
    if override_path:
        raw = _load_override(Path(str(override_path)))
        for name, value in raw.items():
            if name == "entity_rules":
                overrides["entity_rules"] = _coerce_entity_rules(value)
            elif name in _FIELD_TYPES:
                overrides[name] = None if value is None else _coerce(name, value, _FIELD_TYPES[name])
            else:
                raise DedupeConfigError(f"Unknown dedupe setting {name!r} in {override_path}.")

    return _validate(replace(DEFAULT_SETTINGS, **overrides))


__all__ = [
    "DEFAULT_ENTITY_RULES",
    "DEFAULT_SETTINGS",
    "DedupeConfigError",
    "DedupeSettings",
    "EntityScanRules",
    "KNOWN_SIGNALS",
    "NAME_BLOCKING_STRATEGIES",
    "load_settings",
]
