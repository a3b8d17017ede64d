"""
Semantic validator gateway.

An external judge that, given two candidate records, says whether they are
the same real-world entity. It is advisory: the scan adopts its score but
never persists a pair below the persistence threshold on its word alone.
The scan depends only on the ``SemanticValidator`` protocol, so tests pass a
deterministic stub and deployments point ``DEDUPE_VALIDATOR_URL`` at any
service that speaks the small JSON contract below.

Request body::

    {"entity_type": "...", "match_type": "...", "algorithm_score": 80,
     "record_a": {...}, "record_b": {...}}

Response body::

    {"isDuplicate": true, "score": 0-100, "reason": "..."}
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

import requests

from config.dedupe import DedupeSettings
from flask_app.dedupe.candidates import DuplicateCandidate
from flask_app.dedupe.errors import ExternalValidatorUnavailable


@dataclass(frozen=True)
class ValidatorVerdict:
    is_duplicate: bool
    score: int
    reason: str


class SemanticValidator(Protocol):
    def validate(
        self,
        candidate: DuplicateCandidate,
        record_a: Mapping[str, Any] | None,
        record_b: Mapping[str, Any] | None,
    ) -> ValidatorVerdict:
        """Judge one pair. Raises ExternalValidatorUnavailable on any failure."""


def _clamp_score(value: Any) -> int:
    try:
        score = float(value)
    except (TypeError, ValueError) as exc:
        raise ExternalValidatorUnavailable(f"Validator returned non-numeric score: {value!r}") from exc
    if score != score:  # NaN
        raise ExternalValidatorUnavailable("Validator returned NaN score")
    return int(math.floor(max(0.0, min(100.0, score)) + 0.5))


def parse_verdict(payload: Any) -> ValidatorVerdict:
    """Coerce a validator response body into a verdict, rejecting malformed ones."""

    if not isinstance(payload, Mapping):
        raise ExternalValidatorUnavailable("Validator response is not a JSON object")
    raw_flag = payload.get("isDuplicate", payload.get("is_duplicate"))
    if not isinstance(raw_flag, bool):
        raise ExternalValidatorUnavailable("Validator response is missing a boolean isDuplicate")
    if "score" not in payload:
        raise ExternalValidatorUnavailable("Validator response is missing score")
    reason = payload.get("reason")
    return ValidatorVerdict(
        is_duplicate=raw_flag,
        score=_clamp_score(payload.get("score")),
        reason=str(reason).strip() if reason else "",
    )


class HttpSemanticValidator:
    """POSTs candidate pairs to a JSON endpoint with a per-call timeout."""

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 10.0,
        api_key: str | None = None,
        session: requests.Session | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    def validate(
        self,
        candidate: DuplicateCandidate,
        record_a: Mapping[str, Any] | None,
        record_b: Mapping[str, Any] | None,
    ) -> ValidatorVerdict:
        body = {
            "entity_type": candidate.entity_type.value,
            "match_type": candidate.match_type.value,
            "algorithm_score": candidate.algorithm_score,
            "record_a": record_a,
            "record_b": record_b,
        }
        try:
            response = self.session.post(self.endpoint, json=body, headers=self._headers, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.Timeout as exc:
            self.logger.warning(
                "Semantic validator timed out after %ss",
                self.timeout,
                extra={"primary_id": candidate.primary_id, "secondary_id": candidate.secondary_id},
            )
            raise ExternalValidatorUnavailable(f"Validator timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            self.logger.warning("Semantic validator request failed: %s", exc)
            raise ExternalValidatorUnavailable(f"Validator request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalValidatorUnavailable("Validator returned invalid JSON") from exc

        verdict = parse_verdict(payload)
        self.logger.debug(
            "Semantic validator verdict",
            extra={
                "primary_id": candidate.primary_id,
                "secondary_id": candidate.secondary_id,
                "is_duplicate": verdict.is_duplicate,
                "score": verdict.score,
            },
        )
        return verdict


def build_validator(settings: DedupeSettings, *, session: requests.Session | None = None) -> SemanticValidator | None:
    """Return the configured validator, or None when no endpoint is set."""

    if not settings.validator_url:
        return None
    return HttpSemanticValidator(
        settings.validator_url,
        timeout=settings.validator_timeout,
        api_key=settings.validator_api_key,
        session=session,
    )


__all__ = [
    "HttpSemanticValidator",
    "SemanticValidator",
    "ValidatorVerdict",
    "build_validator",
    "parse_verdict",
]
