"""
Scan orchestration: candidates -> open-set guard -> validator -> ledger.

Each entity type is scanned and committed on its own. A failure in one type
is logged, rolled back and reported in that type's summary without stopping
the others. Re-running a scan over unchanged data saves nothing new, because
every candidate is checked against the ledger's open sets first.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Sequence

from flask import current_app, has_app_context

from config.dedupe import DEFAULT_SETTINGS, DedupeSettings
from config.monitoring import DedupeMonitoring
from flask_app.dedupe.candidates import DuplicateCandidate, generate_candidates, load_match_records
from flask_app.dedupe.conflicts import serialize_record
from flask_app.dedupe.errors import ExternalValidatorUnavailable
from flask_app.dedupe.ledger import ENTITY_MODELS, DuplicateLedger
from flask_app.dedupe.validator import SemanticValidator
from flask_app.models import AdminLog, EntityType, MatchType, db

RESULT_KEYS = {
    EntityType.ORGANIZATION: "organizations",
    EntityType.CONTACT: "contacts",
}

DEFAULT_REASONS = {
    MatchType.EXACT_BUSINESS_ID: "Same business ID",
    MatchType.EXACT_PHONE: "Same phone number",
    MatchType.EXACT_EMAIL: "Same email address",
}


def default_reason(candidate: DuplicateCandidate) -> str:
    if candidate.match_type == MatchType.NAME_SIMILARITY:
        return f"Similar name ({candidate.algorithm_score}% match)"
    return DEFAULT_REASONS[candidate.match_type]


@dataclass
class ScanSummary:
    scanned: int = 0
    candidates: int = 0
    saved: int = 0
    skipped_existing: int = 0
    discarded: int = 0
    below_threshold: int = 0
    validator_errors: int = 0
    error: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScanResult:
    summaries: Dict[EntityType, ScanSummary]

    @property
    def total_saved(self) -> int:
        return sum(summary.saved for summary in self.summaries.values())

    @property
    def message(self) -> str:
        noun = "duplicate" if self.total_saved == 1 else "duplicates"
        failed = [entity_type.value for entity_type, summary in self.summaries.items() if summary.error]
        text = f"Found {self.total_saved} new {noun}"
        if failed:
            text += f" (scan failed for: {', '.join(failed)})"
        return text

    def to_dict(self) -> Dict[str, Any]:
        """Every entity type is keyed; types not scanned report zeroed counts."""
        return {
            key: self.summaries.get(entity_type, ScanSummary()).to_dict()
            for entity_type, key in RESULT_KEYS.items()
        }


class ScanOrchestrator:
    """Runs on-demand duplicate scans for one or more entity types."""

    def __init__(
        self,
        session=None,
        *,
        settings: DedupeSettings = DEFAULT_SETTINGS,
        validator: SemanticValidator | None = None,
        ledger: DuplicateLedger | None = None,
    ):
        self.session = session or db.session
        self.settings = settings
        self.validator = validator
        self.ledger = ledger or DuplicateLedger(self.session)

    def scan(
        self,
        entity_types: Iterable[EntityType],
        *,
        use_semantic_validation: bool = False,
        user_id: int | None = None,
    ) -> ScanResult:
        """
        Scan each entity type and persist new pending duplicate sets.

        Validation only runs when it is requested and a validator is
        configured; otherwise every candidate keeps its algorithmic score.
        """

        validate = use_semantic_validation and self.validator is not None
        if use_semantic_validation and self.validator is None and has_app_context():
            current_app.logger.info("Semantic validation requested but no validator is configured; skipping it")

        summaries: Dict[EntityType, ScanSummary] = {}
        for entity_type in _unique(entity_types):
            summaries[entity_type] = self._scan_entity_type(entity_type, validate=validate)

        result = ScanResult(summaries=summaries)
        self._audit(result, user_id=user_id, use_semantic_validation=use_semantic_validation)
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _scan_entity_type(self, entity_type: EntityType, *, validate: bool) -> ScanSummary:
        summary = ScanSummary()
        started = time.monotonic()
        try:
            records = load_match_records(entity_type, self.session)
            summary.scanned = len(records)
            candidates = generate_candidates(entity_type, records, self.settings)
            summary.candidates = len(candidates)
            for match_type in MatchType:
                count = sum(1 for candidate in candidates if candidate.match_type == match_type)
                if count:
                    DedupeMonitoring.record_candidates(entity_type.value, match_type.value, count)

            payloads = self._prefetch_payloads(entity_type, candidates) if validate else {}

            for candidate in candidates:
                if self.ledger.find_open_set(entity_type, candidate.primary_id, candidate.secondary_id):
                    summary.skipped_existing += 1
                    continue

                score, reason = candidate.algorithm_score, default_reason(candidate)
                if validate and not candidate.is_exact:
                    verdict = self._judge(candidate, payloads, summary)
                    if verdict is not None:
                        if not verdict.is_duplicate and verdict.score < self.settings.persistence_threshold:
                            summary.discarded += 1
                            continue
                        score, reason = verdict.score, verdict.reason or reason

                if score < self.settings.persistence_threshold:
                    summary.below_threshold += 1
                    continue

                self.ledger.create_set(candidate, score=score, reason=reason)
                summary.saved += 1

            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            summary.saved = 0
            summary.error = str(exc) or type(exc).__name__
            current_app.logger.exception(
                f"Duplicate scan failed for {entity_type.value}",
                extra={"entity_type": entity_type.value},
            )
            DedupeMonitoring.record_scan(entity_type.value, "failure", time.monotonic() - started, 0)
            return summary

        DedupeMonitoring.record_scan(entity_type.value, "success", time.monotonic() - started, summary.saved)
        current_app.logger.info(
            f"Duplicate scan for {entity_type.value}: scanned={summary.scanned} "
            f"candidates={summary.candidates} saved={summary.saved}",
            extra={"entity_type": entity_type.value, **summary.to_dict()},
        )
        return summary

    def _prefetch_payloads(
        self, entity_type: EntityType, candidates: Sequence[DuplicateCandidate]
    ) -> Dict[int, Dict[str, Any]]:
        """One query for every record a validator call may need."""

        ids = set()
        for candidate in candidates:
            if not candidate.is_exact:
                ids.update(candidate.pair_key)
        if not ids:
            return {}
        model = ENTITY_MODELS[entity_type]
        records = self.session.query(model).filter(model.id.in_(ids)).all()
        return {record.id: serialize_record(entity_type, record) for record in records}

    def _judge(self, candidate: DuplicateCandidate, payloads: Dict[int, Dict[str, Any]], summary: ScanSummary):
        try:
            verdict = self.validator.validate(
                candidate,
                payloads.get(candidate.primary_id),
                payloads.get(candidate.secondary_id),
            )
        except ExternalValidatorUnavailable as exc:
            summary.validator_errors += 1
            DedupeMonitoring.record_validator("unavailable")
            current_app.logger.warning(
                f"Semantic validator unavailable for {candidate.entity_type.value} "
                f"{candidate.primary_id}/{candidate.secondary_id}; using algorithmic score: {exc}"
            )
            return None
        except Exception as exc:
            summary.validator_errors += 1
            DedupeMonitoring.record_validator("error")
            current_app.logger.warning(
                f"Semantic validator failed for {candidate.entity_type.value} "
                f"{candidate.primary_id}/{candidate.secondary_id}; using algorithmic score: {exc!r}",
                exc_info=True,
            )
            return None
        DedupeMonitoring.record_validator("duplicate" if verdict.is_duplicate else "not_duplicate")
        return verdict

    def _audit(self, result: ScanResult, *, user_id: int | None, use_semantic_validation: bool) -> None:
        AdminLog.log_action(
            admin_user_id=user_id,
            action="DUPLICATE_SCAN",
            details=json.dumps(
                {
                    "entity_types": [entity_type.value for entity_type in result.summaries],
                    "use_semantic_validation": use_semantic_validation,
                    "results": result.to_dict(),
                    "total_saved": result.total_saved,
                }
            ),
        )


def _unique(entity_types: Iterable[EntityType]) -> List[EntityType]:
    seen: List[EntityType] = []
    for entity_type in entity_types:
        if entity_type not in seen:
            seen.append(entity_type)
    return seen


__all__ = [
    "DEFAULT_REASONS",
    "ScanOrchestrator",
    "ScanResult",
    "ScanSummary",
    "default_reason",
]
