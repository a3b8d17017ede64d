"""
Admin-facing duplicate review routes: scan, list, inspect and resolve sets.
"""

from __future__ import annotations

from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from config.dedupe import DedupeConfigError
from flask_app.dedupe import get_settings
from flask_app.dedupe.errors import DedupeError
from flask_app.dedupe.ledger import DuplicateLedger, parse_entity_type, parse_status
from flask_app.dedupe.merge_service import MergeService
from flask_app.dedupe.scan_service import ScanOrchestrator
from flask_app.dedupe.validator import build_validator
from flask_app.models import EntityType, db
from flask_app.utils.permissions import permission_required

admin_duplicates_blueprint = Blueprint("admin_duplicates", __name__, url_prefix="/admin/duplicates")
_ledger = DuplicateLedger()
_merge_service = MergeService()

MAX_PAGE_SIZE = 500


def _error_response(exc: DedupeError):
    return jsonify(exc.to_dict()), exc.http_status


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


@admin_duplicates_blueprint.get("/")
@login_required
@permission_required("manage_duplicates")
def list_duplicate_sets():
    """List duplicate sets (pending by default) with per-status counts."""
    status_raw = request.args.get("status", "pending")
    entity_raw = request.args.get("entity_type")
    try:
        limit = int(request.args.get("limit", "100"))
        offset = int(request.args.get("offset", "0"))
    except (TypeError, ValueError):
        return jsonify({"error": "limit and offset must be integers."}), HTTPStatus.BAD_REQUEST
    if limit < 1 or limit > MAX_PAGE_SIZE:
        return jsonify({"error": f"limit must be between 1 and {MAX_PAGE_SIZE}."}), HTTPStatus.BAD_REQUEST
    if offset < 0:
        return jsonify({"error": "offset must be non-negative."}), HTTPStatus.BAD_REQUEST

    try:
        status = None if status_raw == "all" else parse_status(status_raw)
        entity_type = parse_entity_type(entity_raw) if entity_raw else None
        items, total = _ledger.list_sets(status=status, entity_type=entity_type, limit=limit, offset=offset)
        return (
            jsonify(
                {
                    "sets": items,
                    "total": total,
                    "limit": limit,
                    "offset": offset,
                    "counts": _ledger.status_counts(),
                }
            ),
            HTTPStatus.OK,
        )
    except DedupeError as exc:
        return _error_response(exc)
    except Exception as exc:
        current_app.logger.exception("Failed to list duplicate sets", exc_info=exc)
        return jsonify({"error": "Failed to list duplicate sets."}), HTTPStatus.INTERNAL_SERVER_ERROR


@admin_duplicates_blueprint.get("/stats")
@login_required
@permission_required("manage_duplicates")
def duplicate_stats():
    try:
        counts = _ledger.status_counts()
        return jsonify({"counts": counts, "total": sum(counts.values())}), HTTPStatus.OK
    except Exception as exc:
        current_app.logger.exception("Failed to compute duplicate stats", exc_info=exc)
        return jsonify({"error": "Failed to compute duplicate stats."}), HTTPStatus.INTERNAL_SERVER_ERROR


@admin_duplicates_blueprint.post("/scan")
@login_required
@permission_required("manage_duplicates")
def run_duplicate_scan():
    """Scan the requested entity types and persist new pending sets."""
    data = _json_body()
    if data is None:
        data = {}

    raw_types = data.get("entityTypes")
    use_semantic = data.get("useSemanticValidation", False)
    if not isinstance(use_semantic, bool):
        return jsonify({"error": "useSemanticValidation must be a boolean."}), HTTPStatus.BAD_REQUEST
    if raw_types is not None and not isinstance(raw_types, list):
        return jsonify({"error": "entityTypes must be a list."}), HTTPStatus.BAD_REQUEST

    try:
        entity_types = [parse_entity_type(value) for value in raw_types] if raw_types else list(EntityType)
        settings = get_settings()
    except DedupeError as exc:
        return _error_response(exc)
    except DedupeConfigError as exc:
        current_app.logger.error(f"Duplicate scan settings are invalid: {exc}")
        return jsonify({"error": "Duplicate detection is misconfigured."}), HTTPStatus.INTERNAL_SERVER_ERROR

    try:
        validator = build_validator(settings) if use_semantic else None
        result = ScanOrchestrator(settings=settings, validator=validator).scan(
            entity_types,
            use_semantic_validation=use_semantic,
            user_id=current_user.id,
        )
        return (
            jsonify({"success": True, "results": result.to_dict(), "message": result.message}),
            HTTPStatus.OK,
        )
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Duplicate scan failed", exc_info=exc)
        return jsonify({"success": False, "error": "Duplicate scan failed."}), HTTPStatus.INTERNAL_SERVER_ERROR


@admin_duplicates_blueprint.get("/<int:set_id>")
@login_required
@permission_required("manage_duplicates")
def duplicate_set_details(set_id: int):
    """Both records side by side plus the fields that conflict."""
    try:
        details = _ledger.get_details(set_id)
        return jsonify(details.to_dict()), HTTPStatus.OK
    except DedupeError as exc:
        return _error_response(exc)
    except Exception as exc:
        current_app.logger.exception("Failed to fetch duplicate set details", exc_info=exc)
        return jsonify({"error": "Failed to fetch duplicate set details."}), HTTPStatus.INTERNAL_SERVER_ERROR


@admin_duplicates_blueprint.put("/<int:set_id>")
@login_required
@permission_required("manage_duplicates")
def update_duplicate_set(set_id: int):
    """Reject or skip a pending set."""
    data = _json_body()
    if not data or "status" not in data:
        return jsonify({"error": "Request body must include 'status'."}), HTTPStatus.BAD_REQUEST

    try:
        duplicate_set = _merge_service.set_review_status(set_id, data["status"], reviewer_id=current_user.id)
        return jsonify({"success": True, "set": duplicate_set.to_dict()}), HTTPStatus.OK
    except DedupeError as exc:
        return _error_response(exc)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update duplicate set", exc_info=exc)
        return jsonify({"error": "Failed to update duplicate set."}), HTTPStatus.INTERNAL_SERVER_ERROR


@admin_duplicates_blueprint.post("/<int:set_id>/merge")
@login_required
@permission_required("manage_duplicates")
def merge_duplicate_set(set_id: int):
    data = _json_body()
    if not data or "masterId" not in data:
        return jsonify({"error": "Request body must include 'masterId'."}), HTTPStatus.BAD_REQUEST

    try:
        duplicate_set = _merge_service.merge(
            set_id,
            data["masterId"],
            data.get("fieldResolutions") or [],
            reviewer_id=current_user.id,
        )
        return jsonify({"success": True, "set": duplicate_set.to_dict()}), HTTPStatus.OK
    except DedupeError as exc:
        return _error_response(exc)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to merge duplicate set", exc_info=exc)
        return jsonify({"error": "Failed to merge duplicate set."}), HTTPStatus.INTERNAL_SERVER_ERROR


@admin_duplicates_blueprint.post("/<int:set_id>/undo")
@login_required
@permission_required("manage_duplicates")
def undo_duplicate_merge(set_id: int):
    try:
        duplicate_set = _merge_service.undo(set_id, reviewer_id=current_user.id)
        return jsonify({"success": True, "set": duplicate_set.to_dict()}), HTTPStatus.OK
    except DedupeError as exc:
        return _error_response(exc)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to undo duplicate merge", exc_info=exc)
        return jsonify({"error": "Failed to undo merge."}), HTTPStatus.INTERNAL_SERVER_ERROR


def register_admin_duplicate_routes(app):
    if admin_duplicates_blueprint.name in app.blueprints:
        return
    app.register_blueprint(admin_duplicates_blueprint)
