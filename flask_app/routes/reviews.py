# flask_app/routes/reviews.py

"""
JSON endpoints for individual contact reviews
"""

from http import HTTPStatus

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from flask_app.dedupe.errors import DedupeError
from flask_app.models import db
from flask_app.services.review_service import ReviewService
from flask_app.utils.permissions import permission_required

reviews_blueprint = Blueprint("reviews", __name__, url_prefix="/reviews")
_review_service = ReviewService()


def _int_or_none(value, name):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    return value


@reviews_blueprint.post("/")
@login_required
@permission_required("manage_reviews")
def create_review():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON data"}), HTTPStatus.BAD_REQUEST

    try:
        contact_id = _int_or_none(data.get("contactId"), "contactId")
        project_id = _int_or_none(data.get("projectId"), "projectId")
    except ValueError as exc:
        return jsonify({"error": str(exc)}), HTTPStatus.BAD_REQUEST
    if contact_id is None:
        return jsonify({"error": "contactId is required"}), HTTPStatus.BAD_REQUEST

    try:
        review = _review_service.create_review(
            current_user.id,
            contact_id,
            project_id,
            data.get("ratings"),
            data.get("generalNotes"),
        )
        db.session.commit()
        return jsonify({"success": True, "review": ReviewService.to_dict(review)}), HTTPStatus.CREATED
    except DedupeError as exc:
        db.session.rollback()
        return jsonify(exc.to_dict()), exc.http_status
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error creating review: {str(e)}", exc_info=True)
        return jsonify({"error": "An error occurred while saving the review"}), HTTPStatus.INTERNAL_SERVER_ERROR


@reviews_blueprint.put("/<int:review_id>")
@login_required
@permission_required("manage_reviews")
def update_review(review_id):
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Invalid JSON data"}), HTTPStatus.BAD_REQUEST

    try:
        review = _review_service.update_review(review_id, data.get("ratings"), data.get("generalNotes"))
        db.session.commit()
        return jsonify({"success": True, "review": ReviewService.to_dict(review)}), HTTPStatus.OK
    except DedupeError as exc:
        db.session.rollback()
        return jsonify(exc.to_dict()), exc.http_status
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error updating review {review_id}: {str(e)}", exc_info=True)
        return jsonify({"error": "An error occurred while saving the review"}), HTTPStatus.INTERNAL_SERVER_ERROR


@reviews_blueprint.delete("/<int:review_id>")
@login_required
@permission_required("manage_reviews")
def delete_review(review_id):
    try:
        _review_service.delete_review(review_id)
        db.session.commit()
        return jsonify({"success": True}), HTTPStatus.OK
    except DedupeError as exc:
        db.session.rollback()
        return jsonify(exc.to_dict()), exc.http_status
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error deleting review {review_id}: {str(e)}", exc_info=True)
        return jsonify({"error": "An error occurred while deleting the review"}), HTTPStatus.INTERNAL_SERVER_ERROR


def register_review_routes(app):
    if reviews_blueprint.name in app.blueprints:
        return
    app.register_blueprint(reviews_blueprint)
