import logging
from functools import wraps

from flask import current_app, jsonify, request

from setlist_pickem import db
from setlist_pickem.routes.admin import bp
from setlist_pickem.routes.api.routes import token_matches
from setlist_pickem.services.achievements import get_achievement_evaluator
from setlist_pickem.services.pick_submission import get_pick_submission_service
from setlist_pickem.services.scheduler_service import scheduler_service
from setlist_pickem.services.submission_state import get_submission_state_manager
from setlist_pickem.services.tour_state import TourStateMachine
from setlist_pickem.utils.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PickemError,
    PickValidationError,
    SetlistFeedError,
    StoreUnavailableError,
    SubmissionClosedError,
)

logger = logging.getLogger(__name__)


def require_admin(f):
    """Admin features flag plus Bearer ADMIN_API_TOKEN"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_app.config.get("ADMIN_FEATURES_ENABLED", False):
            return jsonify({"error": "Admin features are disabled"}), 403

        if not token_matches(current_app.config.get("ADMIN_API_TOKEN")):
            logger.warning(f"Unauthorized admin request to {request.path}")
            return jsonify({"error": "Unauthorized"}), 401

        return f(*args, **kwargs)

    return decorated_function


def error_response(error, fallback, **context):
    """JSON error carrying the ids involved; details hidden outside debug/testing"""
    db.session.rollback()

    if isinstance(error, NotFoundError):
        status, message = 404, str(error)
    elif isinstance(error, PickValidationError):
        status, message = 400, str(error)
    elif isinstance(error, (InvalidTransitionError, SubmissionClosedError)):
        status, message = 409, str(error)
    elif isinstance(error, SetlistFeedError):
        status, message = 502, "Setlist feed unavailable"
    elif isinstance(error, StoreUnavailableError):
        status, message = 503, "Service unavailable"
    else:
        status, message = 500, fallback

    if status >= 500 and (current_app.config.get("DEBUG") or current_app.config.get("TESTING")):
        message = str(error)

    if status >= 500:
        logger.error(f"{fallback}: {error} {context}", exc_info=True)

    body = {"error": message}
    body.update({key: value for key, value in context.items() if value is not None})
    return jsonify(body), status


def _json_body():
    return request.get_json(silent=True) or {}


@bp.route("/reset-show", methods=["POST"])
@require_admin
def reset_show():
    data = _json_body()
    show_id = data.get("show_id")
    if not isinstance(show_id, int):
        return jsonify({"error": "show_id is required"}), 400

    try:
        result = get_submission_state_manager().reset_show(
            show_id, clear_achievements=data.get("clear_achievements", True)
        )
    except PickemError as e:
        return error_response(e, "Failed to reset show", show_id=show_id)

    return jsonify({"success": True, **result})


@bp.route("/test-scoring", methods=["POST"])
@require_admin
def test_scoring():
    data = _json_body()
    show_id = data.get("show_id")
    user_id = data.get("user_id")
    if not isinstance(show_id, int) or not isinstance(user_id, int):
        return jsonify({"error": "show_id and user_id are required"}), 400

    try:
        result = get_submission_state_manager().force_test_score(show_id, user_id)
    except PickemError as e:
        return error_response(e, "Test scoring failed", show_id=show_id)

    if not result["scored"]:
        return (
            jsonify(
                {
                    "error": result["message"],
                    "show_id": show_id,
                    "submission_id": result["submission_id"],
                }
            ),
            400,
        )

    return jsonify({"success": True, **result})


@bp.route("/picks", methods=["POST"])
@require_admin
def submit_picks():
    """Create or replace a user's picks for a show, before the show locks"""
    data = _json_body()
    show_id = data.get("show_id")
    user_id = data.get("user_id")
    if not isinstance(show_id, int) or not isinstance(user_id, int):
        return jsonify({"error": "show_id and user_id are required"}), 400
    if not isinstance(data.get("picks"), list):
        return jsonify({"error": "picks must be a list"}), 400

    try:
        result = get_pick_submission_service().submit_picks(user_id, show_id, data["picks"])
    except PickemError as e:
        return error_response(e, "Failed to submit picks", show_id=show_id, user_id=user_id)

    return jsonify({"success": True, **result}), 201 if result["created"] else 200


def _tour_transition(tour_id, action):
    machine = TourStateMachine(get_achievement_evaluator())
    force = bool(_json_body().get("force", False))

    try:
        tour = machine.get_tour(tour_id)
        if action == "activate":
            result = machine.activate(tour, force=force)
        elif action == "complete":
            result = machine.complete(tour)
        else:
            result = machine.close(tour, force=force)
    except PickemError as e:
        return error_response(e, f"Failed to {action} tour", tour_id=tour_id)

    return jsonify({"success": True, **result})


@bp.route("/tours/<int:tour_id>/activate", methods=["POST"])
@require_admin
def activate_tour(tour_id):
    return _tour_transition(tour_id, "activate")


@bp.route("/tours/<int:tour_id>/complete", methods=["POST"])
@require_admin
def complete_tour(tour_id):
    return _tour_transition(tour_id, "complete")


@bp.route("/tours/<int:tour_id>/close", methods=["POST"])
@require_admin
def close_tour(tour_id):
    return _tour_transition(tour_id, "close")


@bp.route("/mark-old-shows-complete", methods=["POST"])
@require_admin
def mark_old_shows_complete():
    cutoff = _json_body().get("cutoff_date") or current_app.config.get(
        "MARK_OLD_SHOWS_CUTOFF_DATE"
    )
    if not cutoff:
        return jsonify({"error": "cutoff_date is required"}), 400

    try:
        result = get_submission_state_manager().mark_old_shows_complete(cutoff)
    except ValueError:
        return jsonify({"error": "Invalid cutoff date provided"}), 400
    except PickemError as e:
        return error_response(e, "Failed to mark shows complete")

    return jsonify({"success": True, **result})


@bp.route("/scheduler/status")
@require_admin
def scheduler_status():
    return jsonify(scheduler_service.get_status())
