import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request

from setlist_pickem import db
from setlist_pickem.models import Show, Submission, Tour, TourStatus
from setlist_pickem.routes.api import bp
from setlist_pickem.services.submission_state import (
    get_submission_state_manager,
    run_gated_scoring_pass,
)
from setlist_pickem.services.tour_state import TourStateMachine
from setlist_pickem.utils.cache_utils import cached_route
from setlist_pickem.utils.setlist_client import SetSongList

logger = logging.getLogger(__name__)


def bearer_token():
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):]
    return None


def token_matches(expected):
    provided = bearer_token()
    return bool(expected and provided) and hmac.compare_digest(provided, expected)


def require_cron_secret(f):
    """Bearer CRON_SECRET; mandatory in production, optional elsewhere"""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get("CRON_SECRET")

        if not secret:
            if current_app.config.get("FLASK_ENV") == "production":
                logger.error("CRON_SECRET is not configured, refusing scoring request")
                return jsonify({"error": "Server configuration error"}), 500
            return f(*args, **kwargs)

        if not token_matches(secret):
            logger.warning(
                f"Unauthorized scoring request from {request.remote_addr} "
                f"(auth header present: {bool(request.headers.get('Authorization'))})"
            )
            return jsonify({"error": "Unauthorized"}), 401

        return f(*args, **kwargs)

    return decorated_function


@bp.route("/score", methods=["POST"])
@require_cron_secret
def run_scoring():
    """Gated scoring pass, called by an external cron"""
    result = run_gated_scoring_pass()
    return jsonify({"success": True, **result})


@bp.route("/score", methods=["GET"])
def scoring_status():
    """Shows still waiting on scoring"""
    manager = get_submission_state_manager()
    return jsonify({"pending_shows": manager.pending_shows()})


@bp.route("/shows/<int:show_id>/results")
@cached_route(timeout=60, key_prefix="show_results")
def show_results(show_id):
    show = db.session.get(Show, show_id)
    if show is None:
        return {"error": "Show not found", "show_id": show_id}, 404

    setlist = None
    if show.setlist_json:
        setlist = SetSongList.from_feed(
            show.setlist_json, encore_labels=current_app.config["ENCORE_SET_LABELS"]
        ).to_summary()

    submissions = (
        show.submissions.order_by(Submission.total_points.desc(), Submission.id).all()
    )
    return {
        "show": show.to_dict(),
        "setlist": setlist,
        "submissions": [
            dict(
                submission.to_dict(include_picks=True),
                user=submission.user.to_dict() if submission.user else None,
            )
            for submission in submissions
        ],
    }


def _leaderboard_tour():
    tour_id = request.args.get("tour_id", type=int)
    if tour_id is not None:
        tour = db.session.get(Tour, tour_id)
        # Closed tours stay reachable by id as history
        if tour is None or not (tour.is_on_leaderboard or tour.is_archived):
            return None
        return tour

    active = Tour.get_active_tours()
    if active:
        return active[0]

    return (
        Tour.query.filter_by(status=TourStatus.COMPLETED.value)
        .order_by(Tour.end_date.desc())
        .first()
    )


@bp.route("/leaderboard")
@cached_route(timeout=120, key_prefix="leaderboard")
def leaderboard():
    """Standings for a tour, defaulting to the active one"""
    tour = _leaderboard_tour()
    if tour is None:
        return {"error": "No tour on the leaderboard"}, 404

    limit = request.args.get("limit", type=int)
    return {
        "tour": tour.to_dict(),
        "is_final": tour.is_final,
        "standings": TourStateMachine.standings(tour, limit=limit),
    }
