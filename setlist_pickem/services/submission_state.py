"""
Submission state management: the scoring pass.

A pass walks every show that still has work to do, fetches its setlist once,
and rewrites each submission's pick outcomes to the latest values. Writes
overwrite rather than accumulate, so running a pass twice over the same feed
leaves the stored results unchanged. Each submission is persisted on its own
and a failure on one never blocks the others; show-level stamps are written
only after every submission has been attempted.
"""

import logging
from dataclasses import asdict, dataclass, field
from datetime import timedelta, timezone

from flask import current_app

from setlist_pickem import db
from setlist_pickem.models import Show, Submission, User
from setlist_pickem.services.achievements import AchievementEvaluator
from setlist_pickem.services.tour_state import TourStateMachine
from setlist_pickem.utils.cache_utils import invalidate_scoring_caches
from setlist_pickem.utils.db_retry import run_with_retry, with_retry
from setlist_pickem.utils.exceptions import (
    ConfigurationError,
    NotFoundError,
    SetlistFeedError,
    StoreUnavailableError,
)
from setlist_pickem.utils.scoring import ScoringEngine
from setlist_pickem.utils.setlist_client import (
    SetlistClient,
    SetSongList,
    get_setlist_client,
)
from setlist_pickem.utils.timezone_utils import (
    LockTimeResolver,
    get_utc_time,
    normalize_show_date,
)

logger = logging.getLogger(__name__)

STATUS_SCORED = "scored"
STATUS_UNCHANGED = "unchanged"
STATUS_NOT_LOCKED = "not_locked"
STATUS_NOT_STARTED = "not_started"
STATUS_FEED_ERROR = "feed_error"
STATUS_FEED_REGRESSION = "feed_regression"


@dataclass
class ShowScoringSummary:
    """Per-show outcome of a scoring pass, also the notification trigger payload"""

    show_id: int
    show_date: str
    status: str = STATUS_UNCHANGED
    song_count: int = 0
    submissions_attempted: int = 0
    submissions_updated: int = 0
    submissions_failed: int = 0
    failures: list = field(default_factory=list)
    achievements_awarded: int = 0
    is_complete: bool = False
    newly_complete: bool = False
    error: str = None

    @property
    def changed(self):
        return self.submissions_updated > 0 or self.newly_complete

    def to_dict(self):
        return asdict(self)

    def log_line(self):
        line = (
            f"Show {self.show_id} ({self.show_date}): {self.status}, "
            f"{self.song_count} songs, "
            f"{self.submissions_updated}/{self.submissions_attempted} submissions updated"
        )
        if self.submissions_failed:
            line += f", {self.submissions_failed} failed"
        if self.newly_complete:
            line += ", show complete"
        if self.error:
            line += f" [{self.error}]"
        return line


def _naive_utc(moment):
    """Stored timestamps are naive UTC"""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def check_show_started(show, resolver, client, now):
    """
    (started, setlist) for a show. The lock instant decides when it can be
    resolved; otherwise the feed is asked once and its setlist is handed
    back so callers never fetch it twice.

    Raises:
        SetlistFeedError: the feed was needed and is unavailable
    """
    lock_at = resolver.try_lock_instant(show.show_date, show.timezone, show.state)
    if lock_at is not None:
        return now >= lock_at, None

    logger.warning(
        f"Show {show.id}: lock time undeterminable, checking feed for a started show"
    )
    setlist = client.fetch_setlist(show.show_date)
    return setlist is not None and not setlist.is_empty, setlist


class SubmissionStateManager:
    def __init__(
        self,
        setlist_client,
        lock_resolver,
        scoring_engine,
        achievement_evaluator,
        min_final_song_count=6,
    ):
        self.client = setlist_client
        self.resolver = lock_resolver
        self.engine = scoring_engine
        self.achievements = achievement_evaluator
        self.min_final_song_count = min_final_song_count

    @classmethod
    def from_config(cls, app_config, setlist_client=None):
        return cls(
            setlist_client=setlist_client or SetlistClient.from_config(app_config),
            lock_resolver=LockTimeResolver.from_config(app_config),
            scoring_engine=ScoringEngine.from_config(app_config),
            achievement_evaluator=AchievementEvaluator.from_config(app_config),
            min_final_song_count=app_config.get("MIN_FINAL_SETLIST_SONGS", 6),
        )

    # Selection

    @staticmethod
    def _eligible_shows_query(now):
        horizon = normalize_show_date(now) + timedelta(days=1)
        needs_work = db.or_(
            db.and_(Show.is_complete.is_(False), Show.submissions.any()),
            Show.submissions.any(Submission.is_scored.is_(False)),
        )
        return Show.query.filter(Show.show_date <= horizon, needs_work).order_by(
            Show.show_date, Show.id
        )

    def eligible_shows(self, now=None):
        now = now or get_utc_time()
        return run_with_retry(
            lambda: self._eligible_shows_query(now).all(), "eligible_shows"
        )

    def pending_shows(self):
        """Shows with unscored submissions, for status endpoints"""

        def load():
            shows = (
                Show.query.filter(Show.submissions.any(Submission.is_scored.is_(False)))
                .order_by(Show.show_date, Show.id)
                .all()
            )
            return [
                {
                    "id": show.id,
                    "show_date": show.show_date_str,
                    "venue": show.venue,
                    "is_complete": show.is_complete,
                    "submission_count": show.submissions.count(),
                    "unscored_count": show.submissions.filter_by(is_scored=False).count(),
                }
                for show in shows
            ]

        return run_with_retry(load, "pending_shows")

    # Scoring

    def run_scoring_pass(self, now=None, force=False):
        """
        Score every eligible show.

        Raises:
            StoreUnavailableError: the database stayed unreachable
        """
        now = now or get_utc_time()
        shows = self.eligible_shows(now)
        logger.info(f"Scoring pass started: {len(shows)} eligible show(s)")

        summaries = []
        for show in shows:
            summary = self.score_show(show, now=now, force=force)
            logger.info(summary.log_line())
            summaries.append(summary)

        if any(summary.changed for summary in summaries):
            invalidate_scoring_caches("scoring pass updated results")

        return summaries

    def is_final(self, show, setlist):
        if show.is_complete:
            return True
        return setlist.has_encore and setlist.song_count >= self.min_final_song_count

    @staticmethod
    def _cached_song_count(show):
        if not show.setlist_json:
            return 0
        try:
            return SetSongList.from_feed(show.setlist_json).song_count
        except SetlistFeedError:
            return 0

    def score_show(self, show, now=None, force=False):
        """
        Score one show's submissions against its current setlist.

        Returns:
            ShowScoringSummary
        """
        now = now or get_utc_time()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        show_id = show.id
        summary = ShowScoringSummary(
            show_id=show_id, show_date=show.show_date_str, is_complete=show.is_complete
        )

        try:
            setlist = None
            if not show.is_complete:
                started, setlist = check_show_started(show, self.resolver, self.client, now)
                if not started:
                    summary.status = STATUS_NOT_LOCKED
                    return summary

            if setlist is None:
                setlist = self.client.fetch_setlist(show.show_date)
        except SetlistFeedError as e:
            logger.warning(f"Show {show_id}: setlist feed error: {e}")
            summary.status = STATUS_FEED_ERROR
            summary.error = str(e)
            return summary

        song_count = setlist.song_count if setlist else 0
        summary.song_count = song_count

        previous_count = self._cached_song_count(show)
        if show.is_complete and song_count < previous_count:
            logger.warning(
                f"Show {show_id}: feed now has {song_count} songs, "
                f"{previous_count} were already seen; keeping stored results"
            )
            summary.status = STATUS_FEED_REGRESSION
            summary.song_count = previous_count
            return summary

        if setlist is None or setlist.is_empty:
            summary.status = STATUS_NOT_STARTED
            return summary

        is_final = self.is_final(show, setlist)
        submission_ids = [
            submission_id
            for (submission_id,) in db.session.query(Submission.id)
            .filter_by(show_id=show_id)
            .order_by(Submission.id)
        ]

        for submission_id in submission_ids:
            submission = db.session.get(Submission, submission_id)
            if submission is None:
                continue
            if not force and not submission.needs_rescore(song_count, is_final):
                continue

            summary.submissions_attempted += 1
            try:
                self._persist_submission(submission_id, setlist, is_final, now)
            except (StoreUnavailableError, ConfigurationError):
                raise
            except Exception as e:
                db.session.rollback()
                logger.error(
                    f"Show {show_id}: failed to score submission {submission_id}: {e}",
                    exc_info=True,
                )
                summary.submissions_failed += 1
                summary.failures.append(
                    {"submission_id": submission_id, "stage": "scoring", "error": str(e)}
                )
                continue

            summary.submissions_updated += 1
            summary.achievements_awarded += self._evaluate_achievements(
                submission_id, summary
            )

        newly_complete = self._stamp_show(
            show_id, setlist, is_final, summary.submissions_updated > 0, now
        )
        summary.newly_complete = newly_complete
        summary.is_complete = is_final
        summary.status = (
            STATUS_SCORED if summary.submissions_attempted or newly_complete else STATUS_UNCHANGED
        )
        return summary

    @with_retry(operation_name="persist_submission")
    def _persist_submission(self, submission_id, setlist, is_final, now):
        """One transaction per submission: pick outcomes, total and scoring stamps"""
        submission = db.session.get(Submission, submission_id)
        result = self.engine.score(submission.picks, setlist, is_final)

        for pick in submission.picks:
            outcome = result.outcome_for(pick.id)
            was_played = outcome.was_played
            if was_played is None and pick.was_played is False:
                # Not-played goes back to unscored only through a reset
                was_played = False
            pick.apply_outcome(was_played, outcome.points_earned)

        submission.total_points = sum(pick.points_earned for pick in submission.picks)
        submission.is_scored = is_final
        submission.last_song_count = setlist.song_count
        submission.scored_at = _naive_utc(now)
        db.session.commit()
        return submission.total_points

    def _evaluate_achievements(self, submission_id, summary):
        def evaluate():
            submission = db.session.get(Submission, submission_id)
            awarded = self.achievements.evaluate_submission(submission)
            db.session.commit()
            return awarded

        try:
            awarded = run_with_retry(evaluate, "evaluate_achievements")
        except (StoreUnavailableError, ConfigurationError):
            raise
        except Exception as e:
            db.session.rollback()
            logger.error(
                f"Achievement evaluation failed for submission {submission_id}: {e}",
                exc_info=True,
            )
            summary.failures.append(
                {"submission_id": submission_id, "stage": "achievements", "error": str(e)}
            )
            return 0

        if awarded:
            logger.info(f"Submission {submission_id} earned: {', '.join(awarded)}")
        return len(awarded)

    @with_retry(operation_name="stamp_show")
    def _stamp_show(self, show_id, setlist, is_final, any_updated, now):
        """Cache the setlist, mark completion and stamp the pass; returns newly_complete"""
        show = db.session.get(Show, show_id)
        payload = setlist.to_json()

        if show.setlist_json != payload:
            show.setlist_json = payload
            show.fetched_at = _naive_utc(now)

        newly_complete = is_final and not show.is_complete
        if is_final:
            show.is_complete = True

        if any_updated or newly_complete:
            show.last_scored_at = _naive_utc(now)

        db.session.commit()
        return newly_complete

    # Admin operations

    @staticmethod
    def _get_show(show_id):
        show = db.session.get(Show, show_id)
        if show is None:
            raise NotFoundError("Show", show_id)
        return show

    @with_retry(operation_name="reset_show")
    def reset_show(self, show_id, clear_achievements=True):
        """
        Undo everything scoring wrote for a show. Safe to repeat.

        Raises:
            NotFoundError: unknown show id
        """
        show = self._get_show(show_id)

        submissions = show.submissions.all()
        picks_reset = 0
        for submission in submissions:
            picks_reset += len(submission.picks)
            submission.clear_scoring_state()

        show.clear_scoring_state()

        revoked = self.achievements.revoke_for_show(show_id) if clear_achievements else 0
        db.session.commit()

        logger.warning(
            f"Show {show_id} reset: {len(submissions)} submission(s), "
            f"{picks_reset} pick(s), {revoked} achievement(s) revoked"
        )
        invalidate_scoring_caches(f"show {show_id} reset")

        return {
            "show_id": show_id,
            "show_date": show.show_date_str,
            "submissions_reset": len(submissions),
            "picks_reset": picks_reset,
            "achievements_revoked": revoked,
        }

    def force_test_score(self, show_id, user_id, now=None):
        """
        Score one user's submission against the live setlist, ignoring the
        lock. The show itself is left untouched.

        Raises:
            NotFoundError: unknown show or no submission for the user
            SetlistFeedError: feed unavailable
        """
        now = now or get_utc_time()
        show = self._get_show(show_id)
        user = db.session.get(User, user_id)
        submission = user.get_submission_for_show(show_id) if user else None
        if submission is None:
            raise NotFoundError("Submission", f"for user {user_id} on show {show_id}")

        setlist = self.client.fetch_setlist(show.show_date)
        if setlist is None or setlist.is_empty:
            return {
                "scored": False,
                "show_id": show_id,
                "submission_id": submission.id,
                "message": f"No setlist found for {show.show_date_str}",
            }

        is_final = self.is_final(show, setlist)
        total = self._persist_submission(submission.id, setlist, is_final, now)
        invalidate_scoring_caches(f"test scoring on show {show_id}")

        submission = db.session.get(Submission, submission.id)
        logger.info(
            f"Test scored submission {submission.id} on show {show_id}: {total} points"
        )
        return {
            "scored": True,
            "show_id": show_id,
            "submission_id": submission.id,
            "show_date": show.show_date_str,
            "venue": show.venue,
            "song_count": setlist.song_count,
            "is_final": is_final,
            "total_points": total,
            "picks": [pick.to_dict() for pick in submission.picks],
            "setlist": setlist.to_summary(),
        }

    @with_retry(operation_name="mark_old_shows_complete")
    def mark_old_shows_complete(self, cutoff_date):
        """Mark every incomplete show dated before the cutoff as complete"""
        cutoff = normalize_show_date(cutoff_date)
        updated = Show.query.filter(
            Show.show_date < cutoff, Show.is_complete.is_(False)
        ).update({Show.is_complete: True}, synchronize_session=False)
        db.session.commit()

        remaining = (
            Show.query.filter(Show.is_complete.is_(False)).order_by(Show.show_date).all()
        )
        logger.info(f"Marked {updated} show(s) before {cutoff} complete")

        return {
            "cutoff_date": cutoff.isoformat(),
            "updated_count": updated,
            "remaining_incomplete": [
                {
                    "id": show.id,
                    "date": show.show_date_str,
                    "venue": show.venue,
                    "location": show.location,
                }
                for show in remaining
            ],
        }


def get_submission_state_manager(setlist_client=None):
    return SubmissionStateManager.from_config(
        current_app.config, setlist_client=setlist_client or get_setlist_client()
    )


def run_gated_scoring_pass(manager=None, now=None, force=False):
    """
    Entry point for the scheduler, the cron endpoint and the CLI.

    The ACTIVE-tour check runs first so idle periods cost a single query.
    """
    if not TourStateMachine.has_active_tours():
        logger.debug("No active tours, scoring pass skipped")
        return {"skipped": True, "reason": "no_active_tours", "shows_processed": 0, "results": []}

    manager = manager or get_submission_state_manager()
    summaries = manager.run_scoring_pass(now=now, force=force)
    return {
        "skipped": False,
        "shows_processed": len(summaries),
        "results": [summary.to_dict() for summary in summaries],
    }
