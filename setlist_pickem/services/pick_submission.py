"""
Pick submission: create or replace a user's picks for a show.

A submission is one opener, one encore and eleven general picks, all
different songs. Picks are written only while the show's tour is ACTIVE and
the show has not started; after that the scoring pass owns the submission.
"""

import logging
from collections import Counter

from flask import current_app

from setlist_pickem import db
from setlist_pickem.models import Pick, PickCategory, Show, Song, Submission, User
from setlist_pickem.services.submission_state import check_show_started
from setlist_pickem.utils.cache_utils import invalidate_scoring_caches
from setlist_pickem.utils.db_retry import with_retry
from setlist_pickem.utils.exceptions import (
    NotFoundError,
    PickValidationError,
    SubmissionClosedError,
)
from setlist_pickem.utils.scoring import GENERAL_PICKS_PER_SUBMISSION
from setlist_pickem.utils.setlist_client import get_setlist_client
from setlist_pickem.utils.timezone_utils import LockTimeResolver, get_utc_time

logger = logging.getLogger(__name__)

REQUIRED_PICKS = {
    PickCategory.OPENER: 1,
    PickCategory.ENCORE: 1,
    PickCategory.GENERAL: GENERAL_PICKS_PER_SUBMISSION,
}


def validate_picks(picks):
    """
    Normalize raw picks to (category, slug) pairs.

    Each pick is a mapping with "pick_type" and "song" (a song slug).

    Raises:
        PickValidationError: unknown type, wrong counts or a repeated song
    """
    normalized = []
    for raw in picks or []:
        try:
            category = PickCategory(str(raw.get("pick_type", "")).upper())
        except (AttributeError, ValueError):
            raise PickValidationError(f"Invalid pick: {raw!r}") from None

        slug = str(raw.get("song") or "").strip().lower()
        if not slug:
            raise PickValidationError(f"Pick is missing a song: {raw!r}")
        normalized.append((category, slug))

    counts = Counter(category for category, _ in normalized)
    for category, required in REQUIRED_PICKS.items():
        if counts[category] != required:
            raise PickValidationError(
                f"Expected exactly {required} {category.label.lower()} pick(s), "
                f"got {counts[category]}"
            )

    repeated = sorted(slug for slug, n in Counter(s for _, s in normalized).items() if n > 1)
    if repeated:
        raise PickValidationError(f"Songs picked more than once: {', '.join(repeated)}")

    return normalized


class PickSubmissionService:
    def __init__(self, setlist_client, lock_resolver):
        self.client = setlist_client
        self.resolver = lock_resolver

    @classmethod
    def from_config(cls, app_config, setlist_client):
        return cls(setlist_client, LockTimeResolver.from_config(app_config))

    def ensure_open(self, show, now=None):
        """
        Raises:
            SubmissionClosedError: tour not ACTIVE, show complete or started
            SetlistFeedError: lock time unknown and the feed is unavailable
        """
        now = now or get_utc_time()

        if show.tour is None or not show.tour.accepts_picks:
            raise SubmissionClosedError(show.id, "tour is not accepting picks")

        if show.is_complete:
            raise SubmissionClosedError(show.id, "show is complete")

        started, _ = check_show_started(show, self.resolver, self.client, now)
        if started:
            raise SubmissionClosedError(show.id, "show has started")

    def submit_picks(self, user_id, show_id, picks, now=None):
        """
        Create the user's submission for a show, or replace its picks.

        Raises:
            PickValidationError: malformed picks or unknown songs
            NotFoundError: unknown user or show
            SubmissionClosedError: picks are locked for the show
        """
        normalized = validate_picks(picks)

        user = db.session.get(User, user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        show = db.session.get(Show, show_id)
        if show is None:
            raise NotFoundError("Show", show_id)

        self.ensure_open(show, now)

        slugs = [slug for _, slug in normalized]
        songs = {song.slug: song for song in Song.query.filter(Song.slug.in_(slugs))}
        unknown = [slug for slug in slugs if slug not in songs]
        if unknown:
            raise PickValidationError(f"Unknown songs: {', '.join(unknown)}")

        submission_id, created = self._save(
            user_id, show_id, [(category, songs[slug].id) for category, slug in normalized]
        )
        invalidate_scoring_caches(f"picks submitted for show {show_id}")

        logger.info(
            f"User {user_id} {'submitted' if created else 'updated'} picks for show {show_id}"
        )
        submission = db.session.get(Submission, submission_id)
        return {
            "created": created,
            "submission": submission.to_dict(include_picks=True),
            "message": "Picks submitted" if created else "Picks updated",
        }

    @with_retry(operation_name="save_picks")
    def _save(self, user_id, show_id, song_picks):
        user = db.session.get(User, user_id)
        submission = user.get_submission_for_show(show_id)
        created = submission is None

        if created:
            submission = Submission(user_id=user_id, show_id=show_id)
            db.session.add(submission)
        else:
            submission.picks.clear()
            submission.clear_scoring_state()
        # Old picks must be gone before the same songs are inserted again
        db.session.flush()

        for category, song_id in song_picks:
            db.session.add(
                Pick(submission_id=submission.id, song_id=song_id, pick_type=category.value)
            )
        db.session.commit()
        return submission.id, created


def get_pick_submission_service(setlist_client=None):
    return PickSubmissionService.from_config(
        current_app.config, setlist_client or get_setlist_client()
    )
