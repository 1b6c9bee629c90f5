"""
Tour status state machine.

    FUTURE -> ACTIVE -> COMPLETED -> CLOSED

Only ACTIVE tours accept picks and drive scheduled scoring. COMPLETED tours
show their podium, CLOSED tours are archived. Going back to ACTIVE from
COMPLETED or CLOSED needs an explicit force and undoes the podium. Nothing
ever returns to FUTURE.
"""

import logging

from sqlalchemy import func

from setlist_pickem import db
from setlist_pickem.models import Show, Submission, Tour, TourStatus, User
from setlist_pickem.utils.db_retry import with_retry
from setlist_pickem.utils.exceptions import InvalidTransitionError, NotFoundError

logger = logging.getLogger(__name__)


class TourStateMachine:
    def __init__(self, achievement_evaluator):
        self.achievements = achievement_evaluator

    @staticmethod
    @with_retry(operation_name="has_active_tours")
    def has_active_tours():
        """Single COUNT query used to gate every scoring pass"""
        count = (
            db.session.query(func.count(Tour.id))
            .filter(Tour.status == TourStatus.ACTIVE.value)
            .scalar()
        )
        return bool(count)

    @staticmethod
    def get_tour(tour_id):
        tour = db.session.get(Tour, tour_id)
        if tour is None:
            raise NotFoundError("Tour", tour_id)
        return tour

    def _result(self, tour, previous, changed, **extra):
        result = {
            "tour_id": tour.id,
            "tour_name": tour.name,
            "previous_status": previous,
            "status": tour.status,
            "changed": changed,
        }
        result.update(extra)
        return result

    @with_retry(operation_name="tour.activate")
    def activate(self, tour, force=False):
        """
        FUTURE -> ACTIVE. Reactivating a COMPLETED or CLOSED tour requires
        force and removes its placement achievements.
        """
        previous = tour.status

        if previous == TourStatus.ACTIVE.value:
            return self._result(tour, previous, changed=False)

        revoked = 0
        if previous in (TourStatus.COMPLETED.value, TourStatus.CLOSED.value):
            if not force:
                raise InvalidTransitionError(
                    tour.name,
                    previous,
                    TourStatus.ACTIVE.value,
                    hint="reactivation removes the podium, pass force to confirm",
                )
            logger.warning(
                f"Reactivating {previous} tour '{tour.name}', removing placement achievements"
            )
            revoked = self.achievements.revoke_for_tour(tour.id)

        tour.status = TourStatus.ACTIVE.value
        db.session.commit()
        logger.info(f"Tour '{tour.name}' activated (was {previous})")

        first_show = tour.shows.first()
        return self._result(
            tour,
            previous,
            changed=True,
            revoked_achievements=revoked,
            first_show=first_show.to_dict() if first_show else None,
        )

    @with_retry(operation_name="tour.complete")
    def complete(self, tour):
        """ACTIVE -> COMPLETED, computing final standings and the podium"""
        previous = tour.status

        if previous not in (TourStatus.ACTIVE.value, TourStatus.COMPLETED.value):
            raise InvalidTransitionError(tour.name, previous, TourStatus.COMPLETED.value)

        incomplete = tour.shows.filter(Show.is_complete.is_(False)).all()
        if incomplete:
            logger.warning(
                f"Completing tour '{tour.name}' with {len(incomplete)} incomplete show(s); "
                f"standings may not be final"
            )

        standings = self.standings(tour)
        if not standings:
            logger.warning(f"Tour '{tour.name}' has no scored participants")

        tour.status = TourStatus.COMPLETED.value
        awarded = self.achievements.award_tour_placements(tour, standings)
        db.session.commit()

        logger.info(
            f"Tour '{tour.name}' completed: {len(standings)} participant(s), "
            f"{len(awarded)} placement award(s)"
        )
        return self._result(
            tour,
            previous,
            changed=previous != tour.status,
            incomplete_shows=[show.to_dict() for show in incomplete],
            standings=standings[:10],
            awarded=awarded,
        )

    @with_retry(operation_name="tour.close")
    def close(self, tour, force=False):
        """COMPLETED -> CLOSED. Closing a tour that never completed requires force."""
        previous = tour.status

        if previous == TourStatus.CLOSED.value:
            return self._result(tour, previous, changed=False)

        if previous != TourStatus.COMPLETED.value and not force:
            raise InvalidTransitionError(
                tour.name,
                previous,
                TourStatus.CLOSED.value,
                hint="tour was never completed, pass force to archive it anyway",
            )

        tour.status = TourStatus.CLOSED.value
        db.session.commit()
        logger.info(f"Tour '{tour.name}' closed (was {previous})")

        return self._result(
            tour,
            previous,
            changed=True,
            active_tours=[t.name for t in Tour.get_active_tours()],
        )

    @staticmethod
    def standings(tour, limit=None):
        """
        Ranked totals over scored submissions, admins excluded.

        Tied totals share a rank (1, 1, 3, ...).
        """
        total = func.sum(Submission.total_points).label("total_points")
        shows_played = func.count(Submission.id).label("shows_played")

        rows = (
            db.session.query(User.id, User.username, User.display_name, total, shows_played)
            .join(Submission, Submission.user_id == User.id)
            .join(Show, Submission.show_id == Show.id)
            .filter(
                Show.tour_id == tour.id,
                Submission.is_scored.is_(True),
                User.is_admin.is_(False),
            )
            .group_by(User.id, User.username, User.display_name)
            .order_by(total.desc(), User.username)
            .all()
        )

        standings = []
        previous_total = None
        rank = 0
        for position, row in enumerate(rows, start=1):
            points = int(row.total_points or 0)
            if points != previous_total:
                rank = position
                previous_total = points
            standings.append(
                {
                    "rank": rank,
                    "user_id": row.id,
                    "username": row.username,
                    "display_name": row.display_name or row.username,
                    "total_points": points,
                    "shows_played": int(row.shows_played),
                }
            )

        if limit is not None:
            standings = standings[:limit]
        return standings
