"""
Derived achievements.

Awards are keyed by (user, achievement) and only ever inserted once. Scoring
never revokes; only admin resets and tour reactivation remove awards, and
only the ones they produced (tracked through source_show_id/source_tour_id).
"""

import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError

from setlist_pickem import db
from setlist_pickem.models import Achievement, PickCategory, User, UserAchievement
from setlist_pickem.utils.exceptions import DuplicateAwardError

logger = logging.getLogger(__name__)

ACHIEVEMENT_DEFINITIONS = {
    "FOUNDING_MEMBER": {
        "slug": "founding-member",
        "name": "Founding Member",
        "description": "Joined for the first tour on the site",
        "icon": "Baby",
        "category": "SPECIAL",
    },
    "PERFECT_OPENER": {
        "slug": "perfect-opener",
        "name": "Perfect Opener",
        "description": "Correctly guessed a show opener",
        "icon": "PlaneTakeoff",
        "category": "MILESTONE",
    },
    "PERFECT_CLOSER": {
        "slug": "perfect-closer",
        "name": "Perfect Closer",
        "description": "Correctly guessed an encore song",
        "icon": "PlaneLanding",
        "category": "MILESTONE",
    },
    "PERFECT_PICKER": {
        "slug": "perfect-picker",
        "name": "Perfect Picker",
        "description": "Got all 13 picks correct in a single show",
        "icon": "💯",
        "category": "MILESTONE",
    },
}

# Placement awards exist once per tour, so their slugs carry the tour id
PLACEMENT_DEFINITIONS = {
    1: {"slug": "tour-champion", "title": "Champion", "icon": "🥇"},
    2: {"slug": "tour-runner-up", "title": "Runner-Up", "icon": "🥈"},
    3: {"slug": "tour-third-place", "title": "Third Place", "icon": "🥉"},
}

PICK_CATEGORY_AWARDS = {
    PickCategory.OPENER: "PERFECT_OPENER",
    PickCategory.ENCORE: "PERFECT_CLOSER",
}


def placement_slug(placement, tour_id):
    return f"{PLACEMENT_DEFINITIONS[placement]['slug']}-{tour_id}"


class AchievementEvaluator:
    """Evaluates and persists achievements derived from scoring results"""

    def __init__(self, picks_per_submission=13):
        self.picks_per_submission = picks_per_submission

    @classmethod
    def from_config(cls, app_config):
        return cls(picks_per_submission=app_config.get("PICKS_PER_SUBMISSION", 13))

    def ensure_catalog(self):
        """Upsert every static catalog entry; returns {slug: Achievement}"""
        rows = {}
        for definition in ACHIEVEMENT_DEFINITIONS.values():
            rows[definition["slug"]] = self._upsert_definition(definition)
        db.session.commit()
        return rows

    def _upsert_definition(self, definition):
        achievement = Achievement.query.filter_by(slug=definition["slug"]).first()
        if not achievement:
            achievement = Achievement(slug=definition["slug"])
            db.session.add(achievement)
        achievement.name = definition["name"]
        achievement.description = definition["description"]
        achievement.icon = definition["icon"]
        achievement.category = definition["category"]
        return achievement

    def _insert_award(self, user_id, achievement, metadata, source_show_id, source_tour_id):
        """
        Insert one award inside a savepoint.

        Raises:
            DuplicateAwardError: a concurrent writer inserted the same award
        """
        try:
            with db.session.begin_nested():
                db.session.add(
                    UserAchievement(
                        user_id=user_id,
                        achievement_id=achievement.id,
                        achievement_metadata=metadata or {},
                        source_show_id=source_show_id,
                        source_tour_id=source_tour_id,
                    )
                )
        except IntegrityError as e:
            raise DuplicateAwardError(
                f"User {user_id} already holds {achievement.slug}"
            ) from e

    def award(self, user_id, definition, metadata=None, source_show_id=None, source_tour_id=None):
        """
        Award an achievement unless the user already holds it.

        Returns:
            True when a new award row was written
        """
        achievement = self._upsert_definition(definition)
        db.session.flush()

        existing = UserAchievement.query.filter_by(
            user_id=user_id, achievement_id=achievement.id
        ).first()
        if existing:
            return False

        try:
            self._insert_award(user_id, achievement, metadata, source_show_id, source_tour_id)
        except DuplicateAwardError as e:
            logger.info(f"Award skipped: {e}")
            return False

        logger.info(f"Awarded {achievement.slug} to user {user_id}")
        return True

    def evaluate_submission(self, submission):
        """
        Apply pick rules to a freshly scored submission.

        Returns:
            Slugs newly awarded to the submission's user
        """
        awarded = []
        show = submission.show
        base_metadata = {
            "show_id": show.id,
            "show_date": show.show_date_str,
            "venue": show.venue,
        }

        for pick in submission.picks:
            key = PICK_CATEGORY_AWARDS.get(pick.category)
            if key is None or pick.was_played is not True:
                continue
            definition = ACHIEVEMENT_DEFINITIONS[key]
            metadata = dict(base_metadata, song_name=pick.song.name if pick.song else None)
            if self.award(submission.user_id, definition, metadata, source_show_id=show.id):
                awarded.append(definition["slug"])

        picks = submission.picks
        if len(picks) >= self.picks_per_submission and all(pick.was_played is True for pick in picks):
            definition = ACHIEVEMENT_DEFINITIONS["PERFECT_PICKER"]
            if self.award(submission.user_id, definition, base_metadata, source_show_id=show.id):
                awarded.append(definition["slug"])

        return awarded

    def award_tour_placements(self, tour, standings):
        """
        Award podium achievements from ranked standings.

        Standings entries carry a "rank"; tied users share a placement.
        """
        awarded = []
        for entry in standings:
            placement = entry["rank"]
            if placement not in PLACEMENT_DEFINITIONS:
                continue
            template = PLACEMENT_DEFINITIONS[placement]
            definition = {
                "slug": placement_slug(placement, tour.id),
                "name": f"{tour.name} {template['title']}",
                "description": f"Finished #{placement} in {tour.name}",
                "icon": template["icon"],
                "category": "RANKING",
            }
            metadata = {
                "tour_id": tour.id,
                "tour_name": tour.name,
                "placement": placement,
                "total_points": entry["total_points"],
            }
            if self.award(entry["user_id"], definition, metadata, source_tour_id=tour.id):
                awarded.append({"user_id": entry["user_id"], "slug": definition["slug"]})
        return awarded

    def award_founding_members(self, created_before=None):
        """Founding member for every non-admin user, optionally created before a cutoff"""
        definition = ACHIEVEMENT_DEFINITIONS["FOUNDING_MEMBER"]
        query = User.query.filter_by(is_admin=False)
        if created_before is not None:
            query = query.filter(User.created_at < created_before)

        awarded = 0
        for user in query.order_by(User.id).all():
            if self.award(user.id, definition, {"year": created_before.year if created_before else None}):
                awarded += 1
        db.session.commit()
        return awarded

    def revoke_for_show(self, show_id):
        """Remove awards produced by scoring this show; returns the count"""
        count = UserAchievement.query.filter_by(source_show_id=show_id).delete(
            synchronize_session=False
        )
        if count:
            logger.warning(f"Revoked {count} achievement(s) sourced from show {show_id}")
        return count

    def revoke_for_tour(self, tour_id):
        count = UserAchievement.query.filter_by(source_tour_id=tour_id).delete(
            synchronize_session=False
        )
        if count:
            logger.warning(f"Revoked {count} placement achievement(s) for tour {tour_id}")
        return count


def get_achievement_evaluator():
    return AchievementEvaluator.from_config(current_app.config)
