"""
Scoring Engine for Setlist Pick'em

Turns a submission's picks and the current setlist into per-pick outcomes and
a total. Songs are matched by slug only. The engine is pure: the caller
decides whether the setlist is final, and only a final setlist turns an
unmatched pick into "not played".
"""

from dataclasses import dataclass, field

from setlist_pickem.models.pick import PickCategory
from setlist_pickem.utils.exceptions import ScoringConfigError

DEFAULT_POINT_WEIGHTS = {
    PickCategory.OPENER.value: 3,
    PickCategory.ENCORE.value: 3,
    PickCategory.GENERAL.value: 1,
}

GENERAL_PICKS_PER_SUBMISSION = 11


def _matches_opener(slug, setlist):
    return setlist.opener_slug == slug


def _matches_encore(slug, setlist):
    return slug in setlist.encore_slugs


def _matches_anywhere(slug, setlist):
    return setlist.contains(slug)


CATEGORY_MATCHERS = {
    PickCategory.OPENER: _matches_opener,
    PickCategory.ENCORE: _matches_encore,
    PickCategory.GENERAL: _matches_anywhere,
}


@dataclass(frozen=True)
class PickToScore:
    id: int
    category: PickCategory
    song_slug: str

    @classmethod
    def from_pick(cls, pick):
        return cls(id=pick.id, category=pick.category, song_slug=pick.song.slug)


@dataclass(frozen=True)
class PickOutcome:
    pick_id: int
    category: PickCategory
    was_played: object  # True / False / None (not yet scored)
    points_earned: int


@dataclass
class ScoreResult:
    outcomes: list = field(default_factory=list)
    total: int = 0

    def outcome_for(self, pick_id):
        for outcome in self.outcomes:
            if outcome.pick_id == pick_id:
                return outcome
        return None


class ScoringEngine:
    """Category-aware pick matcher with a configurable point table"""

    def __init__(self, point_weights=None):
        if point_weights is None:
            point_weights = DEFAULT_POINT_WEIGHTS
        self.point_weights = {
            str(key).upper(): value for key, value in point_weights.items()
        }

    @classmethod
    def from_config(cls, app_config):
        return cls(app_config.get("POINT_WEIGHTS"))

    def points_for(self, category):
        """
        Raises:
            ScoringConfigError: the table has no weight for this category
        """
        category = PickCategory(category)
        try:
            return int(self.point_weights[category.value])
        except KeyError:
            raise ScoringConfigError(
                f"No point weight configured for pick category {category.value}"
            ) from None

    def max_points(self):
        return (
            self.points_for(PickCategory.OPENER)
            + self.points_for(PickCategory.ENCORE)
            + GENERAL_PICKS_PER_SUBMISSION * self.points_for(PickCategory.GENERAL)
        )

    def score_pick(self, pick, setlist, is_final):
        category = PickCategory(pick.category)
        weight = self.points_for(category)

        if CATEGORY_MATCHERS[category](pick.song_slug, setlist):
            return PickOutcome(pick.id, category, True, weight)

        # Absence only counts against a pick once the setlist is final
        return PickOutcome(pick.id, category, False if is_final else None, 0)

    def score(self, picks, setlist, is_final):
        """
        Score picks against a setlist.

        Args:
            picks: iterable of PickToScore (or Pick rows)
            setlist: SetSongList
            is_final: True when the show is over and absence means "not played"

        Returns:
            ScoreResult with one outcome per pick, in input order
        """
        result = ScoreResult()
        for pick in picks:
            if not isinstance(pick, PickToScore):
                pick = PickToScore.from_pick(pick)
            outcome = self.score_pick(pick, setlist, is_final)
            result.outcomes.append(outcome)
            result.total += outcome.points_earned
        return result


def get_pick_type_label(pick_type):
    return PickCategory(pick_type).label
