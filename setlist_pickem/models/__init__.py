from setlist_pickem import db  # noqa: F401 - imported for model imports

from .achievement import Achievement, UserAchievement
from .pick import Pick, PickCategory
from .show import Show
from .song import Song
from .submission import Submission
from .tour import Tour, TourStatus
from .user import User

__all__ = [
    "User",
    "Tour",
    "TourStatus",
    "Show",
    "Song",
    "Submission",
    "Pick",
    "PickCategory",
    "Achievement",
    "UserAchievement",
]
