from datetime import date, datetime, timezone

import pytest

from setlist_pickem import cache, create_app
from setlist_pickem import db as _db
from setlist_pickem.models import (
    Pick,
    PickCategory,
    Show,
    Song,
    Submission,
    Tour,
    TourStatus,
    User,
)
from setlist_pickem.utils.setlist_client import SetSongList
from setlist_pickem.utils.timezone_utils import normalize_show_date

SHOW_DATE = date(2024, 7, 19)
# 2024-07-19 19:00 EDT
LOCK_AT = datetime(2024, 7, 19, 23, 0, tzinfo=timezone.utc)
BEFORE_LOCK = datetime(2024, 7, 19, 22, 59, tzinfo=timezone.utc)
AFTER_LOCK = datetime(2024, 7, 20, 2, 0, tzinfo=timezone.utc)

SONG_SLUGS = [
    "chalk-dust-torture",
    "tweezer-reprise",
    "harry-hood",
    "you-enjoy-myself",
    "bathtub-gin",
    "reba",
    "divided-sky",
    "sample-in-a-jar",
    "possum",
    "run-like-an-antelope",
    "wilson",
    "fluffhead",
    "slave-to-the-traffic-light",
    "down-with-disease",
    "carini",
    "character-zero",
]


def setlist_rows(*entries):
    """Feed rows from (set label, slug) pairs, positions in order given"""
    return [
        {
            "song": slug.replace("-", " ").title(),
            "slug": slug,
            "set": set_label,
            "position": position,
            "artistid": 1,
        }
        for position, (set_label, slug) in enumerate(entries, start=1)
    ]


class FakeSetlistClient:
    """In-memory stand-in for the phish.net client"""

    def __init__(self):
        self.setlists = {}
        self.errors = {}
        self.calls = []
        self.shows_by_year = {}
        self.songs = []

    def set_setlist(self, show_date, rows):
        self.setlists[normalize_show_date(show_date)] = rows

    def fail(self, show_date, error):
        self.errors[normalize_show_date(show_date)] = error

    def fetch_setlist(self, show_date):
        day = normalize_show_date(show_date)
        self.calls.append(day)
        if day in self.errors:
            raise self.errors[day]
        rows = self.setlists.get(day)
        if not rows:
            return None
        return SetSongList.from_feed(rows, show_date=day.isoformat())

    def get_shows_by_year(self, year):
        return list(self.shows_by_year.get(year, []))

    def get_all_songs(self):
        return list(self.songs)


@pytest.fixture
def app():
    app = create_app("testing")
    with app.app_context():
        _db.create_all()
        cache.clear()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_session(app):
    return _db.session


@pytest.fixture
def fake_client(app):
    fake = FakeSetlistClient()
    app.extensions["setlist_client"] = fake
    return fake


@pytest.fixture
def make_user(db_session):
    def _make(username, is_admin=False):
        user = User(username=username, email=f"{username}@example.com", is_admin=is_admin)
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_tour(db_session):
    def _make(name="Summer Tour 2024", status=TourStatus.ACTIVE, start=SHOW_DATE, end=None):
        tour = Tour(name=name, start_date=start, end_date=end or start, status=status.value)
        db_session.add(tour)
        db_session.commit()
        return tour

    return _make


@pytest.fixture
def make_show(db_session):
    def _make(
        tour=None,
        show_date=SHOW_DATE,
        venue="Madison Square Garden",
        state="NY",
        tz="America/New_York",
    ):
        show = Show(
            tour_id=tour.id if tour else None,
            show_date=show_date,
            venue=venue,
            city="New York",
            state=state,
            country="USA",
            timezone=tz,
        )
        db_session.add(show)
        db_session.commit()
        return show

    return _make


@pytest.fixture
def songs(db_session):
    catalog = {}
    for slug in SONG_SLUGS:
        song = Song(name=slug.replace("-", " ").title(), slug=slug)
        db_session.add(song)
        catalog[slug] = song
    db_session.commit()
    return catalog


@pytest.fixture
def make_submission(db_session, songs):
    def _make(user, show, opener, encore, general):
        submission = Submission(user_id=user.id, show_id=show.id)
        db_session.add(submission)
        db_session.flush()

        picks = [(PickCategory.OPENER, opener), (PickCategory.ENCORE, encore)]
        picks += [(PickCategory.GENERAL, slug) for slug in general]
        for category, slug in picks:
            db_session.add(
                Pick(
                    submission_id=submission.id,
                    song_id=songs[slug].id,
                    pick_type=category.value,
                )
            )
        db_session.commit()
        return submission

    return _make


@pytest.fixture
def thirteen_picks():
    """Opener, encore and eleven general slugs, all distinct"""
    return {
        "opener": SONG_SLUGS[0],
        "encore": SONG_SLUGS[1],
        "general": SONG_SLUGS[2:13],
    }
