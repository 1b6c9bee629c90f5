from datetime import date

import pytest

from setlist_pickem import db
from setlist_pickem.models import Submission, TourStatus, UserAchievement
from setlist_pickem.services.achievements import AchievementEvaluator, placement_slug
from setlist_pickem.services.tour_state import TourStateMachine
from setlist_pickem.utils.exceptions import InvalidTransitionError, NotFoundError


@pytest.fixture
def machine(app):
    return TourStateMachine(AchievementEvaluator())


@pytest.fixture
def scored_tour(make_tour, make_show, make_user, make_submission, thirteen_picks):
    """Tour with two shows and four players, one of them an admin"""
    tour = make_tour()
    first = make_show(tour, show_date=date(2024, 7, 19))
    second = make_show(tour, show_date=date(2024, 7, 20))

    totals = {
        "alice": (9, 5),
        "bob": (7, 7),
        "carol": (4, 2),
        "admin": (17, 17),
    }
    users = {}
    for username, (first_points, second_points) in totals.items():
        user = make_user(username, is_admin=username == "admin")
        users[username] = user
        for show, points in ((first, first_points), (second, second_points)):
            submission = make_submission(user, show, **thirteen_picks)
            submission.total_points = points
            submission.is_scored = True
    first.is_complete = True
    second.is_complete = True
    db.session.commit()
    return tour, users


def test_has_active_tours(app, make_tour):
    assert TourStateMachine.has_active_tours() is False

    make_tour(status=TourStatus.FUTURE)
    assert TourStateMachine.has_active_tours() is False

    make_tour(name="Fall Tour 2024", status=TourStatus.ACTIVE)
    assert TourStateMachine.has_active_tours() is True


def test_get_unknown_tour(machine):
    with pytest.raises(NotFoundError):
        machine.get_tour(4242)


def test_activate_future_tour(machine, make_tour, make_show):
    tour = make_tour(status=TourStatus.FUTURE)
    make_show(tour)

    result = machine.activate(tour)

    assert result["changed"] is True
    assert result["previous_status"] == "FUTURE"
    assert result["status"] == "ACTIVE"
    assert result["first_show"]["show_date"] == "2024-07-19"


def test_activate_is_idempotent(machine, make_tour):
    tour = make_tour()

    assert machine.activate(tour)["changed"] is False


def test_standings_rank_ties_and_exclude_admins(machine, scored_tour):
    tour, users = scored_tour

    standings = machine.standings(tour)

    assert [(entry["username"], entry["rank"], entry["total_points"]) for entry in standings] == [
        ("alice", 1, 14),
        ("bob", 1, 14),
        ("carol", 3, 6),
    ]
    assert all(entry["shows_played"] == 2 for entry in standings)
    assert machine.standings(tour, limit=1)[0]["username"] == "alice"


def test_standings_ignore_unscored_submissions(machine, scored_tour):
    tour, users = scored_tour
    submission = Submission.query.filter_by(user_id=users["carol"].id).first()
    submission.is_scored = False
    db.session.commit()

    carol = [entry for entry in machine.standings(tour) if entry["username"] == "carol"][0]

    assert carol["shows_played"] == 1


def test_complete_awards_podium(machine, scored_tour):
    tour, users = scored_tour

    result = machine.complete(tour)

    assert result["status"] == "COMPLETED"
    assert result["incomplete_shows"] == []
    awarded = {(award["user_id"], award["slug"]) for award in result["awarded"]}
    assert awarded == {
        (users["alice"].id, placement_slug(1, tour.id)),
        (users["bob"].id, placement_slug(1, tour.id)),
        (users["carol"].id, placement_slug(3, tour.id)),
    }
    assert UserAchievement.query.filter_by(user_id=users["admin"].id).count() == 0


def test_complete_twice_awards_nothing_new(machine, scored_tour):
    tour, _ = scored_tour
    machine.complete(tour)

    again = machine.complete(tour)

    assert again["changed"] is False
    assert again["awarded"] == []
    assert UserAchievement.query.count() == 3


def test_complete_reports_incomplete_shows(machine, make_tour, make_show):
    tour = make_tour()
    make_show(tour)

    result = machine.complete(tour)

    assert result["status"] == "COMPLETED"
    assert len(result["incomplete_shows"]) == 1
    assert result["standings"] == []


def test_cannot_complete_future_tour(machine, make_tour):
    tour = make_tour(status=TourStatus.FUTURE)

    with pytest.raises(InvalidTransitionError):
        machine.complete(tour)
    assert tour.status == "FUTURE"


def test_reactivation_requires_force_and_revokes_podium(machine, scored_tour):
    tour, _ = scored_tour
    machine.complete(tour)

    with pytest.raises(InvalidTransitionError):
        machine.activate(tour)

    result = machine.activate(tour, force=True)

    assert result["status"] == "ACTIVE"
    assert result["revoked_achievements"] == 3
    assert UserAchievement.query.count() == 0


def test_close_completed_tour(machine, scored_tour, make_tour):
    tour, _ = scored_tour
    machine.complete(tour)
    make_tour(name="Fall Tour 2024")

    result = machine.close(tour)

    assert result["status"] == "CLOSED"
    assert result["active_tours"] == ["Fall Tour 2024"]
    assert machine.close(tour)["changed"] is False


@pytest.mark.parametrize("status", [TourStatus.ACTIVE, TourStatus.FUTURE])
def test_close_without_completion_requires_force(machine, make_tour, status):
    tour = make_tour(status=status)

    with pytest.raises(InvalidTransitionError):
        machine.close(tour)

    assert machine.close(tour, force=True)["status"] == "CLOSED"
