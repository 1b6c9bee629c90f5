from datetime import date

import pytest

from setlist_pickem import db
from setlist_pickem.models import Pick, PickCategory, Submission, TourStatus
from setlist_pickem.services.pick_submission import (
    get_pick_submission_service,
    validate_picks,
)
from setlist_pickem.utils.exceptions import (
    NotFoundError,
    PickValidationError,
    SubmissionClosedError,
)

from conftest import BEFORE_LOCK, LOCK_AT, SHOW_DATE, SONG_SLUGS, setlist_rows


def build_picks(opener, encore, general):
    picks = [
        {"pick_type": "OPENER", "song": opener},
        {"pick_type": "ENCORE", "song": encore},
    ]
    return picks + [{"pick_type": "GENERAL", "song": slug} for slug in general]


@pytest.fixture
def service(fake_client):
    return get_pick_submission_service()


@pytest.fixture
def open_show(make_tour, make_show, songs):
    return make_show(make_tour())


@pytest.fixture
def alice(make_user):
    return make_user("alice")


def test_creates_submission_before_lock(service, open_show, alice, thirteen_picks, fake_client):
    result = service.submit_picks(
        alice.id, open_show.id, build_picks(**thirteen_picks), now=BEFORE_LOCK
    )

    assert result["created"] is True
    assert len(result["submission"]["picks"]) == 13
    submission = Submission.query.filter_by(user_id=alice.id, show_id=open_show.id).one()
    assert {pick.category for pick in submission.picks} == set(PickCategory)
    assert fake_client.calls == []


def test_resubmission_replaces_picks(service, open_show, alice, thirteen_picks):
    first = service.submit_picks(
        alice.id, open_show.id, build_picks(**thirteen_picks), now=BEFORE_LOCK
    )
    submission = db.session.get(Submission, first["submission"]["id"])
    submission.total_points = 5
    db.session.commit()

    # Opener and encore swapped, one general pick changed
    general = thirteen_picks["general"][:-1] + [SONG_SLUGS[15]]
    second = service.submit_picks(
        alice.id,
        open_show.id,
        build_picks(thirteen_picks["encore"], thirteen_picks["opener"], general),
        now=BEFORE_LOCK,
    )

    assert second["created"] is False
    assert second["submission"]["id"] == first["submission"]["id"]
    assert second["submission"]["total_points"] == 0
    assert Submission.query.count() == 1
    assert Pick.query.count() == 13
    opener = [p for p in second["submission"]["picks"] if p["pick_type"] == "OPENER"]
    assert opener[0]["song"]["slug"] == thirteen_picks["encore"]


def test_locked_show_rejects_picks(service, open_show, alice, thirteen_picks):
    with pytest.raises(SubmissionClosedError) as exc_info:
        service.submit_picks(alice.id, open_show.id, build_picks(**thirteen_picks), now=LOCK_AT)

    assert exc_info.value.show_id == open_show.id
    assert Submission.query.count() == 0


@pytest.mark.parametrize("status", [TourStatus.FUTURE, TourStatus.COMPLETED, TourStatus.CLOSED])
def test_tour_must_accept_picks(service, make_tour, make_show, songs, alice, thirteen_picks, status):
    show = make_show(make_tour(status=status))

    with pytest.raises(SubmissionClosedError):
        service.submit_picks(alice.id, show.id, build_picks(**thirteen_picks), now=BEFORE_LOCK)


def test_complete_show_rejects_picks(service, open_show, alice, thirteen_picks):
    open_show.is_complete = True
    db.session.commit()

    with pytest.raises(SubmissionClosedError):
        service.submit_picks(
            alice.id, open_show.id, build_picks(**thirteen_picks), now=BEFORE_LOCK
        )


def test_unknown_lock_time_asks_the_feed(
    service, fake_client, make_tour, make_show, songs, alice, thirteen_picks
):
    show = make_show(make_tour(), tz=None, state="ZZ")

    result = service.submit_picks(alice.id, show.id, build_picks(**thirteen_picks), now=LOCK_AT)
    assert result["created"] is True

    fake_client.set_setlist(SHOW_DATE, setlist_rows(("1", "reba")))
    with pytest.raises(SubmissionClosedError):
        service.submit_picks(alice.id, show.id, build_picks(**thirteen_picks), now=LOCK_AT)


@pytest.mark.parametrize(
    "picks",
    [
        # ten general picks
        build_picks(SONG_SLUGS[0], SONG_SLUGS[1], SONG_SLUGS[2:12]),
        # twelve general picks
        build_picks(SONG_SLUGS[0], SONG_SLUGS[1], SONG_SLUGS[2:14]),
        # no encore
        build_picks(SONG_SLUGS[0], SONG_SLUGS[1], SONG_SLUGS[2:13])[:1]
        + build_picks(SONG_SLUGS[0], SONG_SLUGS[1], SONG_SLUGS[2:13])[2:],
        # second opener instead of a general pick
        build_picks(SONG_SLUGS[0], SONG_SLUGS[1], SONG_SLUGS[2:12])
        + [{"pick_type": "OPENER", "song": SONG_SLUGS[12]}],
    ],
)
def test_wrong_pick_counts_are_rejected(service, open_show, alice, picks):
    with pytest.raises(PickValidationError):
        service.submit_picks(alice.id, open_show.id, picks, now=BEFORE_LOCK)

    assert Submission.query.count() == 0


def test_same_song_twice_is_rejected():
    general = SONG_SLUGS[2:12] + [SONG_SLUGS[0]]

    with pytest.raises(PickValidationError, match="chalk-dust-torture"):
        validate_picks(build_picks(SONG_SLUGS[0], SONG_SLUGS[1], general))


@pytest.mark.parametrize(
    "bad_pick",
    [{"pick_type": "CLOSER", "song": "reba"}, {"pick_type": "GENERAL"}, "reba"],
)
def test_malformed_pick_is_rejected(bad_pick):
    picks = build_picks(SONG_SLUGS[0], SONG_SLUGS[1], SONG_SLUGS[2:12]) + [bad_pick]

    with pytest.raises(PickValidationError):
        validate_picks(picks)


def test_unknown_song_is_rejected(service, open_show, alice):
    picks = build_picks(SONG_SLUGS[0], SONG_SLUGS[1], SONG_SLUGS[2:12] + ["not-a-song"])

    with pytest.raises(PickValidationError, match="not-a-song"):
        service.submit_picks(alice.id, open_show.id, picks, now=BEFORE_LOCK)

    assert Submission.query.count() == 0


def test_unknown_user_or_show(service, open_show, alice, thirteen_picks):
    picks = build_picks(**thirteen_picks)

    with pytest.raises(NotFoundError):
        service.submit_picks(9999, open_show.id, picks, now=BEFORE_LOCK)
    with pytest.raises(NotFoundError):
        service.submit_picks(alice.id, 9999, picks, now=BEFORE_LOCK)


def test_slugs_and_types_are_normalized():
    picks = [
        {"pick_type": "opener", "song": " Chalk-Dust-Torture "},
        {"pick_type": "encore", "song": SONG_SLUGS[1]},
    ] + [{"pick_type": "general", "song": slug} for slug in SONG_SLUGS[2:13]]

    normalized = validate_picks(picks)

    assert normalized[0] == (PickCategory.OPENER, "chalk-dust-torture")
    assert len(normalized) == 13


class TestSubmitPicksEndpoint:
    HEADERS = {"Authorization": "Bearer test-admin-token"}

    def test_submits_for_upcoming_show(
        self, client, fake_client, make_tour, make_show, songs, alice, thirteen_picks
    ):
        show = make_show(make_tour(), show_date=date(2099, 7, 19))

        response = client.post(
            "/api/admin/picks",
            json={"show_id": show.id, "user_id": alice.id, "picks": build_picks(**thirteen_picks)},
            headers=self.HEADERS,
        )

        assert response.status_code == 201
        assert response.get_json()["created"] is True

    def test_locked_show_is_a_conflict(self, client, open_show, alice, thirteen_picks, fake_client):
        response = client.post(
            "/api/admin/picks",
            json={
                "show_id": open_show.id,
                "user_id": alice.id,
                "picks": build_picks(**thirteen_picks),
            },
            headers=self.HEADERS,
        )

        assert response.status_code == 409
        assert response.get_json()["show_id"] == open_show.id

    def test_bad_pick_count_is_a_bad_request(self, client, open_show, alice, fake_client):
        response = client.post(
            "/api/admin/picks",
            json={
                "show_id": open_show.id,
                "user_id": alice.id,
                "picks": build_picks(SONG_SLUGS[0], SONG_SLUGS[1], SONG_SLUGS[2:5]),
            },
            headers=self.HEADERS,
        )

        assert response.status_code == 400

    def test_picks_must_be_a_list(self, client, open_show, alice, fake_client):
        response = client.post(
            "/api/admin/picks",
            json={"show_id": open_show.id, "user_id": alice.id, "picks": "reba"},
            headers=self.HEADERS,
        )

        assert response.status_code == 400
