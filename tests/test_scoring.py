import pytest

from setlist_pickem.models import PickCategory
from setlist_pickem.utils.exceptions import ScoringConfigError, SetlistFeedError
from setlist_pickem.utils.scoring import PickToScore, ScoringEngine, get_pick_type_label
from setlist_pickem.utils.setlist_client import SetSongList

from conftest import setlist_rows


def full_show():
    return SetSongList.from_feed(
        setlist_rows(
            ("1", "chalk-dust-torture"),
            ("1", "reba"),
            ("1", "bathtub-gin"),
            ("2", "down-with-disease"),
            ("2", "harry-hood"),
            ("e", "tweezer-reprise"),
        )
    )


def partial_show():
    return SetSongList.from_feed(
        setlist_rows(("1", "chalk-dust-torture"), ("1", "reba"))
    )


def pick(pick_id, category, slug):
    return PickToScore(id=pick_id, category=category, song_slug=slug)


@pytest.fixture
def engine():
    return ScoringEngine()


def test_opener_must_be_first_song_of_set_one(engine):
    setlist = full_show()

    hit = engine.score_pick(pick(1, PickCategory.OPENER, "chalk-dust-torture"), setlist, True)
    miss = engine.score_pick(pick(2, PickCategory.OPENER, "reba"), setlist, True)

    assert (hit.was_played, hit.points_earned) == (True, 3)
    assert (miss.was_played, miss.points_earned) == (False, 0)


def test_encore_matches_any_encore_song_only(engine):
    setlist = full_show()

    hit = engine.score_pick(pick(1, PickCategory.ENCORE, "tweezer-reprise"), setlist, True)
    set_two_song = engine.score_pick(pick(2, PickCategory.ENCORE, "harry-hood"), setlist, True)

    assert (hit.was_played, hit.points_earned) == (True, 3)
    assert (set_two_song.was_played, set_two_song.points_earned) == (False, 0)


def test_general_matches_anywhere(engine):
    setlist = full_show()

    opener = engine.score_pick(pick(1, PickCategory.GENERAL, "chalk-dust-torture"), setlist, True)
    encore = engine.score_pick(pick(2, PickCategory.GENERAL, "tweezer-reprise"), setlist, True)

    assert opener.points_earned == 1
    assert encore.points_earned == 1


def test_unmatched_picks_stay_unscored_until_final(engine):
    setlist = partial_show()

    in_progress = engine.score_pick(pick(1, PickCategory.GENERAL, "harry-hood"), setlist, False)
    final = engine.score_pick(pick(1, PickCategory.GENERAL, "harry-hood"), setlist, True)

    assert in_progress.was_played is None
    assert in_progress.points_earned == 0
    assert final.was_played is False


def test_played_song_counts_before_final(engine):
    outcome = engine.score_pick(pick(1, PickCategory.GENERAL, "reba"), partial_show(), False)

    assert outcome.was_played is True
    assert outcome.points_earned == 1


def test_missing_weight_raises_configuration_error():
    engine = ScoringEngine({"OPENER": 3, "GENERAL": 1})

    with pytest.raises(ScoringConfigError):
        engine.score([pick(1, PickCategory.ENCORE, "tweezer-reprise")], full_show(), True)


def test_empty_weight_table_is_not_replaced_by_defaults(app):
    app.config["POINT_WEIGHTS"] = {}
    engine = ScoringEngine.from_config(app.config)

    assert engine.point_weights == {}
    with pytest.raises(ScoringConfigError):
        engine.points_for(PickCategory.OPENER)


def test_weight_keys_are_case_insensitive():
    engine = ScoringEngine({"opener": 5, "encore": 4, "general": 2})

    assert engine.points_for(PickCategory.OPENER) == 5
    assert engine.points_for("ENCORE") == 4
    assert engine.max_points() == 5 + 4 + 11 * 2


def test_default_max_points(engine):
    assert engine.max_points() == 17


@pytest.mark.parametrize(
    "opener, encore, general, is_final, expected_total",
    [
        # perfect opener and encore, three general hits
        ("chalk-dust-torture", "tweezer-reprise", ["reba", "bathtub-gin", "harry-hood"], True, 9),
        # nothing right
        ("fluffhead", "wilson", ["possum", "carini"], True, 0),
        # general pick duplicating the opener still scores its own point
        ("chalk-dust-torture", "wilson", ["chalk-dust-torture", "possum"], True, 4),
        # partial show, opener already known
        ("chalk-dust-torture", "tweezer-reprise", ["reba", "harry-hood"], False, 4),
    ],
)
def test_submission_totals(engine, opener, encore, general, is_final, expected_total):
    picks = [pick(1, PickCategory.OPENER, opener), pick(2, PickCategory.ENCORE, encore)]
    picks += [pick(10 + i, PickCategory.GENERAL, slug) for i, slug in enumerate(general)]
    setlist = full_show() if is_final else partial_show()

    result = engine.score(picks, setlist, is_final)

    assert result.total == expected_total
    assert result.total == sum(outcome.points_earned for outcome in result.outcomes)
    assert [outcome.pick_id for outcome in result.outcomes] == [p.id for p in picks]


def test_outcome_lookup(engine):
    result = engine.score([pick(7, PickCategory.GENERAL, "reba")], full_show(), True)

    assert result.outcome_for(7).was_played is True
    assert result.outcome_for(99) is None


def test_opener_is_none_before_set_one():
    setlist = SetSongList.from_feed([])

    assert setlist.is_empty
    assert setlist.opener_slug is None
    assert setlist.encore_slugs == []


def test_setlist_orders_by_set_then_position():
    rows = [
        {"song": "Tweezer Reprise", "slug": "tweezer-reprise", "set": "E", "position": 9},
        {"song": "Harry Hood", "slug": "harry-hood", "set": "2", "position": 5},
        {"song": "Chalk Dust Torture", "slug": "chalk-dust-torture", "set": "1", "position": 1},
        {"song": "Reba", "slug": "reba", "set": "1", "position": 2},
    ]

    setlist = SetSongList.from_feed(rows)

    assert setlist.all_slugs == ["chalk-dust-torture", "reba", "harry-hood", "tweezer-reprise"]
    assert setlist.encore_slugs == ["tweezer-reprise"]
    assert setlist.has_encore


def test_custom_encore_labels():
    rows = setlist_rows(("1", "reba"), ("enc", "possum"))

    default = SetSongList.from_feed(rows)
    custom = SetSongList.from_feed(rows, encore_labels=("enc",))

    assert default.encore_slugs == []
    assert custom.encore_slugs == ["possum"]


def test_slug_derived_from_name_when_absent():
    setlist = SetSongList.from_feed([{"song": "Run Like an Antelope", "set": "2", "position": 1}])

    assert setlist.all_slugs == ["run-like-an-antelope"]


def test_cached_payload_round_trips():
    scored = full_show()

    restored = SetSongList.from_feed(scored.to_json())

    assert restored.all_slugs == scored.all_slugs
    assert restored.opener_slug == "chalk-dust-torture"


@pytest.mark.parametrize(
    "row",
    [
        {"slug": "reba", "set": "1", "position": 1},
        {"song": "Reba", "slug": "reba", "set": "", "position": 1},
        {"song": "Reba", "slug": "reba", "set": "1", "position": "first"},
    ],
)
def test_malformed_rows_raise_feed_error(row):
    with pytest.raises(SetlistFeedError):
        SetSongList.from_feed([row])


def test_pick_type_label():
    assert get_pick_type_label("OPENER") == "Opener"
    assert get_pick_type_label(PickCategory.GENERAL) == "General"
