import datetime as dt

import pytest

from tripmax.analyze.track import compute_trip_summary
from tripmax.gamify.achievements import AchievementEngine, Trigger, requirement_met
from tripmax.rules.definitions import StatThreshold, TripCondition
from tripmax.rules.registry import static_registry
from tripmax.rules.seed import default_achievements
from tripmax.stats.accumulator import UserStatistics, apply_trip

NOW = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.timezone.utc)


@pytest.fixture
def engine():
    return AchievementEngine(static_registry(default_achievements()))


def test_crossing_100km_earns_once(engine, make_points):
    # 99,000 m so far plus a ~1,500 m trip
    before = UserStatistics(total_distance=99_000, total_time=7200, total_tracks=5,
                            top_speed=20.0, avg_speed=99_000 / 7200)
    trip = compute_trip_summary(make_points([10.0] * 15, step_s=10.0, dlat=0.001))
    assert trip.distance_meters == pytest.approx(1556.7, abs=1.0)
    after = apply_trip(before, trip)

    earned = {"DISTANCE_10KM"}
    new = engine.evaluate(Trigger.TRIP_SAVED, "u1", after, earned, trip, "trip-1", now=NOW)
    assert [n.achievement_code for n in new] == ["DISTANCE_100KM"]
    assert new[0].earned_at == NOW
    assert new[0].triggering_trip_id == "trip-1"

    earned |= {n.achievement_code for n in new}
    assert engine.evaluate(Trigger.TRIP_SAVED, "u1", after, earned, trip, "trip-1", now=NOW) == []


def test_trip_condition_only_on_trip_saved(engine, make_points):
    fast = compute_trip_summary(make_points([20.0, 45.0]))
    stats = apply_trip(UserStatistics(), fast)

    on_save = engine.evaluate(Trigger.TRIP_SAVED, "u1", stats, set(), fast, "t", now=NOW)
    assert {n.achievement_code for n in on_save} == {"SPEED_100KPH", "SPEED_150KPH"}

    on_profile = engine.evaluate(Trigger.PROFILE_STATS_CHANGED, "u1", stats, set(), fast, "t", now=NOW)
    assert on_profile == []


def test_profile_trigger_sees_stat_thresholds(engine):
    stats = UserStatistics(total_tracks=10)
    new = engine.evaluate(Trigger.PROFILE_STATS_CHANGED, "u1", stats, set(), now=NOW)
    assert [n.achievement_code for n in new] == ["TRACKS_10"]
    assert new[0].triggering_trip_id is None


@pytest.mark.parametrize(
    "req, expected",
    [
        (StatThreshold("total_tracks", 3), True),      # equality counts
        (StatThreshold("total_tracks", 4), False),
        (TripCondition("max_speed", 27.78), False),    # no trip
    ],
)
def test_requirement_met_boundaries(req, expected):
    assert requirement_met(req, Trigger.TRIP_SAVED, UserStatistics(total_tracks=3), None) is expected
