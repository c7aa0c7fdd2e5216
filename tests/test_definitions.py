import datetime as dt

import pytest

from tripmax.errors import RuleDefinitionError
from tripmax.rules.definitions import (
    ChallengeType,
    StatThreshold,
    TripCondition,
    achievement_from_dict,
    challenge_from_dict,
    requirement_from_dict,
    requirement_to_dict,
)
from tripmax.rules.seed import default_achievements


@pytest.mark.parametrize(
    "d, expected",
    [
        ({"stat": "totalDistance", "value": 100000}, StatThreshold("total_distance", 100000.0)),
        ({"trackCondition": "maxSpeed", "value": 27.78}, TripCondition("max_speed", 27.78)),
        ({"kind": "stat_threshold", "stat": "total_tracks", "value": 10}, StatThreshold("total_tracks", 10.0)),
        ({"kind": "trip_condition", "field": "distance", "value": 5}, TripCondition("distance_meters", 5.0)),
    ],
)
def test_requirement_forms(d, expected):
    assert requirement_from_dict(d) == expected


@pytest.mark.parametrize(
    "d",
    [
        {"stat": "totalDistanse", "value": 1},
        {"trackCondition": "topSpeed", "value": 1},
        {"stat": "totalDistance", "trackCondition": "maxSpeed", "value": 1},
        {"stat": "totalDistance"},
        {"stat": "totalDistance", "value": "100"},
        {"stat": "totalDistance", "value": 1, "op": ">="},
        {"kind": "streak", "value": 1},
        {"value": 1},
        "totalDistance>=1",
    ],
)
def test_requirement_typos_fail_loudly(d):
    with pytest.raises(RuleDefinitionError):
        requirement_from_dict(d)


def test_requirement_to_dict_is_tagged():
    assert requirement_to_dict(TripCondition("max_speed", 1.0)) == {
        "kind": "trip_condition", "field": "max_speed", "value": 1.0,
    }


def test_achievement_from_dict_roundtrip():
    a = achievement_from_dict({
        "achievementCode": "long_haul",
        "name": "Long haul",
        "category": "distance",
        "requirements": {"trackCondition": "distance", "value": 500000},
    })
    assert a.code == "LONG_HAUL"
    assert a.rarity == "common"
    assert achievement_from_dict(a.to_dict()) == a


@pytest.mark.parametrize("patch", [{"category": "karma"}, {"rarity": "mythic"}, {"achievementCode": " "}])
def test_achievement_validation(patch):
    d = {"achievementCode": "X", "category": "distance", "requirements": {"stat": "totalTracks", "value": 1}}
    d.update(patch)
    with pytest.raises(RuleDefinitionError):
        achievement_from_dict(d)


def test_seed_set():
    codes = [a.code for a in default_achievements()]
    assert codes == ["DISTANCE_10KM", "DISTANCE_100KM", "SPEED_100KPH", "SPEED_150KPH", "TRACKS_10", "TRACKS_50"]


def test_challenge_window_and_status():
    c = challenge_from_dict({
        "challengeCode": "march_50k",
        "type": "distance",
        "goal": 50000,
        "startTime": "2026-03-01T00:00:00Z",
        "endTime": "2026-03-31T23:59:59Z",
    })
    assert c.type is ChallengeType.DISTANCE
    utc = dt.timezone.utc
    assert c.accepts(dt.datetime(2026, 3, 1, tzinfo=utc))
    assert not c.accepts(dt.datetime(2026, 4, 1, tzinfo=utc))
    assert c.status(dt.datetime(2026, 2, 1, tzinfo=utc)) == "upcoming"
    assert c.status(dt.datetime(2026, 3, 15, tzinfo=utc)) == "active"
    assert c.status(dt.datetime(2026, 4, 2, tzinfo=utc)) == "expired"
    assert challenge_from_dict(c.to_dict()) == c


@pytest.mark.parametrize(
    "patch",
    [{"type": "steps"}, {"goal": -1}, {"endTime": None}, {"endTime": "2026-02-01T00:00:00Z"}],
)
def test_challenge_validation(patch):
    d = {"challengeCode": "C", "type": "distance", "goal": 1,
         "startTime": "2026-03-01T00:00:00Z", "endTime": "2026-03-31T00:00:00Z"}
    d.update(patch)
    with pytest.raises(RuleDefinitionError):
        challenge_from_dict(d)
