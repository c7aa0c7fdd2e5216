import itertools

import pytest

from tripmax.analyze.track import compute_trip_summary
from tripmax.stats.accumulator import UserStatistics, apply_trip


@pytest.fixture
def trips(make_points):
    return [
        compute_trip_summary(make_points([10.0, 12.0, 14.0])),
        compute_trip_summary(make_points([30.0, 40.0], step_s=60.0, dlat=0.02)),
        compute_trip_summary(make_points([1.0, 2.0, 3.0, 4.0], step_s=5.0)),
    ]


def test_apply_single_trip(trips):
    s = apply_trip(UserStatistics(), trips[0])
    assert s.total_tracks == 1
    assert s.total_distance == trips[0].distance_meters
    assert s.total_time == trips[0].duration_seconds
    assert s.top_speed == 14.0
    assert s.avg_speed == pytest.approx(trips[0].distance_meters / trips[0].duration_seconds)


def test_order_independence(trips):
    results = []
    for order in itertools.permutations(trips):
        s = UserStatistics()
        for t in order:
            s = apply_trip(s, t)
        results.append(s)

    first = results[0]
    for s in results[1:]:
        assert s.total_tracks == first.total_tracks == 3
        assert s.total_distance == pytest.approx(first.total_distance)
        assert s.total_time == pytest.approx(first.total_time)
        assert s.top_speed == first.top_speed == 40.0
        assert s.avg_speed == pytest.approx(s.total_distance / s.total_time)


def test_lifetime_average_is_not_average_of_averages(trips):
    s = UserStatistics()
    for t in trips:
        s = apply_trip(s, t)
    mean_of_avgs = sum(t.distance_meters / t.duration_seconds for t in trips) / len(trips)
    assert s.avg_speed != pytest.approx(mean_of_avgs)
    assert s.avg_speed == pytest.approx(s.total_distance / s.total_time)


def test_dict_aliases():
    s = UserStatistics.from_dict({"totalDistance": 5.0, "total_tracks": 2.0})
    assert s.total_distance == 5.0
    assert s.total_tracks == 2
    assert s.get("totalDistance") == 5.0
    assert s.to_dict()["totalTracks"] == 2
