import datetime as dt

import pytest

from tripmax.analyze.geomath import distance_between
from tripmax.analyze.track import compute_trip_summary, resolve_timestamps
from tripmax.errors import InsufficientData, InvalidDuration
from tripmax.formats.route import TrackPoint


def _seconds(summary):
    return [b.seconds_in_range for b in summary.speed_histogram.buckets]


def test_three_point_trip(make_points):
    # 10, 60 and 120 m/s; the interval ending at each point takes that point's speed
    pts = make_points([10.0, 60.0, 120.0])
    s = compute_trip_summary(pts)

    assert s.max_speed == 120.0
    assert s.avg_speed == pytest.approx(63.333, abs=1e-3)
    assert s.duration_seconds == 20.0
    assert s.point_count == 3
    # 216 km/h -> [200, 250), 432 km/h -> 250+
    assert _seconds(s) == [0.0, 0.0, 0.0, 0.0, 10.0, 10.0]
    assert s.speed_histogram.total_seconds == s.duration_seconds


def test_distance_sums_segments(make_points):
    pts = make_points([5.0, 5.0, 5.0, 5.0])
    s = compute_trip_summary(pts)
    expected = sum(distance_between(a.latlng, b.latlng) for a, b in zip(pts, pts[1:]))
    assert s.distance_meters == pytest.approx(expected)


def test_distance_non_decreasing_under_appends(make_points):
    pts = make_points([5.0] * 6)
    distances = [compute_trip_summary(pts[:n]).distance_meters for n in range(2, 7)]
    assert all(d >= 0 for d in distances)
    assert distances == sorted(distances)


def test_missing_speeds_excluded_but_distance_counted(make_points):
    pts = make_points([10.0, None, 20.0, -1.0])
    s = compute_trip_summary(pts)
    assert s.max_speed == 20.0
    assert s.avg_speed == 15.0
    assert s.distance_meters > 0
    # only the interval ending at the 20 m/s point (72 km/h) is attributed
    assert _seconds(s) == [0.0, 10.0, 0.0, 0.0, 0.0, 0.0]
    assert s.speed_histogram.total_seconds < s.duration_seconds


def test_no_valid_speeds_gives_zero_averages(make_points):
    s = compute_trip_summary(make_points([None, None]))
    assert s.max_speed == 0.0
    assert s.avg_speed == 0.0
    assert s.speed_histogram.total_seconds == 0.0


def test_out_of_order_timestamp_does_not_crash(make_points, t0):
    pts = make_points([10.0, 10.0, 10.0, 10.0])
    # third point claims to be earlier than the second
    pts[2] = TrackPoint(pts[2].latitude, pts[2].longitude, 10.0, None, t0 + dt.timedelta(seconds=5))
    s = compute_trip_summary(pts)
    assert s.duration_seconds == 30.0
    assert s.speed_histogram.total_seconds <= s.duration_seconds
    assert s.speed_histogram.total_seconds == pytest.approx(30.0)


def test_fewer_than_two_points(make_points):
    with pytest.raises(InsufficientData):
        compute_trip_summary(make_points([10.0]))
    with pytest.raises(InsufficientData):
        compute_trip_summary([])


def test_zero_duration_rejected(make_points):
    with pytest.raises(InvalidDuration):
        compute_trip_summary(make_points([10.0, 10.0], step_s=0.0))


def test_timestamps_spread_over_request_window(t0):
    pts = [TrackPoint(45.0 + i * 0.001, -75.0, speed=10.0) for i in range(5)]
    end = t0 + dt.timedelta(minutes=4)
    stamps = resolve_timestamps(pts, t0, end)
    assert stamps[0] == t0
    assert stamps[-1] == end
    assert stamps[2] == t0 + dt.timedelta(minutes=2)

    s = compute_trip_summary(pts, start_time=t0, end_time=end)
    assert s.duration_seconds == 240.0
    assert s.start_time == t0


def test_partial_timestamps_rejected(make_points):
    pts = make_points([10.0, 10.0, 10.0])
    pts[1] = TrackPoint(pts[1].latitude, pts[1].longitude, 10.0)
    with pytest.raises(InvalidDuration):
        compute_trip_summary(pts)


def test_untimed_route_without_window_rejected():
    pts = [TrackPoint(45.0, -75.0, 10.0), TrackPoint(45.001, -75.0, 10.0)]
    with pytest.raises(InvalidDuration):
        compute_trip_summary(pts)


def test_summary_dict_roundtrip(make_points):
    s = compute_trip_summary(make_points([10.0, 30.0, 50.0]))
    d = s.to_dict()
    assert d["startTime"].endswith("Z")
    assert len(d["speedHistogram"]) == 6
    assert type(s).from_dict(d) == s
