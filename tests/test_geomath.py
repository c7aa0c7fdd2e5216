import datetime as dt
import math

import pytest

from tripmax.analyze.geomath import (
    EARTH_RADIUS_M,
    bearing_between,
    distance_between,
    implied_speed,
)
from tripmax.errors import InvalidCoordinate


def test_distance_same_point_is_zero():
    assert distance_between((45.0, -75.0), (45.0, -75.0)) == 0.0


def test_distance_one_millidegree_of_latitude():
    expected = EARTH_RADIUS_M * math.radians(0.001)
    assert distance_between((45.0, -75.0), (45.001, -75.0)) == pytest.approx(expected, rel=1e-9)


def test_distance_is_symmetric():
    a, b = (45.4215, -75.6972), (43.6532, -79.3832)
    assert distance_between(a, b) == pytest.approx(distance_between(b, a))
    assert distance_between(a, b) == pytest.approx(352_000, rel=0.01)


@pytest.mark.parametrize("p", [(90.1, 0.0), (-91.0, 0.0), (0.0, 180.5), (0.0, -181.0)])
def test_distance_rejects_out_of_range(p):
    with pytest.raises(InvalidCoordinate):
        distance_between(p, (0.0, 0.0))


@pytest.mark.parametrize(
    "p2, expected",
    [((1.0, 0.0), 0.0), ((0.0, 1.0), 90.0), ((-1.0, 0.0), 180.0), ((0.0, -1.0), 270.0)],
)
def test_bearing_cardinal_directions(p2, expected):
    assert bearing_between((0.0, 0.0), p2) == pytest.approx(expected, abs=1e-9)


def test_implied_speed():
    t1 = dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)
    t2 = t1 + dt.timedelta(seconds=10)
    d = distance_between((45.0, -75.0), (45.001, -75.0))
    assert implied_speed((45.0, -75.0), t1, (45.001, -75.0), t2) == pytest.approx(d / 10)
    assert implied_speed((45.0, -75.0), t2, (45.001, -75.0), t1) is None
    assert implied_speed((45.0, -75.0), t1, (45.001, -75.0), t1) is None
