from pathlib import Path

import pytest

from tripmax.analyze.geomath import EARTH_RADIUS_M
from tripmax.analyze.track import compute_trip_summary
from tripmax.errors import InvalidPayload
from tripmax.formats.gpx import extract_trackpoints, read_gpx, read_gpx_trip

STEP_M = EARTH_RADIUS_M * 0.001 * 3.141592653589793 / 180.0


def test_extract_trackpoints(sample_gpx_path):
    pts = extract_trackpoints(read_gpx(sample_gpx_path))

    assert len(pts) == 3
    assert pts[0].latlng == (45.0, -75.0)
    assert pts[0].altitude == 70.0
    assert pts[0].timestamp.isoformat() == "2026-03-01T08:00:00+00:00"
    assert [p.speed for p in pts[:2]] == [10.0, 12.0]
    # no recorded speed on the last point: derived from the step that ends there
    assert pts[2].speed == pytest.approx(STEP_M / 10.0, rel=1e-6)


def test_extract_without_derived_speed(sample_gpx_path):
    pts = extract_trackpoints(read_gpx(sample_gpx_path), derive_speed=False)
    assert pts[2].speed is None


def test_gpx_trip_summary(sample_gpx_path):
    req = read_gpx_trip(sample_gpx_path)
    s = compute_trip_summary(req.route, start_time=req.start_time, end_time=req.end_time)
    assert s.point_count == 3
    assert s.duration_seconds == 20.0
    assert s.distance_meters == pytest.approx(2 * STEP_M, rel=1e-6)
    assert s.max_speed == 12.0


def test_invalid_gpx(tmp_path: Path):
    p = tmp_path / "bad.gpx"
    p.write_text("<gpx><trk>", encoding="utf-8")
    with pytest.raises(InvalidPayload):
        read_gpx(p)


def test_gpx_without_points(tmp_path: Path):
    p = tmp_path / "empty.gpx"
    p.write_text('<gpx xmlns="http://www.topografix.com/GPX/1/1"><trk/></gpx>', encoding="utf-8")
    with pytest.raises(InvalidPayload):
        read_gpx_trip(p)
