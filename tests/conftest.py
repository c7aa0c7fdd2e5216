import datetime as dt
from pathlib import Path

import pytest

from tripmax.formats.route import TrackPoint, format_timestamp
from tripmax.sql.store import Store

T0 = dt.datetime(2026, 3, 1, 8, 0, 0, tzinfo=dt.timezone.utc)


@pytest.fixture
def sample_gpx_path() -> Path:
    return Path(__file__).parent / "data" / "short_drive.gpx"


@pytest.fixture
def t0() -> dt.datetime:
    return T0


@pytest.fixture
def make_points():
    """Points heading due north, `step_s` seconds and `dlat` degrees apart."""

    def _make(speeds, *, step_s=10.0, start=T0, lat0=45.0, dlat=0.001):
        return [
            TrackPoint(
                latitude=lat0 + i * dlat,
                longitude=-75.0,
                speed=s,
                timestamp=start + dt.timedelta(seconds=step_s * i),
            )
            for i, s in enumerate(speeds)
        ]

    return _make


@pytest.fixture
def make_payload(make_points):
    """Trip-save request body built from `make_points`."""

    def _make(speeds, **kw):
        vehicle_id = kw.pop("vehicle_id", None)
        points = make_points(speeds, **kw)
        body = {
            "startTime": format_timestamp(points[0].timestamp),
            "endTime": format_timestamp(points[-1].timestamp),
            "route": [p.to_dict() for p in points],
        }
        if vehicle_id is not None:
            body["vehicleId"] = vehicle_id
        return body

    return _make


@pytest.fixture
def store(tmp_path: Path) -> Store:
    return Store(tmp_path / "db" / "tripmax.sqlite")
