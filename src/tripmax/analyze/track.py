# tripmax/analyze/track.py
"""
Track analysis functions for TripMax

Turns an ordered list of TrackPoints into a TripSummary. Everything here is a
pure function of the point sequence; no I/O, no clocks.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from tripmax.analyze.geomath import distance_between
from tripmax.analyze.histogram import SpeedHistogram, build_histogram
from tripmax.errors import ComputationError, InsufficientData, InvalidDuration
from tripmax.formats.route import TrackPoint, format_timestamp, parse_timestamp


@dataclass(frozen=True)
class TripSummary:
    distance_meters: float
    duration_seconds: float
    avg_speed: float            # m/s, mean of valid point speeds
    max_speed: float            # m/s
    start_time: dt.datetime
    end_time: dt.datetime
    speed_histogram: SpeedHistogram
    point_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "distanceMeters": self.distance_meters,
            "durationSeconds": self.duration_seconds,
            "avgSpeed": self.avg_speed,
            "maxSpeed": self.max_speed,
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "speedHistogram": self.speed_histogram.to_list(),
            "pointCount": self.point_count,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "TripSummary":
        return cls(
            distance_meters=float(d["distanceMeters"]),
            duration_seconds=float(d["durationSeconds"]),
            avg_speed=float(d["avgSpeed"]),
            max_speed=float(d["maxSpeed"]),
            start_time=parse_timestamp(d["startTime"]),
            end_time=parse_timestamp(d["endTime"]),
            speed_histogram=SpeedHistogram.from_list(d["speedHistogram"]),
            point_count=int(d.get("pointCount", 0)),
        )


def _valid_speed(v: Optional[float]) -> bool:
    return v is not None and v >= 0


def compute_step_metrics(points: Sequence[TrackPoint]) -> list[float]:
    """Return per-segment great-circle distances (m) between consecutive points."""
    return [distance_between(p0.latlng, p1.latlng) for p0, p1 in zip(points, points[1:])]


def resolve_timestamps(
    points: Sequence[TrackPoint],
    start_time: Optional[dt.datetime] = None,
    end_time: Optional[dt.datetime] = None,
) -> list[dt.datetime]:
    """
    Return one timestamp per point.

    - all present: used as-is
    - all absent: spread evenly over [start_time, end_time]
    - some absent: InvalidDuration; partial gaps are never filled in
    """
    stamps = [p.timestamp for p in points]
    missing = sum(1 for t in stamps if t is None)

    if missing == 0:
        return list(stamps)

    if missing < len(stamps):
        raise InvalidDuration(
            f"{missing} of {len(stamps)} route points have no timestamp; "
            "refusing to interpolate a partially timed route"
        )

    if start_time is None or end_time is None:
        raise InvalidDuration("Route has no timestamps and no startTime/endTime to distribute over")
    if end_time <= start_time:
        raise InvalidDuration(f"endTime {end_time} is not after startTime {start_time}")

    step = (end_time - start_time) / (len(points) - 1)
    return [start_time + step * i for i in range(len(points) - 1)] + [end_time]


def compute_trip_summary(
    points: Sequence[TrackPoint],
    *,
    start_time: Optional[dt.datetime] = None,
    end_time: Optional[dt.datetime] = None,
) -> TripSummary:
    """
    Derive trip-level metrics from a raw route.

    Raises:
      InsufficientData   fewer than two points
      InvalidCoordinate  a point is off the globe
      InvalidDuration    timestamps unresolvable or last <= first
    """
    if len(points) < 2:
        raise InsufficientData(f"Need at least 2 route points, got {len(points)}")

    distance = sum(compute_step_metrics(points))

    speeds = [p.speed for p in points]
    valid = [s for s in speeds if _valid_speed(s)]
    max_speed = max(valid) if valid else 0.0
    avg_speed = sum(valid) / len(valid) if valid else 0.0

    stamps = resolve_timestamps(points, start_time, end_time)
    first, last = stamps[0], stamps[-1]
    duration = (last - first).total_seconds()
    if duration <= 0:
        raise InvalidDuration(f"Trip duration must be positive, got {duration:.3f}s")

    histogram = build_histogram(speeds, stamps)
    if histogram.total_seconds > duration + 1e-6:
        raise ComputationError(
            f"Histogram time {histogram.total_seconds:.3f}s exceeds trip duration {duration:.3f}s"
        )

    return TripSummary(
        distance_meters=distance,
        duration_seconds=duration,
        avg_speed=avg_speed,
        max_speed=max_speed,
        start_time=first,
        end_time=last,
        speed_histogram=histogram,
        point_count=len(points),
    )
