# tripmax/stats/accumulator.py
"""
Lifetime user statistics.

apply_trip is a pure fold: the store is responsible for running it under
per-user optimistic concurrency and for never applying the same trip twice.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from tripmax.analyze.track import TripSummary

# camelCase names as they appear in stored documents and rule definitions
STAT_ALIASES = {
    "totalDistance": "total_distance",
    "totalTime": "total_time",
    "totalTracks": "total_tracks",
    "topSpeed": "top_speed",
    "avgSpeed": "avg_speed",
}


@dataclass(frozen=True)
class UserStatistics:
    total_distance: float = 0.0     # m
    total_time: float = 0.0         # s
    total_tracks: int = 0
    top_speed: float = 0.0          # m/s
    avg_speed: float = 0.0          # m/s, total_distance / total_time

    def get(self, name: str) -> float:
        return getattr(self, STAT_ALIASES.get(name, name))

    def to_dict(self) -> dict[str, Any]:
        return {camel: getattr(self, snake) for camel, snake in STAT_ALIASES.items()}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "UserStatistics":
        kw = {}
        for camel, snake in STAT_ALIASES.items():
            v = d.get(camel, d.get(snake))
            if v is not None:
                kw[snake] = v
        if "total_tracks" in kw:
            kw["total_tracks"] = int(kw["total_tracks"])
        return cls(**kw)


STAT_NAMES = frozenset(f for f in UserStatistics.__dataclass_fields__)


def apply_trip(current: UserStatistics, trip: TripSummary) -> UserStatistics:
    """Fold one trip into lifetime statistics."""
    total_distance = current.total_distance + trip.distance_meters
    total_time = current.total_time + trip.duration_seconds
    avg_speed = total_distance / total_time if total_time > 0 else current.avg_speed
    return replace(
        current,
        total_distance=total_distance,
        total_time=total_time,
        total_tracks=current.total_tracks + 1,
        top_speed=max(current.top_speed, trip.max_speed),
        avg_speed=avg_speed,
    )
