# tripmax/analyze/histogram.py
"""
Speed-time histogram for TripMax

Buckets are fixed km/h ranges; each bucket accumulates *seconds spent* in
that range, not sample counts, so irregular sampling does not bias it.
Speeds arrive in m/s and are converted before bucketing.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, replace
from typing import Iterable, Optional, Sequence

MPS_TO_KMH = 3.6

# (min, max) in km/h; None = unbounded
SPEED_BUCKETS_KMH: tuple[tuple[float, Optional[float]], ...] = (
    (0.0, 50.0),
    (50.0, 100.0),
    (100.0, 150.0),
    (150.0, 200.0),
    (200.0, 250.0),
    (250.0, None),
)


@dataclass(frozen=True)
class SpeedBucket:
    min_speed: float
    max_speed: Optional[float]
    seconds_in_range: float = 0.0

    def contains(self, speed_kmh: float) -> bool:
        if speed_kmh < self.min_speed:
            return False
        return self.max_speed is None or speed_kmh < self.max_speed

    @property
    def label(self) -> str:
        lo = f"{self.min_speed:g}"
        return f"{lo}+" if self.max_speed is None else f"{lo}-{self.max_speed:g}"


@dataclass(frozen=True)
class SpeedHistogram:
    buckets: tuple[SpeedBucket, ...]

    @classmethod
    def empty(cls) -> "SpeedHistogram":
        return cls(tuple(SpeedBucket(lo, hi) for lo, hi in SPEED_BUCKETS_KMH))

    @property
    def total_seconds(self) -> float:
        return sum(b.seconds_in_range for b in self.buckets)

    def bucket_index(self, speed_kmh: float) -> Optional[int]:
        for i, b in enumerate(self.buckets):
            if b.contains(speed_kmh):
                return i
        return None

    def to_list(self) -> list[dict]:
        return [
            {"minSpeed": b.min_speed, "maxSpeed": b.max_speed, "secondsInRange": b.seconds_in_range}
            for b in self.buckets
        ]

    @classmethod
    def from_list(cls, rows: Iterable[dict]) -> "SpeedHistogram":
        return cls(tuple(
            SpeedBucket(float(r["minSpeed"]),
                        None if r.get("maxSpeed") is None else float(r["maxSpeed"]),
                        float(r.get("secondsInRange", 0.0)))
            for r in rows
        ))


def build_histogram(
    speeds: Sequence[Optional[float]],
    timestamps: Sequence[dt.datetime],
) -> SpeedHistogram:
    """
    Attribute elapsed time to speed buckets.

    For each consecutive pair (i-1, i) the interval ending at point i goes to
    the bucket holding point i's speed (km/h). Points without a valid speed
    (None or negative) attribute nothing.

    Timestamps are clamped into [first, last] and intervals are measured from
    the latest timestamp seen so far, so an out-of-order sample contributes
    zero instead of subtracting time, and the total never exceeds
    last - first.
    """
    if len(speeds) != len(timestamps):
        raise ValueError("speeds and timestamps must have the same length")

    hist = SpeedHistogram.empty()
    if len(timestamps) < 2:
        return hist

    first, last = timestamps[0], timestamps[-1]
    seconds = [0.0] * len(hist.buckets)
    high_water = first

    for speed, ts in zip(speeds[1:], timestamps[1:]):
        clamped = min(max(ts, first), last)
        interval = max(0.0, (clamped - high_water).total_seconds())
        if clamped > high_water:
            high_water = clamped
        if speed is None or speed < 0 or interval == 0.0:
            continue
        idx = hist.bucket_index(speed * MPS_TO_KMH)
        if idx is not None:
            seconds[idx] += interval

    return SpeedHistogram(tuple(
        replace(b, seconds_in_range=s) for b, s in zip(hist.buckets, seconds)
    ))


def merge_histograms(histograms: Iterable[SpeedHistogram]) -> SpeedHistogram:
    """Union of per-trip histograms (bucket-wise sum); buckets must match the fixed schema."""
    totals = [0.0] * len(SPEED_BUCKETS_KMH)
    for h in histograms:
        if [(b.min_speed, b.max_speed) for b in h.buckets] != list(SPEED_BUCKETS_KMH):
            raise ValueError("histogram bucket schema mismatch")
        for i, b in enumerate(h.buckets):
            totals[i] += b.seconds_in_range
    return SpeedHistogram(tuple(
        SpeedBucket(lo, hi, s) for (lo, hi), s in zip(SPEED_BUCKETS_KMH, totals)
    ))


def distribution_minutes(hist: SpeedHistogram) -> list[dict]:
    """Display shape for the speed-distribution view: minutes per km/h range."""
    return [
        {
            "label": b.label,
            "minSpeed": b.min_speed,
            "maxSpeed": b.max_speed,
            "minutes": round(b.seconds_in_range / 60.0, 1),
        }
        for b in hist.buckets
    ]
