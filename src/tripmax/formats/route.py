# tripmax/formats/route.py
"""
Trip-save payload helpers for TripMax

This module is intentionally format-focused:
- timestamp parsing and formatting (UTC, ISO-8601)
- turning a loosely-typed trip-save request (JSON dict) into typed objects
- serializing points back into the storage shape

Key design principle:
  Reject malformed input here with InvalidPayload / InvalidCoordinate so the
  metrics code only ever sees well-typed points. Nothing in this module
  decides whether the data is *plausible*; that belongs in analyze.track.
"""

from __future__ import annotations

import datetime as _dt
import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from tripmax.analyze.geomath import check_coordinate
from tripmax.errors import InvalidDuration, InvalidPayload

MAX_TAG_LENGTH = 30
MAX_DESCRIPTION_LENGTH = 500

_FRACTION = re.compile(r"([T ]\d{2}:\d{2}:\d{2})\.(\d+)")


def parse_timestamp(value: Any) -> Optional[_dt.datetime]:
    """
    Parse a timestamp as sent by clients.

    Accepted:
      - ISO-8601 strings: "2026-01-02T21:14:44Z", "...44.123Z", "...+02:00"
      - epoch milliseconds (int/float), as mobile clients send Date.now()
      - datetime objects

    Naive values are assumed to be UTC. Returns None for empty input;
    raises InvalidPayload for values that are present but unparseable.
    """
    if value is None:
        return None
    if isinstance(value, _dt.datetime):
        ts = value
    elif isinstance(value, bool):
        raise InvalidPayload(f"Invalid timestamp: {value!r}")
    elif isinstance(value, (int, float)):
        try:
            ts = _dt.datetime.fromtimestamp(value / 1000.0, _dt.timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise InvalidPayload(f"Invalid epoch timestamp: {value!r}") from e
    elif isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        # fromisoformat before 3.11 only takes 3 or 6 fraction digits
        s = _FRACTION.sub(lambda m: f"{m.group(1)}.{m.group(2)[:6].ljust(6, '0')}", s, count=1)
        try:
            ts = _dt.datetime.fromisoformat(s)
        except ValueError as e:
            raise InvalidPayload(f"Invalid timestamp: {value!r}") from e
    else:
        raise InvalidPayload(f"Invalid timestamp: {value!r}")

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=_dt.timezone.utc)
    return ts.astimezone(_dt.timezone.utc)


def format_timestamp(ts: Optional[_dt.datetime]) -> Optional[str]:
    """Format a tz-aware datetime as ISO-8601 UTC with a Z suffix."""
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=_dt.timezone.utc)
    return ts.astimezone(_dt.timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class TrackPoint:
    latitude: float
    longitude: float
    speed: Optional[float] = None       # m/s; None when the device did not report one
    altitude: Optional[float] = None    # meters
    timestamp: Optional[_dt.datetime] = None

    @property
    def latlng(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lat": self.latitude,
            "lng": self.longitude,
            "speed": self.speed,
            "altitude": self.altitude,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass(frozen=True)
class TripRequest:
    """A validated trip-save request."""

    route: tuple[TrackPoint, ...]
    start_time: Optional[_dt.datetime] = None
    end_time: Optional[_dt.datetime] = None
    vehicle_id: Optional[str] = None
    tags: tuple[str, ...] = field(default_factory=tuple)
    description: str = ""
    is_public: Optional[bool] = None


def _pick(d: dict[str, Any], *keys: str) -> Any:
    """First present key wins; lets callers send camelCase or snake_case."""
    for k in keys:
        if k in d:
            return d[k]
    return None


def _as_optional_float(v: Any, what: str, index: int) -> Optional[float]:
    if v is None:
        return None
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise InvalidPayload(f"Route point {index}: {what} must be a number, got {v!r}")
    return float(v)


def parse_point(raw: Any, index: int = 0) -> TrackPoint:
    """Build a TrackPoint from one route entry ({lat, lng, speed, altitude, timestamp})."""
    if not isinstance(raw, dict):
        raise InvalidPayload(f"Route point {index} must be an object, got {type(raw).__name__}")

    lat = _as_optional_float(_pick(raw, "lat", "latitude"), "lat", index)
    lng = _as_optional_float(_pick(raw, "lng", "lon", "longitude"), "lng", index)
    if lat is None or lng is None:
        raise InvalidPayload(f"Route point {index} is missing lat/lng")
    check_coordinate((lat, lng))

    return TrackPoint(
        latitude=lat,
        longitude=lng,
        speed=_as_optional_float(raw.get("speed"), "speed", index),
        altitude=_as_optional_float(_pick(raw, "altitude", "ele"), "altitude", index),
        timestamp=parse_timestamp(_pick(raw, "timestamp", "time")),
    )


def parse_trip_request(payload: Any) -> TripRequest:
    """
    Validate a trip-save request body.

    Raises:
      InvalidPayload, InvalidCoordinate, InvalidDuration (endTime not after startTime)
    """
    if not isinstance(payload, dict):
        raise InvalidPayload("Trip payload must be an object")

    route = payload.get("route")
    if not isinstance(route, list) or not route:
        raise InvalidPayload("Missing required track data: route must be a non-empty list")

    tags = payload.get("tags") or []
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise InvalidPayload("tags must be a list of strings")
    too_long = [t for t in tags if len(t) > MAX_TAG_LENGTH]
    if too_long:
        raise InvalidPayload(f"Tags cannot exceed {MAX_TAG_LENGTH} characters: {too_long[0]!r}")

    description = payload.get("description") or ""
    if not isinstance(description, str):
        raise InvalidPayload("description must be a string")
    description = description.strip()
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise InvalidPayload(f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")

    is_public = _pick(payload, "isPublic", "is_public")
    if is_public is not None and not isinstance(is_public, bool):
        raise InvalidPayload("isPublic must be a boolean")

    vehicle_id = _pick(payload, "vehicleId", "vehicle_id")

    start = parse_timestamp(_pick(payload, "startTime", "start_time"))
    end = parse_timestamp(_pick(payload, "endTime", "end_time"))
    if start is not None and end is not None and end <= start:
        raise InvalidDuration(f"endTime {format_timestamp(end)} must be after startTime {format_timestamp(start)}")

    return TripRequest(
        route=tuple(parse_point(p, i) for i, p in enumerate(route)),
        start_time=start,
        end_time=end,
        vehicle_id=str(vehicle_id) if vehicle_id is not None else None,
        tags=tuple(tags),
        description=description,
        is_public=is_public,
    )


def read_route_json(path: Path) -> TripRequest:
    """Read a trip-save request stored as JSON (a payload dict or a bare route list)."""
    try:
        doc = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise InvalidPayload(f"{path}: not valid JSON ({e})") from e
    if isinstance(doc, list):
        doc = {"route": doc}
    return parse_trip_request(doc)
