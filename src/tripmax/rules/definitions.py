# tripmax/rules/definitions.py
"""
Achievement and challenge definitions.

A requirement is a tagged variant, StatThreshold | TripCondition. Parsing is
strict: an unknown key, an unknown stat/field name, or a dict that names both
variants raises RuleDefinitionError instead of producing a rule that can
never fire.

Two dict shapes are accepted for requirements:

    {"kind": "stat_threshold", "stat": "total_distance", "value": 100000}
    {"kind": "trip_condition", "field": "max_speed", "value": 27.78}

and the older untagged shape still found in seeded data:

    {"stat": "totalDistance", "value": 100000}
    {"trackCondition": "maxSpeed", "value": 27.78}
"""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass
from typing import Any, Optional, Union

from tripmax.errors import RuleDefinitionError
from tripmax.formats.route import format_timestamp, parse_timestamp
from tripmax.stats.accumulator import STAT_ALIASES, STAT_NAMES

TRIP_FIELD_ALIASES = {
    "distance": "distance_meters",
    "distanceMeters": "distance_meters",
    "duration": "duration_seconds",
    "durationSeconds": "duration_seconds",
    "avgSpeed": "avg_speed",
    "maxSpeed": "max_speed",
}
TRIP_FIELDS = frozenset({"distance_meters", "duration_seconds", "avg_speed", "max_speed"})

CATEGORIES = frozenset({"distance", "speed", "frequency", "social", "exploration", "other"})
RARITIES = ("common", "uncommon", "rare", "epic", "legendary")


@dataclass(frozen=True)
class StatThreshold:
    stat: str
    value: float


@dataclass(frozen=True)
class TripCondition:
    field: str
    value: float


Requirement = Union[StatThreshold, TripCondition]


def _number(v: Any, what: str) -> float:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise RuleDefinitionError(f"{what} must be a number, got {v!r}")
    return float(v)


def _stat_name(name: Any) -> str:
    s = STAT_ALIASES.get(name, name)
    if s not in STAT_NAMES:
        raise RuleDefinitionError(f"Unknown statistic {name!r}; expected one of {sorted(STAT_NAMES)}")
    return s


def _trip_field(name: Any) -> str:
    f = TRIP_FIELD_ALIASES.get(name, name)
    if f not in TRIP_FIELDS:
        raise RuleDefinitionError(f"Unknown trip field {name!r}; expected one of {sorted(TRIP_FIELDS)}")
    return f


def requirement_from_dict(d: Any) -> Requirement:
    if not isinstance(d, dict):
        raise RuleDefinitionError(f"Requirement must be an object, got {d!r}")

    kind = d.get("kind")
    if kind is None:
        has_stat, has_trip = "stat" in d, "trackCondition" in d
        if has_stat == has_trip:
            raise RuleDefinitionError(
                f"Requirement must name exactly one of 'stat' or 'trackCondition': {d!r}"
            )
        kind = "stat_threshold" if has_stat else "trip_condition"
        allowed = {"stat" if has_stat else "trackCondition", "value"}
    elif kind == "stat_threshold":
        allowed = {"kind", "stat", "value"}
    elif kind == "trip_condition":
        allowed = {"kind", "field", "value"}
    else:
        raise RuleDefinitionError(f"Unknown requirement kind {kind!r}")

    extra = set(d) - allowed
    if extra:
        raise RuleDefinitionError(f"Unexpected requirement keys {sorted(extra)} in {d!r}")
    if "value" not in d:
        raise RuleDefinitionError(f"Requirement is missing 'value': {d!r}")

    value = _number(d["value"], "requirement value")
    if kind == "stat_threshold":
        return StatThreshold(stat=_stat_name(d.get("stat")), value=value)
    return TripCondition(field=_trip_field(d.get("field", d.get("trackCondition"))), value=value)


def requirement_to_dict(req: Requirement) -> dict[str, Any]:
    match req:
        case StatThreshold(stat=stat, value=value):
            return {"kind": "stat_threshold", "stat": stat, "value": value}
        case TripCondition(field=field, value=value):
            return {"kind": "trip_condition", "field": field, "value": value}
    raise TypeError(f"not a requirement: {req!r}")


@dataclass(frozen=True)
class AchievementDefinition:
    code: str
    name: str
    category: str
    requirement: Requirement
    rarity: str = "common"
    description: str = ""
    icon_url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "achievementCode": self.code,
            "name": self.name,
            "description": self.description,
            "iconUrl": self.icon_url,
            "category": self.category,
            "requirements": requirement_to_dict(self.requirement),
            "rarity": self.rarity,
        }


def _code(v: Any, what: str) -> str:
    if not isinstance(v, str) or not v.strip():
        raise RuleDefinitionError(f"{what} is required")
    return v.strip().upper()


def achievement_from_dict(d: dict[str, Any]) -> AchievementDefinition:
    code = _code(d.get("achievementCode", d.get("code")), "Achievement code")
    category = d.get("category")
    if category not in CATEGORIES:
        raise RuleDefinitionError(f"{code}: unknown category {category!r}")
    rarity = d.get("rarity") or "common"
    if rarity not in RARITIES:
        raise RuleDefinitionError(f"{code}: unknown rarity {rarity!r}")
    req = d.get("requirements", d.get("requirement"))
    try:
        requirement = requirement_from_dict(req)
    except RuleDefinitionError as e:
        raise RuleDefinitionError(f"{code}: {e}") from e
    return AchievementDefinition(
        code=code,
        name=str(d.get("name") or code),
        category=category,
        requirement=requirement,
        rarity=rarity,
        description=str(d.get("description") or ""),
        icon_url=d.get("iconUrl", d.get("icon_url")),
    )


class ChallengeType(str, enum.Enum):
    DISTANCE = "distance"
    DURATION = "duration"
    TRACK_COUNT = "track_count"
    TOP_SPEED = "top_speed"
    ELEVATION_GAIN = "elevation_gain"


@dataclass(frozen=True)
class ChallengeDefinition:
    code: str
    name: str
    type: ChallengeType
    goal: float
    start_time: dt.datetime
    end_time: dt.datetime
    is_active: bool = True
    goal_unit: Optional[str] = None
    description: str = ""

    def accepts(self, when: dt.datetime) -> bool:
        """True if a trip starting at `when` counts toward this challenge."""
        return self.is_active and self.start_time <= when <= self.end_time

    def status(self, now: dt.datetime) -> str:
        if not self.is_active:
            return "inactive"
        if self.end_time < now:
            return "expired"
        if self.start_time > now:
            return "upcoming"
        return "active"

    def to_dict(self) -> dict[str, Any]:
        return {
            "challengeCode": self.code,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "goal": self.goal,
            "goalUnit": self.goal_unit,
            "startTime": format_timestamp(self.start_time),
            "endTime": format_timestamp(self.end_time),
            "isActive": self.is_active,
        }


def challenge_from_dict(d: dict[str, Any]) -> ChallengeDefinition:
    code = _code(d.get("challengeCode", d.get("code")), "Challenge code")
    try:
        ctype = ChallengeType(d.get("type"))
    except ValueError as e:
        raise RuleDefinitionError(f"{code}: unknown challenge type {d.get('type')!r}") from e
    goal = _number(d.get("goal"), f"{code}: goal")
    if goal < 0:
        raise RuleDefinitionError(f"{code}: goal must be non-negative")
    start = parse_timestamp(d.get("startTime", d.get("start_time")))
    end = parse_timestamp(d.get("endTime", d.get("end_time")))
    if start is None or end is None:
        raise RuleDefinitionError(f"{code}: startTime and endTime are required")
    if end < start:
        raise RuleDefinitionError(f"{code}: endTime precedes startTime")
    is_active = d.get("isActive", d.get("is_active", True))
    return ChallengeDefinition(
        code=code,
        name=str(d.get("name") or code),
        type=ctype,
        goal=goal,
        start_time=start,
        end_time=end,
        is_active=bool(is_active),
        goal_unit=d.get("goalUnit", d.get("goal_unit")),
        description=str(d.get("description") or ""),
    )
