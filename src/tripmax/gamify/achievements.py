# tripmax/gamify/achievements.py
"""
Achievement evaluation.

Per (user, achievement) the only transition is not-earned -> earned, and it
is never undone. The engine is a decision function: it reads the definition
set from the registry plus whatever the caller hands it and returns what is
newly earned. Recording (and deduplicating races) is the store's job.
"""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass
from typing import AbstractSet, Optional

from tripmax.analyze.track import TripSummary
from tripmax.rules.definitions import Requirement, StatThreshold, TripCondition
from tripmax.rules.registry import RuleRegistry
from tripmax.stats.accumulator import UserStatistics
from tripmax.util.logging import log, utc_now


class Trigger(str, enum.Enum):
    TRIP_SAVED = "trip_saved"
    PROFILE_STATS_CHANGED = "profile_stats_changed"


@dataclass(frozen=True)
class NewlyEarnedAchievement:
    user_id: str
    achievement_code: str
    earned_at: dt.datetime
    triggering_trip_id: Optional[str] = None


def requirement_met(
    req: Requirement,
    trigger: Trigger,
    stats: UserStatistics,
    trip: Optional[TripSummary],
) -> bool:
    """Evaluate a single requirement; trip conditions only count on TRIP_SAVED."""
    match req:
        case StatThreshold(stat=stat, value=value):
            return stats.get(stat) >= value
        case TripCondition(field=field, value=value):
            if trigger is not Trigger.TRIP_SAVED or trip is None:
                return False
            return getattr(trip, field) >= value
    raise TypeError(f"unsupported requirement: {req!r}")


class AchievementEngine:
    def __init__(self, registry: RuleRegistry):
        self.registry = registry

    def evaluate(
        self,
        trigger: Trigger,
        user_id: str,
        stats: UserStatistics,
        earned_codes: AbstractSet[str],
        trip_summary: Optional[TripSummary] = None,
        trip_id: Optional[str] = None,
        now: Optional[dt.datetime] = None,
    ) -> list[NewlyEarnedAchievement]:
        """
        Return achievements the user newly satisfies.

        `stats` must be the post-update statistics. Definitions already in
        `earned_codes` are skipped.
        """
        now = now or utc_now()
        out: list[NewlyEarnedAchievement] = []
        for defn in self.registry.achievements():
            if defn.code in earned_codes:
                continue
            if not requirement_met(defn.requirement, trigger, stats, trip_summary):
                continue
            log(f"[achievements] user {user_id} earned {defn.code}")
            out.append(NewlyEarnedAchievement(
                user_id=user_id,
                achievement_code=defn.code,
                earned_at=now,
                triggering_trip_id=trip_id if trigger is Trigger.TRIP_SAVED else None,
            ))
        return out
