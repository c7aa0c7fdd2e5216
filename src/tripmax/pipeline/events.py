# tripmax/pipeline/events.py
"""
Events published by the trip pipeline.

They are written to the `events` table in the same transaction as the state
change they describe, and handed to in-process listeners (notifications,
analytics) after commit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from tripmax.analyze.track import TripSummary
from tripmax.util.logging import utc_now_iso


@dataclass(frozen=True)
class TripSaved:
    trip_id: str
    user_id: str
    summary: TripSummary
    created_utc: str = field(default_factory=utc_now_iso)

    event_type = "TripSaved"

    def to_dict(self) -> dict[str, Any]:
        return {"tripId": self.trip_id, "userId": self.user_id, "summary": self.summary.to_dict()}


@dataclass(frozen=True)
class AchievementEarned:
    user_id: str
    achievement_code: str
    trip_id: Optional[str] = None
    created_utc: str = field(default_factory=utc_now_iso)

    event_type = "AchievementEarned"

    def to_dict(self) -> dict[str, Any]:
        return {"userId": self.user_id, "achievementCode": self.achievement_code, "tripId": self.trip_id}


@dataclass(frozen=True)
class ChallengeProgressUpdated:
    user_id: str
    challenge_code: str
    progress: float
    created_utc: str = field(default_factory=utc_now_iso)

    event_type = "ChallengeProgressUpdated"

    def to_dict(self) -> dict[str, Any]:
        return {"userId": self.user_id, "challengeCode": self.challenge_code, "progress": self.progress}


@dataclass(frozen=True)
class ChallengeCompleted:
    user_id: str
    challenge_code: str
    created_utc: str = field(default_factory=utc_now_iso)

    event_type = "ChallengeCompleted"

    def to_dict(self) -> dict[str, Any]:
        return {"userId": self.user_id, "challengeCode": self.challenge_code}


Event = TripSaved | AchievementEarned | ChallengeProgressUpdated | ChallengeCompleted
Listener = Callable[[Event], None]
