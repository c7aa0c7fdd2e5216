# tripmax/gamify/challenges.py
"""
Challenge progress evaluation.

Participation lifecycle:

    joined -> in_progress -> completed              (trip evaluation)
    joined | in_progress -> expired_incomplete      (time sweep, see expire())

completed and expired_incomplete are terminal. A trip counts toward a
challenge only if the trip's own start time falls inside the challenge
window; when the user joined does not matter.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Iterable, Optional

from tripmax.analyze.track import TripSummary
from tripmax.rules.definitions import ChallengeDefinition, ChallengeType
from tripmax.rules.registry import RuleRegistry
from tripmax.util.logging import log, utc_now

JOINED = "joined"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
EXPIRED_INCOMPLETE = "expired_incomplete"
TERMINAL_STATES = frozenset({COMPLETED, EXPIRED_INCOMPLETE})


@dataclass(frozen=True)
class ChallengeParticipation:
    challenge_code: str
    user_id: str
    progress: float = 0.0
    status: str = JOINED
    joined_at: Optional[dt.datetime] = None
    completed_at: Optional[dt.datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES or self.completed_at is not None


@dataclass(frozen=True)
class ParticipationUpdate:
    challenge_code: str
    user_id: str
    old_progress: float
    new_progress: float
    status: str
    completed_at: Optional[dt.datetime] = None

    @property
    def completed(self) -> bool:
        return self.status == COMPLETED


def progress_increment(challenge: ChallengeDefinition, trip: TripSummary) -> Optional[float]:
    """How much a trip adds to a challenge; None for types not driven by trips here."""
    match challenge.type:
        case ChallengeType.DISTANCE:
            return trip.distance_meters
        case ChallengeType.DURATION:
            return trip.duration_seconds
        case ChallengeType.TRACK_COUNT:
            return 1.0
        case ChallengeType.TOP_SPEED | ChallengeType.ELEVATION_GAIN:
            return None
    return None


class ChallengeEngine:
    def __init__(self, registry: RuleRegistry):
        self.registry = registry

    def advance(
        self,
        user_id: str,
        trip_summary: TripSummary,
        participations: Iterable[ChallengeParticipation],
        now: Optional[dt.datetime] = None,
    ) -> list[ParticipationUpdate]:
        """Apply one trip to the user's open participations."""
        now = now or utc_now()
        updates: list[ParticipationUpdate] = []

        for part in participations:
            if part.user_id != user_id or part.is_terminal:
                continue
            challenge = self.registry.challenge(part.challenge_code)
            if challenge is None or not challenge.accepts(trip_summary.start_time):
                continue

            increment = progress_increment(challenge, trip_summary)
            if increment is None:
                log(f"[challenges] {challenge.code}: type {challenge.type.value} "
                    "is not evaluated from trips; skipping")
                continue

            old = part.progress
            new = min(challenge.goal, old + max(0.0, increment))
            if new >= challenge.goal:
                log(f"[challenges] user {user_id} completed {challenge.code}")
                updates.append(ParticipationUpdate(
                    challenge.code, user_id, old, new, COMPLETED, completed_at=now,
                ))
            elif new != old:
                updates.append(ParticipationUpdate(challenge.code, user_id, old, new, IN_PROGRESS))

        return updates

    def expire(
        self,
        participations: Iterable[ChallengeParticipation],
        now: Optional[dt.datetime] = None,
    ) -> list[ParticipationUpdate]:
        """Close out open participations whose challenge window has ended."""
        now = now or utc_now()
        updates: list[ParticipationUpdate] = []
        for part in participations:
            if part.is_terminal:
                continue
            challenge = self.registry.challenge(part.challenge_code)
            if challenge is None or challenge.end_time >= now:
                continue
            updates.append(ParticipationUpdate(
                part.challenge_code, part.user_id, part.progress, part.progress, EXPIRED_INCOMPLETE,
            ))
        return updates
