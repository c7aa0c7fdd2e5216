# tripmax/pipeline/ingest.py
"""
TripPipeline: the trip-save path and the gamification read/admin surface.

Saving a trip:

  1) validate the payload and compute the TripSummary (pure; any
     ValidationError is raised here and nothing is written)
  2) insert the trip and its evaluation outbox rows in one transaction
  3) fold the trip into the user's statistics (optimistic, bounded retry)
  4) hand the achievement and challenge stages to the background pool

Steps 3 and 4 never undo step 2. If statistics cannot be applied the
AccumulationConflict is raised to the caller, the trip stays saved and the
sweep finishes the job later.
"""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from tripmax.analyze.histogram import distribution_minutes, merge_histograms
from tripmax.analyze.track import TripSummary, compute_trip_summary
from tripmax.config import GamificationConfig, TripmaxConfig
from tripmax.errors import InvalidPayload
from tripmax.formats.route import TripRequest, parse_trip_request
from tripmax.gamify.achievements import NewlyEarnedAchievement, Trigger
from tripmax.gamify.challenges import ChallengeParticipation
from tripmax.pipeline.dispatch import EvaluationDispatcher
from tripmax.pipeline.events import AchievementEarned, Event, Listener, TripSaved
from tripmax.pipeline.outbox import EvaluationWorker, notify
from tripmax.rules.definitions import (
    AchievementDefinition,
    ChallengeDefinition,
    achievement_from_dict,
    challenge_from_dict,
)
from tripmax.rules.registry import RuleRegistry
from tripmax.rules.seed import default_achievements
from tripmax.sql.store import STAGES, EvaluationTask, Store
from tripmax.stats.accumulator import UserStatistics
from tripmax.util.logging import log, utc_now


@dataclass(frozen=True)
class SavedTrip:
    trip_id: str
    user_id: str
    summary: TripSummary
    statistics: UserStatistics
    evaluated: bool     # both stages finished before save_trip returned


class TripPipeline:
    def __init__(
        self,
        store: Store,
        *,
        registry: Optional[RuleRegistry] = None,
        settings: GamificationConfig = GamificationConfig(),
        background: bool = True,
    ):
        self.store = store
        self.settings = settings
        self.registry = registry or RuleRegistry(
            store.load_achievement_definitions,
            store.load_challenge_definitions,
            ttl_seconds=settings.registry_ttl_seconds,
        )
        self.listeners: list[Listener] = []
        self.worker = EvaluationWorker(
            store,
            self.registry,
            max_attempts=settings.outbox_max_attempts,
            max_conflict_retries=settings.stats_max_retries,
            listeners=self.listeners,
        )
        self.dispatcher: Optional[EvaluationDispatcher] = (
            EvaluationDispatcher(self.worker, max_workers=settings.worker_threads) if background else None
        )

    @classmethod
    def from_config(cls, cfg: TripmaxConfig, *, db_path: Optional[Path] = None, background: bool = True) -> "TripPipeline":
        store = Store(db_path or cfg.paths.sqlite_path)
        return cls(store, settings=cfg.gamification, background=background)

    def subscribe(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def close(self) -> None:
        if self.dispatcher is not None:
            self.dispatcher.shutdown(wait=True)

    def __enter__(self) -> "TripPipeline":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------
    # trip save path
    # ------------------------------------------------------------------
    def save_trip(
        self,
        user_id: str,
        payload: Union[dict[str, Any], TripRequest],
        trip_id: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
    ) -> SavedTrip:
        """
        Validate, persist and evaluate one trip.

        Raises:
          ValidationError subclasses   payload rejected, nothing saved
          ComputationError             internal metric invariant broken, nothing saved
          AccumulationConflict         trip saved, statistics left for the sweep
        """
        user_id = str(user_id)
        request = payload if isinstance(payload, TripRequest) else parse_trip_request(payload)
        summary = compute_trip_summary(
            request.route, start_time=request.start_time, end_time=request.end_time,
        )
        trip_id = trip_id or str(uuid.uuid4())

        saved_event = TripSaved(trip_id, user_id, summary)
        self.store.save_trip(trip_id, user_id, request, summary, events=[saved_event])
        log(f"[trip] saved {trip_id} for user {user_id}: "
            f"{summary.distance_meters:.0f} m in {summary.duration_seconds:.0f} s")
        notify(self.listeners, [saved_event])

        stats = self.store.apply_trip_statistics(
            user_id, trip_id, max_retries=self.settings.stats_max_retries,
        )

        evaluated = self._dispatch(trip_id, user_id, timeout)
        return SavedTrip(trip_id, user_id, summary, stats, evaluated)

    def _dispatch(self, trip_id: str, user_id: str, timeout: Optional[float]) -> bool:
        tasks = [EvaluationTask(trip_id, stage, user_id) for stage in STAGES]
        if self.dispatcher is None:
            return all([self.worker.process(t) for t in tasks])

        futures = self.dispatcher.submit(tasks)
        if timeout is None:
            timeout = self.settings.evaluation_timeout_seconds
        if timeout <= 0:
            return False
        if not self.dispatcher.wait(futures, timeout):
            return False
        for f in futures:
            if f.exception() is not None:
                log(f"[trip] evaluation of {trip_id} raised {f.exception()!r}; left for the sweep", err=True)
                return False
        return all(f.result() for f in futures)

    # ------------------------------------------------------------------
    # profile-driven evaluation and reads
    # ------------------------------------------------------------------
    def evaluate_profile(self, user_id: str) -> list[NewlyEarnedAchievement]:
        """Re-check stat thresholds after a profile statistics change."""
        user_id = str(user_id)
        stats = self.store.get_statistics(user_id)
        earned = self.store.earned_codes(user_id)
        recorded: list[NewlyEarnedAchievement] = []
        published: list[Event] = []
        for new in self.worker.achievements.evaluate(Trigger.PROFILE_STATS_CHANGED, user_id, stats, earned):
            ev = AchievementEarned(user_id, new.achievement_code)
            if self.store.record_earned(new, [ev]):
                recorded.append(new)
                published.append(ev)
        notify(self.listeners, published)
        return recorded

    def statistics(self, user_id: str) -> UserStatistics:
        return self.store.get_statistics(str(user_id))

    def speed_distribution(self, user_id: str) -> list[dict]:
        """Minutes per speed range across all of a user's trips."""
        return distribution_minutes(merge_histograms(self.store.trip_histograms(str(user_id))))

    # ------------------------------------------------------------------
    # definitions and participation
    # ------------------------------------------------------------------
    def define_achievement(self, defn: Union[AchievementDefinition, dict[str, Any]]) -> AchievementDefinition:
        if isinstance(defn, dict):
            defn = achievement_from_dict(defn)
        self.store.upsert_achievement_definition(defn)
        self.registry.invalidate()
        return defn

    def define_challenge(self, defn: Union[ChallengeDefinition, dict[str, Any]]) -> ChallengeDefinition:
        if isinstance(defn, dict):
            defn = challenge_from_dict(defn)
        self.store.upsert_challenge_definition(defn)
        self.registry.invalidate()
        return defn

    def seed_defaults(self) -> int:
        defs = default_achievements()
        for d in defs:
            self.store.upsert_achievement_definition(d)
        self.registry.invalidate()
        log(f"Seeded {len(defs)} default achievement(s)")
        return len(defs)

    def join_challenge(self, challenge_code: str, user_id: str, *, now: Optional[dt.datetime] = None) -> ChallengeParticipation:
        code = challenge_code.strip().upper()
        challenge = self.registry.challenge(code)
        if challenge is None:
            raise InvalidPayload(f"Unknown challenge {challenge_code!r}")
        now = now or utc_now()
        status = challenge.status(now)
        if status != "active":
            raise InvalidPayload(f"Challenge {code} is not open for joining ({status})")
        return self.store.join_challenge(code, str(user_id), now=now)
