# tripmax/pipeline/outbox.py
"""
Evaluation worker for the trip outbox.

Every saved trip gets one `evaluation_tasks` row per stage. A stage is run by
EvaluationWorker.process(); on success the row is marked done, on failure the
error is logged and recorded on the row so the sweep can retry it. A stage
never raises into the trip save that triggered it.

Both stages are idempotent: earned achievements are deduplicated by
(user, code) and challenge progress by (challenge, user, trip), so a task
that half-succeeded can simply be run again.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from tripmax.errors import AccumulationConflict, RuleEvaluationFailure, TripmaxError
from tripmax.gamify.achievements import AchievementEngine, Trigger
from tripmax.gamify.challenges import ChallengeEngine
from tripmax.pipeline.events import (
    AchievementEarned,
    ChallengeCompleted,
    ChallengeProgressUpdated,
    Event,
    Listener,
)
from tripmax.rules.registry import RuleRegistry
from tripmax.sql.store import (
    STAGE_ACHIEVEMENTS,
    STAGE_CHALLENGES,
    EvaluationTask,
    Store,
    StoredTrip,
)
from tripmax.util.logging import log


def notify(listeners: Sequence[Listener], events: Iterable[Event]) -> None:
    """Deliver committed events; a failing listener is logged and skipped."""
    for ev in events:
        for listener in listeners:
            try:
                listener(ev)
            except Exception as e:
                log(f"[events] listener {listener!r} failed on {ev.event_type}: {e}", err=True)


class EvaluationWorker:
    def __init__(
        self,
        store: Store,
        registry: RuleRegistry,
        *,
        max_attempts: int = 5,
        max_conflict_retries: int = 5,
        listeners: Optional[list[Listener]] = None,
    ):
        self.store = store
        self.registry = registry
        self.achievements = AchievementEngine(registry)
        self.challenges = ChallengeEngine(registry)
        self.max_attempts = max_attempts
        self.max_conflict_retries = max_conflict_retries
        self.listeners: list[Listener] = listeners if listeners is not None else []

    def process(self, task: EvaluationTask) -> bool:
        """Run one stage for one trip. Returns True when the task is done."""
        try:
            trip = self.store.get_trip(task.trip_id)
            if trip is None:
                raise RuleEvaluationFailure(f"trip {task.trip_id} not found")
            if task.stage == STAGE_ACHIEVEMENTS:
                events = self._run_achievements(trip)
            elif task.stage == STAGE_CHALLENGES:
                events = self._run_challenges(trip)
            else:
                raise RuleEvaluationFailure(f"unknown evaluation stage {task.stage!r}")
        except Exception as e:
            failure = e if isinstance(e, RuleEvaluationFailure) else RuleEvaluationFailure(
                f"{type(e).__name__}: {e}"
            )
            log(f"[outbox] {task.stage} for trip {task.trip_id} failed: {failure}", err=True)
            try:
                attempts = self.store.mark_task_failed(
                    task.trip_id, task.stage, str(failure), max_attempts=self.max_attempts,
                )
            except TripmaxError as e2:
                log(f"[outbox] could not record failure of {task.stage} for trip {task.trip_id}: {e2}", err=True)
                return False
            log(f"[outbox] {task.stage} for trip {task.trip_id}: attempt {attempts}/{self.max_attempts} recorded")
            return False

        # The stage's writes are committed either way, so listeners hear about them.
        notify(self.listeners, events)
        try:
            self.store.mark_task_done(task.trip_id, task.stage)
        except TripmaxError as e:
            # Row stays pending; re-running the stage is idempotent.
            log(f"[outbox] could not mark {task.stage} done for trip {task.trip_id}: {e}", err=True)
            return False
        return True

    def _run_achievements(self, trip: StoredTrip) -> list[Event]:
        if not trip.stats_applied:
            # Stat thresholds must see post-update totals; the sweep applies them first.
            raise RuleEvaluationFailure(f"statistics for trip {trip.trip_id} not applied yet")

        stats = self.store.get_statistics(trip.user_id)
        earned = self.store.earned_codes(trip.user_id)
        published: list[Event] = []
        for new in self.achievements.evaluate(
            Trigger.TRIP_SAVED, trip.user_id, stats, earned,
            trip_summary=trip.summary, trip_id=trip.trip_id,
        ):
            ev = AchievementEarned(new.user_id, new.achievement_code, trip.trip_id)
            if self.store.record_earned(new, [ev]):
                published.append(ev)
        return published

    def _run_challenges(self, trip: StoredTrip) -> list[Event]:
        published: list[Event] = []
        for attempt in range(1, self.max_conflict_retries + 1):
            try:
                participations = self.store.open_participations(trip.user_id)
                for update in self.challenges.advance(trip.user_id, trip.summary, participations):
                    events: list[Event] = [
                        ChallengeProgressUpdated(update.user_id, update.challenge_code, update.new_progress)
                    ]
                    if update.completed:
                        events.append(ChallengeCompleted(update.user_id, update.challenge_code))
                    if self.store.apply_participation_update(update, trip.trip_id, events):
                        published.extend(events)
                return published
            except AccumulationConflict as e:
                log(f"[outbox] challenge progress conflict for trip {trip.trip_id} "
                    f"(attempt {attempt}/{self.max_conflict_retries}): {e}")
        raise RuleEvaluationFailure(
            f"challenge progress for trip {trip.trip_id} kept conflicting"
        )
