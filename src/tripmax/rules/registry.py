# tripmax/rules/registry.py
"""
In-memory cache of achievement and challenge definitions.

Definitions change rarely (admin edits), but both engines read them on every
trip. The registry serves an immutable snapshot and reloads it once it is
older than `ttl_seconds`, or on the next read after invalidate().
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from tripmax.rules.definitions import AchievementDefinition, ChallengeDefinition
from tripmax.util.logging import log

AchievementLoader = Callable[[], Iterable[AchievementDefinition]]
ChallengeLoader = Callable[[], Iterable[ChallengeDefinition]]


@dataclass(frozen=True)
class RuleSnapshot:
    achievements: tuple[AchievementDefinition, ...]
    challenges: dict[str, ChallengeDefinition]
    loaded_at: float


class RuleRegistry:
    def __init__(
        self,
        load_achievements: AchievementLoader,
        load_challenges: ChallengeLoader,
        *,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._load_achievements = load_achievements
        self._load_challenges = load_challenges
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._snapshot: Optional[RuleSnapshot] = None

    def invalidate(self) -> None:
        """Drop the cached snapshot; the next read reloads."""
        with self._lock:
            self._snapshot = None

    def snapshot(self) -> RuleSnapshot:
        with self._lock:
            snap = self._snapshot
            if snap is None or self._clock() - snap.loaded_at >= self._ttl:
                snap = RuleSnapshot(
                    achievements=tuple(self._load_achievements()),
                    challenges={c.code: c for c in self._load_challenges()},
                    loaded_at=self._clock(),
                )
                self._snapshot = snap
                log(f"Rule registry loaded {len(snap.achievements)} achievement(s), "
                    f"{len(snap.challenges)} challenge(s)")
            return snap

    def achievements(self) -> tuple[AchievementDefinition, ...]:
        return self.snapshot().achievements

    def challenges(self) -> tuple[ChallengeDefinition, ...]:
        return tuple(self.snapshot().challenges.values())

    def challenge(self, code: str) -> Optional[ChallengeDefinition]:
        return self.snapshot().challenges.get(code)


def static_registry(
    achievements: Iterable[AchievementDefinition] = (),
    challenges: Iterable[ChallengeDefinition] = (),
) -> RuleRegistry:
    """A registry over fixed definitions (never goes stale)."""
    a, c = tuple(achievements), tuple(challenges)
    return RuleRegistry(lambda: a, lambda: c, ttl_seconds=float("inf"))
