# tripmax/sql/store.py
"""
SQLite-backed store for trips, statistics and gamification state.

This is the storage boundary the pipeline relies on for correctness:

- trips:               PRIMARY KEY trip_id; a resubmitted trip is rejected
- user_statistics:     optimistic concurrency on `version`; the update and
                       the trip's `stats_applied` flag commit together, so a
                       trip is folded into the totals at most once
- earned_achievements: UNIQUE (user_id, achievement_code), INSERT OR IGNORE
- challenge progress:  a (challenge, user, trip) contribution key, so a trip
                       moves a participation at most once
- evaluation_tasks:    outbox rows written with the trip, consumed by the
                       evaluation worker

Every public method opens its own short-lived connection, so a Store can be
shared across threads.
"""

from __future__ import annotations

import datetime as dt
import json
import random
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from tripmax.analyze.histogram import SpeedHistogram
from tripmax.analyze.track import TripSummary
from tripmax.errors import AccumulationConflict, DatabaseError, DuplicateTripError
from tripmax.formats.route import TripRequest, format_timestamp, parse_timestamp
from tripmax.gamify.achievements import NewlyEarnedAchievement
from tripmax.gamify.challenges import (
    JOINED,
    TERMINAL_STATES,
    ChallengeParticipation,
    ParticipationUpdate,
)
from tripmax.pipeline.events import Event
from tripmax.rules.definitions import (
    AchievementDefinition,
    ChallengeDefinition,
    achievement_from_dict,
    challenge_from_dict,
)
from tripmax.stats.accumulator import UserStatistics, apply_trip
from tripmax.util.logging import log, utc_now_iso
from tripmax.util.paths import ensure_dir

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

STAGE_ACHIEVEMENTS = "achievements"
STAGE_CHALLENGES = "challenges"
STAGES = (STAGE_ACHIEVEMENTS, STAGE_CHALLENGES)

TASK_PENDING = "pending"
TASK_DONE = "done"
TASK_FAILED = "failed"


def connect(db_path: Path, *, timeout: float = 30.0) -> sqlite3.Connection:
    ensure_dir(db_path.parent)
    # isolation_level=None: transactions are opened explicitly with BEGIN IMMEDIATE
    conn = sqlite3.connect(str(db_path), timeout=timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def ensure_schema(conn: sqlite3.Connection, schema_path: Path = SCHEMA_PATH) -> None:
    conn.executescript(schema_path.read_text(encoding="utf-8"))


@dataclass(frozen=True)
class StoredTrip:
    trip_id: str
    user_id: str
    vehicle_id: Optional[str]
    summary: TripSummary
    stats_applied: bool


@dataclass(frozen=True)
class EvaluationTask:
    trip_id: str
    stage: str
    user_id: str
    attempts: int = 0


class Store:
    """SQLite-backed persistence. Every call opens its own connection, so db_path must be a file."""

    def __init__(self, db_path: Path, *, schema_path: Path = SCHEMA_PATH):
        self.db_path = Path(db_path).expanduser()
        if str(db_path) == ":memory:":
            raise DatabaseError("In-memory databases are not supported; each operation opens a new connection")
        with self._connection() as conn:
            ensure_schema(conn, schema_path)

    # ------------------------------------------------------------------
    # connection helpers
    # ------------------------------------------------------------------
    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = connect(self.db_path)
        except sqlite3.Error as e:
            raise DatabaseError(f"Cannot open {self.db_path}: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise DatabaseError(str(e)) from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    @staticmethod
    def _insert_events(conn: sqlite3.Connection, events: Iterable[Event]) -> None:
        for ev in events:
            conn.execute(
                "INSERT INTO events (event_type, user_id, payload_json, created_utc) VALUES (?,?,?,?)",
                (ev.event_type, ev.user_id, json.dumps(ev.to_dict()), ev.created_utc),
            )

    # ------------------------------------------------------------------
    # trips
    # ------------------------------------------------------------------
    def save_trip(
        self,
        trip_id: str,
        user_id: str,
        request: TripRequest,
        summary: TripSummary,
        events: Iterable[Event] = (),
    ) -> None:
        """Insert a trip and enqueue its evaluation stages in one transaction."""
        now = utc_now_iso()
        with self._transaction() as conn:
            try:
                conn.execute(
                    """INSERT INTO trips (
                           trip_id, user_id, vehicle_id, start_time, end_time,
                           distance_m, duration_s, avg_speed, max_speed,
                           summary_json, route_json, tags_json, description,
                           is_public, created_utc
                         ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)""",
                    (
                        trip_id,
                        str(user_id),
                        request.vehicle_id,
                        format_timestamp(summary.start_time),
                        format_timestamp(summary.end_time),
                        summary.distance_meters,
                        summary.duration_seconds,
                        summary.avg_speed,
                        summary.max_speed,
                        json.dumps(summary.to_dict()),
                        json.dumps([p.to_dict() for p in request.route]),
                        json.dumps(list(request.tags)),
                        request.description,
                        int(bool(request.is_public)),
                        now,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise DuplicateTripError(f"Trip {trip_id} already exists") from e

            conn.execute(
                "INSERT OR IGNORE INTO user_statistics (user_id, updated_utc) VALUES (?, ?)",
                (str(user_id), now),
            )
            for stage in STAGES:
                conn.execute(
                    """INSERT INTO evaluation_tasks (trip_id, stage, user_id, enqueued_utc)
                         VALUES (?,?,?,?)""",
                    (trip_id, stage, str(user_id), now),
                )
            self._insert_events(conn, events)

    def get_trip(self, trip_id: str) -> Optional[StoredTrip]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT trip_id, user_id, vehicle_id, summary_json, stats_applied FROM trips WHERE trip_id = ?",
                (trip_id,),
            ).fetchone()
        if row is None:
            return None
        return StoredTrip(
            trip_id=row["trip_id"],
            user_id=row["user_id"],
            vehicle_id=row["vehicle_id"],
            summary=TripSummary.from_dict(json.loads(row["summary_json"])),
            stats_applied=bool(row["stats_applied"]),
        )

    def get_trip_summary(self, trip_id: str) -> Optional[TripSummary]:
        trip = self.get_trip(trip_id)
        return trip.summary if trip else None

    def trip_histograms(self, user_id: str) -> list[SpeedHistogram]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT summary_json FROM trips WHERE user_id = ? ORDER BY start_time",
                (str(user_id),),
            ).fetchall()
        return [SpeedHistogram.from_list(json.loads(r["summary_json"])["speedHistogram"]) for r in rows]

    def pending_statistics_trips(self, limit: int = 100) -> list[tuple[str, str]]:
        """(user_id, trip_id) pairs whose statistics were never folded in."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT user_id, trip_id FROM trips WHERE stats_applied = 0 ORDER BY created_utc LIMIT ?",
                (limit,),
            ).fetchall()
        return [(r["user_id"], r["trip_id"]) for r in rows]

    # ------------------------------------------------------------------
    # statistics
    # ------------------------------------------------------------------
    def get_statistics(self, user_id: str) -> UserStatistics:
        stats, _ = self._read_statistics(str(user_id))
        return stats

    def _read_statistics(self, user_id: str) -> tuple[UserStatistics, int]:
        with self._connection() as conn:
            row = conn.execute(
                """SELECT total_distance, total_time, total_tracks, top_speed, avg_speed, version
                     FROM user_statistics WHERE user_id = ?""",
                (user_id,),
            ).fetchone()
        if row is None:
            return UserStatistics(), -1
        return (
            UserStatistics(
                total_distance=row["total_distance"],
                total_time=row["total_time"],
                total_tracks=int(row["total_tracks"]),
                top_speed=row["top_speed"],
                avg_speed=row["avg_speed"],
            ),
            int(row["version"]),
        )

    def apply_trip_statistics(self, user_id: str, trip_id: str, *, max_retries: int = 5) -> UserStatistics:
        """
        Fold a stored trip into the user's statistics.

        Optimistic read-modify-write: read totals + version, compute with
        apply_trip, write back only if the version is unchanged. A lost race
        re-reads and tries again, up to `max_retries` attempts.
        """
        user_id = str(user_id)
        trip = self.get_trip(trip_id)
        if trip is None:
            raise DatabaseError(f"Trip {trip_id} not found")
        if trip.user_id != user_id:
            raise DatabaseError(f"Trip {trip_id} does not belong to user {user_id}")

        for attempt in range(1, max_retries + 1):
            current, version = self._read_statistics(user_id)
            updated = apply_trip(current, trip.summary)
            with self._transaction() as conn:
                applied = conn.execute(
                    "SELECT stats_applied FROM trips WHERE trip_id = ?", (trip_id,)
                ).fetchone()["stats_applied"]
                if applied:
                    # Someone else (a retry sweep) already folded this trip in.
                    return self._read_statistics_in(conn, user_id)

                if version < 0:
                    cur = conn.execute(
                        """INSERT OR IGNORE INTO user_statistics (
                               user_id, total_distance, total_time, total_tracks,
                               top_speed, avg_speed, version, updated_utc
                             ) VALUES (?,?,?,?,?,?,1,?)""",
                        (user_id, updated.total_distance, updated.total_time, updated.total_tracks,
                         updated.top_speed, updated.avg_speed, utc_now_iso()),
                    )
                else:
                    cur = conn.execute(
                        """UPDATE user_statistics
                             SET total_distance = ?, total_time = ?, total_tracks = ?,
                                 top_speed = ?, avg_speed = ?, version = version + 1,
                                 updated_utc = ?
                             WHERE user_id = ? AND version = ?""",
                        (updated.total_distance, updated.total_time, updated.total_tracks,
                         updated.top_speed, updated.avg_speed, utc_now_iso(), user_id, version),
                    )
                if cur.rowcount == 1:
                    conn.execute("UPDATE trips SET stats_applied = 1 WHERE trip_id = ?", (trip_id,))
                    return updated

            log(f"[stats] version conflict for user {user_id} (attempt {attempt}/{max_retries})")
            time.sleep(random.uniform(0.001, 0.01) * attempt)

        raise AccumulationConflict(
            f"Statistics update for user {user_id}, trip {trip_id} lost {max_retries} races"
        )

    @staticmethod
    def _read_statistics_in(conn: sqlite3.Connection, user_id: str) -> UserStatistics:
        row = conn.execute(
            """SELECT total_distance, total_time, total_tracks, top_speed, avg_speed
                 FROM user_statistics WHERE user_id = ?""",
            (user_id,),
        ).fetchone()
        if row is None:
            return UserStatistics()
        return UserStatistics(row["total_distance"], row["total_time"], int(row["total_tracks"]),
                              row["top_speed"], row["avg_speed"])

    # ------------------------------------------------------------------
    # rule definitions
    # ------------------------------------------------------------------
    def upsert_achievement_definition(self, defn: AchievementDefinition) -> None:
        with self._transaction() as conn:
            conn.execute(
                """INSERT INTO achievement_definitions (code, definition_json, updated_utc)
                     VALUES (?,?,?)
                     ON CONFLICT(code) DO UPDATE SET
                       definition_json = excluded.definition_json,
                       updated_utc = excluded.updated_utc""",
                (defn.code, json.dumps(defn.to_dict()), utc_now_iso()),
            )

    def upsert_challenge_definition(self, defn: ChallengeDefinition) -> None:
        with self._transaction() as conn:
            conn.execute(
                """INSERT INTO challenge_definitions (code, definition_json, updated_utc)
                     VALUES (?,?,?)
                     ON CONFLICT(code) DO UPDATE SET
                       definition_json = excluded.definition_json,
                       updated_utc = excluded.updated_utc""",
                (defn.code, json.dumps(defn.to_dict()), utc_now_iso()),
            )

    def load_achievement_definitions(self) -> list[AchievementDefinition]:
        with self._connection() as conn:
            rows = conn.execute("SELECT definition_json FROM achievement_definitions ORDER BY code").fetchall()
        return [achievement_from_dict(json.loads(r["definition_json"])) for r in rows]

    def load_challenge_definitions(self) -> list[ChallengeDefinition]:
        with self._connection() as conn:
            rows = conn.execute("SELECT definition_json FROM challenge_definitions ORDER BY code").fetchall()
        return [challenge_from_dict(json.loads(r["definition_json"])) for r in rows]

    # ------------------------------------------------------------------
    # achievements
    # ------------------------------------------------------------------
    def earned_codes(self, user_id: str) -> set[str]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT achievement_code FROM earned_achievements WHERE user_id = ?", (str(user_id),)
            ).fetchall()
        return {r["achievement_code"] for r in rows}

    def record_earned(self, earned: NewlyEarnedAchievement, events: Iterable[Event] = ()) -> bool:
        """Record an earned achievement; False if the user already had it."""
        with self._transaction() as conn:
            cur = conn.execute(
                """INSERT OR IGNORE INTO earned_achievements (user_id, achievement_code, earned_at, trip_id)
                     VALUES (?,?,?,?)""",
                (str(earned.user_id), earned.achievement_code,
                 format_timestamp(earned.earned_at), earned.triggering_trip_id),
            )
            if cur.rowcount != 1:
                return False
            self._insert_events(conn, events)
            return True

    # ------------------------------------------------------------------
    # challenges
    # ------------------------------------------------------------------
    def join_challenge(self, challenge_code: str, user_id: str, *, now: Optional[dt.datetime] = None) -> ChallengeParticipation:
        joined_at = format_timestamp(now) if now else utc_now_iso()
        with self._transaction() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO challenge_participations (challenge_code, user_id, status, joined_at)
                     VALUES (?,?,?,?)""",
                (challenge_code, str(user_id), JOINED, joined_at),
            )
            row = conn.execute(
                "SELECT * FROM challenge_participations WHERE challenge_code = ? AND user_id = ?",
                (challenge_code, str(user_id)),
            ).fetchone()
        return self._participation(row)

    @staticmethod
    def _participation(row: sqlite3.Row) -> ChallengeParticipation:
        return ChallengeParticipation(
            challenge_code=row["challenge_code"],
            user_id=row["user_id"],
            progress=row["progress"],
            status=row["status"],
            joined_at=parse_timestamp(row["joined_at"]),
            completed_at=parse_timestamp(row["completed_at"]),
        )

    def participations_for_user(self, user_id: str) -> list[ChallengeParticipation]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM challenge_participations WHERE user_id = ? ORDER BY challenge_code",
                (str(user_id),),
            ).fetchall()
        return [self._participation(r) for r in rows]

    def open_participations(self, user_id: Optional[str] = None) -> list[ChallengeParticipation]:
        """Non-terminal participations, for one user or (sweep) for everyone."""
        placeholders = ",".join("?" for _ in TERMINAL_STATES)
        sql = f"SELECT * FROM challenge_participations WHERE status NOT IN ({placeholders})"
        params: list[Any] = list(TERMINAL_STATES)
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(str(user_id))
        with self._connection() as conn:
            rows = conn.execute(sql + " ORDER BY challenge_code", params).fetchall()
        return [self._participation(r) for r in rows]

    def apply_participation_update(
        self,
        update: ParticipationUpdate,
        trip_id: Optional[str] = None,
        events: Iterable[Event] = (),
    ) -> bool:
        """
        Persist a participation transition.

        Returns False when it has no effect: the trip already contributed to
        this challenge, or the participation is already terminal. Raises
        AccumulationConflict when progress moved underneath us (another trip
        for the same user landed first); the caller retries from fresh state.
        """
        placeholders = ",".join("?" for _ in TERMINAL_STATES)
        with self._transaction() as conn:
            if trip_id is not None:
                cur = conn.execute(
                    """INSERT OR IGNORE INTO challenge_contributions (challenge_code, user_id, trip_id, amount)
                         VALUES (?,?,?,?)""",
                    (update.challenge_code, str(update.user_id), trip_id,
                     update.new_progress - update.old_progress),
                )
                if cur.rowcount != 1:
                    return False

            cur = conn.execute(
                f"""UPDATE challenge_participations
                      SET progress = ?, status = ?, completed_at = ?, updated_utc = ?
                      WHERE challenge_code = ? AND user_id = ? AND progress = ?
                        AND status NOT IN ({placeholders})""",
                (update.new_progress, update.status, format_timestamp(update.completed_at), utc_now_iso(),
                 update.challenge_code, str(update.user_id), update.old_progress, *TERMINAL_STATES),
            )
            if cur.rowcount == 1:
                self._insert_events(conn, events)
                return True

            row = conn.execute(
                "SELECT status FROM challenge_participations WHERE challenge_code = ? AND user_id = ?",
                (update.challenge_code, str(update.user_id)),
            ).fetchone()
            if row is None or row["status"] in TERMINAL_STATES:
                # Leave no contribution behind for a participation that cannot move.
                conn.execute(
                    "DELETE FROM challenge_contributions WHERE challenge_code = ? AND user_id = ? AND trip_id = ?",
                    (update.challenge_code, str(update.user_id), trip_id),
                )
                return False

            # Raised inside the transaction so the contribution row rolls back too.
            raise AccumulationConflict(
                f"Participation {update.challenge_code}/{update.user_id} changed during evaluation"
            )

    # ------------------------------------------------------------------
    # evaluation outbox
    # ------------------------------------------------------------------
    def pending_tasks(self, *, limit: int = 100, max_attempts: int = 5) -> list[EvaluationTask]:
        with self._connection() as conn:
            rows = conn.execute(
                """SELECT trip_id, stage, user_id, attempts FROM evaluation_tasks
                     WHERE status = ? AND attempts < ?
                     ORDER BY enqueued_utc, trip_id, stage LIMIT ?""",
                (TASK_PENDING, max_attempts, limit),
            ).fetchall()
        return [EvaluationTask(r["trip_id"], r["stage"], r["user_id"], int(r["attempts"])) for r in rows]

    def task_status(self, trip_id: str, stage: str) -> Optional[str]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT status FROM evaluation_tasks WHERE trip_id = ? AND stage = ?", (trip_id, stage)
            ).fetchone()
        return row["status"] if row else None

    def mark_task_done(self, trip_id: str, stage: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                """UPDATE evaluation_tasks SET status = ?, last_error = NULL, updated_utc = ?
                     WHERE trip_id = ? AND stage = ?""",
                (TASK_DONE, utc_now_iso(), trip_id, stage),
            )

    def mark_task_failed(self, trip_id: str, stage: str, error: str, *, max_attempts: int = 5) -> int:
        """Record a failed attempt; returns the new attempt count."""
        with self._transaction() as conn:
            conn.execute(
                """UPDATE evaluation_tasks
                     SET attempts = attempts + 1, last_error = ?, updated_utc = ?,
                         status = CASE WHEN attempts + 1 >= ? THEN ? ELSE status END
                     WHERE trip_id = ? AND stage = ?""",
                (error[:2000], utc_now_iso(), max_attempts, TASK_FAILED, trip_id, stage),
            )
            row = conn.execute(
                "SELECT attempts FROM evaluation_tasks WHERE trip_id = ? AND stage = ?", (trip_id, stage)
            ).fetchone()
        return int(row["attempts"]) if row else 0

    # ------------------------------------------------------------------
    # events
    # ------------------------------------------------------------------
    def events(self, user_id: Optional[str] = None, event_type: Optional[str] = None) -> list[dict[str, Any]]:
        sql = "SELECT event_type, user_id, payload_json, created_utc FROM events WHERE 1=1"
        params: list[Any] = []
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(str(user_id))
        if event_type is not None:
            sql += " AND event_type = ?"
            params.append(event_type)
        with self._connection() as conn:
            rows = conn.execute(sql + " ORDER BY event_id", params).fetchall()
        return [
            {"type": r["event_type"], "userId": r["user_id"],
             "payload": json.loads(r["payload_json"]), "createdUtc": r["created_utc"]}
            for r in rows
        ]

    # ------------------------------------------------------------------
    # analytics
    # ------------------------------------------------------------------
    def stats_by_vehicle(self, user_id: str) -> list[dict[str, Any]]:
        """Per-vehicle totals for one user (trips without a vehicle group under None)."""
        with self._connection() as conn:
            rows = conn.execute(
                """SELECT vehicle_id,
                          COUNT(*)        AS total_tracks,
                          SUM(distance_m) AS total_distance,
                          SUM(duration_s) AS total_time,
                          MAX(max_speed)  AS top_speed
                     FROM trips
                     WHERE user_id = ?
                     GROUP BY vehicle_id
                     ORDER BY total_distance DESC""",
                (str(user_id),),
            ).fetchall()
        out = []
        for r in rows:
            total_time = r["total_time"] or 0.0
            out.append({
                "vehicleId": r["vehicle_id"],
                "totalTracks": int(r["total_tracks"]),
                "totalDistance": r["total_distance"] or 0.0,
                "totalTime": total_time,
                "topSpeed": r["top_speed"] or 0.0,
                "avgSpeed": (r["total_distance"] or 0.0) / total_time if total_time > 0 else 0.0,
            })
        return out

    def trip_trends(
        self,
        user_id: str,
        *,
        period: str = "weekly",
        metric: str = "distance",
        now: Optional[dt.datetime] = None,
    ) -> list[dict[str, Any]]:
        """
        Sum a metric per week (last 12 weeks) or per month (last 12 months).

        Weeks are labelled %Y-%U (Sunday-first week of year).
        """
        if period not in ("weekly", "monthly"):
            raise ValueError(f"Unknown period {period!r}")
        if metric not in ("distance", "duration", "count"):
            raise ValueError(f"Unknown metric {metric!r}")

        now = now or dt.datetime.now(dt.timezone.utc)
        if period == "monthly":
            start = now.replace(year=now.year - 1, day=1, hour=0, minute=0, second=0, microsecond=0)
            fmt = "%Y-%m"
        else:
            start = now - dt.timedelta(weeks=12)
            fmt = "%Y-%U"

        with self._connection() as conn:
            rows = conn.execute(
                "SELECT start_time, distance_m, duration_s FROM trips WHERE user_id = ?",
                (str(user_id),),
            ).fetchall()

        buckets: dict[str, float] = {}
        for r in rows:
            started = parse_timestamp(r["start_time"])
            if started is None or started < start:
                continue
            key = started.strftime(fmt)
            value = {"distance": r["distance_m"], "duration": r["duration_s"], "count": 1}[metric]
            buckets[key] = buckets.get(key, 0.0) + value
        return [{"period": k, "value": buckets[k]} for k in sorted(buckets)]

    def heatmap_points(self, user_id: str, limit: int = 100) -> list[dict[str, Any]]:
        """Start and end coordinates of the user's most recent trips, newest first."""
        if limit <= 0:
            return []
        with self._connection() as conn:
            rows = conn.execute(
                """SELECT trip_id, route_json FROM trips
                     WHERE user_id = ?
                     ORDER BY start_time DESC, created_utc DESC
                     LIMIT ?""",
                (str(user_id), int(limit)),
            ).fetchall()
        out = []
        for r in rows:
            route = json.loads(r["route_json"])
            if not route:
                continue
            first, last = route[0], route[-1]
            out.append({
                "tripId": r["trip_id"],
                "start": {"lat": first["lat"], "lng": first["lng"]},
                "end": {"lat": last["lat"], "lng": last["lng"]},
            })
        return out
