import datetime as dt
import threading

import pytest

from tripmax.config import GamificationConfig
from tripmax.errors import DatabaseError, InvalidDuration, InvalidPayload
from tripmax.pipeline.ingest import TripPipeline
from tripmax.pipeline.sweep import run_sweep
from tripmax.rules.registry import RuleRegistry
from tripmax.sql.store import EvaluationTask, Store


@pytest.fixture
def pipeline(store):
    p = TripPipeline(store, background=False)
    p.seed_defaults()
    yield p
    p.close()


@pytest.fixture
def long_trip(make_payload):
    # three points 0.45 degrees apart (~100 km), an hour, 30 m/s throughout
    return make_payload([30.0, 30.0, 30.0], step_s=1800.0, dlat=0.45)


def test_save_trip_end_to_end(pipeline, long_trip):
    seen = []
    pipeline.subscribe(seen.append)

    saved = pipeline.save_trip("u1", long_trip)

    assert saved.evaluated
    assert saved.statistics.total_tracks == 1
    assert saved.summary.distance_meters > 100_000
    assert pipeline.store.earned_codes("u1") == {"DISTANCE_10KM", "DISTANCE_100KM", "SPEED_100KPH"}

    types = [e.event_type for e in seen]
    assert types[0] == "TripSaved"
    assert types.count("AchievementEarned") == 3
    assert pipeline.store.pending_tasks() == []


def test_validation_errors_save_nothing(pipeline, make_payload):
    with pytest.raises(InvalidPayload):
        pipeline.save_trip("u1", {"route": "nope"})

    payload = make_payload([10.0, 10.0])
    payload["route"][1]["timestamp"] = None
    with pytest.raises(InvalidDuration):
        pipeline.save_trip("u1", payload)

    assert pipeline.statistics("u1").total_tracks == 0
    assert pipeline.store.events("u1") == []


def test_concurrent_saves_for_one_user(store, make_payload):
    pipeline = TripPipeline(store, background=False, settings=GamificationConfig(stats_max_retries=10))
    errors = []

    def run(i):
        try:
            pipeline.save_trip("u1", make_payload([10.0, 10.0, 10.0]), trip_id=f"t{i}")
        except Exception as e:  # surfaced to the assertion below
            errors.append(e)

    threads = [threading.Thread(target=run, args=(i,)) for i in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    stats = pipeline.statistics("u1")
    assert stats.total_tracks == 2
    assert stats.total_distance == pytest.approx(2 * store.get_trip("t0").summary.distance_meters)
    assert stats.avg_speed == pytest.approx(stats.total_distance / stats.total_time)


def test_evaluation_failure_is_isolated_and_retried(store, long_trip):
    broken = {"on": True}

    def load_achievements():
        if broken["on"]:
            raise RuntimeError("definitions unavailable")
        return store.load_achievement_definitions()

    registry = RuleRegistry(load_achievements, store.load_challenge_definitions, ttl_seconds=0)
    pipeline = TripPipeline(store, registry=registry, background=False)

    saved = pipeline.save_trip("u1", long_trip, trip_id="t1")
    assert not saved.evaluated
    assert store.get_trip("t1") is not None
    assert saved.statistics.total_tracks == 1
    # the challenge stage had no participations to evaluate, so only achievements is left
    [task] = store.pending_tasks()
    assert (task.stage, task.attempts) == ("achievements", 1)
    assert store.earned_codes("u1") == set()

    broken["on"] = False
    pipeline.seed_defaults()
    result = run_sweep(pipeline)
    assert result.tasks_done == 1
    assert result.tasks_failed == 0
    assert "DISTANCE_100KM" in store.earned_codes("u1")

    # re-running a finished stage changes nothing
    before = store.events("u1", "AchievementEarned")
    assert pipeline.worker.process(EvaluationTask("t1", "achievements", "u1"))
    assert store.events("u1", "AchievementEarned") == before


def test_challenge_progress_is_idempotent_per_trip(pipeline, long_trip, t0):
    pipeline.define_challenge({
        "challengeCode": "spring_1000k",
        "type": "distance",
        "goal": 1_000_000,
        "startTime": t0 - dt.timedelta(days=1),
        "endTime": t0 + dt.timedelta(days=30),
    })
    pipeline.join_challenge("SPRING_1000K", "u1", now=t0)

    saved = pipeline.save_trip("u1", long_trip, trip_id="t1")
    [p] = pipeline.store.participations_for_user("u1")
    assert p.progress == pytest.approx(saved.summary.distance_meters)

    assert pipeline.worker.process(EvaluationTask("t1", "challenges", "u1"))
    [p] = pipeline.store.participations_for_user("u1")
    assert p.progress == pytest.approx(saved.summary.distance_meters)


def test_challenge_completion_and_expiry(pipeline, long_trip, t0):
    pipeline.define_challenge({
        "challengeCode": "M50", "type": "distance", "goal": 50_000,
        "startTime": t0 - dt.timedelta(days=1), "endTime": t0 + dt.timedelta(days=1),
    })
    pipeline.define_challenge({
        "challengeCode": "TRACKS5", "type": "track_count", "goal": 5,
        "startTime": t0 - dt.timedelta(days=1), "endTime": t0 + dt.timedelta(days=1),
    })
    pipeline.join_challenge("M50", "u1", now=t0)
    pipeline.join_challenge("TRACKS5", "u1", now=t0)

    pipeline.save_trip("u1", long_trip)
    parts = {p.challenge_code: p for p in pipeline.store.participations_for_user("u1")}
    assert parts["M50"].status == "completed"
    assert parts["M50"].progress == 50_000
    assert parts["M50"].completed_at is not None
    assert parts["TRACKS5"].progress == 1
    assert len(pipeline.store.events("u1", "ChallengeCompleted")) == 1

    result = run_sweep(pipeline, now=t0 + dt.timedelta(days=2))
    assert result.expired == 1
    parts = {p.challenge_code: p for p in pipeline.store.participations_for_user("u1")}
    assert parts["TRACKS5"].status == "expired_incomplete"
    assert parts["M50"].status == "completed"


def test_join_unknown_challenge(pipeline):
    with pytest.raises(InvalidPayload):
        pipeline.join_challenge("NOPE", "u1")


@pytest.mark.parametrize(
    "start_days, end_days, active",
    [(-30, -20, True), (5, 30, True), (-1, 30, False)],
    ids=["expired", "upcoming", "inactive"],
)
def test_join_rejects_closed_challenges(pipeline, t0, start_days, end_days, active):
    pipeline.define_challenge({
        "challengeCode": "CLOSED", "type": "distance", "goal": 1000,
        "startTime": t0 + dt.timedelta(days=start_days),
        "endTime": t0 + dt.timedelta(days=end_days),
        "isActive": active,
    })
    with pytest.raises(InvalidPayload):
        pipeline.join_challenge("CLOSED", "u1", now=t0)
    assert pipeline.store.participations_for_user("u1") == []


def test_profile_evaluation(pipeline, make_payload):
    for i in range(10):
        pipeline.save_trip("u1", make_payload([5.0, 5.0]), trip_id=f"t{i}")
    assert "TRACKS_10" in pipeline.store.earned_codes("u1")
    assert pipeline.evaluate_profile("u1") == []


def test_profile_evaluation_awards_missing(store):
    pipeline = TripPipeline(store, background=False)
    with store._transaction() as conn:
        conn.execute(
            "INSERT INTO user_statistics (user_id, total_tracks, version) VALUES ('u9', 12, 1)"
        )
    pipeline.seed_defaults()
    new = pipeline.evaluate_profile("u9")
    assert [n.achievement_code for n in new] == ["TRACKS_10"]
    assert pipeline.evaluate_profile("u9") == []


def test_speed_distribution(pipeline, make_payload):
    pipeline.save_trip("u1", make_payload([10.0, 10.0], step_s=60.0))    # 36 km/h
    pipeline.save_trip("u1", make_payload([10.0, 30.0], step_s=120.0))   # 108 km/h
    rows = pipeline.speed_distribution("u1")
    assert [r["label"] for r in rows][0] == "0-50"
    assert rows[0]["minutes"] == 1.0
    assert rows[2]["minutes"] == 2.0
    assert pipeline.speed_distribution("nobody")[0]["minutes"] == 0.0


def test_background_dispatch(tmp_path, long_trip):
    store = Store(tmp_path / "bg.sqlite")
    with TripPipeline(store, settings=GamificationConfig(worker_threads=2)) as pipeline:
        pipeline.seed_defaults()
        saved = pipeline.save_trip("u1", long_trip, timeout=30)
    assert saved.evaluated
    assert "DISTANCE_100KM" in store.earned_codes("u1")


def test_unmarkable_task_does_not_fail_trip_save(pipeline, store, long_trip, monkeypatch):
    def locked(trip_id, stage):
        raise DatabaseError("database is locked")

    monkeypatch.setattr(store, "mark_task_done", locked)
    saved = pipeline.save_trip("u1", long_trip, trip_id="t1")

    assert not saved.evaluated
    assert store.get_trip("t1") is not None
    # the stage work is committed, only the bookkeeping is left for the sweep
    assert "DISTANCE_100KM" in store.earned_codes("u1")
    assert len(store.pending_tasks()) == 2


def test_unrecordable_failure_does_not_fail_trip_save(store, long_trip, monkeypatch):
    def load_achievements():
        raise RuntimeError("definitions unavailable")

    def locked(trip_id, stage, error, *, max_attempts=5):
        raise DatabaseError("database is locked")

    registry = RuleRegistry(load_achievements, store.load_challenge_definitions, ttl_seconds=0)
    pipeline = TripPipeline(store, registry=registry, background=False)
    monkeypatch.setattr(store, "mark_task_failed", locked)

    saved = pipeline.save_trip("u1", long_trip, trip_id="t1")
    assert not saved.evaluated
    assert store.get_trip("t1") is not None
    [task] = store.pending_tasks()
    assert (task.stage, task.attempts) == ("achievements", 0)
