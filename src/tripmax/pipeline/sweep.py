#!/usr/bin/env python3
"""
tripmax-sweep: finish work the trip-save path left behind.

Order matters:
  1) re-apply statistics for trips saved without them
  2) drain pending evaluation tasks (achievement stages need step 1)
  3) expire participations whose challenge window has closed

Safe to run repeatedly and concurrently with live trip saves.
"""

from __future__ import annotations

import argparse
import datetime as dt
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from tripmax.config import load_config
from tripmax.errors import AccumulationConflict, TripmaxError
from tripmax.pipeline.ingest import TripPipeline
from tripmax.util.logging import log


@dataclass
class SweepResult:
    stats_applied: int = 0
    stats_conflicts: int = 0
    tasks_done: int = 0
    tasks_failed: int = 0
    expired: int = 0


def run_sweep(pipeline: TripPipeline, *, limit: int = 100, now: Optional[dt.datetime] = None) -> SweepResult:
    store = pipeline.store
    settings = pipeline.settings
    result = SweepResult()

    for user_id, trip_id in store.pending_statistics_trips(limit):
        try:
            store.apply_trip_statistics(user_id, trip_id, max_retries=settings.stats_max_retries)
            result.stats_applied += 1
        except AccumulationConflict as e:
            log(f"[sweep] {e}", err=True)
            result.stats_conflicts += 1

    for task in store.pending_tasks(limit=limit, max_attempts=settings.outbox_max_attempts):
        if pipeline.worker.process(task):
            result.tasks_done += 1
        else:
            result.tasks_failed += 1

    for update in pipeline.worker.challenges.expire(store.open_participations(), now):
        try:
            if store.apply_participation_update(update):
                result.expired += 1
        except AccumulationConflict as e:
            # Progress moved since we read it; the next sweep sees the new value.
            log(f"[sweep] {e}", err=True)

    log(f"[sweep] stats applied={result.stats_applied} conflicts={result.stats_conflicts} "
        f"tasks done={result.tasks_done} failed={result.tasks_failed} expired={result.expired}")
    return result


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="TripMax: retry pending statistics/evaluations and expire challenges.")
    ap.add_argument("--db", default=None,
                    help="SQLite database (default: from TripMax config)")
    ap.add_argument("--seed", action="store_true",
                    help="Upsert the default achievement definitions first.")
    ap.add_argument("--limit", type=int, default=100,
                    help="Maximum trips/tasks to handle per step (default: 100)")
    args = ap.parse_args(argv)

    try:
        cfg = load_config()
        db_path = Path(args.db).expanduser() if args.db else None
        with TripPipeline.from_config(cfg, db_path=db_path, background=False) as pipeline:
            if args.seed:
                pipeline.seed_defaults()
            result = run_sweep(pipeline, limit=args.limit)
    except TripmaxError as e:
        log(f"ERROR: {e}", err=True)
        return 1

    return 0 if result.stats_conflicts == 0 and result.tasks_failed == 0 else 2


if __name__ == "__main__":
    raise SystemExit(main())
