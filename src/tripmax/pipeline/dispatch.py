# tripmax/pipeline/dispatch.py
"""
Background execution of evaluation tasks.

The two stages of a trip (achievements, challenges) are independent and run
concurrently on a small thread pool. Callers may wait for them with a
timeout; anything unfinished stays pending in the outbox for the sweep.
"""

from __future__ import annotations

import concurrent.futures as cf
from typing import Iterable, Optional

from tripmax.pipeline.outbox import EvaluationWorker
from tripmax.sql.store import EvaluationTask
from tripmax.util.logging import log


class EvaluationDispatcher:
    def __init__(self, worker: EvaluationWorker, *, max_workers: int = 2):
        self.worker = worker
        self._pool = cf.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="tripmax-eval")

    def submit(self, tasks: Iterable[EvaluationTask]) -> list[cf.Future]:
        return [self._pool.submit(self.worker.process, t) for t in tasks]

    def wait(self, futures: list[cf.Future], timeout: Optional[float] = None) -> bool:
        """True if every future finished within `timeout` seconds."""
        if not futures:
            return True
        done, not_done = cf.wait(futures, timeout=timeout)
        if not_done:
            log(f"[dispatch] {len(not_done)} evaluation task(s) still running after {timeout}s; "
                "left for the sweep")
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "EvaluationDispatcher":
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown(wait=True)
