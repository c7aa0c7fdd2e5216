# tripmax/util/logging.py
from __future__ import annotations

import datetime
import sys


def utc_now() -> datetime.datetime:
    """Return the current time as a tz-aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def utc_now_iso() -> str:
    """Return current UTC timestamp as ISO-8601 string."""
    return utc_now().isoformat()


def log(msg: str, *, err: bool = False) -> None:
    """Print a timestamped log line (local time with timezone).

    Warnings and failures go to stderr when err=True so that CLI output
    stays pipeable.
    """
    ts = datetime.datetime.now().astimezone().isoformat(timespec="seconds")
    print(f"{ts}  {msg}", file=sys.stderr if err else sys.stdout)
