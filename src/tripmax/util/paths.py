# tripmax/util/paths.py
from __future__ import annotations

from pathlib import Path
from shutil import which as _which
from typing import Iterable, Optional

ROUTE_SUFFIXES = (".json", ".gpx")


def ensure_dir(path: Path) -> None:
    """Ensure a directory exists."""
    path.mkdir(parents=True, exist_ok=True)


def which(cmd: str) -> Optional[str]:
    return _which(cmd)


def iter_route_files(root: Path, suffixes: Iterable[str] = ROUTE_SUFFIXES) -> list[Path]:
    """Return sorted route files (JSON payloads or GPX) found under `root`."""
    if not root.is_dir():
        return []
    wanted = {s.lower() for s in suffixes}
    return sorted(p for p in root.rglob("*") if p.is_file() and p.suffix.lower() in wanted)
