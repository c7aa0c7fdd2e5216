"""
TripMax configuration loader

This module centralizes *all* configuration handling for TripMax.

Design goals:
- Keep entry points Unix-friendly: CLI flags override everything.
- Provide sensible defaults if no config exists.
- Allow per-machine config without committing personal paths:
    ~/.config/tripmax/config.toml
- Allow repo-local config:
    <repo_root>/config/config.toml
- Allow environment variable overrides for automation.

Precedence (highest to lowest) for any given value:
1) CLI argument (handled by each entry point)
2) Environment variables (TRIPMAX_*)
3) User config: ~/.config/tripmax/config.toml
4) Repo config: <repo_root>/config/config.toml
5) Hard defaults (~/Trips/... paths, see GamificationConfig)

This module uses Python's built-in tomllib on Python 3.11+, or `tomli` if installed.

Two sections exist today:
- [paths] / [db]     where runtime data and the SQLite store live
- [gamification]     knobs for the evaluation pipeline (cache staleness,
                     retry budgets, background worker count)

New sections should follow the same shape: a typed frozen dataclass, a
`_parse_*_section` helper, and entries in the provenance map.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from tripmax.errors import ConfigError


# ---------------------------------------------------------------------------
# TOML loading helpers
# ---------------------------------------------------------------------------
def _load_toml(path: Path) -> dict[str, Any]:
    """
    Parse a TOML file at `path`.

    Behavior:
    - If the file does not exist, return an empty dict (non-fatal).
    - If the file exists but is invalid TOML, raise a ConfigError
      with a clear, user-facing message.

    Missing config files are normal; malformed ones indicate user intent
    and should fail loudly.
    """
    if not path.is_file():
        return {}

    try:
        try:
            # Python 3.11+ standard library
            import tomllib
            return tomllib.loads(path.read_text(encoding="utf-8")) or {}
        except ModuleNotFoundError:
            import tomli
            return tomli.loads(path.read_text(encoding="utf-8")) or {}
    except (OSError, ValueError) as e:
        # TOMLDecodeError subclasses ValueError in both tomllib and tomli
        raise ConfigError(f"Failed to parse TOML config: {path} ({e})") from e


# ---------------------------------------------------------------------------
# Generic coercion helpers
# ---------------------------------------------------------------------------
def _deep_get(d: dict[str, Any], dotted_key: str) -> Any:
    """
    Fetch nested dictionary values using dot-separated keys.

    Example:
        _deep_get(cfg, "gamification.registry_ttl_seconds")

    Returns None if any part of the path is missing.
    """
    cur: Any = d
    for part in dotted_key.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return None
        cur = cur[part]
    return cur


def _as_path(v: Any) -> Optional[Path]:
    """
    Coerce a config value into a pathlib.Path if possible.

    Returns None if value cannot be interpreted as a path.
    """
    if v is None:
        return None
    if isinstance(v, Path):
        return v.expanduser()
    if isinstance(v, str):
        return Path(v).expanduser()
    return None


def _as_float(v: Any) -> Optional[float]:
    """
    Coerce a config value into a non-negative float, or None.

    Strings are accepted so environment variables behave like TOML values.
    """
    if v is None or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if f >= 0 else None


def _as_int(v: Any) -> Optional[int]:
    """Coerce a config value into a positive int, or None."""
    f = _as_float(v)
    if f is None or f < 1:
        return None
    return int(f)


def _env_path(var: str) -> Optional[Path]:
    """
    Read an environment variable and interpret it as a Path.

    Used for automation, CI, and power-user overrides.
    """
    val = os.environ.get(var)
    return Path(val).expanduser() if val else None


# ---------------------------------------------------------------------------
# Repo discovery + defaults
# ---------------------------------------------------------------------------
def find_repo_root(start: Path) -> Optional[Path]:
    """
    Walk upward from `start` looking for the TripMax repo root.

    Heuristic:
    - The presence of a `config/` directory marks the repo root
    """
    start = start.resolve()
    for p in [start] + list(start.parents):
        if (p / "config").is_dir():
            return p
    return None


def default_runtime_root() -> Path:
    """
    Default runtime root if nothing is configured.

    Route drops (_routes) and the database (_db) derive from this path
    unless explicitly overridden.
    """
    return Path.home() / "Trips"


# ---------------------------------------------------------------------------
# Typed config dataclasses
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class GamificationConfig:
    """
    Knobs for the trip evaluation pipeline.

    - registry_ttl_seconds: maximum staleness of cached rule definitions
    - stats_max_retries: optimistic-concurrency attempts for a statistics update
    - outbox_max_attempts: evaluation attempts before a task is left for inspection
    - evaluation_timeout_seconds: how long a trip save waits for background stages
      (0 = do not wait; unfinished work is picked up by the sweep)
    - worker_threads: size of the background evaluation pool
    """

    registry_ttl_seconds: float = 300.0
    stats_max_retries: int = 5
    outbox_max_attempts: int = 5
    evaluation_timeout_seconds: float = 0.0
    worker_threads: int = 2


@dataclass(frozen=True)
class TripmaxPaths:
    """
    Canonical resolved filesystem paths used by TripMax.
    """

    runtime_root: Path
    routes_root: Path
    db_root: Path
    sqlite_path: Path


@dataclass(frozen=True)
class TripmaxConfig:
    """
    Fully merged TripMax configuration.

    Attributes:
    - paths: resolved filesystem layout
    - gamification: evaluation pipeline settings
    - source: provenance map showing where each value came from
    """

    paths: TripmaxPaths
    gamification: GamificationConfig
    source: dict[str, str]


# ---------------------------------------------------------------------------
# Gamification section parsing (raw TOML -> typed values)
# ---------------------------------------------------------------------------
_GAMIFICATION_KEYS = {
    "registry_ttl_seconds": _as_float,
    "stats_max_retries": _as_int,
    "outbox_max_attempts": _as_int,
    "evaluation_timeout_seconds": _as_float,
    "worker_threads": _as_int,
}

_GAMIFICATION_ENV = {
    "TRIPMAX_REGISTRY_TTL": "registry_ttl_seconds",
    "TRIPMAX_STATS_RETRIES": "stats_max_retries",
    "TRIPMAX_OUTBOX_ATTEMPTS": "outbox_max_attempts",
    "TRIPMAX_EVAL_TIMEOUT": "evaluation_timeout_seconds",
    "TRIPMAX_WORKERS": "worker_threads",
}


def _parse_gamification_section(cfg: dict[str, Any]) -> dict[str, Any]:
    """
    Extract recognised, well-typed gamification settings from raw TOML.

    Values that fail coercion are dropped so the default applies; unknown
    keys are ignored.
    """
    section = cfg.get("gamification", {}) or {}
    if not isinstance(section, dict):
        return {}
    out: dict[str, Any] = {}
    for key, coerce in _GAMIFICATION_KEYS.items():
        v = coerce(section.get(key))
        if v is not None:
            out[key] = v
    return out


# ---------------------------------------------------------------------------
# Main config loader
# ---------------------------------------------------------------------------
def load_config(
    repo_root: Optional[Path] = None,
    repo_config_path: Optional[Path] = None,
    user_config_path: Optional[Path] = None,
) -> TripmaxConfig:
    """
    Load, merge, and normalize all TripMax configuration.

    This function is the single authoritative entry point
    for configuration access.
    """

    # Locate repo and config files
    if repo_root is None:
        repo_root = find_repo_root(Path(__file__).resolve())
    if repo_config_path is None and repo_root is not None:
        repo_config_path = repo_root / "config" / "config.toml"
    if user_config_path is None:
        user_config_path = Path.home() / ".config" / "tripmax" / "config.toml"

    repo_cfg = _load_toml(repo_config_path) if repo_config_path else {}
    user_cfg = _load_toml(user_config_path) if user_config_path else {}

    # ------------------------------------------------------------------
    # Path defaults
    # ------------------------------------------------------------------
    runtime_root = default_runtime_root()
    routes_root = runtime_root / "_routes"
    db_root = runtime_root / "_db"
    sqlite_path = db_root / "tripmax.sqlite"

    src = {
        "paths.runtime_root": "default",
        "paths.routes_root": "default",
        "paths.db_root": "default",
        "db.sqlite_path": "default",
    }

    # ------------------------------------------------------------------
    # Gamification: repo, then user, then environment
    # ------------------------------------------------------------------
    gam_values: dict[str, Any] = {}
    for key in _GAMIFICATION_KEYS:
        src[f"gamification.{key}"] = "default"

    for cfg, label, cfg_path in ((repo_cfg, "repo", repo_config_path),
                                 (user_cfg, "user", user_config_path)):
        for key, v in _parse_gamification_section(cfg).items():
            gam_values[key] = v
            src[f"gamification.{key}"] = f"{label}:{cfg_path}"

    for env, key in _GAMIFICATION_ENV.items():
        v = _GAMIFICATION_KEYS[key](os.environ.get(env))
        if v is None:
            continue
        gam_values[key] = v
        src[f"gamification.{key}"] = f"env:{env}"

    gamification = GamificationConfig(**gam_values)

    # ------------------------------------------------------------------
    # Repo + user path overrides
    # ------------------------------------------------------------------
    for cfg, label, cfg_path in ((repo_cfg, "repo", repo_config_path),
                                 (user_cfg, "user", user_config_path)):
        for k in ["paths.runtime_root", "paths.routes_root", "paths.db_root", "db.sqlite_path"]:
            v = _as_path(_deep_get(cfg, k))
            if v is None:
                continue
            if k == "paths.runtime_root":
                runtime_root = v
            elif k == "paths.routes_root":
                routes_root = v
            elif k == "paths.db_root":
                db_root = v
            elif k == "db.sqlite_path":
                sqlite_path = v
            src[k] = f"{label}:{cfg_path}"

    # Environment variable overrides (highest non-CLI precedence)
    env_map = {
        "TRIPMAX_RUNTIME_ROOT": "paths.runtime_root",
        "TRIPMAX_ROUTES_ROOT": "paths.routes_root",
        "TRIPMAX_DB_ROOT": "paths.db_root",
        "TRIPMAX_SQLITE_PATH": "db.sqlite_path",
    }

    for env, key in env_map.items():
        v = _env_path(env)
        if v is None:
            continue
        if key == "paths.runtime_root":
            runtime_root = v
        elif key == "paths.routes_root":
            routes_root = v
        elif key == "paths.db_root":
            db_root = v
        elif key == "db.sqlite_path":
            sqlite_path = v
        src[key] = f"env:{env}"

    # Derive subfolders if runtime_root changed
    if src.get("paths.routes_root") == "default":
        routes_root = runtime_root / "_routes"
    if src.get("paths.db_root") == "default":
        db_root = runtime_root / "_db"
    if src.get("db.sqlite_path") == "default":
        sqlite_path = db_root / "tripmax.sqlite"

    paths = TripmaxPaths(
        runtime_root=runtime_root.expanduser(),
        routes_root=routes_root.expanduser(),
        db_root=db_root.expanduser(),
        sqlite_path=sqlite_path.expanduser(),
    )

    return TripmaxConfig(paths=paths, gamification=gamification, source=src)
