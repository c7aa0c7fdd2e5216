#!/usr/bin/env python3
"""
tripmax-analyze: compute trip summaries for route files.

Accepts trip-save JSON payloads (or bare route lists) and GPX tracks. With no
file arguments, route files under the configured routes root are offered
through fzf.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional

from tripmax.analyze.histogram import distribution_minutes
from tripmax.analyze.track import TripSummary, compute_trip_summary
from tripmax.config import load_config
from tripmax.errors import InvalidPayload, TripmaxError
from tripmax.formats.gpx import read_gpx_trip
from tripmax.formats.route import format_timestamp, read_route_json
from tripmax.util.fzf import fzf_select_paths
from tripmax.util.logging import log
from tripmax.util.paths import iter_route_files

TSV_HEADER = "file\tpoints\tdistance_m\tduration_s\tavg_speed_mps\tmax_speed_mps"


def analyze_route_file(path: Path) -> TripSummary:
    suffix = path.suffix.lower()
    if suffix == ".gpx":
        request = read_gpx_trip(path)
    elif suffix == ".json":
        request = read_route_json(path)
    else:
        raise InvalidPayload(f"{path}: unsupported route file type {suffix!r}")
    return compute_trip_summary(request.route, start_time=request.start_time, end_time=request.end_time)


def print_report(path: Path, summary: TripSummary, *, tsv: bool, histogram: bool = False) -> None:
    if tsv:
        print(
            f"{path}\t"
            f"{summary.point_count}\t"
            f"{summary.distance_meters:.2f}\t"
            f"{summary.duration_seconds:.1f}\t"
            f"{summary.avg_speed:.3f}\t"
            f"{summary.max_speed:.3f}"
        )
        return

    print(f"\n{path}")
    print(f"  points        : {summary.point_count}")
    print(f"  start         : {format_timestamp(summary.start_time)}")
    print(f"  end           : {format_timestamp(summary.end_time)}")
    print(f"  distance (m)  : {summary.distance_meters:.2f}")
    print(f"  duration (s)  : {summary.duration_seconds:.1f}")
    print(f"  avg speed m/s : {summary.avg_speed:.3f}")
    print(f"  max speed m/s : {summary.max_speed:.3f}")
    if histogram:
        print("  speed distribution (km/h, minutes):")
        for row in distribution_minutes(summary.speed_histogram):
            print(f"    {row['label']:>8} : {row['minutes']:.1f}")


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="TripMax: Analyze route file(s).")
    ap.add_argument("files", nargs="*",
                    help="Route JSON or GPX file(s). If omitted, use fzf selection.")
    ap.add_argument("--routes-root", default=None,
                    help="Where to look for route files (default: from TripMax config)")
    ap.add_argument("--tsv", action="store_true",
                    help="Print tab-separated output (good for piping).")
    ap.add_argument("--histogram", action="store_true",
                    help="Include the speed distribution in the report.")
    ap.add_argument("--plot", action="store_true",
                    help="Show a speed distribution chart per file (matplotlib).")
    args = ap.parse_args(argv)

    try:
        if args.files:
            selected = [Path(f).expanduser() for f in args.files]
        else:
            if args.routes_root:
                routes_root = Path(args.routes_root).expanduser()
            else:
                routes_root = load_config().paths.routes_root
            candidates = iter_route_files(routes_root)
            if not candidates:
                log(f"No route files found under {routes_root}", err=True)
                return 1
            selected = fzf_select_paths(
                candidates,
                header="Select route file(s) to analyze:",
                multi=True,
                preview="head -c 2000 {2}",
            )
    except TripmaxError as e:
        log(f"ERROR: {e}", err=True)
        return 1

    if args.tsv:
        print(TSV_HEADER)

    failures = 0
    for path in selected:
        if not path.is_file():
            log(f"Skipping (not a file): {path}", err=True)
            failures += 1
            continue
        try:
            summary = analyze_route_file(path)
        except TripmaxError as e:
            log(f"ERROR: {path}: {e}", err=True)
            failures += 1
            continue
        print_report(path, summary, tsv=args.tsv, histogram=args.histogram)
        if args.plot:
            # imported lazily so plain reports do not need a display backend
            from tripmax.visualize.plot import plot_speed_distribution
            plot_speed_distribution(summary.speed_histogram, title=path.name)

    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
