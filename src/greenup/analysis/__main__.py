#!/usr/bin/env python3
"""greenup.analysis

Command-line runner for the green-up / rainfall variability analysis.

Subcommands:
- weekly-rainfall → aggregate one season of daily rainfall into ISO-week sums
- run             → full pipeline, writes the regression report
- verify          → check that every configured input file exists

Design notes:
- Run inputs come from config/analysis.yaml (see greenup.config)
- Scientific constants are fixed in greenup.config, not CLI flags
- Lazy-imports the numerical modules to keep CLI startup fast
- All subcommands support --dry-run for safe exploration

Examples:
  # Check inputs for the configured year range
  python -m greenup.analysis verify

  # One season of weekly rainfall
  python -m greenup.analysis weekly-rainfall --year 2010

  # Everything, including intermediate product grids
  python -m greenup.analysis run --write-products
"""

from __future__ import annotations

import argparse
import json
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from greenup.config import DEFAULT_ANALYSIS_YAML, load_analysis_config


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for greenup.analysis.

    Structure:
    - Global args: apply to all subcommands (--config, --dry-run, etc.)
    - Subcommands: one per operation
    """
    ap = argparse.ArgumentParser(
        prog="greenup.analysis",
        description="Planting-date variability vs. rainfall variability",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    # --- Global args ---
    ap.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_ANALYSIS_YAML,
        help=f"Path to analysis YAML (default: {DEFAULT_ANALYSIS_YAML})",
    )
    ap.add_argument(
        "--dry-run",
        action="store_true",
        help="Print planned actions without reading rasters or writing files",
    )
    ap.add_argument(
        "--overwrite",
        action="store_true",
        help="Overwrite existing output files",
    )

    # --- Subcommands ---
    sub = ap.add_subparsers(dest="command", required=True)

    # --- weekly-rainfall ---
    weekly = sub.add_parser(
        "weekly-rainfall",
        help="Aggregate one season of daily rainfall into ISO-week sums",
        description="""
Sum the daily rainfall layers of one season (Oct 1 - Jan 15) into the 15
season ISO weeks (40..52, 1, 2) and write a 15-band GeoTIFF.

The daily file must hold exactly one band per calendar day of the season.
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    weekly.add_argument("--year", type=int, required=True, help="Season year (season starts Oct 1 of this year)")
    weekly.add_argument("--out", type=Path, default=None, help="Output GeoTIFF (default: <out_dir>/weekly/rain_weekly_<year>.tif)")

    # --- run ---
    run = sub.add_parser(
        "run",
        help="Run the full analysis and write the regression report",
        description="""
Run every stage:
1. Weekly rainfall per season, cropland-masked, reduced to weekly CV
2. Long-term mean weekly CV and long-term mean rainfall
3. Rainfall zones from quantile breaks of mean rainfall
4. Both green-up CV products (pixel CV, mean-then-aggregated CV)
5. Weighted regressions for the country and each zone
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run.add_argument("--report-csv", type=Path, default=None, help="Report path (default: <out_dir>/regressions.csv)")
    run.add_argument("--write-products", action="store_true", help="Also write intermediate product GeoTIFFs")
    run.add_argument("--workers", type=int, default=None, help="Override worker count from the config")

    # --- verify ---
    ver = sub.add_parser("verify", help="Check that every configured input exists")
    ver.add_argument("--json", action="store_true", help="Emit JSON to stdout")

    return ap


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _handle_weekly_rainfall(args: argparse.Namespace) -> int:
    cfg = load_analysis_config(args.config)
    src = cfg.rainfall_path(args.year)
    out = args.out or cfg.out_dir / "weekly" / f"rain_weekly_{args.year}.tif"

    if out.exists() and not args.overwrite:
        print(f"[SKIP] {out}")
        return 0

    if args.dry_run:
        print("[dry-run] Would aggregate weekly rainfall:")
        print(f"  Daily input: {src}")
        print(f"  Output: {out}")
        return 0

    from greenup.rainfall.weekly import RainfallMismatchError, weekly_rainfall
    from greenup.raster import read_stack, write_raster

    try:
        weekly = weekly_rainfall(read_stack(src), args.year)
    except RainfallMismatchError as e:
        raise SystemExit(str(e)) from e
    write_raster(weekly, out)
    print(f"[RAIN] season {args.year}: {weekly.count} weeks -> {out}")
    return 0


def _handle_run(args: argparse.Namespace) -> int:
    cfg = load_analysis_config(args.config)
    if args.workers is not None:
        if args.workers < 1:
            raise SystemExit(f"--workers must be >= 1 (got {args.workers})")
        cfg = replace(cfg, workers=args.workers)

    report_csv = args.report_csv or cfg.out_dir / "regressions.csv"
    if report_csv.exists() and not args.overwrite:
        raise SystemExit(f"Report already exists: {report_csv} (use --overwrite)")

    if args.dry_run:
        print("[dry-run] Would run the analysis:")
        print(f"  Seasons: {cfg.start_year}-{cfg.end_year} ({len(cfg.years)})")
        print(f"  Green-up: {cfg.greenup_dir}/{cfg.greenup_pattern}")
        print(f"  Rainfall: {cfg.rainfall_dir}/{cfg.rainfall_pattern}")
        print(f"  Cropland: {cfg.cropland_path}")
        print(f"  Report: {report_csv}")
        print(f"  Workers: {cfg.workers}")
        return 0

    from greenup.analysis.pipeline import run_pipeline
    from greenup.geo.zones import NoValidCellsError
    from greenup.rainfall.weekly import RainfallMismatchError
    from greenup.raster import GeometryMismatchError

    try:
        run_pipeline(cfg, write_grids=args.write_products, report_csv=report_csv, overwrite=args.overwrite)
    except (RainfallMismatchError, GeometryMismatchError, NoValidCellsError) as e:
        raise SystemExit(str(e)) from e
    return 0


def _handle_verify(args: argparse.Namespace) -> int:
    cfg = load_analysis_config(args.config)

    expected = [("cropland", None, cfg.cropland_path)]
    for year in cfg.years:
        expected.append(("greenup", year, cfg.greenup_path(year)))
        expected.append(("rainfall", year, cfg.rainfall_path(year)))

    missing = [(kind, year, str(p)) for kind, year, p in expected if not p.exists()]
    ok = not missing

    if args.json:
        print(json.dumps({
            "ok": ok,
            "checked": len(expected),
            "missing": [{"kind": k, "year": y, "path": p} for k, y, p in missing],
        }, indent=2))
    else:
        for kind, year, p in missing:
            label = f"{kind} {year}" if year is not None else kind
            print(f"[MISSING] {label}: {p}")
        print(f"Checked {len(expected)} inputs; {len(missing)} missing")
        print(f"Overall: {'OK' if ok else 'NOT OK'}")
    return 0 if ok else 2


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for greenup.analysis CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)

    handlers = {
        "weekly-rainfall": _handle_weekly_rainfall,
        "run": _handle_run,
        "verify": _handle_verify,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
