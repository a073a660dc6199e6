#!/usr/bin/env python3
"""pipeline.py

Wire the stages together:

  daily rainfall --(per season, parallel)--> weekly sums --> weekly CV, season total
                                                   |
                      long-term weekly CV  <-------+-------> long-term mean rainfall --> zones
  green-up stack --> pixel CV / mean-then-CV --> coarsen --> align to rainfall grid
                                                   |
                                 regressions (country + zones) x (2 products)

Every stage takes values and returns new values; nothing is reassigned in
place. analyse() is the in-memory core; run_pipeline() adds file loading and
writing around it for the CLI.
"""

from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from greenup.analysis.regression import run_regressions, side_by_side
from greenup.config import (
    AGGREGATION_FACTOR,
    N_ZONES,
    VARIANT_MEAN_AGG_CV,
    VARIANT_PIXEL_CV,
    VARIANTS,
    AnalysisConfig,
)
from greenup.geo.mask import mask_to_cropland
from greenup.geo.stats import coarsen, temporal_cv, temporal_mean
from greenup.geo.zones import classify, quantile_breaks
from greenup.rainfall.weekly import season_total, weekly_rainfall
from greenup.raster import Grid, Stack, align, read_grid, read_stack, write_raster


# -----------------------------------------------------------------------------
# Rainfall
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class SeasonRainfall:
    year: int
    weekly_cv: Grid
    total: Grid


@dataclass(frozen=True)
class RainfallClimatology:
    years: Tuple[int, ...]
    weekly_cv: Grid
    mean_rainfall: Grid


def season_rainfall(daily: Stack, year: int, cropland_prob: Grid) -> SeasonRainfall:
    """Weekly sums for one season, cropland-masked, reduced to CV and total."""
    weekly = mask_to_cropland(weekly_rainfall(daily, year), cropland_prob)
    return SeasonRainfall(year=year, weekly_cv=temporal_cv(weekly), total=season_total(weekly))


def _season_rainfall_from_file(path: Path, year: int, cropland_prob: Grid) -> SeasonRainfall:
    # top-level so the process pool can pickle it
    return season_rainfall(read_stack(path), year, cropland_prob)


def combine_seasons(seasons: Sequence[SeasonRainfall]) -> RainfallClimatology:
    """Average per-season grids in ascending year order."""
    if not seasons:
        raise ValueError("No seasons to combine")
    ordered = sorted(seasons, key=lambda s: s.year)
    years = tuple(s.year for s in ordered)
    return RainfallClimatology(
        years=years,
        weekly_cv=temporal_mean(Stack.from_grids([s.weekly_cv for s in ordered], labels=years)),
        mean_rainfall=temporal_mean(Stack.from_grids([s.total for s in ordered], labels=years)),
    )


def rainfall_climatology(
    daily_paths: Dict[int, Path],
    cropland_prob: Grid,
    workers: int = 1,
) -> RainfallClimatology:
    """Process every season file, in parallel when workers > 1.

    Any RainfallMismatchError aborts the whole run.
    """
    years = sorted(daily_paths)
    seasons: List[SeasonRainfall] = []

    if workers <= 1:
        for year in years:
            seasons.append(_season_rainfall_from_file(daily_paths[year], year, cropland_prob))
            print(f"[RAIN] season {year} done")
        return combine_seasons(seasons)

    with ProcessPoolExecutor(max_workers=workers) as ex:
        futures = {
            ex.submit(_season_rainfall_from_file, daily_paths[year], year, cropland_prob): year
            for year in years
        }
        try:
            for fut in as_completed(futures):
                seasons.append(fut.result())
                print(f"[RAIN] season {futures[fut]} done")
        except BaseException:
            for fut in futures:
                fut.cancel()
            raise

    return combine_seasons(seasons)


# -----------------------------------------------------------------------------
# Green-up
# -----------------------------------------------------------------------------

def load_greenup_stack(paths: Dict[int, Path]) -> Stack:
    """One green-up grid per year, stacked in year order (geometry must match)."""
    years = sorted(paths)
    return Stack.from_grids([read_grid(paths[y]) for y in years], labels=years)


def greenup_products(
    greenup: Stack,
    cropland_prob: Grid,
    like: Grid,
    factor: int = AGGREGATION_FACTOR,
) -> Dict[str, Grid]:
    """Both green-up CV products, coarsened and aligned onto like's grid.

    pixel_cv:    CV per pixel over years, coarsened with the mean reducer.
    mean_agg_cv: mean per pixel over years, coarsened with the CV reducer.
    """
    masked = mask_to_cropland(greenup, cropland_prob)
    pixel_cv = coarsen(temporal_cv(masked), factor, "mean")
    mean_agg_cv = coarsen(temporal_mean(masked), factor, "cv")
    return {
        VARIANT_PIXEL_CV: align(pixel_cv, like),
        VARIANT_MEAN_AGG_CV: align(mean_agg_cv, like),
    }


# -----------------------------------------------------------------------------
# Core analysis
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalysisResult:
    products: Dict[str, Grid]
    climatology: RainfallClimatology
    mean_rainfall: Grid
    breaks: np.ndarray
    zones: Grid
    report: pd.DataFrame


def analyse(
    greenup: Stack,
    climatology: RainfallClimatology,
    cropland_prob: Grid,
    n_zones: int = N_ZONES,
    factor: int = AGGREGATION_FACTOR,
) -> AnalysisResult:
    mean_rainfall = mask_to_cropland(climatology.mean_rainfall, cropland_prob)
    breaks = quantile_breaks(mean_rainfall, n_zones)
    zones = classify(mean_rainfall, breaks)

    products = greenup_products(greenup, cropland_prob, like=climatology.weekly_cv, factor=factor)
    report = run_regressions(products, climatology.weekly_cv, cropland_prob, zones, n_zones)

    return AnalysisResult(
        products=products,
        climatology=climatology,
        mean_rainfall=mean_rainfall,
        breaks=breaks,
        zones=zones,
        report=report,
    )


# -----------------------------------------------------------------------------
# File-level runner (used by the CLI)
# -----------------------------------------------------------------------------

def product_paths(out_dir: Path) -> Dict[str, Path]:
    paths = {variant: out_dir / f"greenup_{variant}.tif" for variant in VARIANTS}
    paths["weekly_cv"] = out_dir / "rainfall_weekly_cv.tif"
    paths["mean_rainfall"] = out_dir / "rainfall_mean.tif"
    paths["zones"] = out_dir / "rainfall_zones.tif"
    return paths


def check_products_writable(out_dir: Path, overwrite: bool = False) -> None:
    existing = [p for p in product_paths(out_dir).values() if p.exists()]
    if existing and not overwrite:
        raise SystemExit(f"Products already exist: {', '.join(map(str, existing))} (use --overwrite)")


def write_products(result: AnalysisResult, out_dir: Path, overwrite: bool = False) -> List[Path]:
    check_products_writable(out_dir, overwrite)
    paths = product_paths(out_dir)

    grids = dict(result.products)
    grids["weekly_cv"] = result.climatology.weekly_cv
    grids["mean_rainfall"] = result.mean_rainfall
    grids["zones"] = result.zones
    return [write_raster(grids[key], path) for key, path in paths.items()]


def run_pipeline(
    cfg: AnalysisConfig,
    *,
    write_grids: bool = False,
    report_csv: Optional[Path] = None,
    overwrite: bool = False,
) -> AnalysisResult:
    """Load inputs from cfg, run the analysis, write the regression report."""
    if write_grids:
        check_products_writable(cfg.out_dir, overwrite)

    cropland_prob = read_grid(cfg.cropland_path)

    print(f"[RAIN] {len(cfg.years)} seasons {cfg.start_year}-{cfg.end_year} (workers={cfg.workers})")
    climatology = rainfall_climatology(
        {y: cfg.rainfall_path(y) for y in cfg.years},
        cropland_prob,
        workers=cfg.workers,
    )

    print(f"[GREENUP] loading {len(cfg.years)} green-up grids from {cfg.greenup_dir}")
    greenup = load_greenup_stack({y: cfg.greenup_path(y) for y in cfg.years})

    result = analyse(greenup, climatology, cropland_prob)
    print(f"[ZONES] breaks: {', '.join(f'{b:.1f}' for b in result.breaks)}")

    report_csv = report_csv or cfg.out_dir / "regressions.csv"
    report_csv.parent.mkdir(parents=True, exist_ok=True)
    result.report.to_csv(report_csv, index=False)
    print(f"[REGRESS] wrote {len(result.report)} fits -> {report_csv}")

    if write_grids:
        for p in write_products(result, cfg.out_dir, overwrite=overwrite):
            print(f"  - {p}")

    with pd.option_context("display.width", 160, "display.max_columns", None):
        print(side_by_side(result.report))

    return result
