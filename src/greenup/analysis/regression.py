#!/usr/bin/env python3
"""regression.py

Weighted regression of green-up variability on rainfall variability.

For one green-up CV product and one zone (or the whole country):
1. Take the non-null green-up cells (restricted to the zone).
2. Sample rainfall CV and cropland probability at the cell centres.
3. Drop incomplete rows.
4. Fit y = a + b*x by weighted least squares, weights = cropland probability.

The fit is closed form. With fewer than two usable rows (or no spread in x)
the line is undefined and the result carries status "insufficient data"
with NaN coefficients.

run_regressions() iterates country + each zone over both products and returns
one tidy table; side_by_side() pivots it so the two products can be compared.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd
from rasterio.warp import transform as warp_transform
from scipy import stats

from greenup.config import N_ZONES
from greenup.geo.zones import isolate_zone
from greenup.raster import Grid

STATUS_OK = "ok"
STATUS_INSUFFICIENT = "insufficient data"

COUNTRY = "country"

SAMPLE_COLUMNS = ["greenup", "rainfall", "weight"]


@dataclass(frozen=True)
class FitResult:
    zone: str
    variant: str
    n: int
    slope: float = np.nan
    intercept: float = np.nan
    slope_se: float = np.nan
    t_value: float = np.nan
    p_value: float = np.nan
    r2: float = np.nan
    status: str = STATUS_OK

    @property
    def defined(self) -> bool:
        return self.status == STATUS_OK


# -----------------------------------------------------------------------------
# Sample table
# -----------------------------------------------------------------------------

def sample_at(grid: Grid, xs: np.ndarray, ys: np.ndarray, crs=None) -> np.ndarray:
    """Value of grid at each (x, y); NaN outside the grid.

    Coordinates are in `crs` (defaults to the grid's own CRS).
    """
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    out = np.full(xs.shape, np.nan, dtype=np.float64)
    if xs.size == 0:
        return out

    if crs is not None and grid.crs is not None and crs != grid.crs:
        xs, ys = (np.asarray(v) for v in warp_transform(crs, grid.crs, xs, ys))

    cols_f, rows_f = ~grid.transform @ (xs, ys)
    rows = np.floor(rows_f).astype(np.int64)
    cols = np.floor(cols_f).astype(np.int64)
    height, width = grid.shape
    inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)
    out[inside] = grid.data[rows[inside], cols[inside]]
    return out


def sample_table(greenup: Grid, rainfall: Grid, weight: Grid) -> gpd.GeoDataFrame:
    """One point per non-null green-up cell, with co-located rainfall and weight.

    Incomplete rows are kept; callers drop them before fitting.
    """
    rows, cols = np.nonzero(greenup.valid())
    xs, ys = greenup.transform @ (cols + 0.5, rows + 0.5)
    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)

    return gpd.GeoDataFrame(
        {
            "greenup": greenup.data[rows, cols],
            "rainfall": sample_at(rainfall, xs, ys, crs=greenup.crs),
            "weight": sample_at(weight, xs, ys, crs=greenup.crs),
        },
        geometry=gpd.points_from_xy(xs, ys),
        crs=greenup.crs,
    )


# -----------------------------------------------------------------------------
# Weighted least squares
# -----------------------------------------------------------------------------

def fit_wls(x: Sequence[float], y: Sequence[float], w: Sequence[float], *, zone: str = COUNTRY,
            variant: str = "") -> FitResult:
    """Closed-form weighted OLS of y on x.

    Significance uses the slope's t statistic with (n_w - 2) degrees of
    freedom, n_w being the number of rows with positive weight. R² is the
    weighted coefficient of determination. Rows with a non-finite x, y or
    weight are dropped and not counted in n.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    w = np.asarray(w, dtype=np.float64)
    keep = np.isfinite(x) & np.isfinite(y) & np.isfinite(w)
    x, y, w = x[keep], y[keep], w[keep]
    n = int(x.size)
    n_w = int((w > 0).sum())

    sw = w.sum()
    if n_w < 2 or sw <= 0:
        return FitResult(zone=zone, variant=variant, n=n, status=STATUS_INSUFFICIENT)

    x_mean = (w * x).sum() / sw
    y_mean = (w * y).sum() / sw
    sxx = (w * (x - x_mean) ** 2).sum()
    if sxx <= 0:
        return FitResult(zone=zone, variant=variant, n=n, status=STATUS_INSUFFICIENT)

    sxy = (w * (x - x_mean) * (y - y_mean)).sum()
    slope = sxy / sxx
    intercept = y_mean - slope * x_mean

    resid = y - (intercept + slope * x)
    sse = (w * resid ** 2).sum()
    syy = (w * (y - y_mean) ** 2).sum()
    r2 = 1.0 - sse / syy if syy > 0 else np.nan

    se = t_value = p_value = np.nan
    dof = n_w - 2
    if dof > 0:
        se = float(np.sqrt(sse / dof / sxx))
        with np.errstate(divide="ignore", invalid="ignore"):
            t_value = slope / se
        p_value = float(2.0 * stats.t.sf(abs(t_value), dof))

    return FitResult(
        zone=zone,
        variant=variant,
        n=n,
        slope=float(slope),
        intercept=float(intercept),
        slope_se=se,
        t_value=float(t_value),
        p_value=p_value,
        r2=float(r2),
    )


# -----------------------------------------------------------------------------
# Zone regressions
# -----------------------------------------------------------------------------

def zone_label(zone: Optional[int]) -> str:
    return COUNTRY if zone is None else str(zone)


def fit_zone(
    greenup: Grid,
    rainfall_cv: Grid,
    cropland_prob: Grid,
    zones: Grid,
    zone: Optional[int],
    variant: str,
) -> FitResult:
    """Regress one green-up product on rainfall CV within one zone.

    zone=None means the whole country.
    """
    if zone is not None:
        greenup = isolate_zone(greenup, zones, zone)
    table = sample_table(greenup, rainfall_cv, cropland_prob).dropna(subset=SAMPLE_COLUMNS)
    return fit_wls(
        table["rainfall"].to_numpy(),
        table["greenup"].to_numpy(),
        table["weight"].to_numpy(),
        zone=zone_label(zone),
        variant=variant,
    )


def run_regressions(
    products: Dict[str, Grid],
    rainfall_cv: Grid,
    cropland_prob: Grid,
    zones: Grid,
    n_zones: int = N_ZONES,
) -> pd.DataFrame:
    """Fit every (product, zone) pair: country first, then zones 1..n_zones."""
    results: List[FitResult] = []
    for variant, greenup in products.items():
        for zone in [None] + list(range(1, n_zones + 1)):
            results.append(fit_zone(greenup, rainfall_cv, cropland_prob, zones, zone, variant))
    return pd.DataFrame([asdict(r) for r in results])


def side_by_side(report: pd.DataFrame) -> pd.DataFrame:
    """Pivot the report to one row per zone, one column block per product."""
    order = list(dict.fromkeys(report["zone"]))
    wide = report.pivot(index="zone", columns="variant", values=["n", "slope", "r2", "p_value", "status"])
    return wide.reindex(order)
