#!/usr/bin/env python3
"""zones.py

Rainfall zonation by global quantile breaks.

The long-term mean rainfall grid (already cropland-masked) is cut into
N_ZONES classes at evenly spaced quantiles of its valid cells:

    [q0, q1] -> 1, (q1, q2] -> 2, ..., (q5, q6] -> 6

Class 1 is closed on both ends so the grid minimum is included. One set of
breaks per run; zones are then held fixed for all masking.
"""

from __future__ import annotations

import numpy as np

from greenup.config import N_ZONES
from greenup.raster import Grid, check_same_geometry


class NoValidCellsError(ValueError):
    pass


def quantile_breaks(grid: Grid, n_zones: int = N_ZONES) -> np.ndarray:
    """n_zones + 1 breakpoints at quantiles 0, 1/n, ..., 1 of the valid cells."""
    values = grid.data[grid.valid()]
    if values.size == 0:
        raise NoValidCellsError("Cannot compute quantile breaks: no cropland cells with rainfall")
    return np.quantile(values, np.linspace(0.0, 1.0, n_zones + 1))


def classify(grid: Grid, breaks: np.ndarray) -> Grid:
    """Assign each valid cell its class 1..len(breaks)-1; no-data stays NaN."""
    valid = grid.valid()
    classes = np.full(grid.shape, np.nan, dtype=np.float64)
    # right=True: bins[i-1] < x <= bins[i]; inner breaks only so x <= q1 -> 0
    idx = np.digitize(grid.data[valid], breaks[1:-1], right=True)
    classes[valid] = idx + 1
    return grid.replace(classes)


def rainfall_zones(mean_rainfall: Grid, n_zones: int = N_ZONES) -> Grid:
    return classify(mean_rainfall, quantile_breaks(mean_rainfall, n_zones))


def isolate_zone(grid: Grid, zones: Grid, zone: int) -> Grid:
    """Keep grid values only where zones == zone."""
    check_same_geometry(grid, zones)
    return grid.replace(np.where(zones.data == zone, grid.data, np.nan))
