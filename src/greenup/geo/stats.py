#!/usr/bin/env python3
"""stats.py

Per-pixel temporal statistics and spatial coarsening.

- temporal_mean / temporal_cv reduce a Stack over its layer axis. Both are
  order-independent and null-propagating: a NaN in any layer gives NaN.
- coarsen() reduces non-overlapping factor x factor blocks of a Grid with a
  mean or CV reducer. Inside a block NaN cells are skipped; an all-NaN block
  stays NaN.

CV is the population standard deviation divided by the mean, and is NaN where
the mean is exactly zero.
"""

from __future__ import annotations

import warnings
from typing import Callable, Dict

import numpy as np
from rasterio.transform import Affine

from greenup.raster import Grid, Stack


def _cv(mean: np.ndarray, std: np.ndarray) -> np.ndarray:
    with np.errstate(divide="ignore", invalid="ignore"):
        cv = std / mean
    cv[mean == 0] = np.nan
    return cv


# -----------------------------------------------------------------------------
# Temporal reductions
# -----------------------------------------------------------------------------

def temporal_mean(stack: Stack) -> Grid:
    """Per-cell arithmetic mean across layers."""
    return stack.layer(0).replace(stack.data.mean(axis=0))


def temporal_cv(stack: Stack) -> Grid:
    """Per-cell coefficient of variation across layers (population stdev / mean)."""
    mean = stack.data.mean(axis=0)
    std = stack.data.std(axis=0)
    return stack.layer(0).replace(_cv(mean, std))


# -----------------------------------------------------------------------------
# Spatial coarsening
# -----------------------------------------------------------------------------

def _block_mean(blocks: np.ndarray) -> np.ndarray:
    return np.nanmean(blocks, axis=-1)


def _block_cv(blocks: np.ndarray) -> np.ndarray:
    return _cv(np.nanmean(blocks, axis=-1), np.nanstd(blocks, axis=-1))


REDUCERS: Dict[str, Callable[[np.ndarray], np.ndarray]] = {
    "mean": _block_mean,
    "cv": _block_cv,
}


def coarsen(grid: Grid, factor: int, reducer: str = "mean") -> Grid:
    """Aggregate factor x factor blocks into one cell.

    Sides that are not a multiple of factor are padded with NaN, so the last
    row/column of blocks may be partial. The returned transform has its pixel
    size multiplied by factor; the origin is unchanged.
    """
    if factor < 1:
        raise ValueError(f"factor must be >= 1 (got {factor})")
    if reducer not in REDUCERS:
        raise ValueError(f"Unknown reducer {reducer!r}; expected one of {sorted(REDUCERS)}")

    height, width = grid.shape
    out_h = -(-height // factor)
    out_w = -(-width // factor)

    padded = np.full((out_h * factor, out_w * factor), np.nan, dtype=np.float64)
    padded[:height, :width] = grid.data

    # (out_h, factor, out_w, factor) -> (out_h, out_w, factor*factor)
    blocks = padded.reshape(out_h, factor, out_w, factor).transpose(0, 2, 1, 3)
    blocks = blocks.reshape(out_h, out_w, factor * factor)

    # all-NaN blocks are expected (outside cropland); they stay NaN
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        reduced = REDUCERS[reducer](blocks)

    return Grid(
        data=reduced,
        transform=grid.transform @ Affine.scale(factor),
        crs=grid.crs,
    )
