#!/usr/bin/env python3
"""mask.py

Cropland masking.

The cropland-probability grid is reprojected onto each target's geometry,
thresholded into a 0/1 mask, and used to null every non-cropland cell of the
target. Mask and target must share geometry when the mask is applied.
"""

from __future__ import annotations

from typing import TypeVar

import numpy as np
from rasterio.warp import Resampling

from greenup.config import CROPLAND_THRESHOLD
from greenup.raster import Grid, Stack, align, check_same_geometry

R = TypeVar("R", Grid, Stack)


def threshold(prob: Grid, cutoff: float = CROPLAND_THRESHOLD) -> Grid:
    """prob >= cutoff -> 1, else 0. No-data probability counts as 0."""
    data = np.where(prob.valid(), prob.data, -np.inf)
    mask = np.where(data >= cutoff, 1.0, 0.0)
    return prob.replace(mask)


def cropland_mask(prob: Grid, like: Grid | Stack, cutoff: float = CROPLAND_THRESHOLD) -> Grid:
    """Binary cropland mask on like's geometry.

    Bilinear resampling of the probability grid, then threshold.
    """
    aligned = align(prob, like, resampling=Resampling.bilinear)
    return threshold(aligned, cutoff)


def apply_mask(target: R, mask: Grid) -> R:
    """Null every cell of target where mask is not 1.

    Works on a Grid or on every layer of a Stack. Cells where the mask is 1
    are returned unchanged.
    """
    check_same_geometry(target, mask)
    keep = mask.data == 1
    data = np.where(keep, target.data, np.nan)
    return target.replace(data)


def mask_to_cropland(target: R, prob: Grid, cutoff: float = CROPLAND_THRESHOLD) -> R:
    """Reproject, threshold and apply the cropland mask in one step."""
    return apply_mask(target, cropland_mask(prob, target, cutoff))
