#!/usr/bin/env python3

from __future__ import annotations

import sys
from pathlib import Path

# Ensure we can import from src without installing the package
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

import numpy as np
import pytest
from rasterio.crs import CRS
from rasterio.transform import from_origin

from greenup.geo.mask import apply_mask, cropland_mask, mask_to_cropland, threshold
from greenup.raster import GeometryMismatchError, Grid, Stack, align

WGS84 = CRS.from_epsg(4326)
TRANSFORM = from_origin(22.0, -8.0, 0.1, 0.1)


def _grid(data, transform=TRANSFORM) -> Grid:
    return Grid(data=np.asarray(data, dtype=float), transform=transform, crs=WGS84)


def test_threshold_at_075():
    prob = _grid([[0.8, 0.75], [0.7499, np.nan]])
    np.testing.assert_array_equal(threshold(prob).data, [[1.0, 1.0], [0.0, 0.0]])


def test_masked_cells_are_null_and_kept_cells_unchanged():
    values = np.array([[1.25, -3.5], [7.0, 0.1]])
    mask = _grid([[1.0, 0.0], [0.0, 1.0]])
    out = apply_mask(_grid(values), mask).data
    assert np.isnan(out[0, 1]) and np.isnan(out[1, 0])
    assert out[0, 0] == values[0, 0]
    assert out[1, 1] == values[1, 1]


def test_mask_applies_to_every_stack_layer():
    stack = Stack(data=np.ones((3, 2, 2)), transform=TRANSFORM, crs=WGS84)
    mask = _grid([[1.0, 0.0], [1.0, 1.0]])
    out = apply_mask(stack, mask)
    assert isinstance(out, Stack)
    assert np.isnan(out.data[:, 0, 1]).all()
    assert (out.data[:, 1, :] == 1.0).all()


def test_apply_mask_does_not_modify_input():
    values = np.ones((2, 2))
    grid = _grid(values)
    apply_mask(grid, _grid(np.zeros((2, 2))))
    assert (grid.data == 1.0).all()


def test_mask_with_other_geometry_is_rejected():
    mask = _grid(np.ones((2, 2)), transform=from_origin(23.0, -8.0, 0.1, 0.1))
    with pytest.raises(GeometryMismatchError):
        apply_mask(_grid(np.ones((2, 2))), mask)


def test_cropland_mask_resamples_probability_onto_target():
    # finer, larger probability grid around a 4x4 target
    prob = np.full((12, 12), 0.9)
    prob[:, 6:] = 0.2
    prob_grid = _grid(prob, transform=from_origin(21.9, -7.9, 0.05, 0.05))
    target = _grid(np.ones((4, 4)))

    mask = cropland_mask(prob_grid, target)
    assert mask.shape == (4, 4)
    assert mask.transform == target.transform
    # probability is 0.9 west of lon 22.2 and 0.2 east of it
    np.testing.assert_array_equal(mask.data[:, 0], np.ones(4))
    np.testing.assert_array_equal(mask.data[:, 3], np.zeros(4))


def test_mask_to_cropland_end_to_end():
    prob_grid = _grid(np.full((12, 12), 0.95), transform=from_origin(21.9, -7.9, 0.05, 0.05))
    target = _grid(np.arange(16, dtype=float).reshape(4, 4))
    out = mask_to_cropland(target, prob_grid)
    np.testing.assert_array_equal(out.data, target.data)


def test_align_is_noop_on_matching_geometry():
    g = _grid(np.ones((3, 3)))
    assert align(g, _grid(np.zeros((3, 3)))) is g
