#!/usr/bin/env python3

from __future__ import annotations

import statistics
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

from greenup.geo.stats import coarsen, temporal_cv, temporal_mean
from greenup.raster import Grid, Stack

WGS84 = CRS.from_epsg(4326)
TRANSFORM = from_origin(22.0, -8.0, 0.05, 0.05)


def _stack(data) -> Stack:
    return Stack(data=np.asarray(data, dtype=float), transform=TRANSFORM, crs=WGS84)


def _grid(data) -> Grid:
    return Grid(data=np.asarray(data, dtype=float), transform=TRANSFORM, crs=WGS84)


def test_cv_is_population_stdev_over_mean():
    rng = np.random.default_rng(7)
    data = rng.uniform(280, 340, size=(18, 3, 4))
    cv = temporal_cv(_stack(data)).data
    for r in range(3):
        for c in range(4):
            values = list(data[:, r, c])
            expected = statistics.pstdev(values) / statistics.fmean(values)
            assert cv[r, c] == pytest.approx(expected, rel=1e-12)


def test_mean_and_cv_ignore_layer_order():
    rng = np.random.default_rng(11)
    data = rng.uniform(1, 50, size=(18, 5, 5))
    shuffled = data[rng.permutation(18)]
    np.testing.assert_allclose(temporal_mean(_stack(shuffled)).data, temporal_mean(_stack(data)).data, rtol=1e-12)
    np.testing.assert_allclose(temporal_cv(_stack(shuffled)).data, temporal_cv(_stack(data)).data, rtol=1e-12)


def test_constant_stack_has_mean_value_and_zero_cv():
    data = np.full((18, 3, 3), 5.0)
    np.testing.assert_array_equal(temporal_mean(_stack(data)).data, np.full((3, 3), 5.0))
    np.testing.assert_array_equal(temporal_cv(_stack(data)).data, np.zeros((3, 3)))


def test_zero_mean_gives_nodata_cv():
    zeros = np.zeros((18, 3, 3))
    assert np.isnan(temporal_cv(_stack(zeros)).data).all()

    # mean zero with non-zero spread is still undefined
    data = np.zeros((2, 1, 1))
    data[0, 0, 0], data[1, 0, 0] = -1.0, 1.0
    assert np.isnan(temporal_cv(_stack(data)).data[0, 0])


def test_nodata_propagates():
    data = np.full((4, 2, 2), 3.0)
    data[2, 0, 1] = np.nan
    mean = temporal_mean(_stack(data)).data
    cv = temporal_cv(_stack(data)).data
    assert np.isnan(mean[0, 1]) and np.isnan(cv[0, 1])
    assert mean[1, 1] == 3.0 and cv[1, 1] == 0.0


def test_output_keeps_geometry():
    out = temporal_cv(_stack(np.ones((3, 2, 4))))
    assert out.shape == (2, 4)
    assert out.transform == TRANSFORM
    assert out.crs == WGS84


def test_coarsen_mean_blocks_and_transform():
    grid = _grid(np.arange(16, dtype=float).reshape(4, 4))
    out = coarsen(grid, 2, "mean")
    np.testing.assert_allclose(out.data, [[2.5, 4.5], [10.5, 12.5]])
    assert out.transform.a == pytest.approx(0.1)
    assert out.transform.e == pytest.approx(-0.1)
    assert (out.transform.c, out.transform.f) == (TRANSFORM.c, TRANSFORM.f)


@pytest.mark.filterwarnings("error::PendingDeprecationWarning", "error::DeprecationWarning")
def test_coarsen_composes_transform_without_warnings():
    out = coarsen(_grid(np.ones((4, 6))), 2, "mean")
    assert (out.transform.a, out.transform.e) == pytest.approx((0.1, -0.1))


def test_coarsen_cv_reducer():
    grid = _grid([[1.0, 3.0], [1.0, 3.0]])
    out = coarsen(grid, 2, "cv")
    # mean 2, population stdev 1
    assert out.data[0, 0] == pytest.approx(0.5)


def test_coarsen_skips_nodata_and_pads_partial_blocks():
    data = np.array([
        [1.0, np.nan, 5.0],
        [3.0, 2.0, 7.0],
        [np.nan, np.nan, 9.0],
    ])
    out = coarsen(_grid(data), 2, "mean")
    assert out.shape == (2, 2)
    assert out.data[0, 0] == pytest.approx(2.0)
    assert out.data[0, 1] == pytest.approx(6.0)
    assert np.isnan(out.data[1, 0])
    assert out.data[1, 1] == pytest.approx(9.0)


def test_coarsen_cv_zero_mean_block_is_nodata():
    out = coarsen(_grid([[0.0, 0.0], [0.0, 0.0]]), 2, "cv")
    assert np.isnan(out.data[0, 0])


def test_coarsen_rejects_unknown_reducer():
    with pytest.raises(ValueError):
        coarsen(_grid(np.ones((2, 2))), 2, "median")
