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

from greenup.geo.zones import NoValidCellsError, classify, isolate_zone, quantile_breaks, rainfall_zones
from greenup.raster import GeometryMismatchError, Grid

WGS84 = CRS.from_epsg(4326)
TRANSFORM = from_origin(22.0, -8.0, 0.1, 0.1)


def _grid(data) -> Grid:
    return Grid(data=np.asarray(data, dtype=float), transform=TRANSFORM, crs=WGS84)


def test_breaks_are_sextiles_of_valid_cells():
    data = np.arange(1.0, 37.0).reshape(6, 6)
    data[0, 0] = np.nan
    breaks = quantile_breaks(_grid(data))
    assert len(breaks) == 7
    valid = data[~np.isnan(data)]
    np.testing.assert_allclose(breaks, np.quantile(valid, [0, 1 / 6, 2 / 6, 3 / 6, 4 / 6, 5 / 6, 1]))
    assert breaks[0] == 2.0 and breaks[-1] == 36.0


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_classes_follow_bin_edges(seed):
    rng = np.random.default_rng(seed)
    data = rng.gamma(4.0, 200.0, size=(20, 20))
    data[rng.random((20, 20)) < 0.1] = np.nan
    grid = _grid(data)
    breaks = quantile_breaks(grid)
    zones = classify(grid, breaks).data

    valid = ~np.isnan(data)
    assert np.isnan(zones[~valid]).all()
    assert set(np.unique(zones[valid])) <= {1.0, 2.0, 3.0, 4.0, 5.0, 6.0}

    # class 1 is exactly [min, q1]
    np.testing.assert_array_equal(zones[valid] == 1, (data[valid] >= breaks[0]) & (data[valid] <= breaks[1]))
    # classes 2..6 are half-open above the previous break
    for k in range(2, 7):
        in_bin = (data[valid] > breaks[k - 1]) & (data[valid] <= breaks[k])
        np.testing.assert_array_equal(zones[valid] == k, in_bin)


def test_values_on_breaks_go_to_lower_class():
    breaks = np.array([0.0, 10.0, 20.0, 30.0, 40.0, 50.0, 60.0])
    zones = classify(_grid([[0.0, 10.0, 10.5], [20.0, 50.0, 60.0]]), breaks).data
    np.testing.assert_array_equal(zones, [[1, 1, 2], [2, 5, 6]])


def test_rainfall_zones_covers_all_classes():
    zones = rainfall_zones(_grid(np.arange(600.0, 1200.0, 10.0).reshape(6, 10))).data
    assert set(np.unique(zones)) == {1.0, 2.0, 3.0, 4.0, 5.0, 6.0}


def test_isolate_zone_keeps_only_that_zone():
    values = _grid([[1.0, 2.0], [3.0, 4.0]])
    zones = _grid([[1.0, 2.0], [2.0, np.nan]])
    out = isolate_zone(values, zones, 2).data
    assert np.isnan(out[0, 0]) and np.isnan(out[1, 1])
    assert out[0, 1] == 2.0 and out[1, 0] == 3.0


def test_isolate_zone_requires_matching_geometry():
    other = Grid(data=np.ones((3, 3)), transform=TRANSFORM, crs=WGS84)
    with pytest.raises(GeometryMismatchError):
        isolate_zone(_grid(np.ones((2, 2))), other, 1)


def test_breaks_need_valid_cells():
    with pytest.raises(NoValidCellsError, match="no cropland cells"):
        quantile_breaks(_grid(np.full((2, 2), np.nan)))
