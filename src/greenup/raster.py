#!/usr/bin/env python3
"""greenup.raster

Grid and stack value types plus the small amount of GeoTIFF I/O the
pipeline needs.

A Grid is a 2-D float array with NaN as no-data, an affine transform and a
CRS. A Stack is the same thing with a leading layer axis and one label per
layer (a year or an ISO week). Both are frozen: every operation returns a new
object.

Design notes:
- Everything is float64 in memory; no-data from the file is converted to NaN
  on read and written back as NaN (float32 GeoTIFF).
- Pixel-wise combination requires identical geometry. Use align() to get
  there; check_same_geometry() raises GeometryMismatchError otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np
import rasterio
from rasterio.transform import Affine
from rasterio.crs import CRS
from rasterio.warp import Resampling, reproject


class GeometryMismatchError(ValueError):
    """Raised when grids meant for pixel-wise combination differ in geometry."""


# -----------------------------------------------------------------------------
# Value types
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Grid:
    data: np.ndarray
    transform: Affine
    crs: Optional[CRS] = None

    def __post_init__(self) -> None:
        arr = np.asarray(self.data, dtype=np.float64)
        if arr.ndim != 2:
            raise ValueError(f"Grid data must be 2-D (got shape {arr.shape})")
        object.__setattr__(self, "data", arr)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape  # type: ignore[return-value]

    def replace(self, data: np.ndarray) -> "Grid":
        """Same geometry, new values."""
        return Grid(data=data, transform=self.transform, crs=self.crs)

    def valid(self) -> np.ndarray:
        return ~np.isnan(self.data)


@dataclass(frozen=True)
class Stack:
    data: np.ndarray
    transform: Affine
    crs: Optional[CRS] = None
    labels: Tuple[Any, ...] = field(default=())

    def __post_init__(self) -> None:
        arr = np.asarray(self.data, dtype=np.float64)
        if arr.ndim != 3:
            raise ValueError(f"Stack data must be 3-D (got shape {arr.shape})")
        labels = tuple(self.labels) if self.labels else tuple(range(arr.shape[0]))
        if len(labels) != arr.shape[0]:
            raise ValueError(f"{len(labels)} labels for {arr.shape[0]} layers")
        object.__setattr__(self, "data", arr)
        object.__setattr__(self, "labels", labels)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.data.shape[1:]  # type: ignore[return-value]

    @property
    def count(self) -> int:
        return self.data.shape[0]

    def layer(self, i: int) -> Grid:
        return Grid(data=self.data[i], transform=self.transform, crs=self.crs)

    def replace(self, data: np.ndarray, labels: Optional[Sequence[Any]] = None) -> "Stack":
        return Stack(
            data=data,
            transform=self.transform,
            crs=self.crs,
            labels=tuple(labels) if labels is not None else self.labels,
        )

    @classmethod
    def from_grids(cls, grids: Sequence[Grid], labels: Optional[Sequence[Any]] = None) -> "Stack":
        """Stack grids that share one geometry (in the given order)."""
        if not grids:
            raise ValueError("Cannot build a stack from zero grids")
        first = grids[0]
        for g in grids[1:]:
            check_same_geometry(first, g)
        return cls(
            data=np.stack([g.data for g in grids]),
            transform=first.transform,
            crs=first.crs,
            labels=tuple(labels) if labels is not None else (),
        )


Raster = Union[Grid, Stack]


# -----------------------------------------------------------------------------
# Geometry
# -----------------------------------------------------------------------------

def same_geometry(a: Raster, b: Raster) -> bool:
    if tuple(a.shape) != tuple(b.shape):
        return False
    if not np.allclose(tuple(a.transform)[:6], tuple(b.transform)[:6], rtol=0.0, atol=1e-9):
        return False
    return a.crs == b.crs


def check_same_geometry(a: Raster, b: Raster) -> None:
    if not same_geometry(a, b):
        raise GeometryMismatchError(
            "Grid geometry mismatch: "
            f"shape {tuple(a.shape)} vs {tuple(b.shape)}, "
            f"transform {tuple(a.transform)[:6]} vs {tuple(b.transform)[:6]}, "
            f"crs {a.crs} vs {b.crs}. Align one onto the other first."
        )


def align(src: Raster, like: Raster, resampling: Resampling = Resampling.nearest) -> Raster:
    """Reproject src onto like's grid (shape, transform, CRS).

    Returns src unchanged if the geometry already matches. Works for both
    grids and stacks; a stack keeps its labels.
    """
    if same_geometry(src, like):
        return src
    if src.crs is None or like.crs is None:
        raise GeometryMismatchError("Cannot reproject a grid without a CRS")

    height, width = like.shape
    if isinstance(src, Stack):
        dst = np.full((src.count, height, width), np.nan, dtype=np.float64)
    else:
        dst = np.full((height, width), np.nan, dtype=np.float64)

    reproject(
        source=src.data,
        destination=dst,
        src_transform=src.transform,
        src_crs=src.crs,
        src_nodata=np.nan,
        dst_transform=like.transform,
        dst_crs=like.crs,
        dst_nodata=np.nan,
        resampling=resampling,
    )

    if isinstance(src, Stack):
        return Stack(data=dst, transform=like.transform, crs=like.crs, labels=src.labels)
    return Grid(data=dst, transform=like.transform, crs=like.crs)


# -----------------------------------------------------------------------------
# GeoTIFF I/O
# -----------------------------------------------------------------------------

def read_grid(path: Path, band: int = 1) -> Grid:
    """Read one band as a Grid, with file no-data converted to NaN."""
    if not path.exists():
        raise SystemExit(f"Raster not found: {path}")
    with rasterio.open(path) as src:
        if src.crs is None:
            raise SystemExit(f"Raster has no CRS: {path}")
        data = src.read(band, masked=True).astype(np.float64).filled(np.nan)
        return Grid(data=data, transform=src.transform, crs=src.crs)


def read_stack(path: Path, labels: Optional[Sequence[Any]] = None) -> Stack:
    """Read all bands of a multi-band GeoTIFF as a Stack."""
    if not path.exists():
        raise SystemExit(f"Raster not found: {path}")
    with rasterio.open(path) as src:
        if src.crs is None:
            raise SystemExit(f"Raster has no CRS: {path}")
        data = src.read(masked=True).astype(np.float64).filled(np.nan)
        return Stack(data=data, transform=src.transform, crs=src.crs, labels=labels or ())


def _profile(r: Raster, count: int) -> dict:
    height, width = r.shape
    return dict(
        driver="GTiff",
        height=height,
        width=width,
        count=count,
        dtype="float32",
        crs=r.crs,
        transform=r.transform,
        nodata=np.nan,
        compress="deflate",
    )


def write_raster(r: Raster, path: Path) -> Path:
    """Write a Grid (1 band) or Stack (one band per layer) as float32 GeoTIFF."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = r.data[np.newaxis] if isinstance(r, Grid) else r.data
    with rasterio.open(path, "w", **_profile(r, data.shape[0])) as dst:
        dst.write(data.astype(np.float32))
        if isinstance(r, Stack):
            for i, label in enumerate(r.labels, start=1):
                dst.set_band_description(i, str(label))
    return path
