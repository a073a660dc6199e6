#!/usr/bin/env python3
"""greenup.config

Shared configuration for the greenup pipeline.

Two kinds of settings live here:
- Scientific constants (season window, ISO weeks, cropland threshold,
  aggregation factor, number of rainfall zones). These are fixed for the
  analysis and are NOT read from YAML.
- Run inputs (directories, filename patterns, year range, workers), loaded
  from config/analysis.yaml.

Design notes:
- YAML loading is strict: files must exist and be valid mappings.
- All functions are pure (no side effects on import).
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml


# -----------------------------------------------------------------------------
# Analysis constants
# -----------------------------------------------------------------------------

# Growing season: Oct 1 of the season year through Jan 15 of the next year.
SEASON_START: Tuple[int, int] = (10, 1)
SEASON_END: Tuple[int, int] = (1, 15)

# ISO weeks summed into the weekly rainfall stack, in season order.
SEASON_WEEKS: Tuple[int, ...] = tuple(range(40, 53)) + (1, 2)

CROPLAND_THRESHOLD = 0.75
AGGREGATION_FACTOR = 2
N_ZONES = 6

# Labels for the two green-up CV products.
VARIANT_PIXEL_CV = "pixel_cv"
VARIANT_MEAN_AGG_CV = "mean_agg_cv"
VARIANTS: Tuple[str, ...] = (VARIANT_PIXEL_CV, VARIANT_MEAN_AGG_CV)


# -----------------------------------------------------------------------------
# YAML loading
# -----------------------------------------------------------------------------

def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return as dict.

    Raises SystemExit on missing file or invalid format (non-mapping).
    Config errors should fail fast.
    """
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise SystemExit(f"Expected YAML mapping at {path}")
    return data


# -----------------------------------------------------------------------------
# Run configuration
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class AnalysisConfig:
    greenup_dir: Path
    greenup_pattern: str
    rainfall_dir: Path
    rainfall_pattern: str
    cropland_path: Path
    start_year: int
    end_year: int
    out_dir: Path
    workers: int = 1

    @property
    def years(self) -> List[int]:
        return list(range(self.start_year, self.end_year + 1))

    def greenup_path(self, year: int) -> Path:
        return self.greenup_dir / self.greenup_pattern.format(year=year)

    def rainfall_path(self, year: int) -> Path:
        return self.rainfall_dir / self.rainfall_pattern.format(year=year)


def _require(block: Dict[str, Any], key: str, where: str) -> Any:
    value = block.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise SystemExit(f"{where} missing required key: {key}")
    return value


def _check_pattern(pattern: str, key: str) -> str:
    if "{year}" not in pattern:
        raise SystemExit(f"{key} must contain a '{{year}}' placeholder (got {pattern!r})")
    return pattern


def parse_analysis_config(data: Dict[str, Any], base_dir: Path = Path(".")) -> AnalysisConfig:
    """Build an AnalysisConfig from a parsed analysis YAML mapping.

    Expects:
        inputs:
          greenup_dir: data/greenup
          greenup_pattern: "greenup_{year}.tif"
          rainfall_dir: data/chirps_daily
          rainfall_pattern: "chirps_daily_{year}.tif"
          cropland: data/cropland_probability.tif
        years: {start: 2001, end: 2018}
        output: {dir: data/out}
        workers: 4

    Relative paths are resolved against base_dir.
    """
    inputs = data.get("inputs")
    if not isinstance(inputs, dict):
        raise SystemExit("analysis config must have an 'inputs:' mapping")
    years = data.get("years")
    if not isinstance(years, dict):
        raise SystemExit("analysis config must have a 'years:' mapping with start/end")
    output = data.get("output") or {}
    if not isinstance(output, dict):
        raise SystemExit("analysis config 'output:' must be a mapping")

    start_year = int(_require(years, "start", "years"))
    end_year = int(_require(years, "end", "years"))
    if start_year > end_year:
        raise SystemExit(f"years.start ({start_year}) must be <= years.end ({end_year})")

    workers = int(data.get("workers", 1))
    if workers < 1:
        raise SystemExit(f"workers must be >= 1 (got {workers})")

    def _path(value: Any) -> Path:
        p = Path(str(value))
        return p if p.is_absolute() else base_dir / p

    return AnalysisConfig(
        greenup_dir=_path(_require(inputs, "greenup_dir", "inputs")),
        greenup_pattern=_check_pattern(str(_require(inputs, "greenup_pattern", "inputs")), "greenup_pattern"),
        rainfall_dir=_path(_require(inputs, "rainfall_dir", "inputs")),
        rainfall_pattern=_check_pattern(str(_require(inputs, "rainfall_pattern", "inputs")), "rainfall_pattern"),
        cropland_path=_path(_require(inputs, "cropland", "inputs")),
        start_year=start_year,
        end_year=end_year,
        out_dir=_path(output.get("dir", "data/out")),
        workers=workers,
    )


def load_analysis_config(path: Path) -> AnalysisConfig:
    """Load and validate config/analysis.yaml (paths relative to the CWD)."""
    return parse_analysis_config(load_yaml(path))


# -----------------------------------------------------------------------------
# Default paths
# -----------------------------------------------------------------------------

DEFAULT_ANALYSIS_YAML = Path("config/analysis.yaml")
