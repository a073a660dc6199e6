#!/usr/bin/env python3
"""weekly.py

Aggregate one season of daily rainfall into ISO-week sums.

A season year Y runs Oct 1 (Y) through Jan 15 (Y+1). The daily stack for that
season must hold exactly one layer per calendar day in that window, in date
order. Any other layer count means the download for that year is broken, and
the run stops with RainfallMismatchError.

Days are bucketed by their calendar ISO week number. Only the 15 season weeks
(40..52, then 1 and 2) are kept; days that fall in ISO week 39 or 53 belong to
no bucket.
"""

from __future__ import annotations

from datetime import date
from typing import Sequence

import numpy as np
import pandas as pd

from greenup.config import SEASON_END, SEASON_START, SEASON_WEEKS
from greenup.raster import Grid, Stack


class RainfallMismatchError(ValueError):
    """Daily layer count does not match the season's calendar day count."""


def season_dates(year: int) -> pd.DatetimeIndex:
    """Calendar days of season `year` (Oct 1 through Jan 15 of year + 1)."""
    start = date(year, *SEASON_START)
    end = date(year + 1, *SEASON_END)
    return pd.date_range(start, end, freq="D")


def iso_weeks(dates: pd.DatetimeIndex) -> np.ndarray:
    return dates.isocalendar()["week"].to_numpy(dtype=np.int64)


def weekly_rainfall(daily: Stack, year: int, weeks: Sequence[int] = SEASON_WEEKS) -> Stack:
    """Sum daily layers into one layer per ISO week, labelled by week number.

    Raises RainfallMismatchError if daily.count differs from the season's day
    count. NaN in any day of a week gives NaN for that week.
    """
    dates = season_dates(year)
    if daily.count != len(dates):
        raise RainfallMismatchError(
            f"Mismatch: season {year} spans {len(dates)} days "
            f"({dates[0].date()} to {dates[-1].date()}) but the daily stack has {daily.count} layers"
        )

    day_weeks = iso_weeks(dates)
    sums = [daily.data[day_weeks == w].sum(axis=0) for w in weeks]
    return daily.replace(np.stack(sums), labels=tuple(weeks))


def season_total(weekly: Stack) -> Grid:
    """Season rainfall total (sum over the weekly layers)."""
    return weekly.layer(0).replace(weekly.data.sum(axis=0))
