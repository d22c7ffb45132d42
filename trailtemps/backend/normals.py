"""365-slot daily normals from archive daily max/min series.

Slot `i` is day `i` of the non-leap reference year 2021 (slot 0 = Jan 1).
Feb 29 observations never contribute; a Feb 29 lookup reads Mar 1's slot.

Two profile modes:
- annual:   mean of every observation on that calendar day
- smoothed: mean over a +/- `window_days` calendar window (wraps Dec 31 <-> Jan 1)
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

log = logging.getLogger('pipeline.normals')

REFERENCE_YEAR = 2021
DAYS_PER_PROFILE = 365
# Sparse-coverage warning below this many filled slots (about 90%).
COVERAGE_WARN_MIN_SLOTS = 330

MODE_ANNUAL = "annual"
MODE_SMOOTHED = "smoothed"

MonthDay = Tuple[int, int]
Buckets = Dict[MonthDay, Tuple[List[float], List[float]]]

_JAN1 = date(REFERENCE_YEAR, 1, 1)


def day_index(month: int, day: int) -> int:
    if int(month) == 2 and int(day) == 29:
        return day_index(3, 1)
    d = date(REFERENCE_YEAR, int(month), int(day))
    return (d - _JAN1).days


def day_index_for_date(d: date) -> int:
    return day_index(d.month, d.day)


def month_day_for_index(i: int) -> MonthDay:
    if not (0 <= int(i) < DAYS_PER_PROFILE):
        raise ValueError(f"Day index out of range: {i}")
    d = _JAN1 + timedelta(days=int(i))
    return d.month, d.day


_MMDD_ALL: List[MonthDay] = [month_day_for_index(i) for i in range(DAYS_PER_PROFILE)]


def window_keys(month: int, day: int, window_days: int) -> List[MonthDay]:
    center = day_index(month, day)
    w = max(0, int(window_days))
    return [_MMDD_ALL[(center + off) % DAYS_PER_PROFILE] for off in range(-w, w + 1)]


def _column(daily: dict, name: str, n: int) -> list:
    vals = list(daily.get(name) or [])
    if len(vals) < n:
        vals.extend([None] * (n - len(vals)))
    return vals[:n]


def daily_frame(daily: dict) -> pd.DataFrame:
    """Archive `daily` block -> DataFrame(date, month, day, hi, lo) without Feb 29 rows."""
    times = list((daily or {}).get("time") or [])
    n = len(times)
    df = pd.DataFrame({
        "time": pd.Series([str(t) for t in times], dtype="object"),
        "hi": pd.Series(_column(daily or {}, "temperature_2m_max", n), dtype="object"),
        "lo": pd.Series(_column(daily or {}, "temperature_2m_min", n), dtype="object"),
    })
    df["date"] = pd.to_datetime(df["time"].str.slice(0, 10), format="%Y-%m-%d", errors="coerce")
    dropped = int(df["date"].isna().sum())
    if dropped:
        log.warning('[NORMALS] dropped %d row(s) with unparsable dates', dropped)
    df = df.dropna(subset=["date"]).copy()
    for col in ("hi", "lo"):
        df[col] = pd.to_numeric(df[col], errors="coerce").astype(float)
        df.loc[~np.isfinite(df[col]), col] = np.nan
    df["month"] = df["date"].dt.month.astype(int)
    df["day"] = df["date"].dt.day.astype(int)
    df = df[~((df["month"] == 2) & (df["day"] == 29))]
    return df[["date", "month", "day", "hi", "lo"]].reset_index(drop=True)


def bucket_by_month_day(frame: pd.DataFrame) -> Buckets:
    buckets: Buckets = {}
    if frame.empty:
        return buckets
    for (month, day), g in frame.groupby(["month", "day"], sort=True):
        buckets[(int(month), int(day))] = (g["hi"].dropna().tolist(), g["lo"].dropna().tolist())
    return buckets


def _round_half_up(v: float, ndigits: int):
    if ndigits <= 0:
        return int(math.floor(v + 0.5))
    scale = 10 ** ndigits
    return math.floor(v * scale + 0.5) / scale


def _mean(values: List[float], round_to: Optional[int] = None):
    if not values:
        return None
    m = float(np.mean(np.asarray(values, dtype=float)))
    if not np.isfinite(m):
        return None
    return _round_half_up(m, round_to) if round_to is not None else m


@dataclass
class NormalsProfile:
    hi: List[Optional[float]]
    lo: List[Optional[float]]

    @property
    def hi_count(self) -> int:
        return sum(1 for v in self.hi if v is not None)

    @property
    def lo_count(self) -> int:
        return sum(1 for v in self.lo if v is not None)

    @property
    def coverage(self) -> float:
        return min(self.hi_count, self.lo_count) / float(DAYS_PER_PROFILE)

    def is_sparse(self, min_slots: int = COVERAGE_WARN_MIN_SLOTS) -> bool:
        return self.hi_count < min_slots or self.lo_count < min_slots


def annual_average_profile(buckets: Buckets, round_to: Optional[int] = None) -> NormalsProfile:
    hi: List[Optional[float]] = []
    lo: List[Optional[float]] = []
    for key in _MMDD_ALL:
        his, los = buckets.get(key, ([], []))
        hi.append(_mean(his, round_to))
        lo.append(_mean(los, round_to))
    return NormalsProfile(hi=hi, lo=lo)


def _window_values(buckets: Buckets, month: int, day: int, window_days: int) -> Tuple[List[float], List[float]]:
    his: List[float] = []
    los: List[float] = []
    for key in window_keys(month, day, window_days):
        b = buckets.get(key)
        if b is None:
            continue
        his.extend(b[0])
        los.extend(b[1])
    return his, los


def smoothed_profile(buckets: Buckets, window_days: int = 3, round_to: Optional[int] = None) -> NormalsProfile:
    hi: List[Optional[float]] = []
    lo: List[Optional[float]] = []
    for month, day in _MMDD_ALL:
        his, los = _window_values(buckets, month, day, window_days)
        hi.append(_mean(his, round_to))
        lo.append(_mean(los, round_to))
    return NormalsProfile(hi=hi, lo=lo)


def compute_profile(daily: dict, mode: str = MODE_ANNUAL, window_days: int = 3, round_to: Optional[int] = None) -> NormalsProfile:
    buckets = bucket_by_month_day(daily_frame(daily))
    if mode == MODE_ANNUAL:
        return annual_average_profile(buckets, round_to=round_to)
    if mode == MODE_SMOOTHED:
        return smoothed_profile(buckets, window_days=window_days, round_to=round_to)
    raise ValueError(f"Unknown normals mode: {mode}")


def planning_average(daily: dict, month: int, day: int, window_days: int = 3) -> Optional[Tuple[Optional[float], Optional[float]]]:
    """Window-smoothed average (hi, lo) for one calendar day. None when the window has no data."""
    buckets = bucket_by_month_day(daily_frame(daily))
    his, los = _window_values(buckets, month, day, window_days)
    if not his and not los:
        return None
    return _mean(his), _mean(los)
