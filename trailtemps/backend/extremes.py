"""Hike duration planning and hottest/coldest day along a planned itinerary.

A hiker starts at one end of the trail (NOBO at the lowest mile, SOBO at the
highest) and covers `miles_per_day` each day. For every trip day the nearest
point to the projected mile is looked up and its normals slot for that
calendar day is read.
"""
from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from .normals import day_index_for_date
from .point_index import PointIndex
from .records import NormalsTable, Point

log = logging.getLogger('pipeline.extremes')

MIN_MILES_PER_DAY = 7.0
MAX_TRIP_DAYS = 365


class Direction(enum.Enum):
    NOBO = "NOBO"
    SOBO = "SOBO"

    @staticmethod
    def parse(raw: Any) -> "Direction":
        s = str(raw or "").strip().upper()
        if s in ("NOBO", "FORWARD", "N"):
            return Direction.NOBO
        if s in ("SOBO", "REVERSE", "S"):
            return Direction.SOBO
        raise ValueError(f"Unknown direction: {raw!r} (expected NOBO or SOBO)")

    @property
    def sign(self) -> int:
        return 1 if self is Direction.NOBO else -1


@dataclass(frozen=True)
class DayReading:
    date: date
    target_mile: float
    point: Point
    avg_high: float
    avg_low: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "target_mile": self.target_mile,
            "point": self.point.to_dict(),
            "avg_high": self.avg_high,
            "avg_low": self.avg_low,
        }


@dataclass
class ExtremesResult:
    hottest: Optional[DayReading] = None
    coldest: Optional[DayReading] = None
    days_evaluated: int = 0
    days_skipped: int = 0

    @property
    def found(self) -> bool:
        return self.hottest is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": self.found,
            "hottest": self.hottest.to_dict() if self.hottest else None,
            "coldest": self.coldest.to_dict() if self.coldest else None,
            "days_evaluated": self.days_evaluated,
            "days_skipped": self.days_skipped,
        }


def _finite(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def evaluate_extremes(
    index: PointIndex,
    normals: NormalsTable,
    start_date: date,
    direction: Direction,
    miles_per_day: float,
    duration_days: int,
) -> ExtremesResult:
    result = ExtremesResult()
    if len(index) == 0 or duration_days <= 0:
        return result
    start_mile = index.max_mile if direction is Direction.SOBO else index.min_mile

    for i in range(int(duration_days)):
        day = start_date + timedelta(days=i)
        target = index.clamp(start_mile + direction.sign * miles_per_day * i)
        point = index.nearest(target)
        rec = normals.get(point.id) if point is not None else None
        if rec is None:
            result.days_skipped += 1
            continue
        hi, lo = rec.slot(day_index_for_date(day))
        if not _finite(hi) or not _finite(lo):
            result.days_skipped += 1
            continue

        reading = DayReading(date=day, target_mile=target, point=point, avg_high=float(hi), avg_low=float(lo))
        result.days_evaluated += 1
        if result.hottest is None or reading.avg_high > result.hottest.avg_high:
            result.hottest = reading
        if result.coldest is None or reading.avg_low < result.coldest.avg_low:
            result.coldest = reading

    if not result.found:
        log.info('[EXTREMES] no normals data for any of %d day(s)', duration_days)
    return result


def is_katahdin_snow_season(d: date) -> bool:
    """Oct 15 through May 15, inclusive."""
    if d.month > 10 or (d.month == 10 and d.day >= 15):
        return True
    if d.month < 5 or (d.month == 5 and d.day <= 15):
        return True
    return False


@dataclass
class DurationPlan:
    direction: Direction
    start_date: date
    end_date: date
    distance_miles: float
    miles_per_day: float
    duration_days: int
    katahdin_date: date
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "distance_miles": self.distance_miles,
            "miles_per_day": self.miles_per_day,
            "duration_days": self.duration_days,
            "katahdin_date": self.katahdin_date.isoformat(),
            "warnings": list(self.warnings),
        }


def plan_duration(total_miles: float, miles_per_day: float, start_date: date, direction: Direction) -> DurationPlan:
    if not _finite(miles_per_day) or miles_per_day <= 0:
        raise ValueError("Miles per day must be a positive number")
    if miles_per_day < MIN_MILES_PER_DAY:
        raise ValueError(f"Hikes must average at least {MIN_MILES_PER_DAY:g} miles per day")
    if not _finite(total_miles) or total_miles < 0:
        raise ValueError("Trail distance is unavailable")

    days = int(math.ceil(total_miles / miles_per_day))
    if days > MAX_TRIP_DAYS:
        raise ValueError(f"Hikes cannot exceed {MAX_TRIP_DAYS} days; adjust miles per day")
    # Last hiking day, not the day after.
    end = start_date + timedelta(days=max(days, 1) - 1)

    # Katahdin is the northern terminus: reached last going north, first going south.
    katahdin = end if direction is Direction.NOBO else start_date
    plan = DurationPlan(
        direction=direction,
        start_date=start_date,
        end_date=end,
        distance_miles=float(total_miles),
        miles_per_day=float(miles_per_day),
        duration_days=days,
        katahdin_date=katahdin,
    )
    if is_katahdin_snow_season(katahdin):
        plan.warnings.append(
            "Hiking on Mt. Katahdin, Maine during the October-May snow season is often closed "
            "or restricted based on local conditions."
        )
    return plan


def resolve_start_date(month: int, day: int, today: Optional[date] = None) -> date:
    """Next occurrence of month/day on or after `today`. Feb 29 rolls to the next leap year."""
    today = today or date.today()
    year = today.year
    for _ in range(9):
        try:
            candidate = date(year, int(month), int(day))
        except ValueError:
            if int(month) == 2 and int(day) == 29:
                year += 1
                continue
            raise
        if candidate >= today:
            return candidate
        year += 1
    raise ValueError(f"Cannot resolve start date for {month:02d}-{day:02d}")
