from __future__ import annotations

import bisect
import math
from typing import Dict, Iterable, List, Optional

from .records import Point


class PointIndex:
    """Points sorted by mile once; nearest lookups by binary search."""

    def __init__(self, points: Iterable[Point]):
        # sorted() is stable: equal miles keep input order
        self._points: List[Point] = sorted(points, key=lambda p: p.mile)
        self._miles: List[float] = [p.mile for p in self._points]

    @property
    def points(self) -> List[Point]:
        return list(self._points)

    def __len__(self) -> int:
        return len(self._points)

    @property
    def min_mile(self) -> Optional[float]:
        return self._miles[0] if self._miles else None

    @property
    def max_mile(self) -> Optional[float]:
        return self._miles[-1] if self._miles else None

    @property
    def total_miles(self) -> float:
        if not self._miles:
            return 0.0
        return self._miles[-1] - self._miles[0]

    def clamp(self, mile: float) -> float:
        if not self._miles:
            return mile
        return max(self._miles[0], min(self._miles[-1], mile))

    def nearest(self, mile: float) -> Optional[Point]:
        """Point with the smallest |point.mile - mile|; ties go to the lower mile."""
        if not self._points:
            return None
        try:
            target = float(mile)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(target):
            return None
        hi = bisect.bisect_left(self._miles, target)
        if hi <= 0:
            return self._points[0]
        if hi >= len(self._miles):
            return self._points[-1]
        lo = hi - 1
        if abs(self._miles[lo] - target) <= abs(self._miles[hi] - target):
            return self._points[lo]
        return self._points[hi]

    def by_state(self) -> Dict[str, List[Point]]:
        """State -> points in trail order. States are ordered by first appearance along the trail."""
        out: Dict[str, List[Point]] = {}
        for p in self._points:
            out.setdefault(p.state or "?", []).append(p)
        return out
