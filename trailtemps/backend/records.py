from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, List, Optional

log = logging.getLogger('pipeline.store')

DAYS_PER_PROFILE = 365


def _finite(v: Any) -> Optional[float]:
    if v is None or v == "" or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


@dataclass(frozen=True)
class Point:
    id: str
    mile: float
    lat: float
    lon: float
    state: str = ""
    legacy_id: Optional[str] = None

    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> Optional["Point"]:
        """Build a Point from a store record; None when id, mile or coordinates are unusable.

        Accepts the legacy `mile_est` field when `mile` is absent. Points without
        an id get one from migrate-ids.
        """
        if not isinstance(raw, dict):
            return None
        mile = _finite(raw.get("mile"))
        if mile is None:
            mile = _finite(raw.get("mile_est"))
        lat = _finite(raw.get("lat"))
        lon = _finite(raw.get("lon"))
        pid = raw.get("id")
        if pid is None or mile is None or lat is None or lon is None:
            return None
        state = str(raw.get("state") or "").upper()
        legacy = raw.get("legacy_id")
        return Point(
            id=str(pid),
            mile=mile,
            lat=lat,
            lon=lon,
            state=state,
            legacy_id=str(legacy) if legacy is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": self.id}
        if self.legacy_id is not None:
            out["legacy_id"] = self.legacy_id
        out.update({"mile": self.mile, "lat": self.lat, "lon": self.lon, "state": self.state})
        return out


def load_points(records: Iterable[Dict[str, Any]]) -> List[Point]:
    points: List[Point] = []
    dropped = 0
    for raw in records:
        p = Point.from_dict(raw)
        if p is None:
            dropped += 1
            continue
        points.append(p)
    if dropped:
        log.warning('[STORE] dropped %d point(s) without usable id/mile/lat/lon', dropped)
    return points


@dataclass
class NormalsRecord:
    id: str
    hi: List[Optional[float]]
    lo: List[Optional[float]]
    legacy_id: Optional[str] = None

    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> Optional["NormalsRecord"]:
        if not isinstance(raw, dict) or raw.get("id") is None:
            return None
        hi = raw.get("hi")
        lo = raw.get("lo")
        if not isinstance(hi, list) or not isinstance(lo, list):
            return None
        if len(hi) != DAYS_PER_PROFILE or len(lo) != DAYS_PER_PROFILE:
            return None
        legacy = raw.get("legacy_id")
        return NormalsRecord(
            id=str(raw["id"]),
            hi=[_finite(v) for v in hi],
            lo=[_finite(v) for v in lo],
            legacy_id=str(legacy) if legacy is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": self.id}
        if self.legacy_id is not None:
            out["legacy_id"] = self.legacy_id
        out["hi"] = list(self.hi)
        out["lo"] = list(self.lo)
        return out

    def slot(self, idx: int) -> tuple:
        return self.hi[idx], self.lo[idx]


class NormalsTable:
    """id -> NormalsRecord map for one run or request. Not shared between runs."""

    def __init__(self, records: Iterable[NormalsRecord] = ()):
        self._by_id: Dict[str, NormalsRecord] = {}
        for rec in records:
            self._by_id[rec.id] = rec

    @staticmethod
    def from_records(raw_records: Iterable[Dict[str, Any]]) -> "NormalsTable":
        table = NormalsTable()
        skipped = 0
        for raw in raw_records:
            rec = NormalsRecord.from_dict(raw)
            if rec is None:
                skipped += 1
                continue
            table._by_id[rec.id] = rec
        if skipped:
            log.warning('[STORE] skipped %d normals record(s) without 365-slot hi/lo arrays', skipped)
        return table

    def get(self, point_id: str) -> Optional[NormalsRecord]:
        return self._by_id.get(str(point_id))

    def ids(self) -> List[str]:
        return list(self._by_id.keys())

    def __contains__(self, point_id: object) -> bool:
        return str(point_id) in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)

    def __iter__(self) -> Iterator[NormalsRecord]:
        return iter(self._by_id.values())
