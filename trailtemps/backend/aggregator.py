"""Fill the Normals Store with 365-slot hi/lo profiles for points that lack one.

Resume model: the store on disk is the progress marker. Each generated
record is appended and the whole store is rewritten before the next point is
fetched, so an interrupted run loses at most the point in flight and the
next run only fetches what is still missing.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from .archive_client import ArchiveClient, ArchiveRequestError
from .config import TrailConfig
from .identity import IdentityCodec
from .normals import DAYS_PER_PROFILE, MODE_SMOOTHED, NormalsProfile, compute_profile
from .records import NormalsRecord, Point
from .schema import check_tool
from .store import SHAPE_ARRAY, SHAPE_OBJECT, LoadedDocument, backup_file, load_document, save_document

log = logging.getLogger('pipeline.normals')

ORDERS = ("mile", "store")

NORMALS_SOURCE = {
    "annual": "Open-Meteo Historical Weather API (daily max/min averaged by MM-DD)",
    "smoothed": "Open-Meteo Historical Weather API (daily max/min, window-smoothed by MM-DD)",
}


@dataclass
class AggregationReport:
    total_points: int = 0
    existing: int = 0
    missing: int = 0
    generated: int = 0
    skipped: int = 0
    coverage_warnings: int = 0
    range_start: Optional[str] = None
    range_end: Optional[str] = None
    backup: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_range(raw: Any) -> Optional[Tuple[date, date]]:
    """`YYYY-MM-DD..YYYY-MM-DD` as stored in `meta.normals_range`."""
    if not isinstance(raw, str) or ".." not in raw:
        return None
    a, b = raw.split("..", 1)
    try:
        start, end = date.fromisoformat(a.strip()), date.fromisoformat(b.strip())
    except ValueError:
        return None
    return (start, end) if start <= end else None


def _valid_coords(p: Point) -> bool:
    return -90.0 <= p.lat <= 90.0 and -180.0 <= p.lon <= 180.0


class NormalsAggregator:
    def __init__(
        self,
        config: TrailConfig,
        client: ArchiveClient,
        codec: Optional[IdentityCodec] = None,
        order: str = "mile",
        max_points: Optional[int] = None,
        capability: str = "build-normals",
        round_to: Optional[int] = None,
        today: Optional[date] = None,
    ) -> None:
        if order not in ORDERS:
            raise ValueError(f"order must be one of {ORDERS}, got {order!r}")
        self.config = config
        self.client = client
        self.codec = codec or IdentityCodec(trail_code=config.trail_code, alignment=config.alignment)
        self.order = order
        self.max_points = max_points
        self.capability = capability
        self.round_to = round_to
        self.today = today

    def missing_points(self, points: List[Point], normals_doc: LoadedDocument) -> List[Point]:
        have = set(normals_doc.ids())
        missing = [p for p in points if p.id not in have]
        if self.order == "mile":
            # sorted() is stable: equal miles keep store order
            missing = sorted(missing, key=lambda p: p.mile)
        return missing

    def resolve_range(self, normals_doc: LoadedDocument) -> Tuple[date, date]:
        existing = parse_range(normals_doc.meta.get("normals_range"))
        if existing is not None and normals_doc.records:
            log.info('[NORMALS] resuming with stored range %s..%s', existing[0], existing[1])
            return existing
        start, end = self.config.date_range(today=self.today)
        if normals_doc.records and existing is None:
            log.warning('[NORMALS] %d existing record(s) have no stored normals_range; using %s..%s', len(normals_doc.records), start, end)
        return start, end

    def _update_meta(self, doc: LoadedDocument, start: date, end: date, schema_version: int) -> None:
        mode = self.config.mode
        doc.meta.update({
            "normals_source": NORMALS_SOURCE.get(mode, NORMALS_SOURCE["annual"]),
            "normals_range": f"{start.isoformat()}..{end.isoformat()}",
            "normals_dataset": self.config.dataset,
            "normals_mode": mode,
            "window_days": self.config.window_days if mode == MODE_SMOOTHED else 0,
            "days": DAYS_PER_PROFILE,
            "units": "fahrenheit",
            "id_format": self.codec.id_format(),
            "schema_version": schema_version,
        })

    def _profile_for(self, p: Point, start: date, end: date) -> NormalsProfile:
        daily = self.client.fetch_daily_max_min(p.lat, p.lon, start, end)
        return compute_profile(daily, mode=self.config.mode, window_days=self.config.window_days, round_to=self.round_to)

    def run(self) -> AggregationReport:
        points_doc = load_document(self.config.points_path, kind="points")
        schema_version = check_tool(self.capability, points_doc, self.codec)
        normals_doc = load_document(self.config.normals_path, kind="normals", missing_ok=True)

        report = AggregationReport(total_points=len(points_doc.records), existing=len(normals_doc.records))
        have = set(normals_doc.ids())
        points: List[Point] = []
        for raw in points_doc.records:
            p = Point.from_dict(raw)
            if p is None or not _valid_coords(p):
                pid = raw.get("id") if isinstance(raw, dict) else None
                if pid is None or str(pid) not in have:
                    report.skipped += 1
                    log.warning('[SKIP] %s: invalid id/mile/lat/lon', pid)
                continue
            points.append(p)

        stray = [p.id for p in points if not self.codec.is_canonical(p.id)]
        if stray:
            log.warning(
                '[NORMALS] %d point(s) without a canonical id (first: %s); processing under their stored ids, run migrate-ids to re-key',
                len(stray), stray[0],
            )

        missing = self.missing_points(points, normals_doc)
        report.missing = len(missing)
        todo = missing[: self.max_points] if self.max_points is not None else missing

        start, end = self.resolve_range(normals_doc)
        if normals_doc.shape == SHAPE_ARRAY and todo:
            log.warning('[NORMALS] %s is a bare array; rewriting as {meta, points} to keep the range', self.config.normals_path.name)
            normals_doc.shape = SHAPE_OBJECT
        report.range_start, report.range_end = start.isoformat(), end.isoformat()
        log.info(
            '[NORMALS] points=%d existing=%d missing=%d to_process=%d range=%s..%s mode=%s',
            report.total_points, report.existing, report.missing, len(todo), start, end, self.config.mode,
        )

        backed_up = False
        for i, p in enumerate(todo, start=1):
            log.info('[NORMALS] [%d/%d] fetching %s (%s) lat=%s lon=%s', i, len(todo), p.id, p.legacy_id or "no-legacy", p.lat, p.lon)
            try:
                profile = self._profile_for(p, start, end)
            except ArchiveRequestError as e:
                log.error('[NORMALS] failed on %s: %s (status=%s)', p.id, e, e.status)
                log.error('[NORMALS] stopping; store holds %d record(s), rerun to resume', len(normals_doc.records))
                raise

            if profile.is_sparse():
                report.coverage_warnings += 1
                log.warning('[NORMALS] sparse day coverage for %s (hi=%d, lo=%d); still writing', p.id, profile.hi_count, profile.lo_count)

            rec = NormalsRecord(id=p.id, hi=profile.hi, lo=profile.lo, legacy_id=p.legacy_id)
            normals_doc.records.append(rec.to_dict())
            self._update_meta(normals_doc, start, end, schema_version)

            if not backed_up:
                bak = backup_file(self.config.normals_path)
                report.backup = str(bak) if bak is not None else None
                backed_up = True
            save_document(normals_doc, self.config.normals_path)
            report.generated += 1

        log.info('[NORMALS] done; generated=%d store now has %d record(s)', report.generated, len(normals_doc.records))
        return report
