from __future__ import annotations

import datetime as _dt
import logging
import os
from typing import Optional, Tuple

from flask import Flask, current_app, jsonify, request

from .archive_client import ArchiveClient, ArchiveRequestError
from .config import TrailConfig
from .extremes import Direction, evaluate_extremes, plan_duration, resolve_start_date
from .normals import day_index, month_day_for_index, planning_average
from .point_index import PointIndex
from .records import NormalsTable, load_points
from .store import StoreShapeError, load_document

log = logging.getLogger('pipeline.api')


def _parse_mmdd_or_date(raw: str) -> Tuple[int, int, Optional[_dt.date]]:
    """(month, day, full date if one was given)."""
    s = str(raw).strip()
    if len(s) == 10 and s[4] == '-' and s[7] == '-':
        d = _dt.date.fromisoformat(s)
        return int(d.month), int(d.day), d
    if len(s) == 5 and s[2] == '-':
        m, d = s.split('-', 1)
        month, day = int(m), int(d)
        # validates the calendar day (2020 is a leap year, so 02-29 passes)
        _dt.date(2020, month, day)
        return month, day, None
    raise ValueError('Invalid date; expected YYYY-MM-DD or MM-DD')


def _cfg() -> TrailConfig:
    return current_app.config['TRAIL']


def _today() -> _dt.date:
    return current_app.config.get('TODAY') or _dt.date.today()


def _point_index() -> PointIndex:
    doc = load_document(_cfg().points_path, kind="points")
    return PointIndex(load_points(doc.records))


def _normals_table() -> NormalsTable:
    doc = load_document(_cfg().normals_path, kind="normals", missing_ok=True)
    return NormalsTable.from_records(doc.records)


def _archive() -> ArchiveClient:
    return current_app.config.get('ARCHIVE') or ArchiveClient.from_config(_cfg())


def create_app(
    config: Optional[TrailConfig] = None,
    today: Optional[_dt.date] = None,
    archive: Optional[ArchiveClient] = None,
) -> Flask:
    cfg = config or TrailConfig.from_env()
    logging.basicConfig(level=getattr(logging, cfg.log_level, logging.INFO), format='[%(levelname)s] %(message)s')

    app = Flask(__name__)
    app.config['TRAIL'] = cfg
    app.config['TODAY'] = today
    app.config['ARCHIVE'] = archive

    @app.errorhandler(StoreShapeError)
    def _store_error(e):
        log.error('[API] store error: %s', e)
        return jsonify({"error": str(e)}), 500

    @app.route('/api/points')
    def api_points():
        index = _point_index()
        states = [
            {"state": st, "points": [p.to_dict() for p in pts]}
            for st, pts in index.by_state().items()
        ]
        return jsonify({
            "count": len(index),
            "min_mile": index.min_mile,
            "max_mile": index.max_mile,
            "total_miles": index.total_miles,
            "states": states,
        })

    @app.route('/api/nearest')
    def api_nearest():
        raw = request.args.get('mile')
        if raw is None:
            return jsonify({"error": "Missing 'mile'"}), 400
        try:
            mile = float(raw)
        except ValueError:
            return jsonify({"error": f"Invalid mile: {raw}"}), 400
        point = _point_index().nearest(mile)
        if point is None:
            return jsonify({"error": "No points loaded"}), 404
        return jsonify({"mile": mile, "point": point.to_dict()})

    @app.route('/api/normals/<point_id>')
    def api_normals(point_id: str):
        rec = _normals_table().get(point_id)
        if rec is None:
            return jsonify({"error": f"No normals for id {point_id}"}), 404
        date_raw = request.args.get('date')
        if not date_raw:
            return jsonify(rec.to_dict())
        try:
            month, day, _ = _parse_mmdd_or_date(date_raw)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        idx = day_index(month, day)
        hi, lo = rec.slot(idx)
        m, d = month_day_for_index(idx)
        return jsonify({
            "id": rec.id,
            "legacy_id": rec.legacy_id,
            "date": f"{m:02d}-{d:02d}",
            "day_index": idx,
            "avg_high": hi,
            "avg_low": lo,
        })

    @app.route('/api/extremes')
    def api_extremes():
        start_raw = request.args.get('start')
        if not start_raw:
            return jsonify({"error": "Missing 'start'"}), 400
        try:
            month, day, full = _parse_mmdd_or_date(start_raw)
            start = full or resolve_start_date(month, day, today=_today())
            direction = Direction.parse(request.args.get('direction', 'NOBO'))
            mpd = float(request.args.get('mpd', '15'))
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        index = _point_index()
        if len(index) == 0:
            return jsonify({"error": "No points loaded"}), 404
        try:
            plan = plan_duration(index.total_miles, mpd, start, direction)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        result = evaluate_extremes(index, _normals_table(), plan.start_date, direction, plan.miles_per_day, plan.duration_days)
        log.info(
            '[API] extremes start=%s dir=%s mpd=%s days=%d evaluated=%d',
            plan.start_date, direction.value, mpd, plan.duration_days, result.days_evaluated,
        )
        return jsonify({"plan": plan.to_dict(), "extremes": result.to_dict()})

    @app.route('/api/planning')
    def api_planning():
        """Window-smoothed archive average for one calendar day at the point nearest `mile`."""
        raw_mile = request.args.get('mile')
        raw_date = request.args.get('date')
        if raw_mile is None or not raw_date:
            return jsonify({"error": "Missing 'mile' or 'date'"}), 400
        try:
            mile = float(raw_mile)
            month, day, _ = _parse_mmdd_or_date(raw_date)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        point = _point_index().nearest(mile)
        if point is None:
            return jsonify({"error": "No points loaded"}), 404

        cfg = _cfg()
        start, end = cfg.date_range(today=_today())
        try:
            daily = _archive().fetch_daily_max_min(point.lat, point.lon, start, end)
        except ArchiveRequestError as e:
            log.error('[API] planning archive request failed for %s: %s', point.id, e)
            return jsonify({"error": str(e)}), 502

        avg = planning_average(daily, month, day, window_days=cfg.window_days)
        hi, lo = avg if avg is not None else (None, None)
        return jsonify({
            "point": point.to_dict(),
            "date": f"{month:02d}-{day:02d}",
            "range": {"start": start.isoformat(), "end": end.isoformat()},
            "window_days": cfg.window_days,
            "avg_high": hi,
            "avg_low": lo,
        })

    return app


app = create_app()

if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    app.run(host='0.0.0.0', port=port, debug=True, use_reloader=False)
