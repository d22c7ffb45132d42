#!/usr/bin/env python3
"""Generate missing 365-day hi/lo normals for trail points.

Resumable: progress is written after every point, so rerunning after an
interruption only fetches what is still missing.

Usage:
  trailtemps-build-normals --max-points 25
  trailtemps-build-normals --mode smoothed --window-days 3
"""
from __future__ import annotations

import argparse
import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional

from trailtemps.backend.aggregator import ORDERS, NormalsAggregator
from trailtemps.backend.archive_client import ArchiveClient, ArchiveRequestError
from trailtemps.backend.config import MODES, TrailConfig
from trailtemps.backend.schema import UnsupportedSchemaError
from trailtemps.backend.store import StoreShapeError

log = logging.getLogger('pipeline.normals')


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Fill missing normals records from the Open-Meteo archive")
    p.add_argument("--points", type=Path, default=None, help="Point Store path (default: TRAILTEMPS_POINTS_FILE)")
    p.add_argument("--normals", type=Path, default=None, help="Normals Store path (default: TRAILTEMPS_NORMALS_FILE)")
    p.add_argument("--mode", choices=MODES, default=None)
    p.add_argument("--window-days", type=int, default=None, help="Half-window for smoothed mode")
    p.add_argument("--max-points", type=int, default=None, help="Only process the first N missing points")
    p.add_argument("--order", choices=ORDERS, default="mile", help="Processing order of missing points")
    p.add_argument("--start-date", type=date.fromisoformat, default=None)
    p.add_argument("--end-date", type=date.fromisoformat, default=None)
    p.add_argument("--interval-s", type=float, default=None, help="Fixed delay between archive requests")
    return p.parse_args(argv)


def _config_from_args(args: argparse.Namespace, **defaults) -> TrailConfig:
    """Command-line values win over `defaults`, which win over the environment."""
    overrides = dict(defaults)
    given = {
        "points_path": args.points,
        "normals_path": args.normals,
        "mode": args.mode,
        "window_days": args.window_days,
        "start_date": args.start_date,
        "end_date": args.end_date,
        "request_interval_s": args.interval_s,
    }
    overrides.update({k: v for k, v in given.items() if v is not None})
    return TrailConfig.from_env(**overrides)


def run(
    cfg: TrailConfig,
    order: str = "mile",
    max_points: Optional[int] = None,
    capability: str = "build-normals",
    round_to: Optional[int] = None,
    client: Optional[ArchiveClient] = None,
) -> int:
    print(
        json.dumps(
            {
                "points": str(cfg.points_path),
                "normals": str(cfg.normals_path),
                "mode": cfg.mode,
                "window_days": cfg.window_days,
                "order": order,
                "max_points": max_points,
                "interval_s": cfg.request_interval_s,
                "started_at": utc_now_iso(),
            },
            indent=2,
        )
    )
    aggregator = NormalsAggregator(
        cfg,
        client or ArchiveClient.from_config(cfg),
        order=order,
        max_points=max_points,
        capability=capability,
        round_to=round_to,
    )
    try:
        report = aggregator.run()
    except (ArchiveRequestError, UnsupportedSchemaError, StoreShapeError) as e:
        log.error('[NORMALS] %s', e)
        if isinstance(e, ArchiveRequestError) and e.body:
            log.error('[NORMALS] body: %s', e.body)
        return 1
    print(json.dumps(report.to_dict(), indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    cfg = _config_from_args(args)
    logging.basicConfig(level=getattr(logging, cfg.log_level, logging.INFO), format='[%(levelname)s] %(message)s')
    return run(cfg, order=args.order, max_points=args.max_points)


def planning_main(argv: Optional[List[str]] = None) -> int:
    """Retired planning-normals builder: window-smoothed, integer-rounded profiles.

    Only accepts the legacy points schema; on canonical stores the capability
    check refuses and names `build-normals --mode smoothed` instead.
    """
    args = parse_args(argv)
    base = TrailConfig.from_env()
    cfg = _config_from_args(args, normals_path=base.data_dir / "planning_normals.json", mode="smoothed")
    logging.basicConfig(level=getattr(logging, cfg.log_level, logging.INFO), format='[%(levelname)s] %(message)s')
    log.warning('[NORMALS] build-planning-normals is deprecated; use build-normals --mode smoothed')
    return run(cfg, order=args.order, max_points=args.max_points, capability="build-planning-normals", round_to=0)


if __name__ == "__main__":
    raise SystemExit(main())
