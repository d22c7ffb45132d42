#!/usr/bin/env python3
"""Re-key points.json and historical_weather.json to canonical mile ids.

Both files are backed up and rewritten together; a failed write restores
both. Safe to rerun: already-migrated data is left as is.

Usage:
  trailtemps-migrate-ids --dry-run
  trailtemps-migrate-ids --points data/points.json --normals data/historical_weather.json
"""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional

from trailtemps.backend.config import TrailConfig
from trailtemps.backend.identity import IdentityCodec, IdentityEncodingError
from trailtemps.backend.migration import MigrationError, run_migration
from trailtemps.backend.schema import UnsupportedSchemaError, check_tool
from trailtemps.backend.store import StoreShapeError, load_document

log = logging.getLogger('pipeline.migration')


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Migrate point and normals ids to <trail>-<alignment>-mi<token>")
    p.add_argument("--points", type=Path, default=None)
    p.add_argument("--normals", type=Path, default=None)
    p.add_argument("--dry-run", action="store_true", help="Plan and report without writing")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    cfg = TrailConfig.from_env(points_path=args.points, normals_path=args.normals)
    logging.basicConfig(level=getattr(logging, cfg.log_level, logging.INFO), format='[%(levelname)s] %(message)s')
    codec = IdentityCodec(trail_code=cfg.trail_code, alignment=cfg.alignment)

    try:
        check_tool("migrate-ids", load_document(cfg.points_path, kind="points"), codec)
        plan = run_migration(cfg.points_path, cfg.normals_path, codec=codec, dry_run=args.dry_run)
    except (MigrationError, IdentityEncodingError, StoreShapeError, UnsupportedSchemaError, OSError) as e:
        log.error('[MIGRATE] aborted: %s', e)
        return 1

    print(
        json.dumps(
            {
                "points": str(cfg.points_path),
                "normals": str(cfg.normals_path),
                "dry_run": bool(args.dry_run),
                "points_total": len(plan.points.records),
                "points_changed": plan.points_changed,
                "normals_total": len(plan.normals.records),
                "normals_changed": plan.normals_changed,
                "normals_already_canonical": plan.normals_already_canonical,
                "count_mismatch": plan.count_mismatch,
                "backups": [str(b) for b in plan.backups],
            },
            indent=2,
        )
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
