#!/usr/bin/env python3
"""Rewrite points.json so every point carries a numeric `mile` and no `mile_est`."""
from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import List, Optional

from trailtemps.backend.config import TrailConfig
from trailtemps.backend.migration import MigrationError, run_normalize_points
from trailtemps.backend.schema import UnsupportedSchemaError, check_tool
from trailtemps.backend.store import StoreShapeError, load_document

log = logging.getLogger('pipeline.migration')


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Normalize points to mile-only records")
    p.add_argument("--points", type=Path, default=None)
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    cfg = TrailConfig.from_env(points_path=args.points)
    logging.basicConfig(level=getattr(logging, cfg.log_level, logging.INFO), format='[%(levelname)s] %(message)s')
    try:
        check_tool("normalize-points", load_document(cfg.points_path, kind="points"))
        doc = run_normalize_points(cfg.points_path)
    except (MigrationError, StoreShapeError, UnsupportedSchemaError, OSError) as e:
        log.error('[MIGRATE] aborted: %s', e)
        return 1
    print(json.dumps({"points": str(cfg.points_path), "records": len(doc.records)}, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
