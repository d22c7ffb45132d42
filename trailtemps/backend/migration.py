"""Re-key the Point Store and the Normals Store to canonical mile-derived ids.

Both files are rewritten together or not at all:
1. every point's mile is resolved (`mile`, else legacy `mile_est`);
2. canonical ids are computed and a legacy <-> canonical `IdMapping` built;
3. point ids must be unique;
4. normals records are re-keyed through the mapping (unknown ids are fatal);
5. normals ids must be unique;
6. a points/normals count mismatch is only a warning;
7. both inputs are backed up, then both are written. If the second write
   fails, both files are restored from their backups.

`legacy_id` is seeded once and never overwritten, so re-running on migrated
data is a no-op.
"""
from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .identity import DEFAULT_CODEC, IdentityCodec
from .schema import CURRENT_SCHEMA
from .store import (
    LoadedDocument,
    backup_file,
    load_document,
    restore_backup,
    save_document,
)

log = logging.getLogger('pipeline.migration')

MIGRATION_NOTE = "IDs migrated; legacy_id preserved"


class MigrationError(RuntimeError):
    pass


class IdMapping:
    """Bidirectional legacy <-> canonical id map for a single migration run."""

    def __init__(self) -> None:
        self._to_canonical: Dict[str, str] = {}
        self._to_legacy: Dict[str, str] = {}

    def add(self, legacy_id: str, canonical_id: str) -> None:
        legacy_id = str(legacy_id)
        canonical_id = str(canonical_id)
        known = self._to_canonical.get(legacy_id)
        if known is not None and known != canonical_id:
            raise MigrationError(
                f"Legacy id {legacy_id} maps to both {known} and {canonical_id}"
            )
        if legacy_id != canonical_id:
            back = self._to_legacy.get(canonical_id)
            if back is not None and back != legacy_id:
                raise MigrationError(
                    f"Canonical id {canonical_id} claimed by legacy ids {back} and {legacy_id}"
                )
            self._to_legacy[canonical_id] = legacy_id
        self._to_canonical[legacy_id] = canonical_id

    def add_alias(self, old_id: str, canonical_id: str) -> None:
        """One-way lookup entry; does not take part in the legacy lineage."""
        old_id = str(old_id)
        known = self._to_canonical.get(old_id)
        if known is not None and known != canonical_id:
            raise MigrationError(f"Id {old_id} maps to both {known} and {canonical_id}")
        self._to_canonical[old_id] = str(canonical_id)

    def to_canonical(self, legacy_id: str) -> Optional[str]:
        return self._to_canonical.get(str(legacy_id))

    def to_legacy(self, canonical_id: str) -> Optional[str]:
        return self._to_legacy.get(str(canonical_id))

    def __len__(self) -> int:
        return len(self._to_canonical)


def _as_mile(v: Any) -> Optional[float]:
    if v is None or v == "" or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def resolve_mile(point: Dict[str, Any], index: Optional[int] = None) -> float:
    mile = _as_mile(point.get("mile"))
    if mile is None:
        mile = _as_mile(point.get("mile_est"))
    if mile is None:
        where = f"Point[{index}] " if index is not None else "Point "
        raise MigrationError(f"{where}id={point.get('id', '(no id)')} is missing numeric mile/mile_est")
    return mile


def ensure_unique_ids(ids: List[str], label: str) -> None:
    dupes = sorted(i for i, n in Counter(ids).items() if n > 1)
    if dupes:
        shown = ", ".join(dupes[:10])
        more = f" (+{len(dupes) - 10} more)" if len(dupes) > 10 else ""
        raise MigrationError(f"Duplicate {label} id(s) detected: {shown}{more}")


@dataclass
class MigrationPlan:
    points: LoadedDocument
    normals: LoadedDocument
    mapping: IdMapping
    points_changed: int = 0
    normals_changed: int = 0
    normals_already_canonical: int = 0
    count_mismatch: bool = False
    backups: List[Path] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.points_changed or self.normals_changed)


def _migrate_points(doc: LoadedDocument, codec: IdentityCodec) -> tuple:
    """Returns (updated records, stored ids in the same order (None when absent), changed count)."""
    updated: List[Dict[str, Any]] = []
    old_ids: List[Optional[str]] = []
    changed = 0
    for i, raw in enumerate(doc.records):
        if not isinstance(raw, dict):
            raise MigrationError(f"Point[{i}] is not an object")
        mile = resolve_mile(raw, i)
        new_id = codec.encode(mile)
        old_id = raw.get("id")
        if old_id is not None:
            old_id = str(old_id)

        rec = dict(raw)
        rec["id"] = new_id
        if rec.get("legacy_id") is None and old_id is not None and old_id != new_id:
            rec["legacy_id"] = old_id

        if rec != raw:
            changed += 1
        updated.append(rec)
        old_ids.append(old_id)
    return updated, old_ids, changed


def build_mapping(old_ids: List[Optional[str]], records: List[Dict[str, Any]]) -> IdMapping:
    mapping = IdMapping()
    for old_id, rec in zip(old_ids, records):
        new_id = rec["id"]
        legacy = rec.get("legacy_id")
        if legacy is not None:
            mapping.add(str(legacy), new_id)
        if old_id is not None and old_id != new_id and old_id != legacy:
            # Stale canonical id from an earlier run: resolvable, not lineage.
            mapping.add_alias(old_id, new_id)
    return mapping


def _migrate_normals(doc: LoadedDocument, codec: IdentityCodec, mapping: IdMapping, point_ids: set) -> tuple:
    updated: List[Dict[str, Any]] = []
    changed = 0
    already = 0
    for i, raw in enumerate(doc.records):
        if not isinstance(raw, dict) or raw.get("id") is None:
            raise MigrationError(f"Found normals record without id (index {i})")
        current = str(raw["id"])
        if codec.is_canonical(current) and current in point_ids:
            already += 1
            if raw.get("legacy_id") is None:
                legacy = mapping.to_legacy(current)
                if legacy is not None:
                    rec = dict(raw)
                    rec["legacy_id"] = legacy
                    updated.append(rec)
                    changed += 1
                    continue
            updated.append(raw)
            continue

        mapped = mapping.to_canonical(current)
        if mapped is None:
            raise MigrationError(f"Normals id={current} has no matching point in the point store")
        rec = dict(raw)
        rec["id"] = mapped
        if rec.get("legacy_id") is None:
            rec["legacy_id"] = mapping.to_legacy(mapped) or current
        updated.append(rec)
        changed += 1
    return updated, changed, already


def plan_migration(points: LoadedDocument, normals: LoadedDocument, codec: IdentityCodec = DEFAULT_CODEC) -> MigrationPlan:
    """Compute the migrated documents in memory. Raises MigrationError on any inconsistency."""
    new_points, old_ids, points_changed = _migrate_points(points, codec)
    point_ids = [p["id"] for p in new_points]
    ensure_unique_ids(point_ids, "points")
    mapping = build_mapping(old_ids, new_points)

    new_normals, normals_changed, already = _migrate_normals(normals, codec, mapping, set(point_ids))
    ensure_unique_ids([str(r["id"]) for r in new_normals], "normals")

    mismatch = len(new_normals) != len(new_points)
    if mismatch:
        log.warning('[MIGRATE] points count (%d) != normals count (%d)', len(new_points), len(new_normals))

    points_meta = dict(points.meta)
    if points.shape == "object":
        points_meta["schema_version"] = CURRENT_SCHEMA
    normals_meta = dict(normals.meta)
    if normals.shape == "object":
        normals_meta.update(codec.meta())
        normals_meta["id_migration_note"] = MIGRATION_NOTE
        normals_meta["schema_version"] = CURRENT_SCHEMA

    plan = MigrationPlan(
        points=LoadedDocument(points.shape, new_points, points_meta, dict(points.extra), points.path),
        normals=LoadedDocument(normals.shape, new_normals, normals_meta, dict(normals.extra), normals.path),
        mapping=mapping,
        points_changed=points_changed,
        normals_changed=normals_changed,
        normals_already_canonical=already,
        count_mismatch=mismatch,
    )
    log.info(
        '[MIGRATE] planned points=%d changed=%d normals=%d changed=%d already_canonical=%d',
        len(new_points), points_changed, len(new_normals), normals_changed, already,
    )
    return plan


def commit_plan(plan: MigrationPlan, points_path: Path, normals_path: Path) -> List[Path]:
    """Back up both files, then write both. Restores both on a failed write."""
    points_bak = backup_file(points_path)
    normals_bak = backup_file(normals_path)
    plan.backups = [b for b in (points_bak, normals_bak) if b is not None]
    try:
        save_document(plan.points, points_path)
        save_document(plan.normals, normals_path)
    except Exception:
        log.error('[MIGRATE] write failed; restoring both files from backup')
        for bak, path in ((points_bak, points_path), (normals_bak, normals_path)):
            if bak is not None:
                restore_backup(bak, path)
        raise
    return plan.backups


def run_migration(
    points_path: Path,
    normals_path: Path,
    codec: IdentityCodec = DEFAULT_CODEC,
    dry_run: bool = False,
) -> MigrationPlan:
    points = load_document(points_path, kind="points")
    normals = load_document(normals_path, kind="normals")
    plan = plan_migration(points, normals, codec)
    if dry_run:
        log.info('[MIGRATE] dry run; nothing written')
        return plan
    commit_plan(plan, Path(points_path), Path(normals_path))
    if plan.points.records:
        ex = plan.points.records[0]
        log.info('[MIGRATE] example mapping %s -> %s', ex.get("legacy_id", ex["id"]), ex["id"])
    return plan


def normalize_points_mile_only(doc: LoadedDocument) -> List[Dict[str, Any]]:
    """Every point gets a numeric `mile`; `mile_est` is dropped."""
    out: List[Dict[str, Any]] = []
    for i, raw in enumerate(doc.records):
        if not isinstance(raw, dict):
            raise MigrationError(f"Point[{i}] is not an object")
        rec = dict(raw)
        rec["mile"] = resolve_mile(raw, i)
        rec.pop("mile_est", None)
        out.append(rec)
    return out


def run_normalize_points(points_path: Path) -> LoadedDocument:
    doc = load_document(points_path, kind="points")
    doc.records = normalize_points_mile_only(doc)
    backup_file(points_path)
    save_document(doc, points_path)
    log.info('[MIGRATE] points normalized to mile-only records=%d', len(doc.records))
    return doc
