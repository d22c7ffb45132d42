"""Flat JSON document store for the point and normals datasets.

Design:
- Both files may be a bare list of records or `{meta, points: [...]}`.
  The root is resolved once at load time into `LoadedDocument`; the original
  shape is only remembered to pick the write-back shape.
- Writes go to a sibling temp file and are moved into place with `os.replace`.
- `backup_file` copies the previous content to `<file>.<YYYYMMDD_HHMMSS>.bak`
  before an overwrite. Backups are never pruned here.
"""
from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

log = logging.getLogger('pipeline.store')

SHAPE_ARRAY = "array"
SHAPE_OBJECT = "object"


class StoreShapeError(ValueError):
    pass


@dataclass
class LoadedDocument:
    shape: str
    records: List[Dict[str, Any]]
    meta: Dict[str, Any] = field(default_factory=dict)
    # Other top-level keys of an object-shaped root, kept for write-back.
    extra: Dict[str, Any] = field(default_factory=dict)
    path: Optional[Path] = None

    def to_root(self) -> Any:
        if self.shape == SHAPE_ARRAY:
            return list(self.records)
        root = dict(self.extra)
        root["meta"] = dict(self.meta)
        root["points"] = list(self.records)
        return root

    def ids(self) -> List[str]:
        return [str(r.get("id")) for r in self.records if isinstance(r, dict) and r.get("id") is not None]


def read_json(path: Path) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def write_json(path: Path, obj: Any) -> None:
    """Write pretty JSON atomically (temp file in the same directory, then replace)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    with open(tmp, 'w', encoding='utf-8') as f:
        json.dump(obj, f, ensure_ascii=False, indent=2)
        f.write("\n")
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def document_from_root(root: Any, *, kind: str = "points", path: Optional[Path] = None) -> LoadedDocument:
    if isinstance(root, list):
        return LoadedDocument(shape=SHAPE_ARRAY, records=list(root), path=path)
    if isinstance(root, dict) and isinstance(root.get("points"), list):
        meta = root.get("meta")
        extra = {k: v for k, v in root.items() if k not in ("meta", "points")}
        return LoadedDocument(
            shape=SHAPE_OBJECT,
            records=list(root["points"]),
            meta=dict(meta) if isinstance(meta, dict) else {},
            extra=extra,
            path=path,
        )
    keys = ", ".join(sorted(root.keys())) if isinstance(root, dict) else type(root).__name__
    where = f" ({path})" if path is not None else ""
    raise StoreShapeError(
        f"Unexpected {kind} document{where}. Expected an array or an object with \"points: []\". Top-level keys: {keys}"
    )


def load_document(path: Path, *, kind: str = "points", missing_ok: bool = False) -> LoadedDocument:
    path = Path(path)
    if not path.exists():
        if missing_ok:
            log.info('[STORE] %s missing; starting empty %s document', path, kind)
            return LoadedDocument(shape=SHAPE_OBJECT, records=[], path=path)
        raise StoreShapeError(f"Missing {kind} file: {path}")
    doc = document_from_root(read_json(path), kind=kind, path=path)
    log.info('[STORE] loaded %s records=%d shape=%s', path.name, len(doc.records), doc.shape)
    return doc


def save_document(doc: LoadedDocument, path: Optional[Path] = None) -> Path:
    target = Path(path or doc.path)
    write_json(target, doc.to_root())
    return target


def timestamp_tag(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d_%H%M%S")


def backup_file(path: Path, now: Optional[datetime] = None) -> Optional[Path]:
    """Copy `path` to a timestamped sibling. Returns None when there is nothing to back up."""
    path = Path(path)
    if not path.exists():
        return None
    tag = timestamp_tag(now)
    bak = path.with_name(f"{path.name}.{tag}.bak")
    n = 1
    while bak.exists():
        bak = path.with_name(f"{path.name}.{tag}_{n}.bak")
        n += 1
    shutil.copy2(path, bak)
    log.info('[STORE] backup %s -> %s', path.name, bak.name)
    return bak


def restore_backup(backup: Path, path: Path) -> None:
    shutil.copy2(backup, path)
    log.warning('[STORE] restored %s from %s', Path(path).name, Path(backup).name)
