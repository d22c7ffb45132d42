"""Point Store schema versions and which runners accept which version.

Version 1: legacy points (state/mile ids such as GA_0010_0, often `mile_est`).
Version 2: canonical points (mile-derived ids).

The version is read off the records, never off `meta.schema_version`: a store
is canonical as soon as any point carries a mile-derived id. A canonical store
with a few hand-entered legacy ids is still canonical.

Runners look up their `ToolCapability` and call `ensure_supported` before doing
any work, so a retired tool refuses to run with a message naming its
replacement instead of failing at import.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from .identity import DEFAULT_CODEC, IdentityCodec
from .store import LoadedDocument

SCHEMA_LEGACY = 1
SCHEMA_CANONICAL = 2
CURRENT_SCHEMA = SCHEMA_CANONICAL


class UnsupportedSchemaError(RuntimeError):
    pass


@dataclass(frozen=True)
class ToolCapability:
    name: str
    supported_versions: FrozenSet[int]
    deprecated: bool = False
    replacement: Optional[str] = None

    def supports(self, version: int) -> bool:
        return version in self.supported_versions


CAPABILITIES: Dict[str, ToolCapability] = {
    "migrate-ids": ToolCapability("migrate-ids", frozenset({SCHEMA_LEGACY, SCHEMA_CANONICAL})),
    "normalize-points": ToolCapability("normalize-points", frozenset({SCHEMA_LEGACY, SCHEMA_CANONICAL})),
    "build-normals": ToolCapability("build-normals", frozenset({SCHEMA_LEGACY, SCHEMA_CANONICAL})),
    "build-planning-normals": ToolCapability(
        "build-planning-normals",
        frozenset({SCHEMA_LEGACY}),
        deprecated=True,
        replacement="build-normals --mode smoothed",
    ),
}


def detect_schema_version(doc: LoadedDocument, codec: IdentityCodec = DEFAULT_CODEC) -> int:
    if not doc.records:
        return SCHEMA_CANONICAL
    for raw in doc.records:
        if isinstance(raw, dict) and codec.is_canonical(raw.get("id")):
            return SCHEMA_CANONICAL
    return SCHEMA_LEGACY


def ensure_supported(capability: ToolCapability, version: int) -> None:
    if capability.supports(version):
        return
    msg = f"{capability.name} does not support points schema version {version}"
    if capability.deprecated:
        msg += " (deprecated"
        if capability.replacement:
            msg += f"; use {capability.replacement}"
        msg += ")"
    raise UnsupportedSchemaError(msg)


def check_tool(name: str, doc: LoadedDocument, codec: IdentityCodec = DEFAULT_CODEC) -> int:
    """Resolve the document's schema version and verify `name` may run on it."""
    capability = CAPABILITIES.get(name)
    if capability is None:
        raise UnsupportedSchemaError(f"Unknown tool: {name}")
    version = detect_schema_version(doc, codec)
    ensure_supported(capability, version)
    return version
