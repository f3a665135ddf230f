"""Source hashing for staleness detection of generated artifacts.

A generated slice records the hash of the inputs it was built from. Before a
regeneration the hash of the current inputs is compared against it; a
mismatch marks the artifact stale and forces the upstream call.

Hash: sha256 over canonical JSON (sorted keys, compact separators), first 16
hex chars. Deterministic across processes, unlike hash().
"""

import hashlib
import json
from collections.abc import Mapping
from typing import Any

HASH_LENGTH = 16


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def build_source_snapshot(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Keep only the non-blank input fields, in a stable order."""
    return {key: fields[key] for key in sorted(fields) if not _is_blank(fields[key])}


def compute_source_hash(fields: Mapping[str, Any]) -> str | None:
    """Hash the non-blank input fields.

    Returns:
        16-char hex digest, or None when every field is blank (treated as stale)
    """
    snapshot = build_source_snapshot(fields)
    if not snapshot:
        return None
    return hashlib.sha256(canonical_json(snapshot).encode("utf-8")).hexdigest()[:HASH_LENGTH]
