"""Merge and diff helpers for the open-ended session_data mapping.

Writes are last-writer-wins per top-level key; nested mappings in a patch are
deep-merged into the in-memory copy before the key is written.
"""
import copy
from collections.abc import Mapping
from typing import Any


def deep_merge(base: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Return a new mapping with `patch` merged over `base`.

    Nested dicts merge recursively; every other value (lists included)
    replaces the old one.
    """
    merged = copy.deepcopy(dict(base))
    for key, value in patch.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def changed_keys(current: Mapping[str, Any], confirmed: Mapping[str, Any]) -> list[str]:
    """Top-level keys of `current` whose value differs from the last confirmed write."""
    return sorted(key for key, value in current.items() if key not in confirmed or confirmed[key] != value)


def pick(data: Mapping[str, Any], keys) -> dict[str, Any]:
    """Deep-copied subset of `data` for the given keys (missing keys are skipped)."""
    return {key: copy.deepcopy(data[key]) for key in keys if key in data}


def get_path(data: Any, path: str) -> Any:
    """Resolve a dotted path ("rubric.criteria") or return None."""
    current = data
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return None
        current = current[part]
    return current


def has_content(value: Any) -> bool:
    """Whether a slice holds anything worth protecting from overwrite."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return len(value) > 0
    return True
