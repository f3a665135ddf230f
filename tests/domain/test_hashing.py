"""Tests for source hashing."""

import pytest

from accelerator_engine.domain.hashing import build_source_snapshot, compute_source_hash

pytestmark = pytest.mark.unit


def test_hash_is_deterministic_and_order_independent():
    a = compute_source_hash({"unit": {"title": "Water"}, "rubric": {"criteria": [1, 2]}})
    b = compute_source_hash({"rubric": {"criteria": [1, 2]}, "unit": {"title": "Water"}})
    assert a == b
    assert len(a) == 16


def test_hash_changes_with_input():
    assert compute_source_hash({"unit": "a"}) != compute_source_hash({"unit": "b"})


def test_blank_fields_do_not_affect_hash():
    assert compute_source_hash({"unit": "a", "notes": ""}) == compute_source_hash({"unit": "a"})


def test_all_blank_inputs_hash_to_none():
    assert compute_source_hash({"unit": None, "notes": "", "rows": []}) is None


def test_snapshot_drops_blank_values():
    assert build_source_snapshot({"b": 1, "a": {}, "c": "x"}) == {"b": 1, "c": "x"}
