"""Tests for session_data merge and diff helpers."""

import pytest

from accelerator_engine.domain.session_data import changed_keys, deep_merge, get_path, has_content, pick

pytestmark = pytest.mark.unit


def test_deep_merge_merges_nested_and_replaces_lists():
    base = {"unit": {"title": "Water", "grade": 5}, "tags": ["a", "b"]}
    merged = deep_merge(base, {"unit": {"grade": 6}, "tags": ["c"]})
    assert merged == {"unit": {"title": "Water", "grade": 6}, "tags": ["c"]}


def test_deep_merge_leaves_inputs_untouched():
    base = {"unit": {"title": "Water"}}
    patch = {"unit": {"grade": 6}}
    deep_merge(base, patch)
    assert base == {"unit": {"title": "Water"}}


def test_changed_keys_reports_new_and_modified():
    confirmed = {"a": 1, "b": {"x": 1}}
    current = {"a": 1, "b": {"x": 2}, "c": 3}
    assert changed_keys(current, confirmed) == ["b", "c"]


def test_changed_keys_empty_when_in_sync():
    assert changed_keys({"a": [1]}, {"a": [1]}) == []


def test_pick_skips_missing_and_copies():
    data = {"a": [1], "b": 2}
    picked = pick(data, ["a", "z"])
    picked["a"].append(2)
    assert picked == {"a": [1, 2]}
    assert data["a"] == [1]


def test_get_path():
    data = {"rubric": {"criteria": [1, 2]}}
    assert get_path(data, "rubric.criteria") == [1, 2]
    assert get_path(data, "rubric.levels") is None
    assert get_path(data, "missing.path") is None


@pytest.mark.parametrize(
    "value,expected",
    [(None, False), ("  ", False), ([], False), ({}, False), ("x", True), ([1], True), (0, True)],
)
def test_has_content(value, expected):
    assert has_content(value) is expected
