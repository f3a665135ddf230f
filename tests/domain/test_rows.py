"""Tests for row helpers on array artifacts."""

import pytest

from accelerator_engine.domain.rows import RowStatus, add_row, move_row, remove_row, set_status

pytestmark = pytest.mark.unit


@pytest.fixture
def rows():
    return [
        {"index": 1, "title": "a", "status": "draft"},
        {"index": 2, "title": "b", "status": "draft"},
        {"index": 3, "title": "c", "status": "draft"},
    ]


def _titles(rows):
    return [r["title"] for r in rows]


def _indexes(rows):
    return [r["index"] for r in rows]


def test_add_row_appends_as_draft(rows):
    result = add_row(rows, {"title": "d"})
    assert _titles(result) == ["a", "b", "c", "d"]
    assert result[-1]["status"] == "draft"
    assert _indexes(result) == [1, 2, 3, 4]


def test_add_row_at_position_renumbers(rows):
    result = add_row(rows, {"title": "new"}, position=2)
    assert _titles(result) == ["a", "new", "b", "c"]
    assert _indexes(result) == [1, 2, 3, 4]


def test_add_row_does_not_mutate_input(rows):
    add_row(rows, {"title": "d"})
    assert len(rows) == 3


def test_remove_row_renumbers(rows):
    result = remove_row(rows, 2)
    assert _titles(result) == ["a", "c"]
    assert _indexes(result) == [1, 2]


def test_remove_row_out_of_range(rows):
    with pytest.raises(IndexError):
        remove_row(rows, 4)


def test_move_row(rows):
    result = move_row(rows, 3, 1)
    assert _titles(result) == ["c", "a", "b"]
    assert _indexes(result) == [1, 2, 3]


def test_move_row_out_of_range(rows):
    with pytest.raises(IndexError):
        move_row(rows, 1, 0)


def test_close_and_reopen_rows(rows):
    closed = set_status(rows, RowStatus.CLOSED, closed_at="2026-01-01T00:00:00+00:00")
    assert all(r["status"] == "closed" for r in closed)
    assert all(r["closed_at"] == "2026-01-01T00:00:00+00:00" for r in closed)

    reopened = set_status(closed, RowStatus.DRAFT)
    assert all(r["status"] == "draft" for r in reopened)
    assert all("closed_at" not in r for r in reopened)
    assert _titles(reopened) == ["a", "b", "c"]
