"""Row helpers for array artifacts (class sessions, strategies).

Rows are identified by a 1-based `index` inside their array. Every insert,
removal and reorder renumbers the array 1..n.
"""
from enum import StrEnum
from typing import Any


class RowStatus(StrEnum):
    DRAFT = "draft"
    CLOSED = "closed"


def renumber(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [{**row, "index": i} for i, row in enumerate(rows, start=1)]


def _position(rows: list[dict[str, Any]], index: int) -> int:
    if index < 1 or index > len(rows):
        raise IndexError(f"Row {index} out of range 1..{len(rows)}")
    return index - 1


def add_row(rows: list[dict[str, Any]], row: dict[str, Any], position: int | None = None) -> list[dict[str, Any]]:
    """Insert `row` before 1-based `position` (append when None)."""
    new_rows = list(rows)
    new_row = {"status": RowStatus.DRAFT.value, **row}
    if position is None or position > len(new_rows):
        new_rows.append(new_row)
    else:
        new_rows.insert(max(position, 1) - 1, new_row)
    return renumber(new_rows)


def remove_row(rows: list[dict[str, Any]], index: int) -> list[dict[str, Any]]:
    new_rows = list(rows)
    del new_rows[_position(new_rows, index)]
    return renumber(new_rows)


def move_row(rows: list[dict[str, Any]], from_index: int, to_index: int) -> list[dict[str, Any]]:
    new_rows = list(rows)
    row = new_rows.pop(_position(new_rows, from_index))
    new_rows.insert(_position(rows, to_index), row)
    return renumber(new_rows)


def set_status(
    rows: list[dict[str, Any]], status: RowStatus, closed_at: str | None = None
) -> list[dict[str, Any]]:
    """Set every row's status; closed_at is stamped on close and cleared on reopen."""
    updated = []
    for row in rows:
        new_row = {**row, "status": status.value}
        if status == RowStatus.CLOSED:
            new_row["closed_at"] = closed_at
        else:
            new_row.pop("closed_at", None)
        updated.append(new_row)
    return updated
