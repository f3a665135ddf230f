"""Tests for the accelerator catalog and its validation."""

import pytest

from accelerator_engine.core.exceptions import CatalogError, UnknownAcceleratorError
from accelerator_engine.domain.catalog import (
    ACCELERATORS,
    AcceleratorDefinition,
    dependency_numbers,
    get_accelerator,
    group_members,
    validate_catalog,
)
from accelerator_engine.domain.steps import StepDefinition

pytestmark = pytest.mark.unit


def _acc(number, group="g", requires=None, requires_group=None, steps=None):
    return AcceleratorDefinition(
        number=number,
        key=f"acc_{number}",
        title=f"Accelerator {number}",
        group=group,
        steps=steps or (StepDefinition(1, "one", "One"), StepDefinition(2, "two", "Two")),
        requires=requires,
        requires_group=requires_group,
    )


def test_shipped_catalog_is_valid():
    validate_catalog(ACCELERATORS)


def test_every_accelerator_has_contiguous_steps():
    for accelerator in ACCELERATORS.values():
        assert [s.number for s in accelerator.steps] == list(range(1, accelerator.total_steps + 1))


def test_default_chain_requires_previous_accelerator():
    assert ACCELERATORS[1].prerequisites == ()
    assert ACCELERATORS[2].prerequisites == (1,)
    assert ACCELERATORS[8].prerequisites == (7,)


def test_group_members_in_order():
    assert group_members("diagnosis") == (1, 2, 3)
    assert group_members("implementation") == (6, 7, 8)


def test_dependency_numbers_include_group_without_self():
    assert dependency_numbers(ACCELERATORS[4]) == (1, 2, 3)
    assert dependency_numbers(ACCELERATORS[6]) == (4, 5)


def test_get_accelerator_unknown_raises():
    with pytest.raises(UnknownAcceleratorError):
        get_accelerator(99)


def test_step_lookup_out_of_range():
    with pytest.raises(IndexError):
        ACCELERATORS[7].step(4)
    assert ACCELERATORS[7].step(2).key == "rubric"


# ============================================================================
# validate_catalog rejections
# ============================================================================


def test_rejects_gap_in_step_numbers():
    broken = _acc(1, steps=(StepDefinition(1, "a", "A"), StepDefinition(3, "c", "C")))
    with pytest.raises(CatalogError, match="contiguously"):
        validate_catalog({1: broken})


def test_rejects_duplicate_step_keys():
    broken = _acc(1, steps=(StepDefinition(1, "a", "A"), StepDefinition(2, "a", "A again")))
    with pytest.raises(CatalogError, match="duplicate"):
        validate_catalog({1: broken})


def test_rejects_unknown_prerequisite():
    with pytest.raises(CatalogError, match="unknown accelerator"):
        validate_catalog({1: _acc(1, requires=(5,))})


def test_rejects_unknown_group():
    with pytest.raises(CatalogError, match="unknown group"):
        validate_catalog({1: _acc(1, requires_group=("nope", 100))})


def test_rejects_threshold_out_of_range():
    catalog = {1: _acc(1, group="x"), 2: _acc(2, group="y", requires_group=("x", 0))}
    with pytest.raises(CatalogError, match="threshold"):
        validate_catalog(catalog)


def test_rejects_prerequisite_cycle():
    catalog = {1: _acc(1, requires=(2,)), 2: _acc(2, requires=(1,))}
    with pytest.raises(CatalogError, match="cycle"):
        validate_catalog(catalog)


def test_rejects_cycle_through_group_threshold():
    catalog = {
        1: _acc(1, group="x", requires=(), requires_group=("y", 100)),
        2: _acc(2, group="y", requires=(), requires_group=("x", 100)),
    }
    with pytest.raises(CatalogError, match="cycle"):
        validate_catalog(catalog)
