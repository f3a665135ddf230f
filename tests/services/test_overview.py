"""Tests for AcceleratorOverviewService."""

import pytest

from accelerator_engine.domain.steps import SessionStatus
from accelerator_engine.services.overview import AcceleratorOverviewService
from accelerator_engine.stores.base import SessionUpdate

pytestmark = pytest.mark.unit


async def test_new_user_sees_only_first_accelerator_open(store):
    overview = await AcceleratorOverviewService(store).get_overview("user-1")

    accessible = [a.number for a in overview.accelerators if a.accessible]
    assert accessible == [1]
    assert overview.overall == 0
    assert all(a.status is None for a in overview.accelerators)


async def test_progress_and_group_counts(store, seed_completed):
    await seed_completed("user-1", 1)
    record = await store.create("user-1", 2)
    await store.update(record.id, SessionUpdate(current_step=3, highest_step=3))

    overview = await AcceleratorOverviewService(store).get_overview("user-1")
    by_number = {a.number: a for a in overview.accelerators}

    assert by_number[1].progress == 100
    assert by_number[1].status == SessionStatus.COMPLETED
    assert by_number[2].progress == 50
    assert by_number[2].accessible is True
    assert by_number[3].accessible is False
    assert by_number[3].missing == [2]
    assert overview.groups["diagnosis"] == 50
    assert overview.completed_by_group == {"design": 0, "diagnosis": 1, "implementation": 0}


async def test_design_unlocks_with_diagnosis_complete(store, seed_completed):
    for number in (1, 2, 3):
        await seed_completed("user-1", number)

    overview = await AcceleratorOverviewService(store).get_overview("user-1")
    by_number = {a.number: a for a in overview.accelerators}

    assert by_number[4].accessible is True
    assert by_number[5].accessible is False
    assert overview.groups["diagnosis"] == 100
