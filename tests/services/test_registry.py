"""Tests for ControllerRegistry and session ownership leases."""

import asyncio

import pytest

from accelerator_engine.core.exceptions import PrerequisiteNotMetError, SessionOwnershipError
from accelerator_engine.core.locking import SessionLease
from accelerator_engine.services.registry import ControllerRegistry

pytestmark = pytest.mark.unit


@pytest.fixture
def lease(redis):
    return SessionLease(redis, ttl=60)


@pytest.fixture
async def registry(store, client_fake, settings, lease):
    registry = ControllerRegistry(store, client_fake, lease=lease, owner="worker-a", settings=settings)
    yield registry
    await registry.shutdown()


async def test_same_controller_returned(registry):
    first = await registry.get("user-1", 1)
    second = await registry.get("user-1", 1)

    assert first is second
    assert len(registry) == 1


async def test_concurrent_get_opens_once(registry, store):
    controllers = await asyncio.gather(*(registry.get("user-1", 1) for _ in range(5)))

    assert len({id(c) for c in controllers}) == 1
    assert len(await store.list_for_user("user-1", [1])) == 1


async def test_lease_held_elsewhere_raises(registry, lease):
    await lease.acquire("user-1:1", "worker-b")

    with pytest.raises(SessionOwnershipError) as exc_info:
        await registry.get("user-1", 1)

    assert exc_info.value.holder == "worker-b"
    assert len(registry) == 0


async def test_failed_open_releases_lease(registry, lease):
    with pytest.raises(PrerequisiteNotMetError):
        await registry.get("user-1", 8)

    assert await lease.holder("user-1:8") is None


async def test_release_flushes_and_frees_lease(registry, lease, store):
    controller = await registry.get("user-1", 1)
    controller.update_session_data({"notes": "unsaved"})

    await registry.release("user-1", 1)

    assert len(registry) == 0
    assert await lease.holder("user-1:1") is None
    assert (await store.get("user-1", 1)).session_data["notes"] == "unsaved"


async def test_registry_without_lease(store, client_fake, settings):
    registry = ControllerRegistry(store, client_fake, settings=settings)

    controller = await registry.get("user-1", 1)

    assert controller.record.accelerator_number == 1
    await registry.shutdown()


# ============================================================================
# Keepalive: lease renewal and eviction
# ============================================================================


@pytest.fixture
def fast_settings(settings):
    return settings.model_copy(update={"session_lease_renew_seconds": 0.2, "controller_idle_seconds": 0.0})


async def test_lease_renewed_while_controller_held(store, client_fake, redis, fast_settings):
    lease = SessionLease(redis, ttl=1)
    worker_a = ControllerRegistry(store, client_fake, lease=lease, owner="worker-a", settings=fast_settings)
    worker_b = ControllerRegistry(store, client_fake, lease=lease, owner="worker-b", settings=fast_settings)

    await worker_a.get("user-1", 1)
    await asyncio.sleep(1.3)

    with pytest.raises(SessionOwnershipError) as exc_info:
        await worker_b.get("user-1", 1)
    assert exc_info.value.holder == "worker-a"
    assert len(worker_a) == 1

    await worker_a.shutdown()
    await worker_b.shutdown()


async def test_lost_lease_evicts_without_flushing(store, client_fake, redis, fast_settings):
    lease = SessionLease(redis, ttl=60)
    worker_a = ControllerRegistry(store, client_fake, lease=lease, owner="worker-a", settings=fast_settings)
    controller = await worker_a.get("user-1", 1)
    controller.autosave.debounce_seconds = 10.0
    controller.update_session_data({"notes": "written by the old owner"})

    await redis.delete("accelerator:lease:user-1:1")
    await lease.acquire("user-1:1", "worker-b")
    await asyncio.sleep(0.4)

    assert len(worker_a) == 0
    assert (await lease.holder("user-1:1"))["owner"] == "worker-b"
    assert "notes" not in (await store.get("user-1", 1)).session_data

    await worker_a.shutdown()


async def test_idle_controller_flushed_and_evicted(store, client_fake, lease, settings):
    idle_settings = settings.model_copy(update={"session_lease_renew_seconds": 0.05, "controller_idle_seconds": 0.2})
    registry = ControllerRegistry(store, client_fake, lease=lease, owner="worker-a", settings=idle_settings)
    controller = await registry.get("user-1", 1)
    controller.autosave.debounce_seconds = 10.0
    controller.update_session_data({"notes": "flushed on eviction"})

    await asyncio.sleep(0.5)

    assert len(registry) == 0
    assert await lease.holder("user-1:1") is None
    assert (await store.get("user-1", 1)).session_data["notes"] == "flushed on eviction"

    reopened = await registry.get("user-1", 1)
    assert reopened is not controller
    await registry.shutdown()
