"""Shared test fixtures for all test groups."""

import pytest
from fakeredis import FakeAsyncRedis

from accelerator_engine.core.config import Settings
from accelerator_engine.domain.steps import SessionStatus
from accelerator_engine.generation.client_fake import GenerationClientFake
from accelerator_engine.stores.base import SessionUpdate
from accelerator_engine.stores.redis_store import RedisSessionStore


@pytest.fixture
async def redis():
    """Create a fake Redis instance for testing."""
    fake_redis = FakeAsyncRedis(decode_responses=True)
    yield fake_redis
    await fake_redis.flushall()
    await fake_redis.aclose()


@pytest.fixture
def store(redis):
    """RedisSessionStore on fake Redis."""
    return RedisSessionStore(redis)


@pytest.fixture
def settings():
    """Settings with short timers so autosave tests run in milliseconds."""
    return Settings(
        _env_file=None,
        autosave_debounce_seconds=0.05,
        autosave_throttle_seconds=0.0,
        autosave_periodic_flush_seconds=0.0,
        generation_cooldown_seconds=0.0,
        session_lease_enabled=False,
    )


@pytest.fixture
def client_fake():
    """Fresh GenerationClientFake with happy_path scenario (default)."""
    return GenerationClientFake(scenario="happy_path")


@pytest.fixture
def client_fake_network_failure():
    return GenerationClientFake(scenario="network_failure")


@pytest.fixture
def client_fake_upstream_rejection():
    return GenerationClientFake(scenario="upstream_rejection")


@pytest.fixture
def seed_completed(store):
    """Factory creating completed sessions directly in the store (prerequisite setup)."""
    from accelerator_engine.domain.catalog import ACCELERATORS

    async def _seed(user_id: str, number: int, data: dict | None = None):
        total_steps = ACCELERATORS[number].total_steps
        record = await store.create(user_id, number)
        return await store.update(
            record.id,
            SessionUpdate(
                current_step=total_steps,
                highest_step=total_steps,
                status=SessionStatus.COMPLETED,
                session_data=data or {},
            ),
        )

    return _seed
