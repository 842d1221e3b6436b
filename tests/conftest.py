"""
Shared fixtures for storage orchestration tests.
"""
from typing import Any, Callable

import pytest

from app.core.config import Settings
from app.infrastructure.storage.memory import InMemoryStorageService
from tests.mocks.cache import FakeClock, InMemoryCache


TEST_ENCRYPTION_KEY = "test-encryption-key-for-storage"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Build settings isolated from the environment's .env file."""

    def _make(**overrides: Any) -> Settings:
        values = {
            "STORAGE_ENCRYPTION_KEY": TEST_ENCRYPTION_KEY,
            "STORAGE_ALERT_RECIPIENTS": ["ops@example.com"],
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


@pytest.fixture
def cache(clock) -> InMemoryCache:
    return InMemoryCache(clock=clock)


@pytest.fixture
def storage(clock) -> InMemoryStorageService:
    return InMemoryStorageService(clock=clock)
