"""
Shared fixtures for the gateway test suite.
"""

from __future__ import annotations

import pytest

from backend.ewers.core.config import Settings
from backend.ewers.integrations.store import InMemoryCredentialStore


def _make_settings(**overrides) -> Settings:
    """Settings isolated from any local .env file."""
    base = {
        "ENVIRONMENT": "test",
        "CREDENTIAL_STORE": "memory",
        "CHANNEL_PROVIDER_MODE": "simulation",
    }
    base.update(overrides)
    return Settings(_env_file=None, **base)


@pytest.fixture
def settings_factory():
    return _make_settings


@pytest.fixture
def settings() -> Settings:
    return _make_settings()


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()
