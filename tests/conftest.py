import os
from datetime import datetime, timezone

import pytest

from flagengine.core.config import reset_settings
from flagengine.core.feature_flags import FeatureFlagService, reset_flag_service

# Settings are read from FLAG_ENGINE_* variables
_ENV_PREFIX = "FLAG_ENGINE_"


@pytest.fixture(autouse=True)
def env_isolation():
    """Isolate flag engine environment variables between tests."""
    backup = {k: v for k, v in os.environ.items() if k.startswith(_ENV_PREFIX)}
    try:
        yield
    finally:
        for k in [k for k in os.environ if k.startswith(_ENV_PREFIX)]:
            os.environ.pop(k, None)
        os.environ.update(backup)


@pytest.fixture(autouse=True)
def settings_isolation():
    """Drop cached settings and the process-wide service around each test."""
    reset_settings()
    reset_flag_service()
    try:
        yield
    finally:
        reset_settings()
        reset_flag_service()


@pytest.fixture
def now():
    """Fixed evaluation time: Monday 2024-01-08 12:00 UTC."""
    return datetime(2024, 1, 8, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def service():
    return FeatureFlagService()
