"""Testing utilities for RewardForge.

Imports pytest and Faker; install with ``pip install rewardforge[testing]``.
"""

from .clock import FakeClock
from .factory import InitDataFactory, UserFactory
from .fixtures import TEST_ADMIN_ID, TEST_BOT_TOKEN, app_fixture, clock, memory_app, make_config
from .test_client import TestClient

__all__ = [
    "FakeClock",
    "InitDataFactory",
    "UserFactory",
    "TEST_ADMIN_ID",
    "TEST_BOT_TOKEN",
    "app_fixture",
    "clock",
    "memory_app",
    "make_config",
    "TestClient",
]
