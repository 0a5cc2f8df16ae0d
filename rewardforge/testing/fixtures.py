"""Pytest fixtures for RewardForge."""

from __future__ import annotations

from dataclasses import replace

import pytest

from .clock import FakeClock
from ..app import RewardApp
from ..config import AdminConfig, AuthConfig, RewardConfig, RewardForgeConfig
from ..domain.membership import MembershipOracle, MembershipStatus, StaticMembershipOracle

TEST_BOT_TOKEN = "123456:TEST-rewardforge-token"
TEST_ADMIN_ID = 1


def make_config(**overrides) -> RewardForgeConfig:
    """Config with pacing disabled, a known admin and a fixed RNG seed."""
    config = RewardForgeConfig(
        auth=AuthConfig(bot_token=TEST_BOT_TOKEN),
        admin=AdminConfig(admin_id=TEST_ADMIN_ID),
        rewards=RewardConfig(min_action_interval_seconds=0),
        rng_seed=7,
    )
    return replace(config, **overrides)


def app_fixture(
    config: RewardForgeConfig | None = None,
    *,
    clock: FakeClock | None = None,
    membership: MembershipOracle | None = None,
    **kwargs,
) -> RewardApp:
    """Helper for ad-hoc tests where pytest fixtures are not available."""
    return RewardApp(
        config or make_config(),
        clock=clock or FakeClock(),
        membership=membership or StaticMembershipOracle(MembershipStatus.MEMBER),
        **kwargs,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_app(clock: FakeClock) -> RewardApp:
    return app_fixture(clock=clock)
