from decimal import Decimal

import pytest

from rewardforge.config import RewardForgeConfig, SpinSector


def test_defaults(monkeypatch):
    for name in ("BOT_TOKEN", "ADMIN_ID", "SPIN_SECTORS", "STORAGE_BACKEND", "RNG_SEED"):
        monkeypatch.delenv(f"REWARDFORGE_{name}", raising=False)

    config = RewardForgeConfig.from_env()

    assert config.storage.backend == "memory"
    assert config.storage.resolve_dsn() is None
    assert config.admin.admin_id is None
    assert config.rewards.ad_reward == Decimal("3")
    assert config.rewards.task_reward == Decimal("50")
    assert config.quotas.ad_cap == 100
    assert config.quotas.spin_cap == 15
    assert config.quotas.window_seconds == 6 * 60 * 60
    assert config.tokens.validity_seconds == 60
    assert config.auth.init_data_max_age_seconds == 1200
    assert config.withdrawals.min_amount == Decimal("400")
    assert [sector.prize for sector in config.rewards.spin_sectors] == [5, 10, 15, 20, 5]


def test_from_env_overrides(monkeypatch):
    monkeypatch.setenv("REWARDFORGE_BOT_TOKEN", "42:abc")
    monkeypatch.setenv("REWARDFORGE_ADMIN_ID", "5")
    monkeypatch.setenv("REWARDFORGE_STORAGE_BACKEND", "sqlalchemy")
    monkeypatch.setenv("REWARDFORGE_COMMISSION_RATE", "0.1")
    monkeypatch.setenv("REWARDFORGE_COMMISSION_SECRET", "s3cret")
    monkeypatch.setenv("REWARDFORGE_SPIN_SECTORS", '[{"prize": 1, "weight": 3}, 50]')
    monkeypatch.setenv("REWARDFORGE_VERIFY_ADMIN_INIT_DATA", "yes")
    monkeypatch.setenv("REWARDFORGE_RNG_SEED", "11")

    config = RewardForgeConfig.from_env()

    assert config.auth.bot_token == "42:abc"
    assert config.auth.commission_secret == "s3cret"
    assert config.auth.verify_admin_init_data is True
    assert config.admin.admin_id == 5
    assert config.storage.resolve_dsn() == "sqlite+aiosqlite:///./rewardforge.db"
    assert config.rewards.commission_rate == Decimal("0.1")
    assert config.rewards.spin_sectors == (
        SpinSector(prize=Decimal("1"), weight=3.0),
        SpinSector(prize=Decimal("50"), weight=1.0),
    )
    assert config.rng_seed == 11


@pytest.mark.parametrize(
    ("name", "value"),
    [("AD_REWARD", "three"), ("SPIN_SECTORS", "{oops"), ("SPIN_SECTORS", "[]")],
)
def test_from_env_rejects_garbage(monkeypatch, name, value):
    monkeypatch.setenv(f"REWARDFORGE_{name}", value)
    with pytest.raises(ValueError):
        RewardForgeConfig.from_env()
