"""Configuration models for RewardForge."""

from __future__ import annotations

import os
import json
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Literal, Sequence


StorageBackend = Literal["memory", "sqlalchemy"]


@dataclass(slots=True)
class StorageConfig:
    """Configure how users, tokens and withdrawals are persisted."""

    backend: StorageBackend = "memory"
    dsn: str | None = None
    echo_sql: bool = False
    timeout_seconds: float = 10.0

    def resolve_dsn(self) -> str | None:
        if self.dsn:
            return self.dsn
        if self.backend == "sqlalchemy":
            return "sqlite+aiosqlite:///./rewardforge.db"
        return None


@dataclass(slots=True)
class AuthConfig:
    """Identity assertion settings for the Telegram WebApp frontend."""

    bot_token: str = ""
    init_data_max_age_seconds: int = 20 * 60
    commission_secret: str | None = None
    verify_admin_init_data: bool = False


@dataclass(slots=True)
class AdminCommandConfig:
    """Allows renaming admin bot commands."""

    pending: str = "pending"
    approve: str = "approve"
    reject: str = "reject"
    ban: str = "ban"
    unban: str = "unban"


@dataclass(slots=True)
class AdminConfig:
    admin_id: int | None = None
    commands: AdminCommandConfig = field(default_factory=AdminCommandConfig)


@dataclass(slots=True)
class SpinSector:
    prize: Decimal
    weight: float = 1.0


def _default_sectors() -> tuple[SpinSector, ...]:
    return tuple(SpinSector(prize=Decimal(prize)) for prize in (5, 10, 15, 20, 5))


@dataclass(slots=True)
class RewardConfig:
    """Amounts granted per action and referral settings."""

    ad_reward: Decimal = Decimal("3")
    task_reward: Decimal = Decimal("50")
    commission_rate: Decimal = Decimal("0.05")
    commission_epsilon: Decimal = Decimal("0.000001")
    min_action_interval_seconds: float = 3.0
    spin_sectors: Sequence[SpinSector] = field(default_factory=_default_sectors)


@dataclass(slots=True)
class QuotaConfig:
    """Rolling caps, anchored to the moment the cap was reached."""

    ad_cap: int = 100
    spin_cap: int = 15
    window_seconds: int = 6 * 60 * 60


@dataclass(slots=True)
class TokenConfig:
    validity_seconds: int = 60


@dataclass(slots=True)
class TaskConfig:
    channel_id: str = "@botbababab"
    request_timeout_seconds: int = 10


@dataclass(slots=True)
class WithdrawalConfig:
    min_amount: Decimal = Decimal("400")
    insert_attempts: int = 3


@dataclass(slots=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    path: str = "/api"


@dataclass(slots=True)
class RewardForgeConfig:
    """Top-level configuration container."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    admin: AdminConfig = field(default_factory=AdminConfig)
    rewards: RewardConfig = field(default_factory=RewardConfig)
    quotas: QuotaConfig = field(default_factory=QuotaConfig)
    tokens: TokenConfig = field(default_factory=TokenConfig)
    task: TaskConfig = field(default_factory=TaskConfig)
    withdrawals: WithdrawalConfig = field(default_factory=WithdrawalConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    rng_seed: int | None = None

    @classmethod
    def from_env(cls) -> "RewardForgeConfig":
        """Create config from environment variables prefixed with REWARDFORGE_."""
        prefix = "REWARDFORGE_"

        def env(name: str, default: str | None = None) -> str | None:
            return os.getenv(f"{prefix}{name}", default)

        admin_raw = (env("ADMIN_ID", "") or "").strip()

        return cls(
            storage=StorageConfig(
                backend=env("STORAGE_BACKEND", "memory"),
                dsn=env("STORAGE_DSN"),
                echo_sql=_flag(env("STORAGE_ECHO_SQL", "false")),
                timeout_seconds=float(env("STORAGE_TIMEOUT", "10")),
            ),
            auth=AuthConfig(
                bot_token=env("BOT_TOKEN", ""),
                init_data_max_age_seconds=int(env("INIT_DATA_MAX_AGE", str(20 * 60))),
                commission_secret=env("COMMISSION_SECRET") or None,
                verify_admin_init_data=_flag(env("VERIFY_ADMIN_INIT_DATA", "false")),
            ),
            admin=AdminConfig(
                admin_id=int(admin_raw) if admin_raw else None,
                commands=AdminCommandConfig(
                    pending=env("ADMIN_CMD_PENDING", "pending") or "pending",
                    approve=env("ADMIN_CMD_APPROVE", "approve") or "approve",
                    reject=env("ADMIN_CMD_REJECT", "reject") or "reject",
                    ban=env("ADMIN_CMD_BAN", "ban") or "ban",
                    unban=env("ADMIN_CMD_UNBAN", "unban") or "unban",
                ),
            ),
            rewards=RewardConfig(
                ad_reward=_decimal(env("AD_REWARD", "3"), "AD_REWARD"),
                task_reward=_decimal(env("TASK_REWARD", "50"), "TASK_REWARD"),
                commission_rate=_decimal(env("COMMISSION_RATE", "0.05"), "COMMISSION_RATE"),
                commission_epsilon=_decimal(
                    env("COMMISSION_EPSILON", "0.000001"), "COMMISSION_EPSILON"
                ),
                min_action_interval_seconds=float(env("MIN_ACTION_INTERVAL", "3")),
                spin_sectors=_parse_spin_sectors(env("SPIN_SECTORS")),
            ),
            quotas=QuotaConfig(
                ad_cap=int(env("AD_CAP", "100")),
                spin_cap=int(env("SPIN_CAP", "15")),
                window_seconds=int(env("QUOTA_WINDOW", str(6 * 60 * 60))),
            ),
            tokens=TokenConfig(validity_seconds=int(env("TOKEN_VALIDITY", "60"))),
            task=TaskConfig(
                channel_id=env("TASK_CHANNEL_ID", "@botbababab"),
                request_timeout_seconds=int(env("TASK_CHECK_TIMEOUT", "10")),
            ),
            withdrawals=WithdrawalConfig(
                min_amount=_decimal(env("MIN_WITHDRAWAL", "400"), "MIN_WITHDRAWAL"),
                insert_attempts=int(env("WITHDRAWAL_INSERT_ATTEMPTS", "3")),
            ),
            server=ServerConfig(
                host=env("HOST", "0.0.0.0"),
                port=int(env("PORT", "8080")),
                path=env("API_PATH", "/api"),
            ),
            rng_seed=int(env("RNG_SEED")) if env("RNG_SEED") else None,
        )


def _flag(raw: str | None) -> bool:
    return (raw or "").lower() in {"1", "true", "yes"}


def _decimal(raw: str, name: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid decimal for REWARDFORGE_{name}: {raw!r}") from exc


def _parse_spin_sectors(raw: str | None) -> tuple[SpinSector, ...]:
    """Parse ``[{"prize": 5, "weight": 2}, 10, ...]``; bare numbers get weight 1."""
    if not raw:
        return _default_sectors()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON for REWARDFORGE_SPIN_SECTORS") from exc
    if not isinstance(data, list) or not data:
        raise ValueError("REWARDFORGE_SPIN_SECTORS must be a non-empty JSON array")
    sectors = []
    for item in data:
        if isinstance(item, dict):
            sectors.append(
                SpinSector(prize=Decimal(str(item["prize"])), weight=float(item.get("weight", 1.0)))
            )
        else:
            sectors.append(SpinSector(prize=Decimal(str(item))))
    return tuple(sectors)
