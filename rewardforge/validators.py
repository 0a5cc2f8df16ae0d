"""Validation utilities for RewardForge deployments."""

from __future__ import annotations

from .config import RewardForgeConfig


def validate_config(config: RewardForgeConfig) -> list[str]:
    """Return list of validation errors discovered in the configuration."""
    errors: list[str] = []

    storage = config.storage
    if storage.backend not in ("memory", "sqlalchemy"):
        errors.append(f"Unsupported storage backend '{storage.backend}'.")
    if storage.timeout_seconds <= 0:
        errors.append("Storage 'timeout_seconds' must be positive.")

    if not config.auth.bot_token:
        errors.append("Bot token is not set; init data cannot be verified.")
    if config.auth.init_data_max_age_seconds <= 0:
        errors.append("Init data max age must be positive.")
    if config.admin.admin_id is None:
        errors.append("Admin id is not set; admin operations will be denied.")

    rewards = config.rewards
    if rewards.ad_reward <= 0:
        errors.append(f"Ad reward must be positive, got '{rewards.ad_reward}'.")
    if rewards.task_reward <= 0:
        errors.append(f"Task reward must be positive, got '{rewards.task_reward}'.")
    if not 0 <= rewards.commission_rate < 1:
        errors.append(f"Commission rate '{rewards.commission_rate}' must be within [0, 1).")
    if rewards.commission_epsilon < 0:
        errors.append("Commission epsilon cannot be negative.")
    if rewards.min_action_interval_seconds < 0:
        errors.append("Minimum action interval cannot be negative.")

    if not rewards.spin_sectors:
        errors.append("Spin wheel does not contain any sectors.")
    for index, sector in enumerate(rewards.spin_sectors):
        if sector.prize <= 0:
            errors.append(f"Spin sector {index} has non-positive prize '{sector.prize}'.")
        if sector.weight <= 0:
            errors.append(f"Spin sector {index} has non-positive weight '{sector.weight}'.")

    quotas = config.quotas
    if quotas.ad_cap <= 0:
        errors.append("Ad cap must be positive.")
    if quotas.spin_cap <= 0:
        errors.append("Spin cap must be positive.")
    if quotas.window_seconds <= 0:
        errors.append("Quota window must be positive.")

    if config.tokens.validity_seconds <= 0:
        errors.append("Action token validity must be positive.")
    if not config.task.channel_id:
        errors.append("Task channel id is not set.")

    withdrawals = config.withdrawals
    if withdrawals.min_amount <= 0:
        errors.append("Minimum withdrawal amount must be positive.")
    if withdrawals.insert_attempts < 1:
        errors.append("Withdrawal insert attempts must be at least 1.")

    if not config.server.path.startswith("/"):
        errors.append(f"API path '{config.server.path}' must start with '/'.")

    return errors


__all__ = ["validate_config"]
