"""RewardForge: token-gated micro-reward ledger for Telegram mini apps."""

from .app import RewardApp, default_registry
from .config import RewardForgeConfig

__all__ = [
    "RewardApp",
    "RewardForgeConfig",
    "default_registry",
]
