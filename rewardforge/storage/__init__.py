"""Storage backends for RewardForge."""

from .base import (
    ActionKind,
    AuditStore,
    CommissionRecord,
    CommissionStore,
    QuotaKind,
    QuotaWindow,
    RewardHistoryStore,
    RewardRecord,
    TokenRecord,
    TokenStore,
    UserRecord,
    UserStore,
    WithdrawalRecord,
    WithdrawalStatus,
    WithdrawalStore,
)
from .memory import (
    InMemoryAuditStore,
    InMemoryCommissionStore,
    InMemoryRewardHistoryStore,
    InMemoryTokenStore,
    InMemoryUserStore,
    InMemoryWithdrawalStore,
)
from .sqlalchemy import AsyncSQLAlchemyStorage

__all__ = [
    "ActionKind",
    "AuditStore",
    "CommissionRecord",
    "CommissionStore",
    "QuotaKind",
    "QuotaWindow",
    "RewardHistoryStore",
    "RewardRecord",
    "TokenRecord",
    "TokenStore",
    "UserRecord",
    "UserStore",
    "WithdrawalRecord",
    "WithdrawalStatus",
    "WithdrawalStore",
    "InMemoryAuditStore",
    "InMemoryCommissionStore",
    "InMemoryRewardHistoryStore",
    "InMemoryTokenStore",
    "InMemoryUserStore",
    "InMemoryWithdrawalStore",
    "AsyncSQLAlchemyStorage",
]
