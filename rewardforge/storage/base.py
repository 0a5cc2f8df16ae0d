"""Storage abstractions used by the RewardForge services.

Every mutating method is a single atomic primitive evaluated by the backend:
a conditional update, insert-if-absent or delete-returning. Services never
write back a value they read earlier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Protocol, Sequence


class ActionKind(str, Enum):
    WATCH_AD = "watchAd"
    PRE_SPIN = "preSpin"
    SPIN_RESULT = "spinResult"
    COMPLETE_TASK = "completeTask"
    WITHDRAW = "withdraw"


class QuotaKind(str, Enum):
    ADS = "ads"
    SPINS = "spins"


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


@dataclass(slots=True)
class QuotaWindow:
    count: int = 0
    capped_at: datetime | None = None


@dataclass(slots=True)
class UserRecord:
    user_id: int
    balance: Decimal = Decimal("0")
    quotas: dict[QuotaKind, QuotaWindow] = field(default_factory=dict)
    task_completed: bool = False
    is_banned: bool = False
    referrer_id: int | None = None
    last_action_at: datetime | None = None
    created_at: datetime | None = None

    def quota(self, kind: QuotaKind) -> QuotaWindow:
        return self.quotas.get(kind) or QuotaWindow()


@dataclass(slots=True)
class TokenRecord:
    token_id: str
    user_id: int
    kind: ActionKind
    created_at: datetime
    payload: Mapping[str, Any] | None = None


@dataclass(slots=True)
class WithdrawalRecord:
    request_id: str
    user_id: int
    amount: Decimal
    destination: str
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    created_at: datetime | None = None
    resolved_by: int | None = None
    resolved_at: datetime | None = None


@dataclass(slots=True)
class RewardRecord:
    reward_id: str
    user_id: int
    kind: ActionKind
    amount: Decimal
    created_at: datetime


@dataclass(slots=True)
class CommissionRecord:
    source_reward_id: str
    referrer_id: int
    referee_id: int
    amount: Decimal
    created_at: datetime


class UserStore(Protocol):
    async def get(self, user_id: int) -> UserRecord | None:
        ...

    async def create(self, record: UserRecord) -> bool:
        """Insert if absent; return False when the user already exists."""
        ...

    async def adjust_balance(
        self, user_id: int, delta: Decimal, *, floor: Decimal = Decimal("0")
    ) -> Decimal | None:
        """Apply ``balance += delta`` unless the result drops below ``floor``."""
        ...

    async def claim_action_slot(
        self, user_id: int, now: datetime, min_interval: timedelta
    ) -> datetime | None:
        """Stamp ``last_action_at`` if the interval elapsed; else return the blocking stamp."""
        ...

    async def set_banned(self, user_id: int, banned: bool) -> bool:
        ...

    async def claim_task(self, user_id: int) -> bool:
        ...

    async def release_task(self, user_id: int) -> None:
        ...

    async def claim_quota_slot(
        self, user_id: int, kind: QuotaKind, cap: int, now: datetime
    ) -> int | None:
        """Increment the counter if below ``cap``; stamp ``capped_at`` when it reaches it."""
        ...

    async def release_quota_slot(self, user_id: int, kind: QuotaKind, cap: int) -> None:
        ...

    async def reset_quota(
        self, user_id: int, kind: QuotaKind, expected_capped_at: datetime
    ) -> bool:
        ...

    async def clear_quota_stamp(
        self, user_id: int, kind: QuotaKind, cap: int, expected_capped_at: datetime
    ) -> bool:
        ...


class TokenStore(Protocol):
    async def add(self, record: TokenRecord) -> None:
        ...

    async def consume(
        self, token_id: str, user_id: int, kind: ActionKind, not_before: datetime
    ) -> TokenRecord | None:
        """Delete the matching live token and return it, or None."""
        ...

    async def prune(self, user_id: int, kind: ActionKind, older_than: datetime) -> int:
        ...


class WithdrawalStore(Protocol):
    async def add(self, record: WithdrawalRecord) -> None:
        ...

    async def get(self, request_id: str) -> WithdrawalRecord | None:
        ...

    async def transition(
        self,
        request_id: str,
        from_status: WithdrawalStatus,
        to_status: WithdrawalStatus,
        *,
        resolved_by: int | None,
        resolved_at: datetime | None,
    ) -> WithdrawalRecord | None:
        ...

    async def list_by_status(self, status: WithdrawalStatus) -> Sequence[WithdrawalRecord]:
        ...

    async def recent_for_user(self, user_id: int, limit: int = 20) -> Sequence[WithdrawalRecord]:
        ...


class RewardHistoryStore(Protocol):
    async def add_record(self, record: RewardRecord) -> None:
        ...

    async def get(self, reward_id: str) -> RewardRecord | None:
        ...


class CommissionStore(Protocol):
    async def add_if_absent(self, record: CommissionRecord) -> bool:
        ...

    async def remove(self, source_reward_id: str) -> None:
        ...

    async def for_referrer(self, referrer_id: int) -> Sequence[CommissionRecord]:
        ...


class AuditStore(Protocol):
    async def add_entry(self, action: str, payload: dict) -> None:
        ...
