"""Balance mutations with exactly-once and no-lost-update guarantees."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Mapping
from uuid import uuid4

from .clock import Clock, as_utc, utcnow
from .events import COMMISSION_PAID, COMMISSION_SKIPPED, REWARD_GRANTED, EventBus
from .exceptions import (
    ActionTooSoon,
    CommissionAlreadyPaid,
    InsufficientBalance,
    QuotaExceeded,
    RewardNotFound,
    StoreUnavailable,
    TaskAlreadyCompleted,
    UserBanned,
    UserNotFound,
)
from .quota import QuotaWindowManager
from .retry import retry_store_call
from .rewards import RewardRegistry, RewardRule
from ..config import RewardConfig
from ..storage.base import (
    ActionKind,
    CommissionRecord,
    CommissionStore,
    RewardHistoryStore,
    RewardRecord,
    UserRecord,
    UserStore,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RewardOutcome:
    reward_id: str
    kind: ActionKind
    amount: Decimal
    new_balance: Decimal
    quota_count: int | None


@dataclass(slots=True)
class CommissionOutcome:
    paid: bool
    amount: Decimal
    referrer_id: int | None
    reason: str | None = None


def _new_reward_id() -> str:
    return uuid4().hex


class RewardLedger:
    """Apply reward credits and reservation debits.

    Every balance change is a relative adjustment evaluated by the store. When a
    step of a grant fails after earlier steps landed, those steps are reversed
    before the error surfaces.
    """

    def __init__(
        self,
        users: UserStore,
        history: RewardHistoryStore,
        commissions: CommissionStore,
        quotas: QuotaWindowManager,
        registry: RewardRegistry,
        config: RewardConfig,
        event_bus: EventBus,
        *,
        clock: Clock = utcnow,
        id_factory: Callable[[], str] = _new_reward_id,
    ) -> None:
        self._users = users
        self._history = history
        self._commissions = commissions
        self._quotas = quotas
        self._registry = registry
        self._config = config
        self._event_bus = event_bus
        self._clock = clock
        self._id_factory = id_factory

    async def load_active_user(self, user_id: int) -> UserRecord:
        user = await self._users.get(user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        if user.is_banned:
            raise UserBanned(f"User {user_id} is banned")
        return user

    async def grant(
        self, user_id: int, kind: ActionKind, payload: Mapping[str, Any] | None = None
    ) -> RewardOutcome:
        """Credit one reward whose action token the caller has already consumed."""
        rule = self._registry.get(kind)
        amount = rule.delta.amount(payload)
        user = await self.load_active_user(user_id)
        now = self._clock()

        # Rejections caught here leave the pacing stamp untouched.
        if rule.one_time and user.task_completed:
            raise TaskAlreadyCompleted("Task already completed")
        if rule.quota is not None:
            status = await self._quotas.check_and_maybe_reset(user, rule.quota)
            if status.remaining <= 0:
                raise QuotaExceeded(rule.quota.value, status.cap)

        await self._check_pacing(user_id, now)

        quota_count = None
        if rule.quota is not None:
            quota_count = await self._quotas.record_use(user_id, rule.quota)

        claimed_once = False
        credited = False
        try:
            if rule.one_time:
                if not await self._users.claim_task(user_id):
                    raise TaskAlreadyCompleted("Task already completed")
                claimed_once = True
            new_balance = await self._users.adjust_balance(user_id, amount)
            if new_balance is None:
                raise StoreUnavailable(f"Balance of user {user_id} could not be credited")
            credited = True
            record = RewardRecord(
                reward_id=self._id_factory(),
                user_id=user_id,
                kind=kind,
                amount=amount,
                created_at=now,
            )
            await retry_store_call("reward_history.add", lambda: self._history.add_record(record))
        except Exception:
            await self._undo_grant(
                user_id,
                rule,
                amount,
                quota=quota_count is not None,
                once=claimed_once,
                credited=credited,
            )
            raise

        logger.info("Granted %s to user %s for %s.", amount, user_id, kind.value)
        await self._event_bus.publish(
            REWARD_GRANTED,
            {
                "user_id": user_id,
                "kind": kind.value,
                "amount": amount,
                "reward_id": record.reward_id,
            },
        )
        return RewardOutcome(
            reward_id=record.reward_id,
            kind=kind,
            amount=amount,
            new_balance=new_balance,
            quota_count=quota_count,
        )

    async def credit(self, user_id: int, amount: Decimal, *, attempts: int = 1) -> Decimal:
        if amount <= 0:
            raise ValueError("Amount must be positive")

        async def apply() -> Decimal:
            new_balance = await self._users.adjust_balance(user_id, amount)
            if new_balance is None:
                raise UserNotFound(f"User {user_id} not found")
            return new_balance

        return await retry_store_call(f"credit:{user_id}", apply, attempts=attempts)

    async def debit(self, user_id: int, amount: Decimal) -> Decimal:
        if amount <= 0:
            raise ValueError("Amount must be positive")
        new_balance = await self._users.adjust_balance(user_id, -amount)
        if new_balance is None:
            raise InsufficientBalance("Balance insufficient for withdrawal")
        return new_balance

    async def pay_commission(self, referee_id: int, source_reward_id: str) -> CommissionOutcome:
        """Pay the referrer a share of one reward, at most once per reward."""
        referee = await self._users.get(referee_id)
        if referee is None:
            raise UserNotFound(f"User {referee_id} not found")
        source = await self._history.get(source_reward_id)
        if source is None or source.user_id != referee_id:
            raise RewardNotFound(f"Reward {source_reward_id} not found for user {referee_id}")

        amount = source.amount * self._config.commission_rate
        if source.kind in self._registry and not self._registry.get(source.kind).commissionable:
            return await self._skip(referee_id, source_reward_id, amount, None, "not commissionable")
        if amount < self._config.commission_epsilon:
            return await self._skip(referee_id, source_reward_id, amount, None, "below epsilon")
        referrer_id = referee.referrer_id
        if referrer_id is None:
            return await self._skip(referee_id, source_reward_id, amount, None, "no referrer")
        referrer = await self._users.get(referrer_id)
        if referrer is None:
            return await self._skip(referee_id, source_reward_id, amount, referrer_id, "referrer missing")
        if referrer.is_banned:
            return await self._skip(referee_id, source_reward_id, amount, referrer_id, "referrer banned")

        record = CommissionRecord(
            source_reward_id=source_reward_id,
            referrer_id=referrer_id,
            referee_id=referee_id,
            amount=amount,
            created_at=self._clock(),
        )
        if not await self._commissions.add_if_absent(record):
            raise CommissionAlreadyPaid(f"Commission for reward {source_reward_id} already paid")
        try:
            await self.credit(referrer_id, amount, attempts=3)
        except Exception:
            logger.error(
                "Commission credit for reward %s failed; removing record.", source_reward_id
            )
            await retry_store_call(
                "commissions.remove", lambda: self._commissions.remove(source_reward_id)
            )
            raise

        logger.info(
            "Paid commission %s to user %s for reward %s of user %s.",
            amount,
            referrer_id,
            source_reward_id,
            referee_id,
        )
        await self._event_bus.publish(
            COMMISSION_PAID,
            {
                "referrer_id": referrer_id,
                "referee_id": referee_id,
                "amount": amount,
                "source_reward_id": source_reward_id,
            },
        )
        return CommissionOutcome(paid=True, amount=amount, referrer_id=referrer_id)

    async def _skip(
        self,
        referee_id: int,
        source_reward_id: str,
        amount: Decimal,
        referrer_id: int | None,
        reason: str,
    ) -> CommissionOutcome:
        logger.warning(
            "Commission for reward %s of user %s skipped: %s.", source_reward_id, referee_id, reason
        )
        await self._event_bus.publish(
            COMMISSION_SKIPPED,
            {"referee_id": referee_id, "source_reward_id": source_reward_id, "reason": reason},
        )
        return CommissionOutcome(paid=False, amount=amount, referrer_id=referrer_id, reason=reason)

    async def _check_pacing(self, user_id: int, now: datetime) -> None:
        interval = timedelta(seconds=self._config.min_action_interval_seconds)
        blocking = await self._users.claim_action_slot(user_id, now, interval)
        if blocking is not None:
            remaining = (interval - (now - as_utc(blocking))).total_seconds()
            raise ActionTooSoon(max(remaining, 0.0))

    async def _undo_grant(
        self,
        user_id: int,
        rule: RewardRule,
        amount: Decimal,
        *,
        quota: bool,
        once: bool,
        credited: bool,
    ) -> None:
        try:
            if credited:
                await retry_store_call(
                    "ledger.reverse", lambda: self._users.adjust_balance(user_id, -amount)
                )
            if once:
                await retry_store_call("users.release_task", lambda: self._users.release_task(user_id))
            if quota and rule.quota is not None:
                quota_kind = rule.quota
                await retry_store_call(
                    "quota.release", lambda: self._quotas.release_use(user_id, quota_kind)
                )
        except StoreUnavailable:
            logger.critical(
                "Could not undo partial %s grant for user %s (amount %s, credited=%s).",
                rule.kind.value,
                user_id,
                amount,
                credited,
            )
