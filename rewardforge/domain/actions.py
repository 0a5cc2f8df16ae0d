"""Token-gated reward actions.

Each method consumes the caller's action token first and only then touches
the ledger, so a replayed or concurrent request with the same token id is
rejected before any balance, quota or task state is read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from .exceptions import BadRequest, MembershipRequired, QuotaExceeded, TaskAlreadyCompleted
from .ledger import CommissionOutcome, RewardLedger, RewardOutcome
from .membership import MembershipOracle, MembershipStatus
from .quota import QuotaWindowManager
from .rewards import SpinWheel
from .tokens import ActionTokenAuthority
from .withdrawals import WithdrawalReceipt, WithdrawalService
from ..storage.base import ActionKind, QuotaKind

logger = logging.getLogger(__name__)

# Kinds a client may request directly; spinResult only exists as a committed pre-spin token.
ISSUABLE_KINDS = frozenset(
    {ActionKind.WATCH_AD, ActionKind.PRE_SPIN, ActionKind.COMPLETE_TASK, ActionKind.WITHDRAW}
)


@dataclass(slots=True)
class SpinTicket:
    action_id: str
    spins_remaining: int


@dataclass(slots=True)
class SpinReward:
    reward: RewardOutcome
    prize_index: int


class RewardActions:
    def __init__(
        self,
        tokens: ActionTokenAuthority,
        ledger: RewardLedger,
        quotas: QuotaWindowManager,
        withdrawals: WithdrawalService,
        wheel: SpinWheel,
        membership: MembershipOracle,
    ) -> None:
        self._tokens = tokens
        self._ledger = ledger
        self._quotas = quotas
        self._withdrawals = withdrawals
        self._wheel = wheel
        self._membership = membership

    async def issue_token(self, user_id: int, kind: ActionKind) -> str:
        if kind not in ISSUABLE_KINDS:
            raise BadRequest(f"Action type {kind.value} cannot be requested directly")
        await self._ledger.load_active_user(user_id)
        return await self._tokens.issue(user_id, kind)

    async def watch_ad(self, user_id: int, action_id: str | None) -> RewardOutcome:
        await self._tokens.validate_and_consume(user_id, action_id, ActionKind.WATCH_AD)
        return await self._ledger.grant(user_id, ActionKind.WATCH_AD)

    async def pre_spin(self, user_id: int, action_id: str | None) -> SpinTicket:
        """Draw the prize now and commit it under the same token id.

        The prize is not revealed until the committed token is redeemed.
        """
        record = await self._tokens.validate_and_consume(user_id, action_id, ActionKind.PRE_SPIN)
        user = await self._ledger.load_active_user(user_id)
        status = await self._quotas.check_and_maybe_reset(user, QuotaKind.SPINS)
        if status.remaining <= 0:
            raise QuotaExceeded(QuotaKind.SPINS.value, status.cap)

        outcome = self._wheel.draw()
        await self._tokens.commit(
            record.token_id, user_id, ActionKind.SPIN_RESULT, outcome.as_payload()
        )
        logger.debug("Committed spin sector %s for user %s.", outcome.index, user_id)
        return SpinTicket(action_id=record.token_id, spins_remaining=status.remaining)

    async def spin_result(self, user_id: int, action_id: str | None) -> SpinReward:
        payload = await self._tokens.validate_consume_and_extract(
            user_id, action_id, ActionKind.SPIN_RESULT
        )
        reward = await self._ledger.grant(user_id, ActionKind.SPIN_RESULT, payload)
        return SpinReward(reward=reward, prize_index=int(payload.get("index", 0)))

    async def complete_task(self, user_id: int, action_id: str | None) -> RewardOutcome:
        await self._tokens.validate_and_consume(user_id, action_id, ActionKind.COMPLETE_TASK)
        user = await self._ledger.load_active_user(user_id)
        if user.task_completed:
            raise TaskAlreadyCompleted("Task already completed")

        status = await self._membership.check(user_id)
        if status is MembershipStatus.CHECK_FAILED:
            raise MembershipRequired("Channel membership could not be verified, try again later")
        if not status.allows:
            raise MembershipRequired("Join the channel before claiming the task reward")
        return await self._ledger.grant(user_id, ActionKind.COMPLETE_TASK)

    async def withdraw(
        self, user_id: int, action_id: str | None, amount: Decimal, destination: str
    ) -> WithdrawalReceipt:
        self._withdrawals.check_request(amount, destination)
        await self._tokens.validate_and_consume(user_id, action_id, ActionKind.WITHDRAW)
        return await self._withdrawals.request(user_id, amount, destination)

    async def request_commission(self, referee_id: int, reward_id: str) -> CommissionOutcome:
        return await self._ledger.pay_commission(referee_id, reward_id)
