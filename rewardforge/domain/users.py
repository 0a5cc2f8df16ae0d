"""User registration and the read model served to the mini app."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Mapping, Sequence

from .clock import Clock, utcnow
from .events import USER_REGISTERED, EventBus
from .exceptions import UserNotFound
from .quota import QuotaStatus, QuotaWindowManager
from ..storage.base import (
    CommissionStore,
    QuotaKind,
    UserRecord,
    UserStore,
    WithdrawalRecord,
    WithdrawalStore,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UserState:
    user_id: int
    balance: Decimal
    quotas: Mapping[QuotaKind, QuotaStatus]
    task_completed: bool
    is_banned: bool
    is_admin: bool
    referrer_id: int | None
    commission_earned: Decimal = Decimal("0")
    withdrawal_history: Sequence[WithdrawalRecord] = field(default_factory=tuple)


@dataclass(slots=True)
class Registration:
    created: bool
    state: UserState


def _nobody_is_admin(user_id: int) -> bool:
    return False


class UserService:
    """Create users and assemble their state."""

    def __init__(
        self,
        users: UserStore,
        quotas: QuotaWindowManager,
        withdrawals: WithdrawalStore,
        commissions: CommissionStore,
        event_bus: EventBus,
        *,
        is_admin: Callable[[int], bool] = _nobody_is_admin,
        clock: Clock = utcnow,
        history_limit: int = 20,
    ) -> None:
        self._users = users
        self._quotas = quotas
        self._withdrawals = withdrawals
        self._commissions = commissions
        self._event_bus = event_bus
        self._is_admin = is_admin
        self._clock = clock
        self._history_limit = history_limit

    async def register(self, user_id: int, referrer_id: int | None = None) -> Registration:
        """Create the user once; the referrer is fixed at creation and never changes."""
        if referrer_id is not None:
            if referrer_id == user_id:
                logger.warning("User %s tried to refer themselves; ignoring.", user_id)
                referrer_id = None
            elif await self._users.get(referrer_id) is None:
                logger.warning(
                    "Unknown referrer %s for user %s; registering without one.", referrer_id, user_id
                )
                referrer_id = None

        record = UserRecord(user_id=user_id, referrer_id=referrer_id, created_at=self._clock())
        created = await self._users.create(record)
        if created:
            logger.info("Registered user %s (referrer %s).", user_id, referrer_id)
            await self._event_bus.publish(
                USER_REGISTERED, {"user_id": user_id, "referrer_id": referrer_id}
            )
        return Registration(created=created, state=await self.fetch_state(user_id))

    async def fetch_state(self, user_id: int) -> UserState:
        user = await self._users.get(user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")

        quotas = {}
        for kind in QuotaKind:
            quotas[kind] = await self._quotas.check_and_maybe_reset(user, kind)

        history = await self._withdrawals.recent_for_user(user_id, self._history_limit)
        earned = sum(
            (record.amount for record in await self._commissions.for_referrer(user_id)),
            Decimal("0"),
        )
        return UserState(
            user_id=user.user_id,
            balance=user.balance,
            quotas=quotas,
            task_completed=user.task_completed,
            is_banned=user.is_banned,
            is_admin=self._is_admin(user_id),
            referrer_id=user.referrer_id,
            commission_earned=earned,
            withdrawal_history=tuple(history),
        )
