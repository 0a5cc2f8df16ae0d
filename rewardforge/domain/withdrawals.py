"""Withdrawal requests: reserve on creation, refund on rejection."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Sequence

from .clock import Clock, utcnow
from .events import WITHDRAWAL_CREATED, WITHDRAWAL_RESOLVED, EventBus
from .exceptions import (
    AlreadyResolved,
    BadRequest,
    StoreUnavailable,
    WithdrawalNotFound,
)
from .ledger import RewardLedger
from .retry import retry_store_call
from ..config import WithdrawalConfig
from ..storage.base import WithdrawalRecord, WithdrawalStatus, WithdrawalStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WithdrawalReceipt:
    request: WithdrawalRecord
    new_balance: Decimal


# Amount columns hold 8 decimal places.
AMOUNT_PLACES = 8
_AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_PLACES)


def exceeds_amount_places(amount: Decimal) -> bool:
    try:
        return amount != amount.quantize(_AMOUNT_QUANTUM)
    except InvalidOperation:
        return True


def _new_request_id() -> str:
    return secrets.token_hex(8)


class WithdrawalService:
    """Drive a withdrawal from ``pending`` to ``completed`` or ``rejected``.

    Funds leave the balance when the request is created. Completion has no
    further ledger effect; rejection credits the original amount back once.
    """

    def __init__(
        self,
        store: WithdrawalStore,
        ledger: RewardLedger,
        config: WithdrawalConfig,
        event_bus: EventBus,
        *,
        clock: Clock = utcnow,
        id_factory: Callable[[], str] = _new_request_id,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._config = config
        self._event_bus = event_bus
        self._clock = clock
        self._id_factory = id_factory

    def check_request(self, amount: Decimal, destination: str) -> None:
        if not destination or not destination.strip():
            raise BadRequest("Missing withdrawal destination")
        if not amount.is_finite() or amount < self._config.min_amount:
            raise BadRequest(f"Minimum withdrawal amount is {self._config.min_amount}")
        if exceeds_amount_places(amount):
            raise BadRequest(f"Amount has more than {AMOUNT_PLACES} decimal places")

    async def request(self, user_id: int, amount: Decimal, destination: str) -> WithdrawalReceipt:
        self.check_request(amount, destination)

        await self._ledger.load_active_user(user_id)
        new_balance = await self._ledger.debit(user_id, amount)

        record = WithdrawalRecord(
            request_id=self._id_factory(),
            user_id=user_id,
            amount=amount,
            destination=destination.strip(),
            status=WithdrawalStatus.PENDING,
            created_at=self._clock(),
        )
        try:
            await retry_store_call(
                "withdrawals.add",
                lambda: self._store.add(record),
                attempts=self._config.insert_attempts,
            )
        except Exception:
            logger.error(
                "Withdrawal record for user %s could not be stored; returning %s.", user_id, amount
            )
            try:
                await self._ledger.credit(user_id, amount, attempts=self._config.insert_attempts)
            except StoreUnavailable:
                logger.critical(
                    "Withdrawal of %s for user %s debited but neither recorded nor refunded.",
                    amount,
                    user_id,
                )
            raise

        logger.info("Withdrawal %s of %s created for user %s.", record.request_id, amount, user_id)
        await self._event_bus.publish(
            WITHDRAWAL_CREATED,
            {"request_id": record.request_id, "user_id": user_id, "amount": amount},
        )
        return WithdrawalReceipt(request=record, new_balance=new_balance)

    async def resolve(self, request_id: str, *, approve: bool, resolver_id: int) -> WithdrawalRecord:
        current = await self._store.get(request_id)
        if current is None:
            raise WithdrawalNotFound(f"Withdrawal request {request_id} not found")

        target = WithdrawalStatus.COMPLETED if approve else WithdrawalStatus.REJECTED
        resolved = await self._store.transition(
            request_id,
            WithdrawalStatus.PENDING,
            target,
            resolved_by=resolver_id,
            resolved_at=self._clock(),
        )
        if resolved is None:
            latest = await self._store.get(request_id)
            status = latest.status.value if latest else current.status.value
            raise AlreadyResolved(f"Request is already {status}")

        if not approve:
            try:
                await self._ledger.credit(resolved.user_id, resolved.amount, attempts=3)
            except Exception:
                logger.error(
                    "Refund for rejected withdrawal %s failed; returning it to pending.", request_id
                )
                reverted = await retry_store_call(
                    "withdrawals.revert",
                    lambda: self._store.transition(
                        request_id,
                        WithdrawalStatus.REJECTED,
                        WithdrawalStatus.PENDING,
                        resolved_by=None,
                        resolved_at=None,
                    ),
                )
                if reverted is None:
                    logger.critical("Withdrawal %s rejected without refund.", request_id)
                raise

        logger.info(
            "Withdrawal %s set to %s by %s.", request_id, resolved.status.value, resolver_id
        )
        await self._event_bus.publish(
            WITHDRAWAL_RESOLVED,
            {
                "request_id": request_id,
                "user_id": resolved.user_id,
                "status": resolved.status.value,
                "resolved_by": resolver_id,
            },
        )
        return resolved

    async def list_pending(self) -> Sequence[WithdrawalRecord]:
        return await self._store.list_by_status(WithdrawalStatus.PENDING)
