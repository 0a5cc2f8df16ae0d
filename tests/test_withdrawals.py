import asyncio
from decimal import Decimal

import pytest

from rewardforge.app import Stores
from rewardforge.config import WithdrawalConfig
from rewardforge.domain.events import WITHDRAWAL_CREATED, WITHDRAWAL_RESOLVED
from rewardforge.domain.exceptions import (
    AlreadyResolved,
    BadRequest,
    InsufficientBalance,
    StoreUnavailable,
    UserBanned,
    WithdrawalNotFound,
)
from rewardforge.storage.base import UserRecord, WithdrawalStatus
from rewardforge.storage.memory import (
    InMemoryAuditStore,
    InMemoryCommissionStore,
    InMemoryRewardHistoryStore,
    InMemoryTokenStore,
    InMemoryUserStore,
    InMemoryWithdrawalStore,
)
from rewardforge.testing import TEST_ADMIN_ID, app_fixture, make_config


class FailingInsertStore(InMemoryWithdrawalStore):
    async def add(self, record):
        raise StoreUnavailable("insert timed out")


class BrokenInsertStore(InMemoryWithdrawalStore):
    async def add(self, record):
        raise RuntimeError("unexpected driver error")


class RefundFailingUserStore(InMemoryUserStore):
    def __init__(self):
        super().__init__()
        self.fail_credits = False

    async def adjust_balance(self, user_id, delta, *, floor=Decimal("0")):
        if delta > 0 and self.fail_credits:
            raise StoreUnavailable("credit timed out")
        return await super().adjust_balance(user_id, delta, floor=floor)


def build_app(clock, **store_overrides):
    stores = dict(
        users=InMemoryUserStore(),
        tokens=InMemoryTokenStore(),
        withdrawals=InMemoryWithdrawalStore(),
        history=InMemoryRewardHistoryStore(),
        commissions=InMemoryCommissionStore(),
        audit=InMemoryAuditStore(),
    )
    stores.update(store_overrides)
    config = make_config(withdrawals=WithdrawalConfig(min_amount=Decimal("10")))
    return app_fixture(config, clock=clock, stores=Stores(**stores))


@pytest.fixture()
def withdraw_app(clock):
    return build_app(clock)


async def add_user(app, user_id, balance="100", **fields):
    await app.stores.users.create(UserRecord(user_id=user_id, balance=Decimal(balance), **fields))


async def balance_of(app, user_id):
    return (await app.stores.users.get(user_id)).balance


@pytest.mark.asyncio()
async def test_request_reserves_funds(withdraw_app):
    created = []

    async def listener(payload):
        created.append(payload)

    withdraw_app.event_bus.subscribe(WITHDRAWAL_CREATED, listener)
    await add_user(withdraw_app, 7)

    receipt = await withdraw_app.withdrawals.request(7, Decimal("40"), " wallet-1 ")

    assert receipt.new_balance == Decimal("60")
    assert receipt.request.status is WithdrawalStatus.PENDING
    assert receipt.request.destination == "wallet-1"
    assert await balance_of(withdraw_app, 7) == Decimal("60")
    assert created[0]["request_id"] == receipt.request.request_id


@pytest.mark.asyncio()
async def test_reject_refunds_and_approve_does_not(withdraw_app):
    resolved = []

    async def listener(payload):
        resolved.append(payload["status"])

    withdraw_app.event_bus.subscribe(WITHDRAWAL_RESOLVED, listener)
    await add_user(withdraw_app, 7)
    first = await withdraw_app.withdrawals.request(7, Decimal("30"), "wallet")
    second = await withdraw_app.withdrawals.request(7, Decimal("20"), "wallet")

    rejected = await withdraw_app.withdrawals.resolve(
        first.request.request_id, approve=False, resolver_id=TEST_ADMIN_ID
    )
    approved = await withdraw_app.withdrawals.resolve(
        second.request.request_id, approve=True, resolver_id=TEST_ADMIN_ID
    )

    assert rejected.status is WithdrawalStatus.REJECTED
    assert approved.status is WithdrawalStatus.COMPLETED
    assert approved.resolved_by == TEST_ADMIN_ID
    assert await balance_of(withdraw_app, 7) == Decimal("80")
    assert resolved == ["rejected", "completed"]
    assert await withdraw_app.withdrawals.list_pending() == []


@pytest.mark.asyncio()
async def test_second_resolution_is_rejected(withdraw_app):
    await add_user(withdraw_app, 7)
    receipt = await withdraw_app.withdrawals.request(7, Decimal("30"), "wallet")
    request_id = receipt.request.request_id
    await withdraw_app.withdrawals.resolve(request_id, approve=False, resolver_id=TEST_ADMIN_ID)

    with pytest.raises(AlreadyResolved, match="rejected"):
        await withdraw_app.withdrawals.resolve(request_id, approve=False, resolver_id=TEST_ADMIN_ID)
    with pytest.raises(AlreadyResolved):
        await withdraw_app.withdrawals.resolve(request_id, approve=True, resolver_id=TEST_ADMIN_ID)
    assert await balance_of(withdraw_app, 7) == Decimal("100")


@pytest.mark.asyncio()
async def test_concurrent_rejections_refund_once(withdraw_app):
    await add_user(withdraw_app, 7)
    receipt = await withdraw_app.withdrawals.request(7, Decimal("30"), "wallet")

    results = await asyncio.gather(
        *(
            withdraw_app.withdrawals.resolve(
                receipt.request.request_id, approve=False, resolver_id=TEST_ADMIN_ID
            )
            for _ in range(5)
        ),
        return_exceptions=True,
    )

    assert sum(isinstance(result, AlreadyResolved) for result in results) == 4
    assert await balance_of(withdraw_app, 7) == Decimal("100")


@pytest.mark.asyncio()
async def test_unknown_request(withdraw_app):
    with pytest.raises(WithdrawalNotFound):
        await withdraw_app.withdrawals.resolve("missing", approve=True, resolver_id=TEST_ADMIN_ID)


@pytest.mark.asyncio()
@pytest.mark.parametrize(
    ("amount", "destination"),
    [
        (Decimal("9.99"), "wallet"),
        (Decimal("50"), ""),
        (Decimal("50"), "   "),
        (Decimal("NaN"), "w"),
        (Decimal("10.000000001"), "wallet"),
    ],
)
async def test_request_validation(withdraw_app, amount, destination):
    await add_user(withdraw_app, 7)
    with pytest.raises(BadRequest):
        await withdraw_app.withdrawals.request(7, amount, destination)
    assert await balance_of(withdraw_app, 7) == Decimal("100")


@pytest.mark.asyncio()
async def test_insufficient_balance_and_banned(withdraw_app):
    await add_user(withdraw_app, 7, balance="15")
    await add_user(withdraw_app, 8, is_banned=True)
    with pytest.raises(InsufficientBalance):
        await withdraw_app.withdrawals.request(7, Decimal("20"), "wallet")
    with pytest.raises(UserBanned):
        await withdraw_app.withdrawals.request(8, Decimal("20"), "wallet")
    assert await balance_of(withdraw_app, 7) == Decimal("15")
    assert await balance_of(withdraw_app, 8) == Decimal("100")


@pytest.mark.asyncio()
async def test_concurrent_requests_never_overdraw(withdraw_app):
    await add_user(withdraw_app, 7, balance="50")
    results = await asyncio.gather(
        *(withdraw_app.withdrawals.request(7, Decimal("20"), "wallet") for _ in range(4)),
        return_exceptions=True,
    )
    assert sum(isinstance(result, InsufficientBalance) for result in results) == 2
    assert await balance_of(withdraw_app, 7) == Decimal("10")
    assert len(await withdraw_app.withdrawals.list_pending()) == 2


@pytest.mark.asyncio()
async def test_failed_insert_returns_funds(clock):
    app = build_app(clock, withdrawals=FailingInsertStore())
    await add_user(app, 7)

    with pytest.raises(StoreUnavailable):
        await app.withdrawals.request(7, Decimal("40"), "wallet")

    assert await balance_of(app, 7) == Decimal("100")


@pytest.mark.asyncio()
async def test_unexpected_insert_error_returns_funds(clock):
    app = build_app(clock, withdrawals=BrokenInsertStore())
    await add_user(app, 7)

    with pytest.raises(RuntimeError):
        await app.withdrawals.request(7, Decimal("40"), "wallet")

    assert await balance_of(app, 7) == Decimal("100")
    assert await app.withdrawals.list_pending() == []


@pytest.mark.asyncio()
async def test_amount_with_eight_places_is_accepted(withdraw_app):
    await add_user(withdraw_app, 7)
    receipt = await withdraw_app.withdrawals.request(7, Decimal("10.12345678"), "wallet")
    assert receipt.new_balance == Decimal("89.87654322")


@pytest.mark.asyncio()
async def test_failed_refund_returns_request_to_pending(clock):
    users = RefundFailingUserStore()
    app = build_app(clock, users=users)
    await add_user(app, 7)
    receipt = await app.withdrawals.request(7, Decimal("40"), "wallet")
    request_id = receipt.request.request_id

    users.fail_credits = True
    with pytest.raises(StoreUnavailable):
        await app.withdrawals.resolve(request_id, approve=False, resolver_id=TEST_ADMIN_ID)
    record = await app.stores.withdrawals.get(request_id)
    assert record.status is WithdrawalStatus.PENDING
    assert record.resolved_by is None
    assert await balance_of(app, 7) == Decimal("60")

    users.fail_credits = False
    await app.withdrawals.resolve(request_id, approve=False, resolver_id=TEST_ADMIN_ID)
    assert await balance_of(app, 7) == Decimal("100")


@pytest.mark.asyncio()
async def test_history_is_newest_first(withdraw_app, clock):
    await add_user(withdraw_app, 7)
    first = await withdraw_app.withdrawals.request(7, Decimal("10"), "wallet")
    clock.advance(5)
    second = await withdraw_app.withdrawals.request(7, Decimal("10"), "wallet")

    history = (await withdraw_app.users.fetch_state(7)).withdrawal_history

    assert [item.request_id for item in history] == [
        second.request.request_id,
        first.request.request_id,
    ]
