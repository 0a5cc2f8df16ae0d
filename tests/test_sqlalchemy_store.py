from datetime import timedelta
from decimal import Decimal

import pytest

from rewardforge.config import StorageConfig
from rewardforge.storage.base import (
    ActionKind,
    CommissionRecord,
    QuotaKind,
    RewardRecord,
    TokenRecord,
    UserRecord,
    WithdrawalRecord,
    WithdrawalStatus,
)
from rewardforge.storage.sqlalchemy import AsyncSQLAlchemyStorage
from rewardforge.testing import TEST_ADMIN_ID, TestClient, app_fixture, make_config


@pytest.fixture()
def dsn(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'rewardforge.db'}"


@pytest.mark.asyncio()
async def test_user_primitives(dsn, clock):
    storage = AsyncSQLAlchemyStorage(dsn)
    try:
        await storage.init_models()
        users = storage.user_store()

        assert await users.create(UserRecord(user_id=7, balance=Decimal("10"), created_at=clock()))
        assert not await users.create(UserRecord(user_id=7))

        assert await users.adjust_balance(7, Decimal("2.5")) == Decimal("12.5")
        assert await users.adjust_balance(7, Decimal("-20")) is None
        assert await users.adjust_balance(404, Decimal("1")) is None

        assert await users.claim_task(7)
        assert not await users.claim_task(7)
        await users.release_task(7)
        assert await users.claim_task(7)

        interval = timedelta(seconds=3)
        assert await users.claim_action_slot(7, clock(), interval) is None
        blocking = await users.claim_action_slot(7, clock() + timedelta(seconds=1), interval)
        assert blocking == clock()
        assert await users.claim_action_slot(7, clock() + interval, interval) is None

        assert await users.set_banned(7, True)
        assert not await users.set_banned(404, True)

        user = await users.get(7)
        assert user.balance == Decimal("12.5")
        assert user.is_banned is True
        assert user.task_completed is True
        assert user.created_at == clock()
        assert await users.get(404) is None
    finally:
        await storage.dispose()


@pytest.mark.asyncio()
async def test_quota_primitives(dsn, clock):
    storage = AsyncSQLAlchemyStorage(dsn)
    try:
        await storage.init_models()
        users = storage.user_store()
        await users.create(UserRecord(user_id=7))

        assert await users.claim_quota_slot(7, QuotaKind.ADS, 2, clock()) == 1
        assert await users.claim_quota_slot(7, QuotaKind.ADS, 2, clock()) == 2
        assert await users.claim_quota_slot(7, QuotaKind.ADS, 2, clock()) is None
        window = (await users.get(7)).quota(QuotaKind.ADS)
        assert window.count == 2
        assert window.capped_at == clock()
        assert (await users.get(7)).quota(QuotaKind.SPINS).count == 0

        assert not await users.reset_quota(7, QuotaKind.ADS, clock() + timedelta(seconds=1))
        assert await users.reset_quota(7, QuotaKind.ADS, clock())
        window = (await users.get(7)).quota(QuotaKind.ADS)
        assert window.count == 0 and window.capped_at is None

        await users.claim_quota_slot(7, QuotaKind.ADS, 1, clock())
        await users.release_quota_slot(7, QuotaKind.ADS, 1)
        window = (await users.get(7)).quota(QuotaKind.ADS)
        assert window.count == 0 and window.capped_at is None
    finally:
        await storage.dispose()


@pytest.mark.asyncio()
async def test_token_primitives(dsn, clock):
    storage = AsyncSQLAlchemyStorage(dsn)
    try:
        await storage.init_models()
        tokens = storage.token_store()
        now = clock()
        await tokens.add(TokenRecord("a" * 32, 7, ActionKind.WATCH_AD, now))
        await tokens.add(TokenRecord("b" * 32, 7, ActionKind.SPIN_RESULT, now, {"prize": "15", "index": 2}))

        assert await tokens.consume("a" * 32, 8, ActionKind.WATCH_AD, now) is None
        assert await tokens.consume("a" * 32, 7, ActionKind.WATCH_AD, now + timedelta(seconds=1)) is None
        consumed = await tokens.consume("a" * 32, 7, ActionKind.WATCH_AD, now)
        assert consumed.created_at == now
        assert await tokens.consume("a" * 32, 7, ActionKind.WATCH_AD, now) is None

        committed = await tokens.consume("b" * 32, 7, ActionKind.SPIN_RESULT, now)
        assert committed.payload == {"prize": "15", "index": 2}

        await tokens.add(TokenRecord("c" * 32, 7, ActionKind.WATCH_AD, now))
        assert await tokens.prune(7, ActionKind.WATCH_AD, now + timedelta(seconds=1)) == 1
    finally:
        await storage.dispose()


@pytest.mark.asyncio()
async def test_withdrawal_history_and_commission_primitives(dsn, clock):
    storage = AsyncSQLAlchemyStorage(dsn)
    try:
        await storage.init_models()
        withdrawals = storage.withdrawal_store()
        record = WithdrawalRecord("w1", 7, Decimal("450"), "wallet", created_at=clock())
        await withdrawals.add(record)

        done = await withdrawals.transition(
            "w1",
            WithdrawalStatus.PENDING,
            WithdrawalStatus.COMPLETED,
            resolved_by=TEST_ADMIN_ID,
            resolved_at=clock(),
        )
        assert done.status is WithdrawalStatus.COMPLETED
        assert done.amount == Decimal("450")
        again = await withdrawals.transition(
            "w1",
            WithdrawalStatus.PENDING,
            WithdrawalStatus.REJECTED,
            resolved_by=TEST_ADMIN_ID,
            resolved_at=clock(),
        )
        assert again is None
        assert await withdrawals.list_by_status(WithdrawalStatus.PENDING) == []
        assert [item.request_id for item in await withdrawals.recent_for_user(7)] == ["w1"]

        history = storage.reward_history_store()
        await history.add_record(RewardRecord("r1", 7, ActionKind.WATCH_AD, Decimal("3"), clock()))
        assert (await history.get("r1")).kind is ActionKind.WATCH_AD
        assert await history.get("missing") is None

        commissions = storage.commission_store()
        commission = CommissionRecord("r1", 100, 7, Decimal("0.15"), clock())
        assert await commissions.add_if_absent(commission)
        assert not await commissions.add_if_absent(commission)
        (stored,) = await commissions.for_referrer(100)
        assert stored.amount == Decimal("0.15")
        await commissions.remove("r1")
        assert await commissions.for_referrer(100) == []

        await storage.audit_store().add_entry("ban", {"user_id": 7})
    finally:
        await storage.dispose()


@pytest.mark.asyncio()
async def test_end_to_end_on_sqlalchemy_backend(dsn, clock):
    config = make_config(storage=StorageConfig(backend="sqlalchemy", dsn=dsn))
    app = app_fixture(config, clock=clock)
    await app.init_backend()
    try:
        client = TestClient(app)
        await client.data("register", 100)
        await client.data("register", 7, referrer_id=100)

        action_id = await client.token(7, "watchAd")
        reward = await client.data("watch-ad", 7, action_id=action_id)
        assert reward["new_balance"] == Decimal("3")
        replay = await client.call("watch-ad", 7, action_id=action_id)
        assert replay["status"] == "conflict"

        commission = await client.data("request-commission", referee_id=7, reward_id=reward["reward_id"])
        assert commission["amount"] == Decimal("0.15")

        state = await client.data("fetch-user-state", 100)
        assert state["balance"] == Decimal("0.15")
        assert state["commission_earned"] == Decimal("0.15")
    finally:
        await app.close()
