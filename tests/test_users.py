from decimal import Decimal

import pytest

from rewardforge.domain.events import USER_REGISTERED
from rewardforge.domain.exceptions import UserNotFound
from rewardforge.storage.base import ActionKind, QuotaKind
from rewardforge.testing import TEST_ADMIN_ID, UserFactory


@pytest.fixture()
def users():
    return UserFactory()


@pytest.mark.asyncio()
async def test_register_creates_once(memory_app):
    registered = []

    async def listener(payload):
        registered.append(payload["user_id"])

    memory_app.event_bus.subscribe(USER_REGISTERED, listener)

    first = await memory_app.users.register(7)
    second = await memory_app.users.register(7)

    assert first.created is True
    assert second.created is False
    assert first.state.balance == 0
    assert first.state.quotas[QuotaKind.ADS].cap == 100
    assert first.state.quotas[QuotaKind.SPINS].remaining == 15
    assert registered == [7]


@pytest.mark.asyncio()
async def test_referrer_is_fixed_at_creation(memory_app):
    await memory_app.users.register(100)
    await memory_app.users.register(101)
    registration = await memory_app.users.register(7, 100)
    again = await memory_app.users.register(7, 101)

    assert registration.state.referrer_id == 100
    assert again.state.referrer_id == 100


@pytest.mark.asyncio()
@pytest.mark.parametrize("referrer_id", [7, 555])
async def test_self_or_unknown_referrer_is_dropped(memory_app, referrer_id):
    registration = await memory_app.users.register(7, referrer_id)
    assert registration.created is True
    assert registration.state.referrer_id is None


@pytest.mark.asyncio()
async def test_fetch_state_reports_admin_and_commission(memory_app, users):
    referrer = users.build()
    await memory_app.stores.users.create(referrer)
    await memory_app.users.register(TEST_ADMIN_ID)
    registration = await memory_app.users.register(7, referrer.user_id)
    reward = await memory_app.ledger.grant(7, ActionKind.COMPLETE_TASK)
    await memory_app.ledger.pay_commission(7, reward.reward_id)

    admin_state = await memory_app.users.fetch_state(TEST_ADMIN_ID)
    referrer_state = await memory_app.users.fetch_state(referrer.user_id)
    user_state = await memory_app.users.fetch_state(7)

    assert admin_state.is_admin is True
    assert registration.state.is_admin is False
    assert referrer_state.commission_earned == Decimal("2.5")
    assert referrer_state.balance == Decimal("2.5")
    assert user_state.task_completed is True
    assert user_state.balance == Decimal("50")


@pytest.mark.asyncio()
async def test_banned_user_state_is_readable(memory_app, users):
    banned = users.build(is_banned=True, balance=12)
    await memory_app.stores.users.create(banned)

    state = await memory_app.users.fetch_state(banned.user_id)

    assert state.is_banned is True
    assert state.balance == Decimal("12")


@pytest.mark.asyncio()
async def test_fetch_unknown_user(memory_app):
    with pytest.raises(UserNotFound):
        await memory_app.users.fetch_state(404)
