from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from aiogram.enums import ChatMemberStatus
from aiogram.exceptions import (
    TelegramBadRequest,
    TelegramForbiddenError,
    TelegramNetworkError,
    TelegramRetryAfter,
    TelegramServerError,
)

from rewardforge.domain.membership import MembershipStatus
from rewardforge.telegram.api_utils import TelegramUnavailable, call_with_retry
from rewardforge.telegram.membership import TelegramMembershipOracle


class DummyForbidden(TelegramForbiddenError):
    def __init__(self) -> None:
        Exception.__init__(self, "forbidden")
        self.message = "Forbidden: bot is not a member of the channel chat"


class DummyBadRequest(TelegramBadRequest):
    def __init__(self, message: str) -> None:
        Exception.__init__(self, message)
        self.message = message


class DummyNetworkError(TelegramNetworkError):
    def __init__(self) -> None:
        Exception.__init__(self, "network")
        self.message = "HTTP Client says - ClientConnectorError"


class DummyServerError(TelegramServerError):
    def __init__(self) -> None:
        Exception.__init__(self, "server")
        self.message = "Bad Gateway"


class DummyRetryAfter(TelegramRetryAfter):
    def __init__(self, retry_after: float) -> None:
        Exception.__init__(self, f"retry after {retry_after}")
        self.message = f"Too Many Requests: retry after {retry_after}"
        self.retry_after = retry_after


@pytest.fixture()
def sleeps(monkeypatch):
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        assert delay >= 0.0
        delays.append(delay)

    monkeypatch.setattr("rewardforge.telegram.api_utils.asyncio.sleep", fake_sleep)
    return delays


@pytest.mark.asyncio()
async def test_call_with_retry_returns_result():
    async def ok() -> int:
        return 42

    assert await call_with_retry("test", ok) == 42


@pytest.mark.asyncio()
async def test_call_with_retry_retries_on_retry_after(sleeps):
    mock_call = AsyncMock(side_effect=[DummyRetryAfter(3), 7])

    result = await call_with_retry("retry", mock_call, retries=2)
    assert result == 7
    assert mock_call.await_count == 2
    assert sleeps == [3.0]


@pytest.mark.asyncio()
async def test_call_with_retry_backs_off_on_network_and_server_errors(sleeps):
    mock_call = AsyncMock(side_effect=[DummyNetworkError(), DummyServerError(), "member"])

    assert await call_with_retry("flaky", mock_call, retries=3, backoff=0.5) == "member"
    assert sleeps == [0.5, 1.0]


@pytest.mark.asyncio()
async def test_call_with_retry_gives_up_after_retries(sleeps):
    mock_call = AsyncMock(side_effect=[DummyRetryAfter(0.0), DummyNetworkError()])

    with pytest.raises(TelegramUnavailable) as excinfo:
        await call_with_retry("retry", mock_call, retries=2)
    assert isinstance(excinfo.value.__cause__, DummyNetworkError)
    assert mock_call.await_count == 2


@pytest.mark.asyncio()
async def test_call_with_retry_does_not_retry_definitive_errors(sleeps):
    mock_call = AsyncMock(side_effect=DummyBadRequest("Bad Request: chat not found"))

    with pytest.raises(TelegramBadRequest):
        await call_with_retry("bad", mock_call, retries=3)
    assert mock_call.await_count == 1
    assert sleeps == []


def oracle_for(**get_chat_member):
    bot = SimpleNamespace(get_chat_member=AsyncMock(**get_chat_member))
    return TelegramMembershipOracle(bot, "@channel", request_timeout=5), bot


@pytest.mark.asyncio()
@pytest.mark.parametrize(
    ("member", "expected"),
    [
        (SimpleNamespace(status=ChatMemberStatus.MEMBER), MembershipStatus.MEMBER),
        (SimpleNamespace(status=ChatMemberStatus.CREATOR), MembershipStatus.MEMBER),
        (SimpleNamespace(status=ChatMemberStatus.ADMINISTRATOR), MembershipStatus.MEMBER),
        (SimpleNamespace(status=ChatMemberStatus.RESTRICTED, is_member=True), MembershipStatus.MEMBER),
        (SimpleNamespace(status=ChatMemberStatus.RESTRICTED, is_member=False), MembershipStatus.NOT_MEMBER),
        (SimpleNamespace(status=ChatMemberStatus.LEFT), MembershipStatus.NOT_MEMBER),
        (SimpleNamespace(status=ChatMemberStatus.KICKED), MembershipStatus.NOT_MEMBER),
    ],
)
async def test_membership_statuses(member, expected):
    oracle, bot = oracle_for(return_value=member)

    assert await oracle.check(7) is expected
    bot.get_chat_member.assert_awaited_once_with(chat_id="@channel", user_id=7, request_timeout=5)


@pytest.mark.asyncio()
async def test_membership_forbidden_is_check_failed():
    oracle, _ = oracle_for(side_effect=DummyForbidden())
    assert await oracle.check(7) is MembershipStatus.CHECK_FAILED
    assert not MembershipStatus.CHECK_FAILED.allows


@pytest.mark.asyncio()
async def test_membership_transient_failures_retry_then_check_failed(sleeps):
    oracle, bot = oracle_for(side_effect=[DummyRetryAfter(1), DummyServerError()])

    assert await oracle.check(7) is MembershipStatus.CHECK_FAILED
    assert bot.get_chat_member.await_count == 2


@pytest.mark.asyncio()
async def test_membership_recovers_after_transient_failure(sleeps):
    oracle, _ = oracle_for(
        side_effect=[DummyNetworkError(), SimpleNamespace(status=ChatMemberStatus.MEMBER)]
    )

    assert await oracle.check(7) is MembershipStatus.MEMBER


@pytest.mark.asyncio()
async def test_membership_unknown_user_is_not_member(sleeps):
    oracle, bot = oracle_for(side_effect=DummyBadRequest("Bad Request: user not found"))

    assert await oracle.check(7) is MembershipStatus.NOT_MEMBER
    assert bot.get_chat_member.await_count == 1
    assert sleeps == []


@pytest.mark.asyncio()
async def test_membership_other_bad_request_is_check_failed():
    oracle, _ = oracle_for(side_effect=DummyBadRequest("Bad Request: chat not found"))

    assert await oracle.check(7) is MembershipStatus.CHECK_FAILED
