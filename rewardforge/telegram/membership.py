"""Channel membership lookups through the Bot API."""

from __future__ import annotations

import logging

from aiogram import Bot
from aiogram.enums import ChatMemberStatus
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest

from .api_utils import TelegramUnavailable, call_with_retry
from ..domain.membership import MembershipStatus

logger = logging.getLogger(__name__)

_MEMBER_STATUSES = frozenset(
    {ChatMemberStatus.CREATOR, ChatMemberStatus.ADMINISTRATOR, ChatMemberStatus.MEMBER}
)

# Bad Request texts meaning the user has never been in the chat.
_UNKNOWN_PARTICIPANT = ("user not found", "member not found", "participant_id_invalid")


def is_unknown_participant(exc: TelegramBadRequest) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _UNKNOWN_PARTICIPANT)


class TelegramMembershipOracle:
    """Resolve membership of ``chat_id`` with ``getChatMember``.

    Rate limits and network or server errors are retried and end in
    ``CHECK_FAILED``, as does any API error about the chat or the bot itself.
    A Bad Request saying the user is unknown to the chat is a definitive
    ``NOT_MEMBER``.
    """

    def __init__(
        self,
        bot: Bot,
        chat_id: int | str,
        *,
        request_timeout: int = 10,
        retries: int = 2,
    ) -> None:
        self._bot = bot
        self._chat_id = chat_id
        self._request_timeout = request_timeout
        self._retries = retries

    async def check(self, user_id: int) -> MembershipStatus:
        try:
            member = await call_with_retry(
                "bot.get_chat_member",
                self._bot.get_chat_member,
                chat_id=self._chat_id,
                user_id=user_id,
                request_timeout=self._request_timeout,
                retries=self._retries,
            )
        except TelegramUnavailable:
            logger.warning("Membership of user %s in %s could not be checked.", user_id, self._chat_id)
            return MembershipStatus.CHECK_FAILED
        except TelegramBadRequest as exc:
            if is_unknown_participant(exc):
                logger.info("User %s has never joined %s.", user_id, self._chat_id)
                return MembershipStatus.NOT_MEMBER
            logger.error("Membership lookup in %s rejected: %s", self._chat_id, exc)
            return MembershipStatus.CHECK_FAILED
        except TelegramAPIError as exc:
            logger.error("Membership lookup in %s failed: %s", self._chat_id, exc)
            return MembershipStatus.CHECK_FAILED

        if member.status in _MEMBER_STATUSES:
            return MembershipStatus.MEMBER
        if member.status == ChatMemberStatus.RESTRICTED and getattr(member, "is_member", False):
            return MembershipStatus.MEMBER
        return MembershipStatus.NOT_MEMBER
