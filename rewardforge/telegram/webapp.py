"""Verification of Telegram WebApp ``initData`` assertions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from aiogram.utils.web_app import safe_parse_webapp_init_data

from ..domain.clock import Clock, as_utc, utcnow
from ..domain.exceptions import Unauthenticated

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Identity:
    user_id: int
    issued_at: datetime


class IdentityVerifier(Protocol):
    def verify(self, init_data: str | None, user_id: int) -> Identity:
        ...


class InitDataVerifier:
    """Check the HMAC signature, age and asserted user of ``initData``."""

    def __init__(self, bot_token: str, *, max_age_seconds: int = 1200, clock: Clock = utcnow) -> None:
        if not bot_token:
            raise ValueError("Bot token is required to verify init data")
        self._bot_token = bot_token
        self._max_age = timedelta(seconds=max_age_seconds)
        self._clock = clock

    def verify(self, init_data: str | None, user_id: int) -> Identity:
        if not init_data:
            raise Unauthenticated("Missing init data")
        try:
            parsed = safe_parse_webapp_init_data(self._bot_token, init_data)
        except ValueError as exc:
            logger.info("Rejected init data for user %s: %s", user_id, exc)
            raise Unauthenticated("Invalid init data signature") from exc

        issued_at = as_utc(parsed.auth_date)
        if self._clock() - issued_at > self._max_age:
            raise Unauthenticated("Init data expired, reopen the app")
        if parsed.user is None or parsed.user.id != user_id:
            logger.warning("Init data user does not match request user %s.", user_id)
            raise Unauthenticated("Init data does not belong to this user")
        return Identity(user_id=user_id, issued_at=issued_at)
