"""Reusable aiogram filters for RewardForge bots."""

from __future__ import annotations

from typing import TYPE_CHECKING

from aiogram.filters import BaseFilter
from aiogram.types import Message

if TYPE_CHECKING:
    from ..admin.policy import SingleAdminPolicy


class AdminFilter(BaseFilter):
    def __init__(self, policy: SingleAdminPolicy) -> None:
        self._policy = policy

    async def __call__(self, message: Message) -> bool:
        user = message.from_user
        return bool(user and self._policy.is_admin(user.id))
