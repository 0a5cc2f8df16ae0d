"""Group membership contract used by the channel-join task."""

from __future__ import annotations

from enum import Enum
from typing import Protocol


class MembershipStatus(str, Enum):
    MEMBER = "member"
    NOT_MEMBER = "not_member"
    CHECK_FAILED = "check_failed"

    @property
    def allows(self) -> bool:
        return self is MembershipStatus.MEMBER


class MembershipOracle(Protocol):
    async def check(self, user_id: int) -> MembershipStatus:
        ...


class StaticMembershipOracle:
    """Answer every lookup with a fixed status (tests and offline runs)."""

    def __init__(self, status: MembershipStatus = MembershipStatus.MEMBER) -> None:
        self.status = status
        self.calls: list[int] = []

    async def check(self, user_id: int) -> MembershipStatus:
        self.calls.append(user_id)
        return self.status
