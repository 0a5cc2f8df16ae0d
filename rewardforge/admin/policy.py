"""Who may run administrative operations."""

from __future__ import annotations

from enum import Enum
from typing import Protocol


class AdminAction(str, Enum):
    LIST_WITHDRAWALS = "list_withdrawals"
    RESOLVE_WITHDRAWAL = "resolve_withdrawal"
    SET_BAN = "set_ban"


class AuthorizationPolicy(Protocol):
    def is_authorized(self, user_id: int, action: AdminAction) -> bool:
        ...


class SingleAdminPolicy:
    """Grant every admin capability to one configured user id.

    With no admin configured nobody is authorised.
    """

    def __init__(self, admin_id: int | None) -> None:
        self._admin_id = admin_id

    def is_admin(self, user_id: int) -> bool:
        return self._admin_id is not None and user_id == self._admin_id

    def is_authorized(self, user_id: int, action: AdminAction) -> bool:
        return self.is_admin(user_id)
