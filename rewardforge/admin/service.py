"""Administrative operations for RewardForge."""

from __future__ import annotations

from typing import Sequence

from .policy import AdminAction, AuthorizationPolicy
from ..domain.clock import Clock, utcnow
from ..domain.events import USER_BAN_CHANGED, EventBus
from ..domain.exceptions import BadRequest, Forbidden, NotAuthorized, UserNotFound
from ..domain.withdrawals import WithdrawalService
from ..storage.base import AuditStore, UserStore, WithdrawalRecord


class AdminService:
    def __init__(
        self,
        policy: AuthorizationPolicy,
        users: UserStore,
        withdrawals: WithdrawalService,
        audit_store: AuditStore,
        event_bus: EventBus,
        *,
        clock: Clock = utcnow,
    ) -> None:
        self._policy = policy
        self._users = users
        self._withdrawals = withdrawals
        self._audit_store = audit_store
        self._events = event_bus
        self._clock = clock

    def is_admin(self, user_id: int) -> bool:
        return any(self._policy.is_authorized(user_id, action) for action in AdminAction)

    async def list_pending(self, caller_id: int) -> Sequence[WithdrawalRecord]:
        self._require(caller_id, AdminAction.LIST_WITHDRAWALS)
        return await self._withdrawals.list_pending()

    async def resolve_withdrawal(self, caller_id: int, request_id: str, action: str) -> WithdrawalRecord:
        self._require(caller_id, AdminAction.RESOLVE_WITHDRAWAL)
        if action not in ("approve", "reject"):
            raise BadRequest("Action must be 'approve' or 'reject'")
        record = await self._withdrawals.resolve(
            request_id, approve=action == "approve", resolver_id=caller_id
        )
        await self._audit(
            f"withdrawal_{action}",
            {
                "admin_id": caller_id,
                "request_id": request_id,
                "user_id": record.user_id,
                "amount": str(record.amount),
            },
        )
        return record

    async def set_ban(self, caller_id: int, target_id: int, banned: bool) -> None:
        self._require(caller_id, AdminAction.SET_BAN)
        if target_id == caller_id:
            raise Forbidden("Admins cannot change their own ban status")
        if not await self._users.set_banned(target_id, banned):
            raise UserNotFound(f"User {target_id} not found")
        await self._audit(
            "ban" if banned else "unban", {"admin_id": caller_id, "user_id": target_id}
        )
        await self._events.publish(
            USER_BAN_CHANGED, {"user_id": target_id, "banned": banned, "admin_id": caller_id}
        )

    def _require(self, caller_id: int, action: AdminAction) -> None:
        if not self._policy.is_authorized(caller_id, action):
            raise NotAuthorized("Access denied: not an admin")

    async def _audit(self, action: str, payload: dict) -> None:
        await self._audit_store.add_entry(
            action,
            {
                "timestamp": self._clock().isoformat(),
                **payload,
            },
        )
