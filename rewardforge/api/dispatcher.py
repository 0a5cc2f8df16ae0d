"""Map operation requests onto services and wrap results in envelopes.

Every response is either ``{"ok": True, "data": ...}`` or
``{"ok": False, "error": message, "status": category}``; rate-limited errors
also carry ``retry_after`` in seconds.
"""

from __future__ import annotations

import hmac
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from . import payloads
from ..app import RewardApp
from ..domain.exceptions import (
    BadRequest,
    Internal,
    RateLimited,
    RewardForgeError,
    Unauthenticated,
)
from ..storage.base import ActionKind

logger = logging.getLogger(__name__)

Envelope = dict[str, Any]
Handler = Callable[[Mapping[str, Any], "int | None"], Awaitable[Any]]

HTTP_STATUS = {
    "bad_request": 400,
    "unauthenticated": 401,
    "forbidden": 403,
    "not_found": 404,
    "conflict": 409,
    "rate_limited": 429,
    "internal": 500,
}

GENERIC_INTERNAL_ERROR = "Internal error, please retry"


class Auth(Enum):
    USER = "user"
    SERVER = "server"
    ADMIN = "admin"


def success(data: Any) -> Envelope:
    return {"ok": True, "data": data}


def failure(message: str, status: str, *, retry_after: float | None = None) -> Envelope:
    envelope: Envelope = {"ok": False, "error": message, "status": status}
    if retry_after is not None:
        envelope["retry_after"] = retry_after
    return envelope


def http_status(envelope: Envelope) -> int:
    if envelope.get("ok"):
        return 200
    return HTTP_STATUS.get(envelope.get("status", "internal"), 500)


class RequestDispatcher:
    def __init__(self, app: RewardApp) -> None:
        self._app = app
        self._routes: dict[str, tuple[Handler, Auth]] = {
            "register": (self._register, Auth.USER),
            "fetch-user-state": (self._fetch_user_state, Auth.USER),
            "generate-action-token": (self._generate_action_token, Auth.USER),
            "watch-ad": (self._watch_ad, Auth.USER),
            "pre-spin": (self._pre_spin, Auth.USER),
            "spin-result": (self._spin_result, Auth.USER),
            "complete-task": (self._complete_task, Auth.USER),
            "request-commission": (self._request_commission, Auth.SERVER),
            "withdraw": (self._withdraw, Auth.USER),
            "admin-list-withdrawals": (self._admin_list_withdrawals, Auth.ADMIN),
            "admin-resolve-withdrawal": (self._admin_resolve_withdrawal, Auth.ADMIN),
            "admin-set-ban": (self._admin_set_ban, Auth.ADMIN),
        }

    @property
    def operations(self) -> tuple[str, ...]:
        return tuple(self._routes)

    async def dispatch(self, body: Any) -> Envelope:
        operation = body.get("type") if isinstance(body, Mapping) else None
        try:
            if not isinstance(body, Mapping):
                raise BadRequest("Request body must be a JSON object")
            route = self._routes.get(operation) if isinstance(operation, str) else None
            if route is None:
                raise BadRequest(f"Unknown operation {operation!r}")
            handler, auth = route
            caller = await self._authenticate(body, auth)
            return success(await handler(body, caller))
        except RateLimited as exc:
            return failure(str(exc), exc.status, retry_after=round(exc.retry_after, 3))
        except Internal as exc:
            logger.error("Operation %s failed: %s", operation, exc)
            return failure(GENERIC_INTERNAL_ERROR, exc.status)
        except RewardForgeError as exc:
            logger.debug("Operation %s rejected (%s): %s", operation, exc.status, exc)
            return failure(str(exc), exc.status)
        except Exception:
            logger.exception("Unhandled error during operation %s.", operation)
            return failure(GENERIC_INTERNAL_ERROR, "internal")

    async def _authenticate(self, body: Mapping[str, Any], auth: Auth) -> int | None:
        if auth is Auth.SERVER:
            self._check_commission_secret(body)
            return None

        user_id = payloads.require_int(body, "user_id")
        if auth is Auth.ADMIN and not self._app.config.auth.verify_admin_init_data:
            return user_id

        verifier = self._app.verifier
        if verifier is None:
            logger.error("Identity verification requested but no bot token is configured.")
            raise Unauthenticated("Identity verification is not configured")
        verifier.verify(payloads.optional_str(body, "init_data"), user_id)
        return user_id

    def _check_commission_secret(self, body: Mapping[str, Any]) -> None:
        expected = self._app.config.auth.commission_secret
        if not expected:
            return
        provided = payloads.optional_str(body, "secret") or ""
        if not hmac.compare_digest(provided.encode(), expected.encode()):
            raise Unauthenticated("Invalid commission secret")

    async def _register(self, body: Mapping[str, Any], caller: int | None) -> Any:
        registration = await self._app.users.register(
            caller, payloads.optional_int(body, "referrer_id")
        )
        return {"created": registration.created, "user": payloads.state_payload(registration.state)}

    async def _fetch_user_state(self, body: Mapping[str, Any], caller: int | None) -> Any:
        return payloads.state_payload(await self._app.users.fetch_state(caller))

    async def _generate_action_token(self, body: Mapping[str, Any], caller: int | None) -> Any:
        raw = payloads.require_str(body, "action_type")
        try:
            kind = ActionKind(raw)
        except ValueError as exc:
            raise BadRequest(f"Unknown action type {raw!r}") from exc
        action_id = await self._app.actions.issue_token(caller, kind)
        return {
            "action_id": action_id,
            "action_type": kind.value,
            "expires_in": self._app.config.tokens.validity_seconds,
        }

    async def _watch_ad(self, body: Mapping[str, Any], caller: int | None) -> Any:
        outcome = await self._app.actions.watch_ad(caller, payloads.optional_str(body, "action_id"))
        return payloads.reward_payload(outcome)

    async def _pre_spin(self, body: Mapping[str, Any], caller: int | None) -> Any:
        ticket = await self._app.actions.pre_spin(caller, payloads.optional_str(body, "action_id"))
        return payloads.spin_ticket_payload(ticket)

    async def _spin_result(self, body: Mapping[str, Any], caller: int | None) -> Any:
        result = await self._app.actions.spin_result(caller, payloads.optional_str(body, "action_id"))
        return payloads.spin_reward_payload(result)

    async def _complete_task(self, body: Mapping[str, Any], caller: int | None) -> Any:
        outcome = await self._app.actions.complete_task(
            caller, payloads.optional_str(body, "action_id")
        )
        return payloads.reward_payload(outcome)

    async def _request_commission(self, body: Mapping[str, Any], caller: int | None) -> Any:
        outcome = await self._app.actions.request_commission(
            payloads.require_int(body, "referee_id"), payloads.require_str(body, "reward_id")
        )
        return payloads.commission_payload(outcome)

    async def _withdraw(self, body: Mapping[str, Any], caller: int | None) -> Any:
        receipt = await self._app.actions.withdraw(
            caller,
            payloads.optional_str(body, "action_id"),
            payloads.require_decimal(body, "amount"),
            payloads.require_str(body, "destination"),
        )
        return payloads.receipt_payload(receipt)

    async def _admin_list_withdrawals(self, body: Mapping[str, Any], caller: int | None) -> Any:
        pending = await self._app.admin.list_pending(caller)
        return {
            "pending_withdrawals": [
                payloads.withdrawal_payload(record, include_destination=True) for record in pending
            ]
        }

    async def _admin_resolve_withdrawal(self, body: Mapping[str, Any], caller: int | None) -> Any:
        record = await self._app.admin.resolve_withdrawal(
            caller, payloads.require_str(body, "request_id"), payloads.require_str(body, "action")
        )
        return payloads.withdrawal_payload(record, include_destination=True)

    async def _admin_set_ban(self, body: Mapping[str, Any], caller: int | None) -> Any:
        target = payloads.require_int(body, "target_id")
        banned = payloads.require_bool(body, "banned")
        await self._app.admin.set_ban(caller, target, banned)
        return {"target_id": target, "banned": banned}
