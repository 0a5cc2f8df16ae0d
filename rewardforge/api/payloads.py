"""Request field parsing and response payload rendering."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from ..domain.actions import SpinReward, SpinTicket
from ..domain.exceptions import BadRequest
from ..domain.ledger import CommissionOutcome, RewardOutcome
from ..domain.users import UserState
from ..domain.withdrawals import AMOUNT_PLACES, WithdrawalReceipt, exceeds_amount_places
from ..storage.base import WithdrawalRecord


def require_int(body: Mapping[str, Any], key: str) -> int:
    value = body.get(key)
    if value is None or value == "":
        raise BadRequest(f"Missing {key}")
    if isinstance(value, bool):
        raise BadRequest(f"Invalid {key}")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise BadRequest(f"Invalid {key}") from exc


def optional_int(body: Mapping[str, Any], key: str) -> int | None:
    if body.get(key) in (None, ""):
        return None
    return require_int(body, key)


def require_str(body: Mapping[str, Any], key: str) -> str:
    value = body.get(key)
    if not isinstance(value, str) or not value.strip():
        raise BadRequest(f"Missing {key}")
    return value.strip()


def optional_str(body: Mapping[str, Any], key: str) -> str | None:
    value = body.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise BadRequest(f"Invalid {key}")
    return value


def require_decimal(body: Mapping[str, Any], key: str) -> Decimal:
    value = body.get(key)
    if value is None or value == "" or isinstance(value, bool):
        raise BadRequest(f"Missing {key}")
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise BadRequest(f"Invalid {key}") from exc
    if not amount.is_finite():
        raise BadRequest(f"Invalid {key}")
    if exceeds_amount_places(amount):
        raise BadRequest(f"{key} has more than {AMOUNT_PLACES} decimal places")
    return amount


def require_bool(body: Mapping[str, Any], key: str) -> bool:
    value = body.get(key)
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in {"true", "false"}:
        return value.lower() == "true"
    raise BadRequest(f"Missing {key}")


def withdrawal_payload(record: WithdrawalRecord, *, include_destination: bool = False) -> dict[str, Any]:
    payload = {
        "request_id": record.request_id,
        "user_id": record.user_id,
        "amount": record.amount,
        "status": record.status.value,
        "created_at": record.created_at,
        "resolved_at": record.resolved_at,
    }
    if include_destination:
        payload["destination"] = record.destination
        payload["resolved_by"] = record.resolved_by
    return payload


def state_payload(state: UserState) -> dict[str, Any]:
    quotas = {
        kind.value: {"count": status.count, "cap": status.cap, "remaining": status.remaining}
        for kind, status in state.quotas.items()
    }
    return {
        "user_id": state.user_id,
        "balance": state.balance,
        "quotas": quotas,
        "task_completed": state.task_completed,
        "is_banned": state.is_banned,
        "is_admin": state.is_admin,
        "referrer_id": state.referrer_id,
        "commission_earned": state.commission_earned,
        "withdrawal_history": [withdrawal_payload(item) for item in state.withdrawal_history],
    }


def reward_payload(outcome: RewardOutcome) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "reward_id": outcome.reward_id,
        "amount": outcome.amount,
        "new_balance": outcome.new_balance,
    }
    if outcome.quota_count is not None:
        payload["quota_count"] = outcome.quota_count
    return payload


def spin_ticket_payload(ticket: SpinTicket) -> dict[str, Any]:
    return {"action_id": ticket.action_id, "spins_remaining": ticket.spins_remaining}


def spin_reward_payload(result: SpinReward) -> dict[str, Any]:
    payload = reward_payload(result.reward)
    payload["prize"] = result.reward.amount
    payload["prize_index"] = result.prize_index
    return payload


def receipt_payload(receipt: WithdrawalReceipt) -> dict[str, Any]:
    return {
        "request_id": receipt.request.request_id,
        "amount": receipt.request.amount,
        "status": receipt.request.status.value,
        "new_balance": receipt.new_balance,
    }


def commission_payload(outcome: CommissionOutcome) -> dict[str, Any]:
    return {
        "paid": outcome.paid,
        "amount": outcome.amount if outcome.paid else Decimal("0"),
        "referrer_id": outcome.referrer_id,
        "reason": outcome.reason,
    }
