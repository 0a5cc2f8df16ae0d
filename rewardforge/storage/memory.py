"""In-memory storage backend for RewardForge.

Each primitive runs under the store's lock, so it is atomic with respect to
every other primitive on the same store, the way a single statement is on a
remote database. Records are copied on the way in and out.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Deque, Sequence

from .base import (
    ActionKind,
    AuditStore,
    CommissionRecord,
    CommissionStore,
    QuotaKind,
    QuotaWindow,
    RewardHistoryStore,
    RewardRecord,
    TokenRecord,
    TokenStore,
    UserRecord,
    UserStore,
    WithdrawalRecord,
    WithdrawalStatus,
    WithdrawalStore,
)


def _copy_user(record: UserRecord) -> UserRecord:
    return replace(
        record,
        quotas={kind: replace(window) for kind, window in record.quotas.items()},
    )


class InMemoryUserStore(UserStore):
    def __init__(self) -> None:
        self._records: dict[int, UserRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: int) -> UserRecord | None:
        record = self._records.get(user_id)
        return _copy_user(record) if record else None

    async def create(self, record: UserRecord) -> bool:
        async with self._lock:
            if record.user_id in self._records:
                return False
            self._records[record.user_id] = _copy_user(record)
            return True

    async def adjust_balance(
        self, user_id: int, delta: Decimal, *, floor: Decimal = Decimal("0")
    ) -> Decimal | None:
        async with self._lock:
            record = self._records.get(user_id)
            if record is None:
                return None
            new_balance = record.balance + delta
            if new_balance < floor:
                return None
            record.balance = new_balance
            return new_balance

    async def claim_action_slot(
        self, user_id: int, now: datetime, min_interval: timedelta
    ) -> datetime | None:
        async with self._lock:
            record = self._records[user_id]
            last = record.last_action_at
            if last is not None and now - last < min_interval:
                return last
            record.last_action_at = now
            return None

    async def set_banned(self, user_id: int, banned: bool) -> bool:
        async with self._lock:
            record = self._records.get(user_id)
            if record is None:
                return False
            record.is_banned = banned
            return True

    async def claim_task(self, user_id: int) -> bool:
        async with self._lock:
            record = self._records[user_id]
            if record.task_completed:
                return False
            record.task_completed = True
            return True

    async def release_task(self, user_id: int) -> None:
        async with self._lock:
            self._records[user_id].task_completed = False

    async def claim_quota_slot(
        self, user_id: int, kind: QuotaKind, cap: int, now: datetime
    ) -> int | None:
        async with self._lock:
            window = self._window(user_id, kind)
            if window.count >= cap:
                return None
            window.count += 1
            if window.count >= cap:
                window.capped_at = now
            return window.count

    async def release_quota_slot(self, user_id: int, kind: QuotaKind, cap: int) -> None:
        async with self._lock:
            window = self._window(user_id, kind)
            window.count = max(0, window.count - 1)
            if window.count < cap:
                window.capped_at = None

    async def reset_quota(
        self, user_id: int, kind: QuotaKind, expected_capped_at: datetime
    ) -> bool:
        async with self._lock:
            window = self._window(user_id, kind)
            if window.capped_at != expected_capped_at:
                return False
            window.count = 0
            window.capped_at = None
            return True

    async def clear_quota_stamp(
        self, user_id: int, kind: QuotaKind, cap: int, expected_capped_at: datetime
    ) -> bool:
        async with self._lock:
            window = self._window(user_id, kind)
            if window.capped_at != expected_capped_at or window.count >= cap:
                return False
            window.capped_at = None
            return True

    def _window(self, user_id: int, kind: QuotaKind) -> QuotaWindow:
        return self._records[user_id].quotas.setdefault(kind, QuotaWindow())


class InMemoryTokenStore(TokenStore):
    def __init__(self) -> None:
        self._tokens: dict[str, TokenRecord] = {}
        self._lock = asyncio.Lock()

    async def add(self, record: TokenRecord) -> None:
        async with self._lock:
            self._tokens[record.token_id] = replace(record)

    async def consume(
        self, token_id: str, user_id: int, kind: ActionKind, not_before: datetime
    ) -> TokenRecord | None:
        async with self._lock:
            record = self._tokens.get(token_id)
            if (
                record is None
                or record.user_id != user_id
                or record.kind != kind
                or record.created_at < not_before
            ):
                return None
            return self._tokens.pop(token_id)

    async def prune(self, user_id: int, kind: ActionKind, older_than: datetime) -> int:
        async with self._lock:
            stale = [
                token_id
                for token_id, record in self._tokens.items()
                if record.user_id == user_id and record.kind == kind and record.created_at < older_than
            ]
            for token_id in stale:
                del self._tokens[token_id]
            return len(stale)

    def __len__(self) -> int:
        return len(self._tokens)


class InMemoryWithdrawalStore(WithdrawalStore):
    def __init__(self) -> None:
        self._records: dict[str, WithdrawalRecord] = {}
        self._lock = asyncio.Lock()

    async def add(self, record: WithdrawalRecord) -> None:
        async with self._lock:
            if record.request_id in self._records:
                raise ValueError(f"Withdrawal {record.request_id} already exists")
            self._records[record.request_id] = replace(record)

    async def get(self, request_id: str) -> WithdrawalRecord | None:
        record = self._records.get(request_id)
        return replace(record) if record else None

    async def transition(
        self,
        request_id: str,
        from_status: WithdrawalStatus,
        to_status: WithdrawalStatus,
        *,
        resolved_by: int | None,
        resolved_at: datetime | None,
    ) -> WithdrawalRecord | None:
        async with self._lock:
            record = self._records.get(request_id)
            if record is None or record.status != from_status:
                return None
            record.status = to_status
            record.resolved_by = resolved_by
            record.resolved_at = resolved_at
            return replace(record)

    async def list_by_status(self, status: WithdrawalStatus) -> Sequence[WithdrawalRecord]:
        matching = [replace(rec) for rec in self._records.values() if rec.status == status]
        return sorted(matching, key=_created_key)

    async def recent_for_user(self, user_id: int, limit: int = 20) -> Sequence[WithdrawalRecord]:
        matching = [replace(rec) for rec in self._records.values() if rec.user_id == user_id]
        return sorted(matching, key=_created_key, reverse=True)[:limit]


def _created_key(record: WithdrawalRecord) -> datetime:
    return record.created_at or datetime.min.replace(tzinfo=timezone.utc)


class InMemoryRewardHistoryStore(RewardHistoryStore):
    """Keeps every reward; commission payouts look rewards up by id."""

    def __init__(self) -> None:
        self._records: dict[str, RewardRecord] = {}

    async def add_record(self, record: RewardRecord) -> None:
        self._records[record.reward_id] = record

    async def get(self, reward_id: str) -> RewardRecord | None:
        return self._records.get(reward_id)

    def __len__(self) -> int:
        return len(self._records)


class InMemoryCommissionStore(CommissionStore):
    def __init__(self) -> None:
        self._records: dict[str, CommissionRecord] = {}
        self._lock = asyncio.Lock()

    async def add_if_absent(self, record: CommissionRecord) -> bool:
        async with self._lock:
            if record.source_reward_id in self._records:
                return False
            self._records[record.source_reward_id] = record
            return True

    async def remove(self, source_reward_id: str) -> None:
        async with self._lock:
            self._records.pop(source_reward_id, None)

    async def for_referrer(self, referrer_id: int) -> Sequence[CommissionRecord]:
        return [rec for rec in self._records.values() if rec.referrer_id == referrer_id]


class InMemoryAuditStore(AuditStore):
    def __init__(self, *, maxlen: int = 1000) -> None:
        self._entries: Deque[tuple[datetime, str, dict]] = deque(maxlen=maxlen)

    async def add_entry(self, action: str, payload: dict) -> None:
        self._entries.append((datetime.now(timezone.utc), action, payload))

    def dump(self) -> list[tuple[datetime, str, dict]]:
        return list(self._entries)
