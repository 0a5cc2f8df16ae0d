"""SQLAlchemy storage backend for RewardForge."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Sequence

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    BigInteger,
    Numeric,
    String,
    case,
    delete,
    false,
    literal,
    null,
    or_,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from ..domain.clock import as_utc
from ..domain.exceptions import StoreUnavailable
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

Amount = Numeric(24, 8, asdecimal=True)


class Base(DeclarativeBase):
    pass


class UserTable(Base):
    __tablename__ = "rewardforge_users"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    balance: Mapped[Decimal] = mapped_column(Amount, default=Decimal("0"))
    task_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False)
    referrer_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    last_action_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class QuotaTable(Base):
    __tablename__ = "rewardforge_quotas"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("rewardforge_users.user_id"), primary_key=True
    )
    kind: Mapped[str] = mapped_column(String(32), primary_key=True)
    count: Mapped[int] = mapped_column(Integer, default=0)
    capped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class TokenTable(Base):
    __tablename__ = "rewardforge_tokens"

    token_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, index=True)
    kind: Mapped[str] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)


class WithdrawalTable(Base):
    __tablename__ = "rewardforge_withdrawals"

    request_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, index=True)
    amount: Mapped[Decimal] = mapped_column(Amount)
    destination: Mapped[str] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(16), index=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class RewardTable(Base):
    __tablename__ = "rewardforge_rewards"

    reward_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, index=True)
    kind: Mapped[str] = mapped_column(String(32))
    amount: Mapped[Decimal] = mapped_column(Amount)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class CommissionTable(Base):
    __tablename__ = "rewardforge_commissions"

    source_reward_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    referrer_id: Mapped[int] = mapped_column(BigInteger, index=True)
    referee_id: Mapped[int] = mapped_column(BigInteger)
    amount: Mapped[Decimal] = mapped_column(Amount)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class AuditTable(Base):
    __tablename__ = "rewardforge_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    action: Mapped[str] = mapped_column(String(128))
    payload: Mapped[dict] = mapped_column(JSON)


def _utc_or_none(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


class _Sessions:
    """Open short-lived sessions bounded by a timeout, translating driver failures."""

    def __init__(self, factory: async_sessionmaker[AsyncSession], timeout: float) -> None:
        self._factory = factory
        self._timeout = timeout

    @asynccontextmanager
    async def __call__(self) -> AsyncIterator[AsyncSession]:
        try:
            async with asyncio.timeout(self._timeout):
                async with self._factory() as session:
                    yield session
        except TimeoutError as exc:
            raise StoreUnavailable(f"Store call exceeded {self._timeout}s") from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailable(str(exc)) from exc


class AsyncSQLAlchemyStorage:
    """Bundle of async stores backed by SQLAlchemy."""

    def __init__(self, dsn: str, *, echo: bool = False, timeout: float = 10.0) -> None:
        self._engine = create_async_engine(dsn, echo=echo)
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)
        self._sessions = _Sessions(self._session_factory, timeout)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self._sessions() as session:
            yield session

    async def init_models(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    def user_store(self) -> "AsyncSQLAlchemyUserStore":
        return AsyncSQLAlchemyUserStore(self._sessions)

    def token_store(self) -> "AsyncSQLAlchemyTokenStore":
        return AsyncSQLAlchemyTokenStore(self._sessions)

    def withdrawal_store(self) -> "AsyncSQLAlchemyWithdrawalStore":
        return AsyncSQLAlchemyWithdrawalStore(self._sessions)

    def reward_history_store(self) -> "AsyncSQLAlchemyRewardHistoryStore":
        return AsyncSQLAlchemyRewardHistoryStore(self._sessions)

    def commission_store(self) -> "AsyncSQLAlchemyCommissionStore":
        return AsyncSQLAlchemyCommissionStore(self._sessions)

    def audit_store(self) -> "AsyncSQLAlchemyAuditStore":
        return AsyncSQLAlchemyAuditStore(self._sessions)


class AsyncSQLAlchemyUserStore(UserStore):
    def __init__(self, sessions: _Sessions) -> None:
        self._sessions = sessions

    async def get(self, user_id: int) -> UserRecord | None:
        async with self._sessions() as session:
            row = await session.get(UserTable, user_id)
            if row is None:
                return None
            quota_rows = (
                await session.execute(select(QuotaTable).where(QuotaTable.user_id == user_id))
            ).scalars().all()
            return UserRecord(
                user_id=row.user_id,
                balance=Decimal(row.balance),
                quotas={
                    QuotaKind(q.kind): QuotaWindow(count=q.count, capped_at=_utc_or_none(q.capped_at))
                    for q in quota_rows
                },
                task_completed=row.task_completed,
                is_banned=row.is_banned,
                referrer_id=row.referrer_id,
                last_action_at=_utc_or_none(row.last_action_at),
                created_at=_utc_or_none(row.created_at),
            )

    async def create(self, record: UserRecord) -> bool:
        async with self._sessions() as session:
            session.add(
                UserTable(
                    user_id=record.user_id,
                    balance=record.balance,
                    task_completed=record.task_completed,
                    is_banned=record.is_banned,
                    referrer_id=record.referrer_id,
                    last_action_at=record.last_action_at,
                    created_at=record.created_at,
                )
            )
            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                return False
            for kind in QuotaKind:
                window = record.quota(kind)
                session.add(
                    QuotaTable(
                        user_id=record.user_id,
                        kind=kind.value,
                        count=window.count,
                        capped_at=window.capped_at,
                    )
                )
            await session.commit()
            return True

    async def adjust_balance(
        self, user_id: int, delta: Decimal, *, floor: Decimal = Decimal("0")
    ) -> Decimal | None:
        stmt = (
            update(UserTable)
            .where(UserTable.user_id == user_id, UserTable.balance + delta >= floor)
            .values(balance=UserTable.balance + delta)
            .returning(UserTable.balance)
        )
        async with self._sessions() as session:
            new_balance = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()
        return Decimal(new_balance) if new_balance is not None else None

    async def claim_action_slot(
        self, user_id: int, now: datetime, min_interval: timedelta
    ) -> datetime | None:
        cutoff = now - min_interval
        stmt = (
            update(UserTable)
            .where(
                UserTable.user_id == user_id,
                or_(UserTable.last_action_at.is_(None), UserTable.last_action_at <= cutoff),
            )
            .values(last_action_at=now)
            .returning(UserTable.user_id)
        )
        async with self._sessions() as session:
            claimed = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()
            if claimed is not None:
                return None
            last = (
                await session.execute(
                    select(UserTable.last_action_at).where(UserTable.user_id == user_id)
                )
            ).scalar_one_or_none()
        return _utc_or_none(last) or now

    async def set_banned(self, user_id: int, banned: bool) -> bool:
        return await self._flag_update(
            update(UserTable).where(UserTable.user_id == user_id).values(is_banned=banned)
        )

    async def claim_task(self, user_id: int) -> bool:
        return await self._flag_update(
            update(UserTable)
            .where(UserTable.user_id == user_id, UserTable.task_completed == false())
            .values(task_completed=True)
        )

    async def release_task(self, user_id: int) -> None:
        await self._flag_update(
            update(UserTable).where(UserTable.user_id == user_id).values(task_completed=False)
        )

    async def claim_quota_slot(
        self, user_id: int, kind: QuotaKind, cap: int, now: datetime
    ) -> int | None:
        stmt = (
            update(QuotaTable)
            .where(
                QuotaTable.user_id == user_id,
                QuotaTable.kind == kind.value,
                QuotaTable.count < cap,
            )
            .values(
                count=QuotaTable.count + 1,
                capped_at=case(
                    (QuotaTable.count + 1 >= cap, literal(now, DateTime(timezone=True))),
                    else_=QuotaTable.capped_at,
                ),
            )
            .returning(QuotaTable.count)
        )
        async with self._sessions() as session:
            count = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()
        return count

    async def release_quota_slot(self, user_id: int, kind: QuotaKind, cap: int) -> None:
        stmt = (
            update(QuotaTable)
            .where(
                QuotaTable.user_id == user_id,
                QuotaTable.kind == kind.value,
                QuotaTable.count > 0,
            )
            .values(
                count=QuotaTable.count - 1,
                capped_at=case((QuotaTable.count - 1 < cap, null()), else_=QuotaTable.capped_at),
            )
        )
        await self._flag_update(stmt)

    async def reset_quota(
        self, user_id: int, kind: QuotaKind, expected_capped_at: datetime
    ) -> bool:
        return await self._flag_update(
            update(QuotaTable)
            .where(
                QuotaTable.user_id == user_id,
                QuotaTable.kind == kind.value,
                QuotaTable.capped_at == expected_capped_at,
            )
            .values(count=0, capped_at=None)
        )

    async def clear_quota_stamp(
        self, user_id: int, kind: QuotaKind, cap: int, expected_capped_at: datetime
    ) -> bool:
        return await self._flag_update(
            update(QuotaTable)
            .where(
                QuotaTable.user_id == user_id,
                QuotaTable.kind == kind.value,
                QuotaTable.capped_at == expected_capped_at,
                QuotaTable.count < cap,
            )
            .values(capped_at=None)
        )

    async def _flag_update(self, stmt: Any) -> bool:
        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0


class AsyncSQLAlchemyTokenStore(TokenStore):
    def __init__(self, sessions: _Sessions) -> None:
        self._sessions = sessions

    async def add(self, record: TokenRecord) -> None:
        async with self._sessions() as session:
            await session.merge(
                TokenTable(
                    token_id=record.token_id,
                    user_id=record.user_id,
                    kind=record.kind.value,
                    created_at=record.created_at,
                    payload=dict(record.payload) if record.payload is not None else None,
                )
            )
            await session.commit()

    async def consume(
        self, token_id: str, user_id: int, kind: ActionKind, not_before: datetime
    ) -> TokenRecord | None:
        stmt = (
            delete(TokenTable)
            .where(
                TokenTable.token_id == token_id,
                TokenTable.user_id == user_id,
                TokenTable.kind == kind.value,
                TokenTable.created_at >= not_before,
            )
            .returning(
                TokenTable.token_id,
                TokenTable.user_id,
                TokenTable.kind,
                TokenTable.created_at,
                TokenTable.payload,
            )
        )
        async with self._sessions() as session:
            row = (await session.execute(stmt)).first()
            await session.commit()
        if row is None:
            return None
        return TokenRecord(
            token_id=row.token_id,
            user_id=row.user_id,
            kind=ActionKind(row.kind),
            created_at=as_utc(row.created_at),
            payload=row.payload,
        )

    async def prune(self, user_id: int, kind: ActionKind, older_than: datetime) -> int:
        stmt = delete(TokenTable).where(
            TokenTable.user_id == user_id,
            TokenTable.kind == kind.value,
            TokenTable.created_at < older_than,
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount


def _withdrawal_from_row(row: Any) -> WithdrawalRecord:
    return WithdrawalRecord(
        request_id=row.request_id,
        user_id=row.user_id,
        amount=Decimal(row.amount),
        destination=row.destination,
        status=WithdrawalStatus(row.status),
        created_at=_utc_or_none(row.created_at),
        resolved_by=row.resolved_by,
        resolved_at=_utc_or_none(row.resolved_at),
    )


class AsyncSQLAlchemyWithdrawalStore(WithdrawalStore):
    def __init__(self, sessions: _Sessions) -> None:
        self._sessions = sessions

    async def add(self, record: WithdrawalRecord) -> None:
        async with self._sessions() as session:
            session.add(
                WithdrawalTable(
                    request_id=record.request_id,
                    user_id=record.user_id,
                    amount=record.amount,
                    destination=record.destination,
                    status=record.status.value,
                    created_at=record.created_at,
                    resolved_by=record.resolved_by,
                    resolved_at=record.resolved_at,
                )
            )
            await session.commit()

    async def get(self, request_id: str) -> WithdrawalRecord | None:
        async with self._sessions() as session:
            row = await session.get(WithdrawalTable, request_id)
            return _withdrawal_from_row(row) if row else None

    async def transition(
        self,
        request_id: str,
        from_status: WithdrawalStatus,
        to_status: WithdrawalStatus,
        *,
        resolved_by: int | None,
        resolved_at: datetime | None,
    ) -> WithdrawalRecord | None:
        stmt = (
            update(WithdrawalTable)
            .where(
                WithdrawalTable.request_id == request_id,
                WithdrawalTable.status == from_status.value,
            )
            .values(status=to_status.value, resolved_by=resolved_by, resolved_at=resolved_at)
            .returning(
                WithdrawalTable.request_id,
                WithdrawalTable.user_id,
                WithdrawalTable.amount,
                WithdrawalTable.destination,
                WithdrawalTable.status,
                WithdrawalTable.created_at,
                WithdrawalTable.resolved_by,
                WithdrawalTable.resolved_at,
            )
        )
        async with self._sessions() as session:
            row = (await session.execute(stmt)).first()
            await session.commit()
        return _withdrawal_from_row(row) if row else None

    async def list_by_status(self, status: WithdrawalStatus) -> Sequence[WithdrawalRecord]:
        stmt = (
            select(WithdrawalTable)
            .where(WithdrawalTable.status == status.value)
            .order_by(WithdrawalTable.created_at.asc())
        )
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_withdrawal_from_row(row) for row in rows]

    async def recent_for_user(self, user_id: int, limit: int = 20) -> Sequence[WithdrawalRecord]:
        stmt = (
            select(WithdrawalTable)
            .where(WithdrawalTable.user_id == user_id)
            .order_by(WithdrawalTable.created_at.desc())
            .limit(limit)
        )
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_withdrawal_from_row(row) for row in rows]


def _reward_from_row(row: RewardTable) -> RewardRecord:
    return RewardRecord(
        reward_id=row.reward_id,
        user_id=row.user_id,
        kind=ActionKind(row.kind),
        amount=Decimal(row.amount),
        created_at=as_utc(row.created_at),
    )


class AsyncSQLAlchemyRewardHistoryStore(RewardHistoryStore):
    def __init__(self, sessions: _Sessions) -> None:
        self._sessions = sessions

    async def add_record(self, record: RewardRecord) -> None:
        async with self._sessions() as session:
            session.add(
                RewardTable(
                    reward_id=record.reward_id,
                    user_id=record.user_id,
                    kind=record.kind.value,
                    amount=record.amount,
                    created_at=record.created_at,
                )
            )
            await session.commit()

    async def get(self, reward_id: str) -> RewardRecord | None:
        async with self._sessions() as session:
            row = await session.get(RewardTable, reward_id)
            return _reward_from_row(row) if row else None


class AsyncSQLAlchemyCommissionStore(CommissionStore):
    def __init__(self, sessions: _Sessions) -> None:
        self._sessions = sessions

    async def add_if_absent(self, record: CommissionRecord) -> bool:
        async with self._sessions() as session:
            session.add(
                CommissionTable(
                    source_reward_id=record.source_reward_id,
                    referrer_id=record.referrer_id,
                    referee_id=record.referee_id,
                    amount=record.amount,
                    created_at=record.created_at,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
            return True

    async def remove(self, source_reward_id: str) -> None:
        async with self._sessions() as session:
            await session.execute(
                delete(CommissionTable).where(CommissionTable.source_reward_id == source_reward_id)
            )
            await session.commit()

    async def for_referrer(self, referrer_id: int) -> Sequence[CommissionRecord]:
        stmt = select(CommissionTable).where(CommissionTable.referrer_id == referrer_id)
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [
                CommissionRecord(
                    source_reward_id=row.source_reward_id,
                    referrer_id=row.referrer_id,
                    referee_id=row.referee_id,
                    amount=Decimal(row.amount),
                    created_at=as_utc(row.created_at),
                )
                for row in rows
            ]


class AsyncSQLAlchemyAuditStore(AuditStore):
    def __init__(self, sessions: _Sessions) -> None:
        self._sessions = sessions

    async def add_entry(self, action: str, payload: dict) -> None:
        async with self._sessions() as session:
            session.add(
                AuditTable(
                    created_at=datetime.now(timezone.utc),
                    action=action,
                    payload=dict(payload),
                )
            )
            await session.commit()
