"""Top level application object for RewardForge services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from random import Random

from .admin.policy import AuthorizationPolicy, SingleAdminPolicy
from .admin.service import AdminService
from .config import RewardConfig, RewardForgeConfig
from .domain.actions import RewardActions
from .domain.clock import Clock, utcnow
from .domain.events import EventBus
from .domain.ledger import RewardLedger
from .domain.membership import MembershipOracle, MembershipStatus, StaticMembershipOracle
from .domain.quota import QuotaWindowManager
from .domain.rewards import CommittedPrizeDelta, FixedDelta, RewardRegistry, RewardRule, SpinWheel
from .domain.tokens import ActionTokenAuthority
from .domain.users import UserService
from .domain.withdrawals import WithdrawalService
from .storage.base import (
    ActionKind,
    AuditStore,
    CommissionStore,
    QuotaKind,
    RewardHistoryStore,
    TokenStore,
    UserStore,
    WithdrawalStore,
)
from .storage.memory import (
    InMemoryAuditStore,
    InMemoryCommissionStore,
    InMemoryRewardHistoryStore,
    InMemoryTokenStore,
    InMemoryUserStore,
    InMemoryWithdrawalStore,
)
from .storage.sqlalchemy import AsyncSQLAlchemyStorage
from .telegram.webapp import IdentityVerifier, InitDataVerifier

logger = logging.getLogger(__name__)


def default_registry(config: RewardConfig) -> RewardRegistry:
    """Reward rules for the built-in action kinds."""
    registry = RewardRegistry()
    registry.register(
        RewardRule(ActionKind.WATCH_AD, FixedDelta(config.ad_reward), quota=QuotaKind.ADS)
    )
    registry.register(
        RewardRule(ActionKind.SPIN_RESULT, CommittedPrizeDelta(), quota=QuotaKind.SPINS)
    )
    registry.register(
        RewardRule(ActionKind.COMPLETE_TASK, FixedDelta(config.task_reward), one_time=True)
    )
    return registry


@dataclass(slots=True)
class Stores:
    users: UserStore
    tokens: TokenStore
    withdrawals: WithdrawalStore
    history: RewardHistoryStore
    commissions: CommissionStore
    audit: AuditStore


class RewardApp:
    """Central dependency container used by the API server, admin bot and tests."""

    def __init__(
        self,
        config: RewardForgeConfig,
        *,
        stores: Stores | None = None,
        event_bus: EventBus | None = None,
        rng: Random | None = None,
        clock: Clock = utcnow,
        registry: RewardRegistry | None = None,
        membership: MembershipOracle | None = None,
        verifier: IdentityVerifier | None = None,
        policy: AuthorizationPolicy | None = None,
    ) -> None:
        self.config = config
        self.clock = clock
        self.event_bus = event_bus or EventBus()
        self._rng = rng or (Random(config.rng_seed) if config.rng_seed is not None else Random())

        self._sqlalchemy_storage: AsyncSQLAlchemyStorage | None = None
        self.stores = stores or self._wire_storage()

        self.policy = policy or SingleAdminPolicy(config.admin.admin_id)
        self.registry = registry or default_registry(config.rewards)
        self.wheel = SpinWheel(config.rewards.spin_sectors, rng=self._rng)

        if membership is None:
            logger.warning("No membership oracle configured; task claims will be denied.")
            membership = StaticMembershipOracle(MembershipStatus.CHECK_FAILED)
        self.membership = membership

        if verifier is None and config.auth.bot_token:
            verifier = InitDataVerifier(
                config.auth.bot_token,
                max_age_seconds=config.auth.init_data_max_age_seconds,
                clock=clock,
            )
        self.verifier = verifier

        self.quotas = QuotaWindowManager(self.stores.users, config.quotas, clock=clock)
        self.tokens = ActionTokenAuthority(self.stores.tokens, config.tokens, clock=clock)
        self.ledger = RewardLedger(
            self.stores.users,
            self.stores.history,
            self.stores.commissions,
            self.quotas,
            self.registry,
            config.rewards,
            self.event_bus,
            clock=clock,
        )
        self.withdrawals = WithdrawalService(
            self.stores.withdrawals,
            self.ledger,
            config.withdrawals,
            self.event_bus,
            clock=clock,
        )
        self.admin = AdminService(
            self.policy,
            self.stores.users,
            self.withdrawals,
            self.stores.audit,
            self.event_bus,
            clock=clock,
        )
        self.users = UserService(
            self.stores.users,
            self.quotas,
            self.stores.withdrawals,
            self.stores.commissions,
            self.event_bus,
            is_admin=self.admin.is_admin,
            clock=clock,
        )
        self.actions = RewardActions(
            self.tokens,
            self.ledger,
            self.quotas,
            self.withdrawals,
            self.wheel,
            self.membership,
        )

    def _wire_storage(self) -> Stores:
        backend = self.config.storage.backend
        if backend == "memory":
            return Stores(
                users=InMemoryUserStore(),
                tokens=InMemoryTokenStore(),
                withdrawals=InMemoryWithdrawalStore(),
                history=InMemoryRewardHistoryStore(),
                commissions=InMemoryCommissionStore(),
                audit=InMemoryAuditStore(),
            )
        if backend == "sqlalchemy":
            dsn = self.config.storage.resolve_dsn()
            if not dsn:
                raise ValueError("SQLAlchemy backend requires a DSN")
            storage = AsyncSQLAlchemyStorage(
                dsn,
                echo=self.config.storage.echo_sql,
                timeout=self.config.storage.timeout_seconds,
            )
            self._sqlalchemy_storage = storage
            return Stores(
                users=storage.user_store(),
                tokens=storage.token_store(),
                withdrawals=storage.withdrawal_store(),
                history=storage.reward_history_store(),
                commissions=storage.commission_store(),
                audit=storage.audit_store(),
            )
        raise ValueError(f"Unsupported storage backend {backend}")

    async def init_backend(self) -> None:
        """Initialize storage backend resources (e.g., database tables)."""
        if self._sqlalchemy_storage:
            await self._sqlalchemy_storage.init_models()

    async def close(self) -> None:
        if self._sqlalchemy_storage:
            await self._sqlalchemy_storage.dispose()
