"""Domain models and services."""

from .actions import RewardActions, SpinReward, SpinTicket
from .ledger import CommissionOutcome, RewardLedger, RewardOutcome
from .membership import MembershipOracle, MembershipStatus, StaticMembershipOracle
from .quota import QuotaStatus, QuotaWindowManager
from .rewards import (
    CommittedPrizeDelta,
    DeltaRule,
    FixedDelta,
    RewardRegistry,
    RewardRule,
    SpinOutcome,
    SpinWheel,
)
from .tokens import ActionTokenAuthority, Committed, Gate, token_state
from .users import Registration, UserService, UserState
from .withdrawals import WithdrawalReceipt, WithdrawalService
from .exceptions import (
    AlreadyResolved,
    Conflict,
    Forbidden,
    InvalidToken,
    MissingPayload,
    QuotaExceeded,
    RewardForgeError,
    UserBanned,
)

__all__ = [
    "RewardActions",
    "SpinReward",
    "SpinTicket",
    "CommissionOutcome",
    "RewardLedger",
    "RewardOutcome",
    "MembershipOracle",
    "MembershipStatus",
    "StaticMembershipOracle",
    "QuotaStatus",
    "QuotaWindowManager",
    "CommittedPrizeDelta",
    "DeltaRule",
    "FixedDelta",
    "RewardRegistry",
    "RewardRule",
    "SpinOutcome",
    "SpinWheel",
    "ActionTokenAuthority",
    "Committed",
    "Gate",
    "token_state",
    "Registration",
    "UserService",
    "UserState",
    "WithdrawalReceipt",
    "WithdrawalService",
    "AlreadyResolved",
    "Conflict",
    "Forbidden",
    "InvalidToken",
    "MissingPayload",
    "QuotaExceeded",
    "RewardForgeError",
    "UserBanned",
]
