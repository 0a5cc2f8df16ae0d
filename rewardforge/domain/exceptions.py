"""Exceptions raised by RewardForge domain services."""

from __future__ import annotations


class RewardForgeError(RuntimeError):
    """Base class for domain exceptions."""

    status = "internal"


class BadRequest(RewardForgeError):
    """Raised when required fields are missing or malformed."""

    status = "bad_request"


class Unauthenticated(RewardForgeError):
    """Raised when the identity assertion is invalid or stale."""

    status = "unauthenticated"


class Forbidden(RewardForgeError):
    status = "forbidden"


class UserBanned(Forbidden):
    """Raised when banned user attempts a mutation."""


class NotAuthorized(Forbidden):
    """Raised when caller lacks the capability for an admin action."""


class RateLimited(RewardForgeError):
    status = "rate_limited"

    def __init__(self, retry_after: float, message: str | None = None) -> None:
        super().__init__(message or f"Please wait {retry_after:.1f} seconds before the next action")
        self.retry_after = retry_after


class ActionTooSoon(RateLimited):
    """Raised when the minimum interval between reward actions has not elapsed."""


class Conflict(RewardForgeError):
    status = "conflict"


class InvalidToken(Conflict):
    """Raised when an action token is unknown, expired, mismatched or already used."""


class MissingPayload(InvalidToken):
    """Raised when a committed result is expected but the token carries none."""


class QuotaExceeded(Conflict):
    """Raised when the rolling quota for an action kind is exhausted."""

    def __init__(self, kind: str, cap: int) -> None:
        super().__init__(f"Limit of {cap} {kind} reached for this period")
        self.kind = kind
        self.cap = cap


class TaskAlreadyCompleted(Conflict):
    pass


class InsufficientBalance(Conflict):
    pass


class AlreadyResolved(Conflict):
    """Raised when a withdrawal request has already left the pending state."""


class CommissionAlreadyPaid(Conflict):
    pass


class NotFound(RewardForgeError):
    status = "not_found"


class UserNotFound(NotFound):
    pass


class WithdrawalNotFound(NotFound):
    pass


class RewardNotFound(NotFound):
    pass


class Internal(RewardForgeError):
    status = "internal"


class StoreUnavailable(Internal):
    """Raised by storage backends when the remote store fails or times out."""


class MembershipRequired(Forbidden):
    """Raised when channel membership is absent or could not be confirmed."""
