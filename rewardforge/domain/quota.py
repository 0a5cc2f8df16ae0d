"""Rolling quota windows for repeatable actions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from .clock import Clock, as_utc, utcnow
from .exceptions import QuotaExceeded, StoreUnavailable
from ..config import QuotaConfig
from ..storage.base import QuotaKind, UserRecord, UserStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QuotaStatus:
    kind: QuotaKind
    count: int
    cap: int

    @property
    def remaining(self) -> int:
        return max(0, self.cap - self.count)


class QuotaWindowManager:
    """Track per-user caps whose window starts when the cap is reached.

    A user who never reaches the cap never resets; the window only throttles.
    """

    def __init__(self, store: UserStore, config: QuotaConfig, *, clock: Clock = utcnow) -> None:
        self._store = store
        self._config = config
        self._clock = clock

    def cap(self, kind: QuotaKind) -> int:
        if kind is QuotaKind.ADS:
            return self._config.ad_cap
        return self._config.spin_cap

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self._config.window_seconds)

    async def check_and_maybe_reset(self, user: UserRecord, kind: QuotaKind) -> QuotaStatus:
        """Return the current count, resetting it first if the window has elapsed."""
        cap = self.cap(kind)
        window = user.quota(kind)
        if window.capped_at is None:
            return QuotaStatus(kind, window.count, cap)

        capped_at = as_utc(window.capped_at)
        try:
            if window.count < cap:
                # Stale stamp from a previous cycle; the count stands.
                await self._store.clear_quota_stamp(user.user_id, kind, cap, window.capped_at)
                return QuotaStatus(kind, window.count, cap)
            if self._clock() - capped_at > self.window:
                if await self._store.reset_quota(user.user_id, kind, window.capped_at):
                    logger.info("Quota %s reset for user %s.", kind.value, user.user_id)
                    return QuotaStatus(kind, 0, cap)
                refreshed = await self._store.get(user.user_id)
                if refreshed is not None:
                    return QuotaStatus(kind, refreshed.quota(kind).count, cap)
        except StoreUnavailable:
            logger.warning(
                "Quota reset for user %s (%s) skipped: store unavailable.",
                user.user_id,
                kind.value,
                exc_info=True,
            )
        return QuotaStatus(kind, window.count, cap)

    async def record_use(self, user_id: int, kind: QuotaKind) -> int:
        """Consume one slot; raise QuotaExceeded when the cap is already reached."""
        cap = self.cap(kind)
        count = await self._store.claim_quota_slot(user_id, kind, cap, self._clock())
        if count is None:
            raise QuotaExceeded(kind.value, cap)
        return count

    async def release_use(self, user_id: int, kind: QuotaKind) -> None:
        await self._store.release_quota_slot(user_id, kind, self.cap(kind))
