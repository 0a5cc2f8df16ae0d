"""Domain event dispatch.

Listeners run after the ledger mutation they describe has been applied, so a
failing listener never leaves the ledger half-written.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, DefaultDict, Mapping

logger = logging.getLogger(__name__)

EventListener = Callable[[Mapping[str, Any]], Awaitable[None]]

REWARD_GRANTED = "reward.granted"
COMMISSION_PAID = "commission.paid"
COMMISSION_SKIPPED = "commission.skipped"
WITHDRAWAL_CREATED = "withdrawal.created"
WITHDRAWAL_RESOLVED = "withdrawal.resolved"
USER_REGISTERED = "user.registered"
USER_BAN_CHANGED = "admin.user.ban_changed"


class EventBus:
    """Simple async pub-sub used by the services."""

    def __init__(self) -> None:
        self._listeners: DefaultDict[str, list[EventListener]] = defaultdict(list)

    def subscribe(self, event_name: str, listener: EventListener) -> None:
        self._listeners[event_name].append(listener)

    async def publish(self, event_name: str, payload: Mapping[str, Any]) -> None:
        for listener in list(self._listeners.get(event_name, ())):
            try:
                await listener(payload)
            except Exception:
                logger.exception("Listener for '%s' failed.", event_name)
