"""Single-use, time-boxed action tokens gating reward operations."""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from .clock import Clock, utcnow
from .exceptions import InvalidToken, MissingPayload, StoreUnavailable
from ..config import TokenConfig
from ..storage.base import ActionKind, TokenRecord, TokenStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Gate:
    """Token that only authorises one action of ``kind``."""

    kind: ActionKind


@dataclass(frozen=True, slots=True)
class Committed:
    """Token carrying a result fixed before the client could observe it."""

    kind: ActionKind
    payload: Mapping[str, Any]


TokenState = Gate | Committed


def token_state(record: TokenRecord) -> TokenState:
    if record.payload:
        return Committed(record.kind, dict(record.payload))
    return Gate(record.kind)


def _new_token_id() -> str:
    return secrets.token_hex(16)


class ActionTokenAuthority:
    """Issue and atomically consume action tokens.

    Consumption is one conditional delete in the store, so of several
    concurrent callers presenting the same id exactly one gets the row back.
    Unknown, expired, mismatched and already-consumed tokens all fail the same
    way.
    """

    def __init__(
        self,
        store: TokenStore,
        config: TokenConfig,
        *,
        clock: Clock = utcnow,
        id_factory: Callable[[], str] = _new_token_id,
    ) -> None:
        self._store = store
        self._config = config
        self._clock = clock
        self._id_factory = id_factory

    @property
    def validity(self) -> timedelta:
        return timedelta(seconds=self._config.validity_seconds)

    async def issue(self, user_id: int, kind: ActionKind) -> str:
        now = self._clock()
        token_id = self._id_factory()
        await self._store.add(TokenRecord(token_id=token_id, user_id=user_id, kind=kind, created_at=now))
        await self._sweep(user_id, kind, now)
        return token_id

    async def _sweep(self, user_id: int, kind: ActionKind, now: datetime) -> None:
        try:
            pruned = await self._store.prune(user_id, kind, now - self.validity)
        except StoreUnavailable:
            logger.warning("Token sweep for user %s (%s) failed.", user_id, kind.value, exc_info=True)
        else:
            if pruned:
                logger.debug("Pruned %s stale %s tokens for user %s.", pruned, kind.value, user_id)

    async def validate_and_consume(
        self, user_id: int, token_id: str | None, expected_kind: ActionKind
    ) -> TokenRecord:
        if not token_id:
            raise InvalidToken("Missing action token")
        record = await self._store.consume(
            token_id, user_id, expected_kind, not_before=self._clock() - self.validity
        )
        if record is None:
            raise InvalidToken("Invalid, expired or already used action token")
        return record

    async def validate_consume_and_extract(
        self, user_id: int, token_id: str | None, expected_kind: ActionKind
    ) -> Mapping[str, Any]:
        record = await self.validate_and_consume(user_id, token_id, expected_kind)
        state = token_state(record)
        if not isinstance(state, Committed):
            logger.warning(
                "Token %s of user %s carried no committed result for %s.",
                token_id,
                user_id,
                expected_kind.value,
            )
            raise MissingPayload("Action token carries no committed result")
        return state.payload

    async def commit(
        self,
        token_id: str,
        user_id: int,
        new_kind: ActionKind,
        payload: Mapping[str, Any],
    ) -> TokenRecord:
        """Bind a result to a consumed token id, to be redeemed once as ``new_kind``."""
        if not payload:
            raise ValueError("Committed tokens require a payload")
        now = self._clock()
        record = TokenRecord(
            token_id=token_id,
            user_id=user_id,
            kind=new_kind,
            created_at=now,
            payload=dict(payload),
        )
        await self._store.add(record)
        await self._sweep(user_id, new_kind, now)
        return record
