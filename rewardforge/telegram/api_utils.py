"""Bot API calls that ride out rate limits and flaky connections."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from aiogram.exceptions import TelegramNetworkError, TelegramRetryAfter, TelegramServerError

P = ParamSpec("P")
T = TypeVar("T")

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (TelegramRetryAfter, TelegramNetworkError, TelegramServerError)


class TelegramUnavailable(RuntimeError):
    """The Bot API kept failing transiently until the retries ran out."""


async def call_with_retry(
    label: str,
    func: Callable[P, Awaitable[T]],
    *args: P.args,
    retries: int = 3,
    backoff: float = 1.0,
    **kwargs: P.kwargs,
) -> T:
    """Await a Bot API call, retrying rate limits and network or server errors.

    Definitive answers such as bad requests or forbidden errors propagate
    unchanged. Once ``retries`` attempts have failed transiently,
    ``TelegramUnavailable`` is raised from the last error.
    """
    attempt = 0
    while True:
        try:
            return await func(*args, **kwargs)
        except TRANSIENT_ERRORS as exc:
            attempt += 1
            if attempt >= retries:
                logger.warning(
                    "Telegram call '%s' still failing after %s attempts (%s).",
                    label,
                    attempt,
                    type(exc).__name__,
                )
                raise TelegramUnavailable(f"Telegram call '{label}' failed") from exc
            if isinstance(exc, TelegramRetryAfter):
                delay = float(exc.retry_after or backoff)
            else:
                delay = backoff * attempt
            logger.info(
                "Telegram call '%s' failed transiently; sleeping for %.1f s (attempt %s/%s).",
                label,
                delay,
                attempt,
                retries,
            )
            await asyncio.sleep(delay)
