"""Retry store calls that must eventually land to keep the ledger consistent."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .exceptions import StoreUnavailable

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def retry_store_call(
    label: str,
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    delay: float = 0.05,
) -> T:
    """Run ``func`` until it succeeds, re-raising the last StoreUnavailable."""
    attempt = 0
    while True:
        try:
            return await func()
        except StoreUnavailable:
            attempt += 1
            if attempt >= attempts:
                logger.error("Store call '%s' failed after %s attempts.", label, attempt)
                raise
            logger.info(
                "Store call '%s' failed; retrying in %.2f s (attempt %s/%s).",
                label,
                delay * attempt,
                attempt,
                attempts,
            )
            await asyncio.sleep(delay * attempt)
