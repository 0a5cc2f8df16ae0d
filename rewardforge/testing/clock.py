"""Deterministic clock for window and pacing tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0.0, *, milliseconds: float = 0.0) -> datetime:
        self.now += timedelta(seconds=seconds, milliseconds=milliseconds)
        return self.now
