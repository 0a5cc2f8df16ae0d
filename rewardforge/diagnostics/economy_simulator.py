"""Economy simulation helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from random import Random
from typing import Dict

from ..config import RewardForgeConfig
from ..domain.rewards import SpinWheel


@dataclass(slots=True)
class SimulationResult:
    spins: int
    total_prize: Decimal = Decimal("0")
    hits: Dict[int, int] = field(default_factory=dict)

    def merge(self, index: int, prize: Decimal) -> None:
        self.hits[index] = self.hits.get(index, 0) + 1
        self.total_prize += prize

    @property
    def mean_prize(self) -> Decimal:
        if not self.spins:
            return Decimal("0")
        return self.total_prize / self.spins


@dataclass(slots=True)
class WindowPayout:
    """Maximum credit one user can collect inside a single quota window."""

    ads: Decimal
    spins: Decimal
    commission_per_window: Decimal

    @property
    def total(self) -> Decimal:
        return self.ads + self.spins


class EconomySimulator:
    """Monte-Carlo simulation of the spin wheel and per-window payouts."""

    def __init__(self, config: RewardForgeConfig, *, rng: Random | None = None) -> None:
        self._config = config
        self._wheel = SpinWheel(config.rewards.spin_sectors, rng=rng or Random())

    @property
    def wheel(self) -> SpinWheel:
        return self._wheel

    def simulate(self, *, spins: int = 1000) -> SimulationResult:
        result = SimulationResult(spins=spins)
        for _ in range(spins):
            outcome = self._wheel.draw()
            result.merge(outcome.index, outcome.prize)
        return result

    def window_payout(self) -> WindowPayout:
        rewards = self._config.rewards
        quotas = self._config.quotas
        ads = rewards.ad_reward * quotas.ad_cap
        spins = self._wheel.expected_prize() * quotas.spin_cap
        return WindowPayout(
            ads=ads,
            spins=spins,
            commission_per_window=(ads + spins) * rewards.commission_rate,
        )
