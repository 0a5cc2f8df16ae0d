"""Delta rules deciding how much a reward action credits, and the prize wheel."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from random import Random
from typing import Any, Dict, Mapping, Sequence

from .exceptions import MissingPayload
from ..config import SpinSector
from ..storage.base import ActionKind, QuotaKind


class DeltaRule(ABC):
    """Define the balance delta of one reward kind."""

    @abstractmethod
    def amount(self, payload: Mapping[str, Any] | None) -> Decimal:
        """Return the credit for a redeemed action."""


@dataclass(slots=True)
class FixedDelta(DeltaRule):
    value: Decimal

    def amount(self, payload: Mapping[str, Any] | None) -> Decimal:
        return self.value


@dataclass(slots=True)
class CommittedPrizeDelta(DeltaRule):
    """Credit the prize committed into the action token at phase one."""

    key: str = "prize"

    def amount(self, payload: Mapping[str, Any] | None) -> Decimal:
        if not payload or self.key not in payload:
            raise MissingPayload("Committed prize missing from action token")
        return Decimal(str(payload[self.key]))


@dataclass(slots=True)
class SpinOutcome:
    prize: Decimal
    index: int

    def as_payload(self) -> dict[str, Any]:
        return {"prize": str(self.prize), "index": self.index}


class SpinWheel:
    """Fixed weighted sector table."""

    def __init__(self, sectors: Sequence[SpinSector], *, rng: Random | None = None) -> None:
        if not sectors:
            raise ValueError("Spin wheel needs at least one sector")
        self._sectors = tuple(sectors)
        self._rng = rng or Random()

    @property
    def sectors(self) -> tuple[SpinSector, ...]:
        return self._sectors

    def draw(self) -> SpinOutcome:
        index = self._weighted_index([sector.weight for sector in self._sectors])
        return SpinOutcome(prize=self._sectors[index].prize, index=index)

    def expected_prize(self) -> Decimal:
        total = sum(sector.weight for sector in self._sectors)
        if total <= 0:
            return sum((s.prize for s in self._sectors), Decimal("0")) / len(self._sectors)
        return sum(
            (s.prize * Decimal(str(s.weight)) for s in self._sectors), Decimal("0")
        ) / Decimal(str(total))

    def _weighted_index(self, weights: Sequence[float]) -> int:
        total = sum(weights)
        if total <= 0:
            return int(self._rng.random() * len(weights))
        threshold = self._rng.random() * total
        cumulative = 0.0
        for idx, weight in enumerate(weights):
            cumulative += weight
            if threshold < cumulative:
                return idx
        return len(weights) - 1


@dataclass(slots=True)
class RewardRule:
    """Everything the ledger needs to grant one reward kind.

    Adding a reward kind means adding an ActionKind and registering a rule.
    """

    kind: ActionKind
    delta: DeltaRule
    quota: QuotaKind | None = None
    one_time: bool = False
    commissionable: bool = True


class RewardRegistry:
    """Register and look up reward rules."""

    def __init__(self) -> None:
        self._rules: Dict[ActionKind, RewardRule] = {}

    def register(self, rule: RewardRule) -> "RewardRegistry":
        if rule.kind in self._rules:
            raise ValueError(f"Reward rule for {rule.kind.value} already registered")
        self._rules[rule.kind] = rule
        return self

    def get(self, kind: ActionKind) -> RewardRule:
        try:
            return self._rules[kind]
        except KeyError as exc:
            raise KeyError(f"No reward rule for {kind.value}") from exc

    def __contains__(self, kind: object) -> bool:
        return kind in self._rules
