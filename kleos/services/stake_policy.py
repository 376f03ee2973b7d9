"""
KLEOS - Stake weighting policy.

Reputation tiers and the timing curve live here as data so they can be tuned
from configuration without touching the effective stake computation.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple

from kleos.config import DEFAULT_REPUTATION_TIERS, ReputationTier, Settings, settings

MAX_MULTIPLIER = 3


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass(frozen=True)
class StakePolicy:
    tiers: Tuple[ReputationTier, ...] = field(default_factory=lambda: tuple(DEFAULT_REPUTATION_TIERS))
    timing_max_multiplier: float = 1.25
    max_multiplier: int = MAX_MULTIPLIER

    def __post_init__(self):
        tiers = tuple(self.tiers)
        object.__setattr__(self, "tiers", tiers)
        if not tiers:
            raise ValueError("at least one reputation tier is required")
        if tiers[0].min_score != 0:
            raise ValueError("the lowest reputation tier must start at score 0")
        for lower, upper in zip(tiers, tiers[1:]):
            if upper.min_score <= lower.min_score:
                raise ValueError("reputation tiers must be sorted by strictly increasing min_score")
            if upper.multiplier < lower.multiplier:
                raise ValueError("reputation multipliers must not decrease with score")
        if tiers[0].multiplier < 1.0:
            raise ValueError("reputation multipliers must be >= 1.0")
        if self.timing_max_multiplier < 1.0:
            raise ValueError("timing_max_multiplier must be >= 1.0")
        if self.max_multiplier < 1:
            raise ValueError("max_multiplier must be >= 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "StakePolicy":
        return cls(
            tiers=tuple(sorted(settings.reputation_tiers, key=lambda t: t.min_score)),
            timing_max_multiplier=settings.timing_max_multiplier,
            max_multiplier=settings.max_multiplier,
        )

    def tier_for_score(self, score: int) -> ReputationTier:
        """Highest tier whose threshold the score reaches."""
        selected = self.tiers[0]
        for tier in self.tiers:
            if score >= tier.min_score:
                selected = tier
            else:
                break
        return selected

    def reputation_multiplier(self, score: int) -> float:
        if score <= 0:
            return self.tiers[0].multiplier
        return self.tier_for_score(score).multiplier

    def timing_multiplier(self, now: int, start_ts: int, end_ts: int) -> float:
        """
        Linear decay from timing_max_multiplier at start_ts to 1.0 at end_ts.

        Stakes placed before the window opens get the maximum; stakes at or
        after the end (or in a degenerate window) get 1.0.
        """
        duration = end_ts - start_ts
        if duration <= 0 or now >= end_ts:
            return 1.0
        if now <= start_ts:
            return self.timing_max_multiplier

        progress = clamp((now - start_ts) / duration, 0.0, 1.0)
        multiplier = self.timing_max_multiplier - progress * (self.timing_max_multiplier - 1.0)
        return clamp(multiplier, 1.0, self.timing_max_multiplier)

    def cap(self) -> Decimal:
        return Decimal(self.max_multiplier)


_default_policy: Optional[StakePolicy] = None


def get_default_policy() -> StakePolicy:
    """Policy built from the global settings, created on first use."""
    global _default_policy
    if _default_policy is None:
        _default_policy = StakePolicy.from_settings(settings)
    return _default_policy
