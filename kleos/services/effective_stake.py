"""
KLEOS - Effective stake calculation.

effective_stake = floor(raw_stake * min(reputation * timing, MAX_MULTIPLIER))
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Optional

from kleos.errors import InvalidInput, UpstreamUnavailable
from kleos.services.fairscale import ReputationSource
from kleos.services.stake_policy import StakePolicy, get_default_policy
from kleos.utils import U64_MAX, now_ts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EffectiveStake:
    effective_stake: int
    reputation_multiplier: float
    timing_multiplier: float


@dataclass(frozen=True)
class EffectiveStakeResult:
    effective_stake: int
    reputation_multiplier: float
    timing_multiplier: float
    fairscore: int


def compute_effective_stake(
    raw_stake: int,
    reputation_score: int,
    market_start_ts: Optional[int],
    market_end_ts: Optional[int],
    now: int,
    policy: Optional[StakePolicy] = None,
) -> EffectiveStake:
    """
    Weight a raw stake by the staker's reputation and how early it was placed.

    Args:
        raw_stake: Stake in base token units (> 0)
        reputation_score: Wallet FairScore (>= 0)
        market_start_ts: Market open time (unix seconds)
        market_end_ts: Market end time (unix seconds)
        now: Time the stake is placed (unix seconds)
        policy: Tier table and caps (defaults to the configured policy)

    Returns:
        Effective stake and the multipliers that produced it

    Raises:
        InvalidInput: For a non-positive stake, negative score, or missing timing
    """
    policy = policy or get_default_policy()

    if isinstance(raw_stake, bool) or not isinstance(raw_stake, int) or raw_stake <= 0:
        raise InvalidInput("rawStake must be a positive integer")
    if raw_stake > U64_MAX:
        raise InvalidInput("rawStake exceeds the u64 range")
    if reputation_score is None or reputation_score < 0:
        raise InvalidInput("reputation score must be a non-negative integer")
    if market_start_ts is None or market_end_ts is None or now is None:
        raise InvalidInput("market timing could not be resolved")

    reputation_multiplier = policy.reputation_multiplier(int(reputation_score))
    timing_multiplier = policy.timing_multiplier(int(now), int(market_start_ts), int(market_end_ts))

    combined = min(
        Decimal(str(reputation_multiplier)) * Decimal(str(timing_multiplier)),
        policy.cap(),
    )
    raw = Decimal(raw_stake)
    effective = int((raw * combined).to_integral_value(rounding=ROUND_FLOOR))

    # raw_stake <= effective <= raw_stake * max_multiplier
    effective = max(raw_stake, min(effective, raw_stake * policy.max_multiplier))

    return EffectiveStake(
        effective_stake=effective,
        reputation_multiplier=reputation_multiplier,
        timing_multiplier=timing_multiplier,
    )


async def calculate_effective_stake(
    wallet: str,
    raw_stake: int,
    market_start_ts: int,
    market_end_ts: int,
    *,
    reputation: ReputationSource,
    now: Optional[int] = None,
    policy: Optional[StakePolicy] = None,
    default_on_unavailable: bool = True,
) -> EffectiveStakeResult:
    """
    Fetch the wallet's FairScore and compute its effective stake.

    When FairScale is unavailable the wallet is treated as unscored (score 0)
    unless default_on_unavailable is False, in which case the error propagates.
    """
    now = now if now is not None else now_ts()

    try:
        fairscore = await reputation.get_score(wallet)
    except UpstreamUnavailable as exc:
        if not default_on_unavailable:
            raise
        logger.warning(f"FairScore unavailable for {wallet}, using neutral score: {exc}")
        fairscore = 0

    result = compute_effective_stake(
        raw_stake,
        max(0, int(fairscore)),
        market_start_ts,
        market_end_ts,
        now,
        policy,
    )
    return EffectiveStakeResult(
        effective_stake=result.effective_stake,
        reputation_multiplier=result.reputation_multiplier,
        timing_multiplier=result.timing_multiplier,
        fairscore=max(0, int(fairscore)),
    )
