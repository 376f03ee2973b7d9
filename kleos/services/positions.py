"""
KLEOS - Positions: placing stakes and claiming payouts.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from kleos.errors import InvalidInput, InvalidState, NotFound, Unauthorized
from kleos.models import Market, MarketStatus, Position
from kleos.services.effective_stake import calculate_effective_stake
from kleos.services.fairscale import ReputationSource
from kleos.services.markets import get_market
from kleos.services.protocol import get_protocol
from kleos.services.stake_policy import StakePolicy
from kleos.utils import U64_MAX, now_ts, validate_pubkey

logger = logging.getLogger(__name__)

# Client estimates may differ from the server computation by rounding only
EFFECTIVE_STAKE_TOLERANCE = 1


@dataclass(frozen=True)
class ClaimResult:
    position: Position
    payout: int


async def _find_position(db: AsyncSession, market: Market, wallet: str) -> Optional[Position]:
    result = await db.execute(
        select(Position).where(Position.market_ref == market.id, Position.wallet == wallet)
    )
    return result.scalar_one_or_none()


async def place_position(
    db: AsyncSession,
    market_id: int,
    wallet: str,
    selected_item_index: int,
    raw_stake: int,
    *,
    reputation: ReputationSource,
    now: Optional[int] = None,
    expected_effective_stake: Optional[int] = None,
    policy: Optional[StakePolicy] = None,
) -> Position:
    """
    Place a wallet's single stake on one item of an Open market.

    The effective stake is always computed here from the wallet's current
    FairScore; a client-side estimate is only checked against it.

    Args:
        db: Database session
        market_id: Protocol market ID
        wallet: Staker public key
        selected_item_index: Chosen item
        raw_stake: Stake in base token units
        reputation: FairScore source
        now: Placement time (defaults to the current time)
        expected_effective_stake: Client-side estimate to verify
        policy: Stake policy override

    Returns:
        The created position

    Raises:
        NotFound: Unknown market
        InvalidState: Paused protocol, market not Open or ended, duplicate position
        InvalidInput: Bad stake, item index, wallet or mismatching estimate
    """
    wallet = validate_pubkey(wallet, "user")
    market = await get_market(db, market_id)
    protocol = await get_protocol(db)

    if protocol.paused:
        raise InvalidState("Protocol is paused")
    if market.status != MarketStatus.OPEN:
        raise InvalidState("Market must be in Open status")

    now = now if now is not None else now_ts()
    if now >= market.end_ts:
        raise InvalidState("Market has ended")

    if isinstance(raw_stake, bool) or not isinstance(raw_stake, int) or raw_stake <= 0:
        raise InvalidInput("rawStake must be greater than 0")
    if raw_stake > U64_MAX:
        raise InvalidInput("rawStake exceeds the u64 range")
    if not 0 <= selected_item_index < market.item_count:
        raise InvalidInput("Invalid selectedItemIndex")

    if await _find_position(db, market, wallet) is not None:
        raise InvalidState("Position already exists for this user")

    stake = await calculate_effective_stake(
        wallet,
        raw_stake,
        market.start_ts,
        market.end_ts,
        reputation=reputation,
        now=now,
        policy=policy,
    )

    if (
        expected_effective_stake is not None
        and abs(int(expected_effective_stake) - stake.effective_stake) > EFFECTIVE_STAKE_TOLERANCE
    ):
        raise InvalidInput(
            f"effectiveStake mismatch: expected {stake.effective_stake}, got {expected_effective_stake}"
        )

    position = Position(
        market_ref=market.id,
        wallet=wallet,
        selected_item_index=selected_item_index,
        raw_stake=raw_stake,
        effective_stake=stake.effective_stake,
        fairscore=stake.fairscore,
        reputation_multiplier=stake.reputation_multiplier,
        timing_multiplier=stake.timing_multiplier,
        claimed=False,
    )
    db.add(position)
    try:
        await db.flush()
    except IntegrityError as exc:
        await db.rollback()
        raise InvalidState("Position already exists for this user") from exc

    counted = await db.execute(
        update(Market)
        .where(
            Market.id == market.id,
            Market.status == MarketStatus.OPEN,
            Market.end_ts > now,
        )
        .values(
            total_raw_stake=Market.total_raw_stake + raw_stake,
            total_effective_stake=Market.total_effective_stake + stake.effective_stake,
        )
        .execution_options(synchronize_session=False)
    )
    if counted.rowcount != 1:
        # closed or ended while the score was fetched
        await db.rollback()
        logger.warning(f"Market {market_id} stopped accepting positions during placement")
        raise InvalidState("Market is no longer open")
    await db.commit()
    await db.refresh(position)
    await db.refresh(market)

    logger.info(
        f"Position {position.id}: {wallet[:8]}... staked {raw_stake} "
        f"(effective {stake.effective_stake}) on item {selected_item_index} of market {market_id}"
    )
    return position


async def get_position(db: AsyncSession, position_id: int) -> Tuple[Position, Market]:
    """Position and its market, or NotFound."""
    result = await db.execute(
        select(Position, Market)
        .join(Market, Position.market_ref == Market.id)
        .where(Position.id == position_id)
        .execution_options(populate_existing=True)
    )
    row = result.first()
    if row is None:
        raise NotFound("Position not found")
    return row[0], row[1]


async def list_positions_for_user(db: AsyncSession, wallet: str) -> List[Tuple[Position, Market]]:
    result = await db.execute(
        select(Position, Market)
        .join(Market, Position.market_ref == Market.id)
        .where(Position.wallet == wallet)
        .order_by(Position.created_at.desc(), Position.id.desc())
    )
    return [(position, market) for position, market in result.all()]


async def list_positions_for_market(db: AsyncSession, market_id: int) -> List[Position]:
    market = await get_market(db, market_id)
    result = await db.execute(
        select(Position)
        .where(Position.market_ref == market.id)
        .order_by(Position.created_at.desc(), Position.id.desc())
    )
    return list(result.scalars().all())


def compute_payout(effective_stake: int, distributable_pool: int, total_winning_effective_stake: int) -> int:
    """Pro-rata share of the pool: effective * pool // total winning effective stake."""
    if total_winning_effective_stake <= 0:
        return 0
    return int(effective_stake) * int(distributable_pool) // int(total_winning_effective_stake)


async def claim_payout(db: AsyncSession, position_id: int, wallet: str) -> ClaimResult:
    """
    Mark a winning position as claimed and report its payout.

    The token transfer itself happens on-chain. The claimed flag flips through
    a conditional update so a position pays out at most once.
    """
    position, market = await get_position(db, position_id)

    if position.wallet != wallet:
        raise Unauthorized("Unauthorized: Position does not belong to user")
    if market.status != MarketStatus.SETTLED:
        raise InvalidState("Market must be settled to claim payout")
    if position.claimed:
        raise InvalidState("Payout already claimed")
    if market.distributable_pool is None or market.total_winning_effective_stake is None:
        raise InvalidState("Market settlement data incomplete")
    if position.selected_item_index != market.winning_item_index:
        raise InvalidInput("Position did not select the winning item")

    payout = compute_payout(
        position.effective_stake,
        market.distributable_pool,
        market.total_winning_effective_stake,
    )

    result = await db.execute(
        update(Position)
        .where(Position.id == position.id, Position.claimed.is_(False))
        .values(claimed=True)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise InvalidState("Payout already claimed")

    await db.commit()
    await db.refresh(position)
    logger.info(f"Position {position.id} claimed payout {payout}")
    return ClaimResult(position=position, payout=payout)
