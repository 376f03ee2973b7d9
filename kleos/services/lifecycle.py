"""
KLEOS - Market lifecycle: Draft -> Open -> Closed -> Settled.

Every status change is a single conditional UPDATE guarded by the expected
prior status. A transition that loses a race updates zero rows and fails with
InvalidState instead of overwriting the winner's result.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kleos.errors import InvalidInput, InvalidState, KleosError, NotFound, TooEarly, Unauthorized
from kleos.models import Market, MarketStatus, Position
from kleos.services.authority import ProtocolAuthorityResolver, default_authority_resolver
from kleos.services.markets import get_market
from kleos.services.protocol import resolve_protocol_fee_bps
from kleos.services.solana import EMPTY_PUBKEY, SolanaProgramReader
from kleos.utils import now_ts

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    MarketStatus.DRAFT: MarketStatus.OPEN,
    MarketStatus.OPEN: MarketStatus.CLOSED,
    MarketStatus.CLOSED: MarketStatus.SETTLED,
}

STATUS_ORDER = [MarketStatus.DRAFT, MarketStatus.OPEN, MarketStatus.CLOSED, MarketStatus.SETTLED]

BPS_DENOMINATOR = 10_000


@dataclass
class SweepFailure:
    market_id: int
    stage: str
    error: str
    detail: str


@dataclass
class SweepReport:
    closed: List[int] = field(default_factory=list)
    settled: List[int] = field(default_factory=list)
    errors: List[SweepFailure] = field(default_factory=list)


def ensure_transition(current: MarketStatus, target: MarketStatus) -> None:
    """Raise InvalidState unless target is the single next step after current."""
    if ALLOWED_TRANSITIONS.get(current) != target:
        raise InvalidState(
            f"Market must be in {_expected_for(target)} status to move to {target.value} "
            f"(current: {current.value})"
        )


def _expected_for(target: MarketStatus) -> str:
    for source, destination in ALLOWED_TRANSITIONS.items():
        if destination == target:
            return source.value
    return "no"


async def compare_and_set_status(
    db: AsyncSession,
    market: Market,
    target: MarketStatus,
    **values: Any,
) -> Market:
    """
    Move a market one step forward if its stored status is still the one we read.

    Args:
        db: Database session
        market: Market as previously loaded
        target: Next status
        **values: Extra columns written in the same UPDATE

    Returns:
        The refreshed market

    Raises:
        InvalidState: If the transition is not allowed or another writer got there first
    """
    # rollback expires the instance; only these locals are read after it
    expected = market.status
    market_id = market.market_id
    ensure_transition(expected, target)

    result = await db.execute(
        update(Market)
        .where(Market.market_id == market_id, Market.status == expected)
        .values(status=target, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        logger.warning(
            f"Lost status race on market {market_id}: expected {expected.value}"
        )
        raise InvalidState(
            f"Market {market_id} is no longer {expected.value}; status changed concurrently"
        )

    await db.commit()
    await db.refresh(market)
    logger.info(f"Market {market_id}: {expected.value} -> {target.value}")
    return market


async def open_market(
    db: AsyncSession,
    market_id: int,
    admin_authority: str,
    now: Optional[int] = None,
    *,
    resolver: Optional[ProtocolAuthorityResolver] = None,
) -> Market:
    """
    Open a Draft market for staking.

    Status is checked before authority and timing, so a market that is not
    Draft fails with InvalidState for every caller.

    Raises:
        NotFound: Unknown market
        InvalidState: Market is not Draft, or the status changed concurrently
        Unauthorized: admin_authority is not the protocol admin
        TooEarly: now is before the market start
    """
    if resolver is None:
        async with SolanaProgramReader() as reader:
            return await open_market(
                db,
                market_id,
                admin_authority,
                now,
                resolver=default_authority_resolver(db, reader),
            )

    market = await get_market(db, market_id)
    ensure_transition(market.status, MarketStatus.OPEN)

    if not await resolver.is_admin(admin_authority):
        raise Unauthorized("Unauthorized: Invalid admin authority")

    now = now if now is not None else now_ts()
    if now < market.start_ts:
        raise TooEarly(f"Market {market_id} cannot open before its start time ({market.start_ts})")

    return await compare_and_set_status(db, market, MarketStatus.OPEN)


async def close_market(db: AsyncSession, market_id: int, now: Optional[int] = None) -> Market:
    """Close an Open market once its end time has passed. Anyone may close."""
    market = await get_market(db, market_id)
    ensure_transition(market.status, MarketStatus.CLOSED)

    now = now if now is not None else now_ts()
    if now < market.end_ts:
        raise TooEarly(f"Market {market_id} cannot close before its end time ({market.end_ts})")

    return await compare_and_set_status(db, market, MarketStatus.CLOSED)


async def total_effective_stake_for_item(db: AsyncSession, market: Market, item_index: int) -> int:
    result = await db.execute(
        select(func.coalesce(func.sum(Position.effective_stake), 0)).where(
            Position.market_ref == market.id,
            Position.selected_item_index == item_index,
        )
    )
    return int(result.scalar_one())


async def effective_stake_by_item(db: AsyncSession, market: Market) -> Dict[int, int]:
    result = await db.execute(
        select(Position.selected_item_index, func.sum(Position.effective_stake))
        .where(Position.market_ref == market.id)
        .group_by(Position.selected_item_index)
    )
    return {int(index): int(total or 0) for index, total in result.all()}


async def settle_market(
    db: AsyncSession,
    market_id: int,
    winning_item_index: int,
    now: Optional[int] = None,
    *,
    fee_bps: Optional[int] = None,
    reader: Optional[SolanaProgramReader] = None,
) -> Market:
    """
    Settle a Closed market on the given winning item.

    Args:
        db: Database session
        market_id: Protocol market ID
        winning_item_index: Index of the winning item
        now: Settlement time (defaults to the current time)
        fee_bps: Protocol fee; read from the protocol when omitted
        reader: On-chain reader used when no protocol row is cached

    Returns:
        The settled market with fee, pool and winning stake filled in
    """
    market = await get_market(db, market_id)
    ensure_transition(market.status, MarketStatus.SETTLED)

    now = now if now is not None else now_ts()
    if now < market.end_ts:
        raise TooEarly(f"Market {market_id} cannot settle before its end time ({market.end_ts})")

    if (
        isinstance(winning_item_index, bool)
        or not isinstance(winning_item_index, int)
        or not 0 <= winning_item_index < market.item_count
    ):
        raise InvalidInput(
            f"winningItemIndex must be between 0 and {market.item_count - 1}"
        )

    if fee_bps is None:
        fee_bps = await resolve_protocol_fee_bps(db, reader)

    total_raw = int(market.total_raw_stake or 0)
    protocol_fee_amount = total_raw * fee_bps // BPS_DENOMINATOR
    distributable_pool = total_raw - protocol_fee_amount
    total_winning = await total_effective_stake_for_item(db, market, winning_item_index)

    return await compare_and_set_status(
        db,
        market,
        MarketStatus.SETTLED,
        winning_item_index=winning_item_index,
        protocol_fee_amount=protocol_fee_amount,
        distributable_pool=distributable_pool,
        total_winning_effective_stake=total_winning,
    )


def pick_winning_item(
    stake_per_item: Union[Mapping[int, int], Sequence[int]], item_count: int
) -> int:
    """Item with the highest effective stake; ties go to the lowest index."""
    if not isinstance(stake_per_item, Mapping):
        stake_per_item = dict(enumerate(stake_per_item))

    best_index = 0
    best_stake = -1
    for index in range(item_count):
        stake = int(stake_per_item.get(index, 0))
        if stake > best_stake:
            best_index, best_stake = index, stake
    return best_index


async def sweep_markets(
    db: AsyncSession,
    now: Optional[int] = None,
    *,
    fee_bps: Optional[int] = None,
    reader: Optional[SolanaProgramReader] = None,
) -> SweepReport:
    """
    Close Open markets past their end time, then settle Closed ones.

    The winner of each settled market is the item with the most effective
    stake. Failures are recorded per market and the sweep carries on.
    """
    now = now if now is not None else now_ts()
    report = SweepReport()

    result = await db.execute(
        select(Market.market_id)
        .where(Market.status == MarketStatus.OPEN, Market.end_ts <= now)
        .order_by(Market.market_id)
    )
    to_close = list(result.scalars().all())
    logger.info(f"Found {len(to_close)} markets to close")

    for market_id in to_close:
        try:
            await close_market(db, market_id, now)
            report.closed.append(market_id)
        except KleosError as exc:
            logger.error(f"Failed to close market {market_id}: {exc.message}")
            report.errors.append(SweepFailure(market_id, "close", exc.kind.value, exc.message))

    result = await db.execute(
        select(Market.market_id)
        .where(
            Market.status == MarketStatus.CLOSED,
            Market.end_ts <= now,
            Market.winning_item_index.is_(None),
        )
        .order_by(Market.market_id)
    )
    to_settle = list(result.scalars().all())
    logger.info(f"Found {len(to_settle)} markets to settle")

    for market_id in to_settle:
        try:
            market = await get_market(db, market_id)
            stakes = await effective_stake_by_item(db, market)
            winner = pick_winning_item(stakes, market.item_count)
            await settle_market(db, market_id, winner, now, fee_bps=fee_bps, reader=reader)
            report.settled.append(market_id)
        except KleosError as exc:
            logger.error(f"Failed to settle market {market_id}: {exc.message}")
            report.errors.append(SweepFailure(market_id, "settle", exc.kind.value, exc.message))

    return report


async def sync_market_status(
    db: AsyncSession, market_id: int, reader: SolanaProgramReader
) -> Market:
    """
    Bring the stored status up to the on-chain account, one step at a time.

    The on-chain account is authoritative but the stored status never moves
    backwards; an on-chain status behind the stored one is logged and ignored.
    """
    market = await get_market(db, market_id)
    onchain = await reader.fetch_market(market_id)
    if onchain is None:
        raise NotFound(f"Market {market_id} not found on-chain")

    target_rank = STATUS_ORDER.index(onchain.status)
    if target_rank < STATUS_ORDER.index(market.status):
        logger.warning(
            f"On-chain status {onchain.status.value} for market {market_id} is behind "
            f"stored status {market.status.value}; keeping stored status"
        )
        return market

    while STATUS_ORDER.index(market.status) < target_rank:
        target = ALLOWED_TRANSITIONS[market.status]
        values: Dict[str, Any] = {}
        if target == MarketStatus.SETTLED:
            winner = onchain.winning_item_index
            values = {
                "winning_item_index": winner,
                "protocol_fee_amount": onchain.protocol_fee_amount,
                "distributable_pool": onchain.distributable_pool,
                "total_winning_effective_stake": (
                    onchain.effective_stake_per_item[winner]
                    if winner is not None and winner < len(onchain.effective_stake_per_item)
                    else None
                ),
            }
        market = await compare_and_set_status(db, market, target, **values)

    if onchain.vault != EMPTY_PUBKEY and market.vault != onchain.vault:
        market.vault = onchain.vault
        await db.commit()
        await db.refresh(market)
    return market
