"""
KLEOS - Market registry: creation, edits and lookups.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kleos.errors import InvalidInput, InvalidState, NotFound, Unauthorized
from kleos.models import Market, MarketStatus, Position, Protocol
from kleos.services.protocol import get_protocol
from kleos.utils import normalize_items_hash, validate_pubkey

logger = logging.getLogger(__name__)

MIN_ITEMS = 2
MAX_ITEMS = 255


def validate_item_count(item_count: int) -> int:
    if item_count is None or not MIN_ITEMS <= item_count <= MAX_ITEMS:
        raise InvalidInput(f"itemCount must be between {MIN_ITEMS} and {MAX_ITEMS}")
    return item_count


def validate_window(start_ts: int, end_ts: int) -> None:
    if end_ts <= start_ts:
        raise InvalidInput("endTs must be greater than startTs")


async def get_market(db: AsyncSession, market_id: int) -> Market:
    """
    Get market by protocol market ID.

    Args:
        db: Database session
        market_id: Protocol-assigned market ID

    Returns:
        Market

    Raises:
        NotFound: If no such market exists
    """
    result = await db.execute(
        select(Market)
        .where(Market.market_id == market_id)
        .execution_options(populate_existing=True)
    )
    market = result.scalar_one_or_none()
    if market is None:
        raise NotFound(f"Market {market_id} not found")
    return market


async def list_markets(
    db: AsyncSession,
    status: Optional[MarketStatus] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Market]:
    """List markets, newest first, optionally filtered by status."""
    query = select(Market)
    if status is not None:
        query = query.where(Market.status == status)
    query = query.order_by(Market.market_id.desc()).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())


async def count_positions(db: AsyncSession, market: Market) -> int:
    result = await db.execute(
        select(func.count(Position.id)).where(Position.market_ref == market.id)
    )
    return int(result.scalar_one())


async def create_market(
    db: AsyncSession,
    admin_authority: str,
    *,
    start_ts: int,
    end_ts: int,
    item_count: int,
    items_hash: str,
    token_mint: str,
    category_id: int = 0,
) -> Market:
    """
    Create a Draft market and allocate the next market ID.

    The ID is taken from protocol.market_count, which is advanced with a
    conditional update so two concurrent creations cannot share an ID.

    Raises:
        NotFound: If the protocol is not initialized
        InvalidState: If the protocol is paused or the counter moved underneath us
        Unauthorized: If admin_authority is not the protocol admin
        InvalidInput: For a bad window, item count, hash or mint
    """
    protocol = await get_protocol(db)
    if protocol.paused:
        raise InvalidState("Protocol is paused")
    if protocol.admin_authority != admin_authority:
        raise Unauthorized("Unauthorized: Invalid admin authority")

    validate_window(start_ts, end_ts)
    validate_item_count(item_count)
    items_hash = normalize_items_hash(items_hash)
    token_mint = validate_pubkey(token_mint, "tokenMint")

    new_market_id = protocol.market_count
    bumped = await db.execute(
        update(Protocol)
        .where(Protocol.id == protocol.id, Protocol.market_count == new_market_id)
        .values(market_count=new_market_id + 1)
    )
    if bumped.rowcount != 1:
        await db.rollback()
        raise InvalidState("Market counter changed concurrently, retry the request")

    market = Market(
        market_id=new_market_id,
        protocol_id=protocol.id,
        category_id=category_id,
        status=MarketStatus.DRAFT,
        start_ts=start_ts,
        end_ts=end_ts,
        item_count=item_count,
        items_hash=items_hash,
        token_mint=token_mint,
        vault="",
        total_raw_stake=0,
        total_effective_stake=0,
    )
    db.add(market)
    await db.commit()
    await db.refresh(market)
    await db.refresh(protocol)
    logger.info(f"Created market {market.market_id} ({item_count} items, {start_ts}..{end_ts})")
    return market


async def edit_market(
    db: AsyncSession,
    market_id: int,
    admin_authority: str,
    *,
    category_id: Optional[int] = None,
    start_ts: Optional[int] = None,
    end_ts: Optional[int] = None,
    item_count: Optional[int] = None,
    items_hash: Optional[str] = None,
) -> Market:
    """Edit a Draft market that has no positions yet."""
    market = await get_market(db, market_id)

    protocol = await get_protocol(db)
    if protocol.admin_authority != admin_authority:
        raise Unauthorized("Unauthorized: Invalid admin authority")
    if market.status != MarketStatus.DRAFT:
        raise InvalidState("Market must be in Draft status to edit")
    if await count_positions(db, market) > 0:
        raise InvalidState("Cannot edit market with existing positions")

    final_start = start_ts if start_ts is not None else market.start_ts
    final_end = end_ts if end_ts is not None else market.end_ts
    validate_window(final_start, final_end)

    if item_count is not None:
        market.item_count = validate_item_count(item_count)
    if items_hash is not None:
        market.items_hash = normalize_items_hash(items_hash)
    if category_id is not None:
        market.category_id = category_id
    market.start_ts = final_start
    market.end_ts = final_end

    await db.commit()
    await db.refresh(market)
    return market
