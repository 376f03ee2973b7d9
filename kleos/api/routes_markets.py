"""
KLEOS - Market routes.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from kleos.api.deps import get_authority_resolver, get_solana_reader
from kleos.db import get_db
from kleos.models import MarketStatus
from kleos.schemas import (
    MarketCreateRequest,
    MarketOpenRequest,
    MarketSchema,
    MarketSettleRequest,
    MarketUpdateRequest,
)
from kleos.services.authority import ProtocolAuthorityResolver
from kleos.services.lifecycle import close_market, open_market, settle_market, sync_market_status
from kleos.services.markets import create_market, edit_market, get_market, list_markets
from kleos.services.solana import SolanaProgramReader

router = APIRouter(prefix="/markets", tags=["markets"])


@router.get("", response_model=List[MarketSchema])
async def get_markets(
    status: Optional[MarketStatus] = None,
    limit: int = 100,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
):
    """
    List markets, newest first.

    Args:
        status: Optional lifecycle status filter
        limit: Page size
        offset: Page offset

    Returns:
        List of markets
    """
    return await list_markets(db, status=status, limit=limit, offset=offset)


@router.post("", response_model=MarketSchema, status_code=status.HTTP_201_CREATED)
async def post_market(request: MarketCreateRequest, db: AsyncSession = Depends(get_db)):
    """Create a Draft market; the market ID comes from the protocol counter."""
    return await create_market(
        db,
        request.admin_authority,
        start_ts=request.start_ts,
        end_ts=request.end_ts,
        item_count=request.item_count,
        items_hash=request.items_hash,
        token_mint=request.token_mint,
        category_id=request.category_id,
    )


@router.get("/{market_id}", response_model=MarketSchema)
async def get_market_by_id(market_id: int, db: AsyncSession = Depends(get_db)):
    return await get_market(db, market_id)


@router.put("/{market_id}", response_model=MarketSchema)
async def put_market(
    market_id: int,
    request: MarketUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Edit a Draft market that has no positions."""
    return await edit_market(
        db,
        market_id,
        request.admin_authority,
        category_id=request.category_id,
        start_ts=request.start_ts,
        end_ts=request.end_ts,
        item_count=request.item_count,
        items_hash=request.items_hash,
    )


@router.post("/{market_id}/open", response_model=MarketSchema)
async def post_open_market(
    market_id: int,
    request: MarketOpenRequest,
    db: AsyncSession = Depends(get_db),
    resolver: ProtocolAuthorityResolver = Depends(get_authority_resolver),
):
    """
    Open a Draft market.

    The caller must be the protocol admin and the market start time must
    have been reached.
    """
    return await open_market(db, market_id, request.admin_authority, resolver=resolver)


@router.post("/{market_id}/close", response_model=MarketSchema)
async def post_close_market(market_id: int, db: AsyncSession = Depends(get_db)):
    """Close an Open market after its end time."""
    return await close_market(db, market_id)


@router.post("/{market_id}/settle", response_model=MarketSchema)
async def post_settle_market(
    market_id: int,
    request: MarketSettleRequest,
    db: AsyncSession = Depends(get_db),
    reader: SolanaProgramReader = Depends(get_solana_reader),
):
    return await settle_market(db, market_id, request.winning_item_index, reader=reader)


@router.post("/{market_id}/sync", response_model=MarketSchema)
async def post_sync_market(
    market_id: int,
    db: AsyncSession = Depends(get_db),
    reader: SolanaProgramReader = Depends(get_solana_reader),
):
    """Advance the stored status to match the on-chain market account."""
    return await sync_market_status(db, market_id, reader)
