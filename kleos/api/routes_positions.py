"""
KLEOS - Position routes.
"""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from kleos.api.deps import get_reputation_source, get_solana_reader
from kleos.db import get_db
from kleos.errors import NotFound
from kleos.schemas import (
    ClaimRequest,
    ClaimResponse,
    EffectiveStakeRequest,
    EffectiveStakeResponse,
    PositionCreateRequest,
    PositionSchema,
    UserPositionSchema,
)
from kleos.services.effective_stake import calculate_effective_stake
from kleos.services.fairscale import ReputationSource
from kleos.services.markets import get_market
from kleos.services.positions import (
    claim_payout,
    get_position,
    list_positions_for_market,
    list_positions_for_user,
    place_position,
)
from kleos.services.solana import SolanaProgramReader
from kleos.services.stake_policy import get_default_policy

router = APIRouter(prefix="/positions", tags=["positions"])


@router.post("", response_model=PositionSchema, status_code=status.HTTP_201_CREATED)
async def post_position(
    request: PositionCreateRequest,
    db: AsyncSession = Depends(get_db),
    reputation: ReputationSource = Depends(get_reputation_source),
):
    """
    Place a stake on one item of an Open market.

    Args:
        request: Position request; effective_stake is an optional client estimate
        db: Database session
        reputation: FairScore source

    Returns:
        The created position with its server-computed effective stake
    """
    position = await place_position(
        db,
        request.market_id,
        request.user,
        request.selected_item_index,
        request.raw_stake,
        reputation=reputation,
        expected_effective_stake=request.effective_stake,
    )
    market = await get_market(db, request.market_id)
    return PositionSchema.from_row(position, market)


@router.post("/calculate-effective-stake", response_model=EffectiveStakeResponse)
async def post_calculate_effective_stake(
    request: EffectiveStakeRequest,
    db: AsyncSession = Depends(get_db),
    reputation: ReputationSource = Depends(get_reputation_source),
    reader: SolanaProgramReader = Depends(get_solana_reader),
):
    """Preview the effective stake a wallet would get on a market right now."""
    try:
        market = await get_market(db, request.market_id)
        start_ts, end_ts = market.start_ts, market.end_ts
    except NotFound:
        onchain = await reader.fetch_market(request.market_id)
        if onchain is None:
            raise
        start_ts, end_ts = onchain.start_ts, onchain.end_ts

    policy = get_default_policy()
    result = await calculate_effective_stake(
        request.wallet,
        request.raw_stake,
        start_ts,
        end_ts,
        reputation=reputation,
        policy=policy,
    )
    return EffectiveStakeResponse(
        effective_stake=result.effective_stake,
        fairscore=result.fairscore,
        reputation_multiplier=result.reputation_multiplier,
        timing_multiplier=result.timing_multiplier,
        raw_stake=request.raw_stake,
        max_allowed=request.raw_stake * policy.max_multiplier,
    )


@router.get("/user/{wallet}", response_model=List[UserPositionSchema])
async def get_user_positions(wallet: str, db: AsyncSession = Depends(get_db)):
    rows = await list_positions_for_user(db, wallet)
    return [UserPositionSchema.from_row(position, market) for position, market in rows]


@router.get("/market/{market_id}", response_model=List[PositionSchema])
async def get_market_positions(market_id: int, db: AsyncSession = Depends(get_db)):
    market = await get_market(db, market_id)
    positions = await list_positions_for_market(db, market_id)
    return [PositionSchema.from_row(position, market) for position in positions]


@router.get("/{position_id}", response_model=UserPositionSchema)
async def get_position_by_id(position_id: int, db: AsyncSession = Depends(get_db)):
    position, market = await get_position(db, position_id)
    return UserPositionSchema.from_row(position, market)


@router.post("/{position_id}/claim", response_model=ClaimResponse)
async def post_claim(
    position_id: int,
    request: ClaimRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Claim the payout of a winning position.

    The payout is computed here; the transfer itself happens on-chain.
    """
    result = await claim_payout(db, position_id, request.user)
    _, market = await get_position(db, position_id)
    return ClaimResponse(
        position=PositionSchema.from_row(result.position, market),
        payout=result.payout,
    )
