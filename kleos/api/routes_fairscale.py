"""
KLEOS - FairScale reputation routes.
"""

from fastapi import APIRouter, Depends

from kleos.api.deps import get_fairscale_client
from kleos.schemas import FairScoreResponse, MinimumScoreRequest, MinimumTierRequest, WalletScoreResponse
from kleos.services.fairscale import FairScaleClient, FairScaleScore, ScoreCheck, TierCheck

router = APIRouter(prefix="/fairscale", tags=["fairscale"])


@router.get("/score/{wallet}", response_model=FairScaleScore)
async def get_complete_score(wallet: str, client: FairScaleClient = Depends(get_fairscale_client)):
    """Complete wallet score with badges, tier and features."""
    return await client.get_complete_score(wallet)


@router.get("/fairscore/{wallet}", response_model=FairScoreResponse)
async def get_fairscore(wallet: str, client: FairScaleClient = Depends(get_fairscale_client)):
    """Combined FairScore only."""
    score = await client.get_score(wallet)
    return FairScoreResponse(wallet=wallet, fair_score=score)


@router.get("/wallet-score/{wallet}", response_model=WalletScoreResponse)
async def get_wallet_score(wallet: str, client: FairScaleClient = Depends(get_fairscale_client)):
    score = await client.get_wallet_score(wallet)
    return WalletScoreResponse(wallet=wallet, wallet_score=score)


@router.post("/check-minimum", response_model=ScoreCheck)
async def check_minimum(
    request: MinimumScoreRequest,
    client: FairScaleClient = Depends(get_fairscale_client),
):
    return await client.meets_minimum_score(
        request.wallet, request.minimum_score, request.use_social_score
    )


@router.post("/check-tier", response_model=TierCheck)
async def check_tier(
    request: MinimumTierRequest,
    client: FairScaleClient = Depends(get_fairscale_client),
):
    return await client.meets_minimum_tier(request.wallet, request.minimum_tier)
