"""
KLEOS - Market helper routes.
"""

from fastapi import APIRouter

from kleos.schemas import ItemsHashRequest, ItemsHashResponse
from kleos.utils import compute_items_hash

router = APIRouter(prefix="/market-utils", tags=["market-utils"])


@router.post("/calculate-items-hash", response_model=ItemsHashResponse)
async def calculate_items_hash(request: ItemsHashRequest):
    """
    Hash a market's item labels the way they are committed on-chain.

    Returns:
        items_hash (64 hex chars) and the number of items
    """
    items_hash = compute_items_hash(request.items)
    return ItemsHashResponse(items_hash=items_hash, item_count=len(request.items))
