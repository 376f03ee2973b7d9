"""
KLEOS - Pydantic models for request/response validation.
"""

from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from kleos.models import MarketStatus
from kleos.utils import U64_MAX

# Stake sums can exceed 64 bits; sent as decimal strings like other u128 values
U128 = Annotated[int, PlainSerializer(lambda v: str(v), return_type=str, when_used="json")]


class ProtocolSchema(BaseModel):
    """Protocol schema for API responses."""

    model_config = ConfigDict(from_attributes=True)

    admin_authority: str
    treasury: str
    protocol_fee_bps: int
    paused: bool
    market_count: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProtocolInitializeRequest(BaseModel):
    admin_authority: str
    treasury: str
    protocol_fee_bps: int


class ProtocolUpdateRequest(BaseModel):
    admin_authority: str
    protocol_fee_bps: Optional[int] = None
    treasury: Optional[str] = None
    paused: Optional[bool] = None


class MarketSchema(BaseModel):
    """Market schema for API responses."""

    model_config = ConfigDict(from_attributes=True)

    market_id: int
    category_id: int
    status: MarketStatus
    start_ts: int
    end_ts: int
    item_count: int
    items_hash: str
    token_mint: str
    vault: str
    winning_item_index: Optional[int] = None
    total_raw_stake: int
    total_effective_stake: U128
    protocol_fee_amount: Optional[int] = None
    distributable_pool: Optional[int] = None
    total_winning_effective_stake: Optional[U128] = None
    created_at: Optional[datetime] = None


class MarketCreateRequest(BaseModel):
    """Market creation request. items_hash is the hex keccak-256 commitment."""

    admin_authority: str
    start_ts: int
    end_ts: int
    item_count: int
    items_hash: str
    token_mint: str
    category_id: int = 0


class MarketUpdateRequest(BaseModel):
    admin_authority: str
    category_id: Optional[int] = None
    start_ts: Optional[int] = None
    end_ts: Optional[int] = None
    item_count: Optional[int] = None
    items_hash: Optional[str] = None


class MarketOpenRequest(BaseModel):
    admin_authority: str


class MarketSettleRequest(BaseModel):
    winning_item_index: int


class PositionCreateRequest(BaseModel):
    """Stake placement. effective_stake is the client's estimate, verified server-side."""

    market_id: int
    user: str
    selected_item_index: int
    raw_stake: int
    effective_stake: Optional[int] = None


class PositionSchema(BaseModel):
    """Position schema for API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    market_id: int
    user: str
    selected_item_index: int
    raw_stake: int
    effective_stake: U128
    fairscore: int
    reputation_multiplier: float
    timing_multiplier: float
    claimed: bool
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, position, market) -> "PositionSchema":
        return cls(
            id=position.id,
            market_id=market.market_id,
            user=position.wallet,
            selected_item_index=position.selected_item_index,
            raw_stake=int(position.raw_stake),
            effective_stake=int(position.effective_stake),
            fairscore=position.fairscore,
            reputation_multiplier=position.reputation_multiplier,
            timing_multiplier=position.timing_multiplier,
            claimed=position.claimed,
            created_at=position.created_at,
        )


class PositionMarketSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    market_id: int
    category_id: int
    status: MarketStatus
    item_count: int
    winning_item_index: Optional[int] = None


class UserPositionSchema(PositionSchema):
    market: PositionMarketSummary

    @classmethod
    def from_row(cls, position, market) -> "UserPositionSchema":
        base = PositionSchema.from_row(position, market)
        return cls(**base.model_dump(), market=PositionMarketSummary.model_validate(market))


class ClaimRequest(BaseModel):
    user: str


class ClaimResponse(BaseModel):
    position: PositionSchema
    payout: U128
    message: str = "Payout calculated. Actual transfer will happen on-chain."


class EffectiveStakeRequest(BaseModel):
    wallet: str
    raw_stake: int
    market_id: int = Field(ge=0, le=U64_MAX)


class EffectiveStakeResponse(BaseModel):
    effective_stake: U128
    fairscore: int
    reputation_multiplier: float
    timing_multiplier: float
    raw_stake: int
    max_allowed: U128


class MinimumScoreRequest(BaseModel):
    wallet: str
    minimum_score: int
    use_social_score: bool = True


class MinimumTierRequest(BaseModel):
    wallet: str
    minimum_tier: str


class ItemsHashRequest(BaseModel):
    items: List[str]


class ItemsHashResponse(BaseModel):
    items_hash: str
    item_count: int


class SweepFailureSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    market_id: int
    stage: str
    error: str
    detail: str


class SweepReportSchema(BaseModel):
    """Result of one close/settle sweep."""

    model_config = ConfigDict(from_attributes=True)

    closed: List[int]
    settled: List[int]
    errors: List[SweepFailureSchema]


class HealthResponse(BaseModel):
    status: str


class FairScoreResponse(BaseModel):
    wallet: str
    fair_score: int


class WalletScoreResponse(BaseModel):
    wallet: str
    wallet_score: int
