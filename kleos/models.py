"""
KLEOS - SQLAlchemy models for the KLEOS database schema.
"""

import enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Double,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from kleos.db import Base


class MarketStatus(str, enum.Enum):
    """Market lifecycle states, in the only order they may occur."""

    DRAFT = "Draft"
    OPEN = "Open"
    CLOSED = "Closed"
    SETTLED = "Settled"


class Protocol(Base):
    """Global protocol configuration (singleton row)."""

    __tablename__ = "protocol"

    id = Column(Integer, primary_key=True, autoincrement=True)
    admin_authority = Column(String(44), nullable=False)
    treasury = Column(String(44), nullable=False)
    protocol_fee_bps = Column(
        Integer,
        CheckConstraint("protocol_fee_bps >= 0 AND protocol_fee_bps <= 10000"),
        nullable=False,
    )
    paused = Column(Boolean, default=False, nullable=False)
    market_count = Column(BigInteger, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    markets = relationship("Market", back_populates="protocol")


class Market(Base):
    """Prediction market over a committed list of items."""

    __tablename__ = "markets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    market_id = Column(BigInteger, unique=True, nullable=False, index=True)
    protocol_id = Column(Integer, ForeignKey("protocol.id"), nullable=False)
    category_id = Column(BigInteger, default=0, nullable=False)
    status = Column(
        Enum(MarketStatus, name="market_status", values_callable=lambda e: [m.value for m in e]),
        default=MarketStatus.DRAFT,
        nullable=False,
        index=True,
    )
    start_ts = Column(BigInteger, nullable=False)
    end_ts = Column(BigInteger, nullable=False, index=True)
    item_count = Column(
        Integer,
        CheckConstraint("item_count >= 2 AND item_count <= 255"),
        nullable=False,
    )
    items_hash = Column(String(64), nullable=False)  # hex keccak-256
    token_mint = Column(String(44), nullable=False)
    vault = Column(String(44), default="", nullable=False)  # set by the on-chain program
    winning_item_index = Column(Integer, nullable=True)
    total_raw_stake = Column(Numeric(20, 0), default=0, nullable=False)
    total_effective_stake = Column(Numeric(39, 0), default=0, nullable=False)
    protocol_fee_amount = Column(Numeric(20, 0), nullable=True)
    distributable_pool = Column(Numeric(20, 0), nullable=True)
    total_winning_effective_stake = Column(Numeric(39, 0), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    protocol = relationship("Protocol", back_populates="markets")
    positions = relationship("Position", back_populates="market")

    __table_args__ = (
        CheckConstraint("end_ts > start_ts", name="markets_window_check"),
        Index("idx_markets_status_end_ts", "status", "end_ts"),
    )


class Position(Base):
    """A wallet's stake on one item of a market."""

    __tablename__ = "positions"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    market_ref = Column(Integer, ForeignKey("markets.id"), nullable=False, index=True)
    wallet = Column(String(44), nullable=False, index=True)
    selected_item_index = Column(Integer, nullable=False)
    raw_stake = Column(Numeric(20, 0), CheckConstraint("raw_stake > 0"), nullable=False)
    effective_stake = Column(Numeric(39, 0), nullable=False)
    fairscore = Column(Integer, default=0, nullable=False)
    reputation_multiplier = Column(Double, default=1.0, nullable=False)
    timing_multiplier = Column(Double, default=1.0, nullable=False)
    claimed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    market = relationship("Market", back_populates="positions")

    __table_args__ = (
        UniqueConstraint("market_ref", "wallet", name="uq_positions_market_wallet"),
        Index("idx_positions_market_item", "market_ref", "selected_item_index"),
    )
