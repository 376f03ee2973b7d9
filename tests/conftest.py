import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import kleos.models  # noqa: F401
from kleos.db import Base
from kleos.models import Market, MarketStatus, Position, Protocol
from kleos.services.solana import SolanaProgramReader
from kleos.services.stake_policy import StakePolicy
from tests.mock_services import MockSolanaRpc, new_pubkey

START_TS = 1_000
END_TS = 2_000


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_sessionmaker(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(db_sessionmaker):
    async with db_sessionmaker() as session:
        yield session


@pytest.fixture
def admin():
    return new_pubkey()


@pytest.fixture
def treasury():
    return new_pubkey()


@pytest.fixture
def token_mint():
    return new_pubkey()


@pytest.fixture
def policy():
    return StakePolicy()


@pytest_asyncio.fixture
async def protocol(db, admin, treasury):
    row = Protocol(id=1, admin_authority=admin, treasury=treasury, protocol_fee_bps=250, market_count=0, paused=False)
    db.add(row)
    await db.commit()
    return row


@pytest.fixture
def make_market(db, protocol, token_mint):
    async def factory(market_id=None, status=MarketStatus.DRAFT, start_ts=START_TS, end_ts=END_TS, item_count=3, **extra):
        if market_id is None:
            market_id = protocol.market_count
            protocol.market_count += 1
        market = Market(
            market_id=market_id,
            protocol_id=protocol.id,
            category_id=0,
            status=status,
            start_ts=start_ts,
            end_ts=end_ts,
            item_count=item_count,
            items_hash="ab" * 32,
            token_mint=token_mint,
            vault="",
            total_raw_stake=extra.pop("total_raw_stake", 0),
            total_effective_stake=extra.pop("total_effective_stake", 0),
            **extra,
        )
        db.add(market)
        await db.commit()
        await db.refresh(market)
        return market

    return factory


@pytest.fixture
def add_position(db):
    async def factory(market, item, raw_stake, effective_stake=None, wallet=None):
        effective_stake = effective_stake if effective_stake is not None else raw_stake
        position = Position(
            market_ref=market.id,
            wallet=wallet or new_pubkey(),
            selected_item_index=item,
            raw_stake=raw_stake,
            effective_stake=effective_stake,
            fairscore=0,
            reputation_multiplier=1.0,
            timing_multiplier=1.0,
            claimed=False,
        )
        db.add(position)
        market.total_raw_stake = int(market.total_raw_stake) + raw_stake
        market.total_effective_stake = int(market.total_effective_stake) + effective_stake
        await db.commit()
        await db.refresh(position)
        return position

    return factory


@pytest.fixture
def solana_rpc():
    return MockSolanaRpc()


@pytest_asyncio.fixture
async def solana_reader(solana_rpc):
    session = httpx.AsyncClient(transport=solana_rpc.transport())
    reader = SolanaProgramReader(
        "https://rpc.test",
        max_retries=1,
        backoff_seconds=0,
        session=session,
    )
    yield reader
    await session.aclose()
