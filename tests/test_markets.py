"""Tests for market creation and edits."""

import pytest

from kleos.errors import InvalidInput, InvalidState, NotFound, Unauthorized
from kleos.models import MarketStatus
from kleos.services.markets import create_market, edit_market, get_market, list_markets
from kleos.services.protocol import get_protocol, update_protocol
from kleos.utils import compute_items_hash
from tests.mock_services import new_pubkey

ITEMS_HASH = compute_items_hash(["alpha", "beta", "gamma"])


def market_args(mint, **overrides):
    args = {
        "start_ts": 1_000,
        "end_ts": 2_000,
        "item_count": 3,
        "items_hash": ITEMS_HASH,
        "token_mint": mint,
    }
    args.update(overrides)
    return args


@pytest.mark.asyncio
async def test_create_allocates_sequential_ids(db, protocol, admin, token_mint):
    first = await create_market(db, admin, **market_args(token_mint))
    second = await create_market(db, admin, **market_args(token_mint))

    assert (first.market_id, second.market_id) == (0, 1)
    assert first.status == MarketStatus.DRAFT
    assert first.items_hash == ITEMS_HASH
    assert (await get_protocol(db)).market_count == 2


@pytest.mark.asyncio
async def test_create_accepts_prefixed_upper_hash(db, protocol, admin, token_mint):
    market = await create_market(db, admin, **market_args(token_mint, items_hash="0x" + ITEMS_HASH.upper()))

    assert market.items_hash == ITEMS_HASH


@pytest.mark.asyncio
async def test_create_requires_admin(db, protocol, token_mint):
    with pytest.raises(Unauthorized):
        await create_market(db, new_pubkey(), **market_args(token_mint))


@pytest.mark.asyncio
async def test_create_requires_protocol(db, token_mint):
    with pytest.raises(NotFound):
        await create_market(db, new_pubkey(), **market_args(token_mint))


@pytest.mark.asyncio
async def test_create_rejected_while_paused(db, protocol, admin, token_mint):
    await update_protocol(db, admin, paused=True)

    with pytest.raises(InvalidState):
        await create_market(db, admin, **market_args(token_mint))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"end_ts": 1_000},
        {"end_ts": 900},
        {"item_count": 1},
        {"item_count": 256},
        {"items_hash": "abc"},
        {"items_hash": "zz" * 32},
        {"token_mint": "nope"},
    ],
)
async def test_create_validates_input(db, protocol, admin, token_mint, overrides):
    with pytest.raises(InvalidInput):
        await create_market(db, admin, **market_args(token_mint, **overrides))

    assert (await get_protocol(db)).market_count == 0


@pytest.mark.asyncio
async def test_get_unknown_market(db):
    with pytest.raises(NotFound):
        await get_market(db, 99)


@pytest.mark.asyncio
async def test_list_filters_by_status(db, make_market):
    draft = await make_market()
    opened = await make_market(status=MarketStatus.OPEN)

    everything = await list_markets(db)
    only_open = await list_markets(db, status=MarketStatus.OPEN)

    assert [m.market_id for m in everything] == [opened.market_id, draft.market_id]
    assert [m.market_id for m in only_open] == [opened.market_id]


@pytest.mark.asyncio
async def test_edit_draft_market(db, make_market, admin):
    market = await make_market()

    edited = await edit_market(db, market.market_id, admin, end_ts=5_000, item_count=4, category_id=7)

    assert edited.end_ts == 5_000
    assert edited.item_count == 4
    assert edited.category_id == 7


@pytest.mark.asyncio
async def test_edit_validates_combined_window(db, make_market, admin):
    market = await make_market()

    with pytest.raises(InvalidInput):
        await edit_market(db, market.market_id, admin, start_ts=3_000)


@pytest.mark.asyncio
async def test_edit_requires_draft(db, make_market, admin):
    market = await make_market(status=MarketStatus.OPEN)

    with pytest.raises(InvalidState):
        await edit_market(db, market.market_id, admin, category_id=1)


@pytest.mark.asyncio
async def test_edit_rejected_with_positions(db, make_market, add_position, admin):
    market = await make_market()
    await add_position(market, 0, 100)

    with pytest.raises(InvalidState):
        await edit_market(db, market.market_id, admin, category_id=1)


@pytest.mark.asyncio
async def test_edit_requires_admin(db, make_market):
    market = await make_market()

    with pytest.raises(Unauthorized):
        await edit_market(db, market.market_id, new_pubkey(), category_id=1)
