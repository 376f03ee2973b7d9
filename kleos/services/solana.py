"""
KLEOS - Read-only access to the KLEOS Solana program.

Fetches the protocol and market accounts over JSON-RPC and decodes their
Anchor layouts. The on-chain accounts are the authoritative market state.
"""

from __future__ import annotations

import base64
import logging
import struct
from types import TracebackType
from typing import Any, Dict, List, Optional, Type

import httpx
from pydantic import BaseModel
from solders.pubkey import Pubkey

from kleos.config import settings
from kleos.errors import InvalidInput, UpstreamUnavailable
from kleos.models import MarketStatus
from kleos.services.http_retry import send_with_retries
from kleos.utils import U64_MAX

logger = logging.getLogger(__name__)

PROTOCOL_SEED = b"protocol"
MARKET_SEED = b"market"

MARKET_DISCRIMINATOR = bytes([219, 190, 213, 55, 0, 227, 198, 154])
DISCRIMINATOR_SIZE = 8

MAX_ITEMS_TRACKED = 10
NO_WINNER = 255
EMPTY_PUBKEY = str(Pubkey.default())

STATUS_BY_CODE = {
    0: MarketStatus.DRAFT,
    1: MarketStatus.OPEN,
    2: MarketStatus.CLOSED,
    3: MarketStatus.SETTLED,
}

# admin, treasury, protocol_fee_bps, market_count, paused, bump
PROTOCOL_LAYOUT = struct.Struct("<32s32sHQBB")
# market_id, items_hash, item_count, start_ts, end_ts, status, total_raw_stake
MARKET_HEAD_LAYOUT = struct.Struct("<Q32sBqqBQ")
# protocol_fee_amount, distributable_pool, token_mint, vault, bump
MARKET_TAIL_LAYOUT = struct.Struct("<QQ32s32sB")
U128_SIZE = 16

PROTOCOL_ACCOUNT_SIZE = DISCRIMINATOR_SIZE + PROTOCOL_LAYOUT.size
MARKET_ACCOUNT_SIZE = (
    DISCRIMINATOR_SIZE
    + MARKET_HEAD_LAYOUT.size
    + U128_SIZE
    + 1
    + U128_SIZE * MAX_ITEMS_TRACKED
    + MARKET_TAIL_LAYOUT.size
)


class OnchainProtocol(BaseModel):
    admin_authority: str
    treasury: str
    protocol_fee_bps: int
    market_count: int
    paused: bool


class OnchainMarket(BaseModel):
    pda: str
    market_id: int
    items_hash: str
    item_count: int
    start_ts: int
    end_ts: int
    status: MarketStatus
    total_raw_stake: int
    total_effective_stake: int
    winning_item_index: Optional[int] = None
    effective_stake_per_item: List[int]
    protocol_fee_amount: int
    distributable_pool: int
    token_mint: str
    vault: str


def _read_u128(data: bytes, offset: int) -> int:
    return int.from_bytes(data[offset : offset + U128_SIZE], "little")


def decode_protocol_account(data: bytes) -> OnchainProtocol:
    if len(data) < PROTOCOL_ACCOUNT_SIZE:
        raise UpstreamUnavailable(
            f"Protocol account too short: {len(data)} < {PROTOCOL_ACCOUNT_SIZE} bytes"
        )
    admin, treasury, fee_bps, market_count, paused, _bump = PROTOCOL_LAYOUT.unpack_from(
        data, DISCRIMINATOR_SIZE
    )
    return OnchainProtocol(
        admin_authority=str(Pubkey.from_bytes(admin)),
        treasury=str(Pubkey.from_bytes(treasury)),
        protocol_fee_bps=fee_bps,
        market_count=market_count,
        paused=paused != 0,
    )


def decode_market_account(data: bytes, pda: str) -> OnchainMarket:
    if len(data) < MARKET_ACCOUNT_SIZE:
        raise UpstreamUnavailable(
            f"Market account too short: {len(data)} < {MARKET_ACCOUNT_SIZE} bytes"
        )

    offset = DISCRIMINATOR_SIZE
    (
        market_id,
        items_hash,
        item_count,
        start_ts,
        end_ts,
        status_code,
        total_raw_stake,
    ) = MARKET_HEAD_LAYOUT.unpack_from(data, offset)
    offset += MARKET_HEAD_LAYOUT.size

    total_effective_stake = _read_u128(data, offset)
    offset += U128_SIZE

    winning_item_index = data[offset]
    offset += 1

    per_item = []
    for _ in range(MAX_ITEMS_TRACKED):
        per_item.append(_read_u128(data, offset))
        offset += U128_SIZE

    protocol_fee_amount, distributable_pool, token_mint, vault, _bump = (
        MARKET_TAIL_LAYOUT.unpack_from(data, offset)
    )

    status = STATUS_BY_CODE.get(status_code)
    if status is None:
        raise UpstreamUnavailable(f"Unknown market status code {status_code} for {pda}")

    settled_winner = status == MarketStatus.SETTLED and winning_item_index != NO_WINNER
    return OnchainMarket(
        pda=pda,
        market_id=market_id,
        items_hash=items_hash.hex(),
        item_count=item_count,
        start_ts=start_ts,
        end_ts=end_ts,
        status=status,
        total_raw_stake=total_raw_stake,
        total_effective_stake=total_effective_stake,
        winning_item_index=winning_item_index if settled_winner else None,
        effective_stake_per_item=per_item[:item_count],
        protocol_fee_amount=protocol_fee_amount,
        distributable_pool=distributable_pool,
        token_mint=str(Pubkey.from_bytes(token_mint)),
        vault=str(Pubkey.from_bytes(vault)),
    )


class SolanaProgramReader:
    def __init__(
        self,
        rpc_url: Optional[str] = None,
        program_id: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        commitment: str = "confirmed",
        session: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url or settings.solana_rpc_url
        self.program_id = Pubkey.from_string(program_id or settings.kleos_program_id)
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.http_max_retries
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.http_backoff_seconds
        )
        self.commitment = commitment
        self._session = session or httpx.AsyncClient(timeout=self.timeout)
        self._owns_session = session is None
        self._request_id = 0

    async def __aenter__(self) -> "SolanaProgramReader":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session:
            await self._session.aclose()

    def protocol_pda(self) -> Pubkey:
        pda, _bump = Pubkey.find_program_address([PROTOCOL_SEED], self.program_id)
        return pda

    def market_pda(self, market_id: int) -> Pubkey:
        if not 0 <= int(market_id) <= U64_MAX:
            raise InvalidInput(f"market_id out of u64 range: {market_id}")
        seed = int(market_id).to_bytes(8, "little")
        pda, _bump = Pubkey.find_program_address([MARKET_SEED, seed], self.program_id)
        return pda

    async def fetch_protocol(self) -> Optional[OnchainProtocol]:
        data = await self._get_account_data(self.protocol_pda())
        if data is None:
            return None
        return decode_protocol_account(data)

    async def fetch_market(self, market_id: int) -> Optional[OnchainMarket]:
        pda = self.market_pda(market_id)
        data = await self._get_account_data(pda)
        if data is None:
            logger.warning(f"Market account not found for market_id={market_id}, PDA={pda}")
            return None
        market = decode_market_account(data, str(pda))
        logger.debug(f"Decoded market {market_id}: status={market.status.value}")
        return market

    async def fetch_all_markets(self) -> List[OnchainMarket]:
        """All market accounts owned by the program, newest first."""
        result = await self._rpc(
            "getProgramAccounts",
            [
                str(self.program_id),
                {
                    "encoding": "base64",
                    "commitment": self.commitment,
                    "filters": [
                        {
                            "memcmp": {
                                "offset": 0,
                                "bytes": base64.b64encode(MARKET_DISCRIMINATOR).decode("ascii"),
                                "encoding": "base64",
                            }
                        }
                    ],
                },
            ],
        )
        if not isinstance(result, list):
            raise UpstreamUnavailable("Unexpected getProgramAccounts result")

        markets = [
            decode_market_account(self._decode_data(item["account"]), item["pubkey"])
            for item in result
        ]
        markets.sort(key=lambda m: m.market_id, reverse=True)
        return markets

    async def _get_account_data(self, pubkey: Pubkey) -> Optional[bytes]:
        result = await self._rpc(
            "getAccountInfo",
            [str(pubkey), {"encoding": "base64", "commitment": self.commitment}],
        )
        value = (result or {}).get("value") if isinstance(result, dict) else None
        if not value:
            return None
        return self._decode_data(value)

    @staticmethod
    def _decode_data(account: Dict[str, Any]) -> bytes:
        try:
            encoded, encoding = account["data"]
            if encoding != "base64":
                raise ValueError(f"unsupported encoding {encoding}")
            return base64.b64decode(encoded)
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamUnavailable(f"Malformed account data: {exc}") from exc

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

        response = await send_with_retries(
            lambda: self._session.post(self.rpc_url, json=payload, timeout=self.timeout),
            label=f"Solana RPC {method}",
            max_retries=self.max_retries,
            backoff_seconds=self.backoff_seconds,
        )
        if response.status_code != 200:
            logger.error(f"Solana RPC {method} failed with status {response.status_code}: {response.text}")
            raise UpstreamUnavailable(f"Solana RPC {method} failed with status {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable(f"Solana RPC {method} returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise UpstreamUnavailable(f"Unexpected Solana RPC {method} response format")
        if body.get("error"):
            logger.error(f"Solana RPC {method} error: {body['error']}")
            raise UpstreamUnavailable(f"Solana RPC {method} error: {body['error']}")
        return body.get("result")


async def fetch_onchain_protocol(rpc_url: str) -> Optional[OnchainProtocol]:
    async with SolanaProgramReader(rpc_url) as reader:
        return await reader.fetch_protocol()


async def fetch_onchain_market_by_id(rpc_url: str, market_id: int) -> Optional[OnchainMarket]:
    async with SolanaProgramReader(rpc_url) as reader:
        return await reader.fetch_market(market_id)
