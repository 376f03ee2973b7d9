"""
KLEOS - FairScale reputation API integration.

Wallet FairScores, tiers and badges from https://api.fairscale.xyz.
"""

from __future__ import annotations

import logging
import time
from types import TracebackType
from typing import Any, Callable, Dict, List, NoReturn, Optional, Type

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kleos.config import ReputationTier, settings
from kleos.errors import InvalidInput, UpstreamUnavailable
from kleos.services.http_retry import send_with_retries
from kleos.services.stake_policy import StakePolicy, get_default_policy

logger = logging.getLogger(__name__)

TIER_ORDER = ("bronze", "silver", "gold", "platinum")


class Badge(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    label: str
    description: str = ""
    tier: str = ""


class ScoreFeatures(BaseModel):
    model_config = ConfigDict(extra="ignore")

    lst_percentile_score: Optional[float] = None
    major_percentile_score: Optional[float] = None
    native_sol_percentile: Optional[float] = None
    stable_percentile_score: Optional[float] = None
    tx_count: Optional[int] = None
    active_days: Optional[int] = None
    median_gap_hours: Optional[float] = None
    wallet_age_days: Optional[int] = None


class FairScaleScore(BaseModel):
    model_config = ConfigDict(extra="ignore")

    wallet: str
    fairscore_base: float = 0
    social_score: float = 0
    fairscore: float = 0
    tier: str = "bronze"
    badges: List[Badge] = Field(default_factory=list)
    timestamp: Optional[str] = None
    features: Optional[ScoreFeatures] = None


class ScoreCheck(BaseModel):
    meets: bool
    score: int


class TierCheck(BaseModel):
    meets: bool
    tier: str
    score: int


class ReputationSource:
    """Anything that can produce a wallet's integer reputation score."""

    async def get_score(self, wallet: str) -> int:
        raise NotImplementedError


class FairScaleClient(ReputationSource):
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        session: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.fairscale_api_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.fairscale_api_key
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.http_max_retries
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.http_backoff_seconds
        )
        self._session = session or httpx.AsyncClient(timeout=self.timeout)
        self._owns_session = session is None

    async def __aenter__(self) -> "FairScaleClient":
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

    async def get_complete_score(self, wallet: str) -> FairScaleScore:
        """Full score with badges, tier and features (GET /score)."""
        data = await self._get("/score", wallet)
        try:
            return FairScaleScore.model_validate(data)
        except ValidationError as exc:
            raise UpstreamUnavailable(f"Invalid FairScale score payload: {exc}") from exc

    async def get_score(self, wallet: str) -> int:
        """Combined FairScore, including social factors (GET /fairScore)."""
        data = await self._get("/fairScore", wallet)
        return self._read_int(data, "fair_score")

    async def get_wallet_score(self, wallet: str) -> int:
        """Wallet-only score without social factors (GET /walletScore)."""
        data = await self._get("/walletScore", wallet)
        return self._read_int(data, "wallet_score")

    async def meets_minimum_score(
        self, wallet: str, minimum_score: int, use_social_score: bool = True
    ) -> ScoreCheck:
        if minimum_score < 0:
            raise InvalidInput("minimumScore must be a non-negative number")
        if use_social_score:
            score = await self.get_score(wallet)
        else:
            score = await self.get_wallet_score(wallet)
        return ScoreCheck(meets=score >= minimum_score, score=score)

    async def meets_minimum_tier(self, wallet: str, minimum_tier: str) -> TierCheck:
        minimum = (minimum_tier or "").lower()
        if minimum not in TIER_ORDER:
            raise InvalidInput(f"Invalid tier. Must be one of: {', '.join(TIER_ORDER)}")

        complete = await self.get_complete_score(wallet)
        tier = complete.tier.lower()
        wallet_index = TIER_ORDER.index(tier) if tier in TIER_ORDER else -1
        return TierCheck(
            meets=wallet_index >= TIER_ORDER.index(minimum),
            tier=complete.tier,
            score=int(complete.fairscore),
        )

    async def _get(self, path: str, wallet: str) -> Dict[str, Any]:
        wallet = (wallet or "").strip()
        if not wallet:
            raise InvalidInput("Valid wallet address is required")
        if not self.api_key:
            raise UpstreamUnavailable("FairScale API key not configured")

        response = await self._request(path, {"wallet": wallet})
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable("FairScale returned invalid JSON") from exc
        if not isinstance(data, dict):
            raise UpstreamUnavailable("Unexpected response format from FairScale")
        return data

    async def _request(self, path: str, params: Dict[str, str]) -> httpx.Response:
        url = f"{self.base_url}{path}"
        headers = {"fairkey": self.api_key or ""}

        response = await send_with_retries(
            lambda: self._session.get(url, params=params, headers=headers, timeout=self.timeout),
            label=f"FairScale {path}",
            max_retries=self.max_retries,
            backoff_seconds=self.backoff_seconds,
        )
        if response.status_code != 200:
            self._log_and_raise(response)
        return response

    @staticmethod
    def _read_int(data: Dict[str, Any], key: str) -> int:
        value = data.get(key)
        try:
            return int(float(value))
        except (TypeError, ValueError) as exc:
            raise UpstreamUnavailable(f"FairScale response missing numeric '{key}'") from exc

    @staticmethod
    def _log_and_raise(response: httpx.Response) -> NoReturn:
        logger.error(f"FairScale request failed with status {response.status_code}: {response.text}")
        if response.status_code == 401:
            raise UpstreamUnavailable("Invalid FairScale API key")
        if response.status_code == 429:
            raise UpstreamUnavailable("FairScale rate limit exceeded")
        raise UpstreamUnavailable(f"FairScale request failed with status {response.status_code}")


class CachedReputationSource(ReputationSource):
    """Per-wallet TTL cache in front of another reputation source."""

    def __init__(
        self,
        source: ReputationSource,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.score_cache_ttl_seconds
        self._clock = clock
        self._entries: Dict[str, tuple[int, float]] = {}

    async def get_score(self, wallet: str) -> int:
        cached = self._entries.get(wallet)
        if cached and cached[1] > self._clock():
            return cached[0]

        score = await self.source.get_score(wallet)
        if self.ttl_seconds > 0:
            self._entries[wallet] = (score, self._clock() + self.ttl_seconds)
        return score

    def invalidate(self, wallet: str) -> None:
        self._entries.pop(wallet, None)

    def clear(self) -> None:
        self._entries.clear()


def tier_for_score(score: int, tiers: Optional[List[ReputationTier]] = None) -> str:
    """Name of the configured tier a FairScore falls into."""
    if tiers:
        policy = StakePolicy(tiers=tuple(sorted(tiers, key=lambda t: t.min_score)))
    else:
        policy = get_default_policy()
    return policy.tier_for_score(score).name
