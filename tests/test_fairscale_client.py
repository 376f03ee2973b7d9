from typing import List

import httpx
import pytest

from kleos.config import ReputationTier
from kleos.errors import InvalidInput, UpstreamUnavailable
from kleos.services.fairscale import CachedReputationSource, FairScaleClient, tier_for_score
from kleos.services.stake_policy import StakePolicy
from tests.mock_services import StaticReputation

WALLET = "GjwcWFQYzemBtpUoN5fMAP2FZviTtMRWCmrppGuTthJS"


def build_mock_client(responses: List[httpx.Response], api_key="test-key") -> FairScaleClient:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        try:
            return responses[len(calls) - 1]
        except IndexError:
            raise AssertionError("Mock transport received more requests than expected")

    session = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = FairScaleClient(
        base_url="https://api.fairscale.test",
        api_key=api_key,
        session=session,
        max_retries=1,
        backoff_seconds=0,
    )
    client._test_calls = calls
    return client


def complete_payload():
    return {
        "wallet": WALLET,
        "fairscore_base": 118.4,
        "social_score": 12.0,
        "fairscore": 130.4,
        "tier": "silver",
        "badges": [{"id": "early", "label": "Early Adopter", "description": "", "tier": "gold"}],
        "timestamp": "2026-01-01T00:00:00Z",
        "features": {"tx_count": 812, "active_days": 190, "wallet_age_days": 640},
    }


@pytest.mark.asyncio
async def test_get_score_sends_key_and_wallet():
    client = build_mock_client([httpx.Response(200, json={"fair_score": 143})])

    score = await client.get_score(WALLET)

    assert score == 143
    request = client._test_calls[0]
    assert request.url.path == "/fairScore"
    assert request.url.params["wallet"] == WALLET
    assert request.headers["fairkey"] == "test-key"


@pytest.mark.asyncio
async def test_get_wallet_score():
    client = build_mock_client([httpx.Response(200, json={"wallet_score": 97.8})])

    assert await client.get_wallet_score(WALLET) == 97
    assert client._test_calls[0].url.path == "/walletScore"


@pytest.mark.asyncio
async def test_get_complete_score_parses_payload():
    client = build_mock_client([httpx.Response(200, json=complete_payload())])

    score = await client.get_complete_score(WALLET)

    assert score.tier == "silver"
    assert score.fairscore == pytest.approx(130.4)
    assert score.badges[0].label == "Early Adopter"
    assert score.features.tx_count == 812


@pytest.mark.asyncio
async def test_retries_once_on_server_error():
    client = build_mock_client(
        [
            httpx.Response(503, json={"error": "busy"}),
            httpx.Response(200, json={"fair_score": 55}),
        ]
    )

    assert await client.get_score(WALLET) == 55
    assert len(client._test_calls) == 2


@pytest.mark.asyncio
async def test_gives_up_after_one_retry():
    client = build_mock_client(
        [
            httpx.Response(500, json={"error": "boom"}),
            httpx.Response(500, json={"error": "boom"}),
        ]
    )

    with pytest.raises(UpstreamUnavailable):
        await client.get_score(WALLET)
    assert len(client._test_calls) == 2


@pytest.mark.asyncio
async def test_rate_limit_is_retried_then_reported():
    client = build_mock_client([httpx.Response(429), httpx.Response(429)])

    with pytest.raises(UpstreamUnavailable, match="rate limit"):
        await client.get_score(WALLET)
    assert len(client._test_calls) == 2


@pytest.mark.asyncio
async def test_invalid_key_is_not_retried():
    client = build_mock_client([httpx.Response(401, json={"error": "bad key"})])

    with pytest.raises(UpstreamUnavailable, match="Invalid FairScale API key"):
        await client.get_score(WALLET)
    assert len(client._test_calls) == 1


@pytest.mark.asyncio
async def test_transport_error_is_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"fair_score": 10})

    session = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = FairScaleClient("https://api.fairscale.test", "k", session=session, max_retries=1, backoff_seconds=0)

    assert await client.get_score(WALLET) == 10
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_missing_api_key_fails_without_request():
    client = build_mock_client([], api_key="")

    with pytest.raises(UpstreamUnavailable, match="not configured"):
        await client.get_score(WALLET)
    assert client._test_calls == []


@pytest.mark.asyncio
async def test_blank_wallet_is_invalid():
    client = build_mock_client([])

    with pytest.raises(InvalidInput):
        await client.get_score("  ")


@pytest.mark.asyncio
async def test_meets_minimum_score():
    client = build_mock_client(
        [
            httpx.Response(200, json={"fair_score": 120}),
            httpx.Response(200, json={"wallet_score": 80}),
        ]
    )

    social = await client.meets_minimum_score(WALLET, 100)
    wallet_only = await client.meets_minimum_score(WALLET, 100, use_social_score=False)

    assert social.meets is True and social.score == 120
    assert wallet_only.meets is False and wallet_only.score == 80


@pytest.mark.asyncio
async def test_meets_minimum_score_rejects_negative_threshold():
    client = build_mock_client([])

    with pytest.raises(InvalidInput):
        await client.meets_minimum_score(WALLET, -1)


@pytest.mark.asyncio
async def test_meets_minimum_tier():
    client = build_mock_client(
        [
            httpx.Response(200, json=complete_payload()),
            httpx.Response(200, json=complete_payload()),
        ]
    )

    bronze = await client.meets_minimum_tier(WALLET, "bronze")
    gold = await client.meets_minimum_tier(WALLET, "Gold")

    assert bronze.meets is True
    assert gold.meets is False
    assert gold.tier == "silver"
    assert gold.score == 130


@pytest.mark.asyncio
async def test_meets_minimum_tier_rejects_unknown_tier():
    client = build_mock_client([])

    with pytest.raises(InvalidInput):
        await client.meets_minimum_tier(WALLET, "diamond")


@pytest.mark.asyncio
async def test_cache_serves_repeat_lookups_within_ttl():
    now = [0.0]
    source = StaticReputation({WALLET: 150})
    cached = CachedReputationSource(source, ttl_seconds=60, clock=lambda: now[0])

    assert await cached.get_score(WALLET) == 150
    now[0] = 59.0
    assert await cached.get_score(WALLET) == 150
    assert len(source.calls) == 1

    now[0] = 61.0
    assert await cached.get_score(WALLET) == 150
    assert len(source.calls) == 2


@pytest.mark.asyncio
async def test_cache_invalidate_and_disabled_ttl():
    source = StaticReputation({WALLET: 10})
    cached = CachedReputationSource(source, ttl_seconds=3600)

    await cached.get_score(WALLET)
    cached.invalidate(WALLET)
    await cached.get_score(WALLET)
    assert len(source.calls) == 2

    uncached = CachedReputationSource(source, ttl_seconds=0)
    await uncached.get_score(WALLET)
    await uncached.get_score(WALLET)
    assert len(source.calls) == 4


@pytest.mark.asyncio
async def test_cache_does_not_store_failures():
    source = StaticReputation(error=UpstreamUnavailable("down"))
    cached = CachedReputationSource(source, ttl_seconds=3600)

    with pytest.raises(UpstreamUnavailable):
        await cached.get_score(WALLET)
    source.error = None
    source.scores[WALLET] = 42
    assert await cached.get_score(WALLET) == 42


def test_tier_for_score_uses_configured_bands():
    assert tier_for_score(0) == "bronze"
    assert tier_for_score(100) == "silver"
    assert tier_for_score(199) == "gold"
    assert tier_for_score(250) == "platinum"


def test_tier_for_score_matches_stake_policy():
    tiers = [
        ReputationTier(name="low", min_score=0, multiplier=1.0),
        ReputationTier(name="high", min_score=50, multiplier=2.0),
    ]
    policy = StakePolicy(tiers=tuple(tiers))

    for score in (0, 49, 50, 500):
        assert tier_for_score(score, list(reversed(tiers))) == policy.tier_for_score(score).name
