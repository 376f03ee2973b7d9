"""
KLEOS - Shared FastAPI dependencies.
"""

import hmac
from typing import AsyncIterator, Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from kleos.config import settings
from kleos.db import get_db
from kleos.errors import Unauthorized
from kleos.services.authority import ProtocolAuthorityResolver, default_authority_resolver
from kleos.services.fairscale import CachedReputationSource, FairScaleClient, ReputationSource
from kleos.services.solana import SolanaProgramReader

_fairscale_client: Optional[FairScaleClient] = None
_reputation_source: Optional[CachedReputationSource] = None


def get_fairscale_client() -> FairScaleClient:
    """Process-wide FairScale client, created on first use."""
    global _fairscale_client
    if _fairscale_client is None:
        _fairscale_client = FairScaleClient()
    return _fairscale_client


def get_reputation_source() -> ReputationSource:
    """FairScale scores behind the per-wallet TTL cache."""
    global _reputation_source
    if _reputation_source is None:
        _reputation_source = CachedReputationSource(get_fairscale_client())
    return _reputation_source


async def close_clients() -> None:
    global _fairscale_client, _reputation_source
    if _fairscale_client is not None:
        await _fairscale_client.close()
    _fairscale_client = None
    _reputation_source = None


async def get_solana_reader() -> AsyncIterator[SolanaProgramReader]:
    async with SolanaProgramReader() as reader:
        yield reader


def get_authority_resolver(
    db: AsyncSession = Depends(get_db),
    reader: SolanaProgramReader = Depends(get_solana_reader),
) -> ProtocolAuthorityResolver:
    return default_authority_resolver(db, reader)


def verify_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """
    Require `Authorization: Bearer <CRON_SECRET>` when a cron secret is configured.

    Raises:
        Unauthorized: If the header is missing or does not match
    """
    secret = settings.cron_secret
    if not secret:
        return
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise Unauthorized("Unauthorized")
