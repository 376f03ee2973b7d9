"""
KLEOS - Protocol admin authority resolution.

The protocol singleton is the source of truth for the admin authority. The
off-chain row is consulted first; when it does not exist yet the on-chain
protocol account is read instead.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kleos.models import Protocol
from kleos.services.solana import SolanaProgramReader

logger = logging.getLogger(__name__)


class ProtocolAuthorityResolver:
    """Answers which public key is the protocol admin, if any source knows."""

    async def resolve_admin_authority(self) -> Optional[str]:
        raise NotImplementedError

    async def is_admin(self, candidate: Optional[str]) -> bool:
        if not candidate:
            return False
        admin = await self.resolve_admin_authority()
        return admin is not None and admin == candidate


class CachedProtocolAuthority(ProtocolAuthorityResolver):
    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve_admin_authority(self) -> Optional[str]:
        result = await self.db.execute(select(Protocol.admin_authority).limit(1))
        return result.scalar_one_or_none()


class OnchainProtocolAuthority(ProtocolAuthorityResolver):
    def __init__(self, reader: SolanaProgramReader):
        self.reader = reader

    async def resolve_admin_authority(self) -> Optional[str]:
        protocol = await self.reader.fetch_protocol()
        return protocol.admin_authority if protocol else None


class FallbackAuthorityResolver(ProtocolAuthorityResolver):
    """First resolver with an answer wins; later ones are not consulted."""

    def __init__(self, *resolvers: ProtocolAuthorityResolver):
        self.resolvers = resolvers

    async def resolve_admin_authority(self) -> Optional[str]:
        for resolver in self.resolvers:
            admin = await resolver.resolve_admin_authority()
            if admin is not None:
                return admin
            logger.info(f"{type(resolver).__name__} has no protocol record, trying next source")
        return None


def default_authority_resolver(
    db: AsyncSession, reader: SolanaProgramReader
) -> ProtocolAuthorityResolver:
    """Cached protocol row first, then the on-chain protocol account."""
    return FallbackAuthorityResolver(
        CachedProtocolAuthority(db),
        OnchainProtocolAuthority(reader),
    )
