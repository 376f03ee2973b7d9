"""
KLEOS - Protocol singleton: initialization, updates and fee lookup.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from kleos.errors import InvalidInput, InvalidState, NotFound, Unauthorized
from kleos.models import Protocol
from kleos.services.solana import SolanaProgramReader
from kleos.utils import validate_pubkey

logger = logging.getLogger(__name__)

SINGLETON_ID = 1
MAX_FEE_BPS = 10_000


def validate_fee_bps(protocol_fee_bps: int) -> int:
    if protocol_fee_bps is None or not 0 <= protocol_fee_bps <= MAX_FEE_BPS:
        raise InvalidInput("protocolFeeBps must be between 0 and 10000")
    return protocol_fee_bps


async def get_protocol_record(db: AsyncSession) -> Optional[Protocol]:
    """
    Get the protocol row, if it has been initialized.

    Args:
        db: Database session

    Returns:
        Protocol or None
    """
    result = await db.execute(select(Protocol).order_by(Protocol.id).limit(1))
    return result.scalar_one_or_none()


async def get_protocol(db: AsyncSession) -> Protocol:
    protocol = await get_protocol_record(db)
    if protocol is None:
        raise NotFound("Protocol not initialized")
    return protocol


async def initialize_protocol(
    db: AsyncSession,
    admin_authority: str,
    treasury: str,
    protocol_fee_bps: int,
) -> Protocol:
    """
    Create the protocol singleton.

    Re-initializing with the same admin returns the existing row unchanged.

    Args:
        db: Database session
        admin_authority: Admin public key (base58)
        treasury: Treasury public key (base58)
        protocol_fee_bps: Fee in basis points (0-10000)

    Returns:
        The protocol row

    Raises:
        InvalidInput: If the fee or a public key is malformed
        InvalidState: If a different admin already initialized the protocol
    """
    validate_fee_bps(protocol_fee_bps)
    admin_authority = validate_pubkey(admin_authority, "adminAuthority")
    treasury = validate_pubkey(treasury, "treasury")

    existing = await get_protocol_record(db)
    if existing is None:
        protocol = Protocol(
            id=SINGLETON_ID,
            admin_authority=admin_authority,
            treasury=treasury,
            protocol_fee_bps=protocol_fee_bps,
            market_count=0,
            paused=False,
        )
        try:
            db.add(protocol)
            await db.commit()
            await db.refresh(protocol)
            logger.info(f"Protocol initialized by {admin_authority}")
            return protocol
        except IntegrityError:
            # Another request created the singleton first
            await db.rollback()
            existing = await get_protocol_record(db)
            if existing is None:
                raise

    if existing.admin_authority != admin_authority:
        raise InvalidState(
            f"Protocol already initialized by different admin: {existing.admin_authority[:8]}..."
        )
    return existing


async def update_protocol(
    db: AsyncSession,
    admin_authority: str,
    *,
    protocol_fee_bps: Optional[int] = None,
    treasury: Optional[str] = None,
    paused: Optional[bool] = None,
) -> Protocol:
    protocol = await get_protocol(db)
    if protocol.admin_authority != admin_authority:
        raise Unauthorized("Unauthorized: Invalid admin authority")

    if protocol_fee_bps is not None:
        protocol.protocol_fee_bps = validate_fee_bps(protocol_fee_bps)
    if treasury is not None:
        protocol.treasury = validate_pubkey(treasury, "treasury")
    if paused is not None:
        protocol.paused = paused

    await db.commit()
    await db.refresh(protocol)
    return protocol


async def resolve_protocol_fee_bps(
    db: AsyncSession, reader: Optional[SolanaProgramReader] = None
) -> int:
    """Fee from the cached protocol row, falling back to the on-chain account."""
    protocol = await get_protocol_record(db)
    if protocol is not None:
        return protocol.protocol_fee_bps

    if reader is None:
        async with SolanaProgramReader() as owned_reader:
            onchain = await owned_reader.fetch_protocol()
    else:
        onchain = await reader.fetch_protocol()
    if onchain is None:
        raise NotFound("Protocol not initialized")
    return onchain.protocol_fee_bps
