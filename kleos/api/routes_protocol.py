"""
KLEOS - Protocol routes.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kleos.api.deps import get_solana_reader
from kleos.db import get_db
from kleos.errors import NotFound
from kleos.schemas import ProtocolInitializeRequest, ProtocolSchema, ProtocolUpdateRequest
from kleos.services.protocol import get_protocol, initialize_protocol, update_protocol
from kleos.services.solana import OnchainProtocol, SolanaProgramReader

router = APIRouter(prefix="/protocol", tags=["protocol"])


@router.get("", response_model=ProtocolSchema)
async def read_protocol(db: AsyncSession = Depends(get_db)):
    """Cached protocol configuration."""
    return await get_protocol(db)


@router.post("/initialize", response_model=ProtocolSchema)
async def initialize(request: ProtocolInitializeRequest, db: AsyncSession = Depends(get_db)):
    """
    Initialize the protocol singleton.

    Calling again with the same admin returns the existing protocol.
    """
    return await initialize_protocol(
        db,
        admin_authority=request.admin_authority,
        treasury=request.treasury,
        protocol_fee_bps=request.protocol_fee_bps,
    )


@router.put("", response_model=ProtocolSchema)
async def update(request: ProtocolUpdateRequest, db: AsyncSession = Depends(get_db)):
    return await update_protocol(
        db,
        request.admin_authority,
        protocol_fee_bps=request.protocol_fee_bps,
        treasury=request.treasury,
        paused=request.paused,
    )


@router.get("/onchain", response_model=OnchainProtocol)
async def read_onchain_protocol(reader: SolanaProgramReader = Depends(get_solana_reader)):
    """Protocol account as currently stored on-chain."""
    protocol = await reader.fetch_protocol()
    if protocol is None:
        raise NotFound("Protocol not initialized on-chain")
    return protocol
