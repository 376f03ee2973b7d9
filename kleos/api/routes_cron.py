"""
KLEOS - Scheduled job routes.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kleos.api.deps import get_solana_reader, verify_cron_secret
from kleos.db import get_db
from kleos.schemas import SweepReportSchema
from kleos.services.lifecycle import sweep_markets
from kleos.services.solana import SolanaProgramReader

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


@router.post("/markets", response_model=SweepReportSchema)
async def run_market_sweep(
    db: AsyncSession = Depends(get_db),
    reader: SolanaProgramReader = Depends(get_solana_reader),
):
    """
    Close Open markets past their end time and settle Closed ones.

    Each settled market's winner is the item with the most effective stake.
    Per-market failures are returned in the report.
    """
    report = await sweep_markets(db, reader=reader)
    return SweepReportSchema.model_validate(report)
