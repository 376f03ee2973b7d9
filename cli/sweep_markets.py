"""
KLEOS - Close and settle markets whose end time has passed.

Meant to be run from cron when the HTTP cron route is not used.
"""

import asyncio
import argparse
import logging
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from kleos.config import settings
from kleos.services.lifecycle import sweep_markets
from kleos.services.solana import SolanaProgramReader


async def run_sweep(now: Optional[int] = None, fee_bps: Optional[int] = None) -> int:
    """
    Run one sweep and print the report.

    Returns:
        Number of markets that failed to close or settle
    """
    engine = create_async_engine(settings.database_url, echo=False)
    async_session = async_sessionmaker(engine, expire_on_commit=False)

    try:
        async with SolanaProgramReader() as reader, async_session() as session:
            report = await sweep_markets(session, now, fee_bps=fee_bps, reader=reader)
    finally:
        await engine.dispose()

    print(f"✓ Closed {len(report.closed)} markets: {report.closed}")
    print(f"✓ Settled {len(report.settled)} markets: {report.settled}")
    for failure in report.errors:
        print(f"✗ Market {failure.market_id} ({failure.stage}): {failure.error}: {failure.detail}")
    return len(report.errors)


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Close and settle markets past their end time")
    parser.add_argument("--now", type=int, default=None, help="Unix time to sweep at (default: current time)")
    parser.add_argument("--fee-bps", type=int, default=None, help="Override the protocol fee in basis points")

    args = parser.parse_args()

    failures = await run_sweep(args.now, args.fee_bps)
    if failures:
        raise SystemExit(1)


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=settings.log_level.upper())
    asyncio.run(main())
