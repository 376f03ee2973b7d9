"""
KLEOS - Initialize the protocol singleton.
"""

import asyncio
import argparse

from dotenv import load_dotenv
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from kleos.config import settings
from kleos.db import Base
from kleos.services.protocol import initialize_protocol


async def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Initialize the KLEOS protocol")
    parser.add_argument("--admin", required=True, help="Admin authority public key")
    parser.add_argument("--treasury", required=True, help="Treasury public key")
    parser.add_argument("--fee-bps", type=int, default=0, help="Protocol fee in basis points (0-10000)")
    parser.add_argument("--create-tables", action="store_true", help="Create missing tables first")

    args = parser.parse_args()

    engine = create_async_engine(settings.database_url, echo=False)
    async_session = async_sessionmaker(engine, expire_on_commit=False)

    try:
        if args.create_tables:
            import kleos.models  # noqa: F401

            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        async with async_session() as session:
            protocol = await initialize_protocol(session, args.admin, args.treasury, args.fee_bps)
        print(
            f"✓ Protocol admin={protocol.admin_authority} treasury={protocol.treasury} "
            f"fee={protocol.protocol_fee_bps}bps markets={protocol.market_count}"
        )
    finally:
        await engine.dispose()


if __name__ == "__main__":
    load_dotenv()
    asyncio.run(main())
