"""Derive signals for a symbol from already cached history."""

from __future__ import annotations

import argparse
import asyncio
from datetime import date

from signal_desk.config import get_settings
from signal_desk.core.logging import setup_logging
from signal_desk.db.store import Store
from signal_desk.signals.engine import DerivationEngine


async def _run(symbol: str, as_of: date | None) -> None:
    settings = get_settings()
    async with Store(settings.database_url, timeout_seconds=settings.store_timeout_seconds) as store:
        result = await DerivationEngine(store, settings).derive(symbol, as_of=as_of)
    for family, status in result.families.items():
        print(f"{family:<18} {status}")
    print(f"{len(result.signals)} signals for {result.symbol} on {result.signal_date}, {result.inserted} new")


def main() -> None:
    parser = argparse.ArgumentParser(description="Derive signals for a symbol")
    parser.add_argument("--symbol", required=True)
    parser.add_argument("--as-of", type=date.fromisoformat, default=None)
    args = parser.parse_args()
    setup_logging()
    asyncio.run(_run(args.symbol, args.as_of))


if __name__ == "__main__":
    main()
