"""CLI wrapper for one orchestrated sync + signal derivation batch."""

from __future__ import annotations

import argparse
import asyncio
import json

from signal_desk.config import get_settings
from signal_desk.core.logging import setup_logging
from signal_desk.db.store import Store
from signal_desk.providers.fmp import FMPClient
from signal_desk.services.orchestrator import BatchOrchestrator, StaticSymbolSource, default_symbol_source
from signal_desk.signals.engine import DerivationEngine
from signal_desk.sync.synchronizer import Synchronizer


async def _run(batch: int, size: int | None, symbols: list[str]) -> None:
    settings = get_settings()
    async with Store(settings.database_url, timeout_seconds=settings.store_timeout_seconds) as store:
        await store.create_all()
        async with FMPClient() as client:
            synchronizer = Synchronizer(store, client, settings=settings)
            engine = DerivationEngine(store, settings)
            source = StaticSymbolSource(symbols) if symbols else default_symbol_source(store, settings)
            orchestrator = BatchOrchestrator(synchronizer, engine, source, settings)
            report = await orchestrator.run(batch=batch, size=size)
    print(json.dumps(report.as_dict(), indent=2, default=str))


def main() -> None:
    parser = argparse.ArgumentParser(description="Refresh cached market data and derive signals for one batch")
    parser.add_argument("--batch", type=int, default=1, help="1-based batch number")
    parser.add_argument("--size", type=int, default=None, help="symbols per batch (defaults to BATCH_SIZE)")
    parser.add_argument("--symbol", action="append", default=[], help="process these symbols instead of the configured source")
    args = parser.parse_args()
    setup_logging()
    asyncio.run(_run(args.batch, args.size, args.symbol))


if __name__ == "__main__":
    main()
