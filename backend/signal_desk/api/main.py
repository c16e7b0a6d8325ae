"""Entrypoint for the Signal Desk FastAPI application."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from signal_desk.api.routes import api_router
from signal_desk.config import AppSettings, get_settings
from signal_desk.core.logging import setup_logging
from signal_desk.core.telemetry import instrument_engine, setup_telemetry
from signal_desk.db.store import Store
from signal_desk.providers.fmp import FMPClient
from signal_desk.schemas import HealthResponse
from signal_desk.services.orchestrator import BatchOrchestrator, default_symbol_source
from signal_desk.signals.engine import DerivationEngine
from signal_desk.sync.synchronizer import Synchronizer, UpstreamSource

logger = logging.getLogger(__name__)


def create_app(
    store: Store | None = None,
    upstream: UpstreamSource | None = None,
    settings: AppSettings | None = None,
) -> FastAPI:
    """Build the application; the store and upstream client are created from settings when omitted."""

    settings = settings or get_settings()
    store_instance = store or Store(settings.database_url, timeout_seconds=settings.store_timeout_seconds)

    @asynccontextmanager
    async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned_client: FMPClient | None = None
        source = upstream
        if source is None:
            owned_client = FMPClient(
                settings.fmp_api_key,
                requests_per_minute=settings.fmp_requests_per_minute,
                base_url=settings.fmp_base_url,
                timeout=settings.upstream_timeout_seconds,
            )
            source = owned_client

        await store_instance.open()
        await store_instance.create_all()
        instrument_engine(store_instance.engine)

        synchronizer = Synchronizer(store_instance, source, settings=settings)
        engine = DerivationEngine(store_instance, settings)
        app.state.settings = settings
        app.state.store = store_instance
        app.state.synchronizer = synchronizer
        app.state.engine = engine
        app.state.orchestrator = BatchOrchestrator(
            synchronizer,
            engine,
            default_symbol_source(store_instance, settings),
            settings,
        )
        logger.info("Signal Desk started with settings %s", settings.dict_for_logging())
        try:
            yield
        finally:
            if owned_client is not None:
                await owned_client.aclose()
            await store_instance.close()

    setup_logging()
    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=_lifespan)
    app.include_router(api_router)
    setup_telemetry(settings, app=app)

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health() -> HealthResponse:
        url = store_instance.engine.url.render_as_string(hide_password=True)
        return HealthResponse(status="ok", service=settings.app_name, database_url=url)

    return app


app = create_app()


__all__ = ["app", "create_app"]
