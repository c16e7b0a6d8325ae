"""FastAPI dependencies resolving the components attached to the application."""

from __future__ import annotations

import secrets

from fastapi import Header, HTTPException, Request, status

from signal_desk.services.orchestrator import BatchOrchestrator
from signal_desk.signals.engine import DerivationEngine
from signal_desk.sync.synchronizer import Synchronizer


def get_synchronizer(request: Request) -> Synchronizer:
    return request.app.state.synchronizer


def get_engine(request: Request) -> DerivationEngine:
    return request.app.state.engine


def get_orchestrator(request: Request) -> BatchOrchestrator:
    return request.app.state.orchestrator


def require_cron_secret(request: Request, authorization: str | None = Header(default=None)) -> None:
    """Reject batch triggers without the configured bearer secret; open when no secret is set."""

    expected = request.app.state.settings.cron_secret
    if not expected:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
