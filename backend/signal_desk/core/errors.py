"""Error taxonomy shared by the synchroniser, derivation engine and orchestrator."""

from __future__ import annotations


class SignalDeskError(RuntimeError):
    """Base class for all domain errors."""


class ConfigurationError(SignalDeskError):
    """Raised when a descriptor, engine or batch request is set up incorrectly."""


class UpstreamFetchError(SignalDeskError):
    """Raised when the upstream provider fails or returns an unusable payload."""


class StoreError(SignalDeskError):
    """Raised when a read or write against the persistent store fails."""


class InsufficientDataError(SignalDeskError):
    """Raised when there is not enough history to evaluate an indicator or rule."""


__all__ = [
    "SignalDeskError",
    "ConfigurationError",
    "UpstreamFetchError",
    "StoreError",
    "InsufficientDataError",
]
