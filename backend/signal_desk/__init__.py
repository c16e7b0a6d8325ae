"""Signal Desk: freshness-gated market data cache and signal derivation."""

__version__ = "0.1.0"
