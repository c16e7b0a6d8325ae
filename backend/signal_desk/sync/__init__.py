"""Freshness-gated synchronisation of upstream entities into the store."""
