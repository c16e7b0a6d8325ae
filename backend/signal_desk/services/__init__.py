"""Batch orchestration services."""
