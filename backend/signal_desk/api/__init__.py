"""HTTP surface for triggering batches and reading cached data."""
