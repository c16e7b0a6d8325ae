"""Freshness-gated cache-through synchroniser.

One generic implementation serves every entity in the descriptor table:

1. read the latest cached row for the symbol;
2. return it unchanged while ``now - modified_at`` is inside the TTL;
3. otherwise fetch upstream, validate, upsert with ``modified_at = now`` and
   read the written row back.

Full-collection entities (the stock screener) have no per-symbol fetch: the
whole set is refreshed in one call once the newest ``modified_at`` in the
table falls outside the TTL.

An upstream failure falls back to the stale row when one exists. Concurrent
refreshes of the same symbol are not coordinated; the upsert makes the
duplicate work harmless.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Protocol

from signal_desk.config import AppSettings, get_settings
from signal_desk.core.errors import ConfigurationError, StoreError, UpstreamFetchError
from signal_desk.core.telemetry import get_tracer
from signal_desk.db.store import Store
from signal_desk.sync.descriptors import EntityDescriptor, build_descriptors

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

Clock = Callable[[], datetime]


class UpstreamSource(Protocol):
    async def fetch(
        self,
        path: str,
        *,
        symbol: str | None = None,
        params: Mapping[str, Any] | None = None,
        symbol_location: str = "param",
    ) -> Any:
        ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalise_symbol(symbol: str) -> str:
    cleaned = (symbol or "").strip().upper()
    if not cleaned:
        raise ConfigurationError("Symbol must be a non-empty string")
    return cleaned


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything the synchroniser writes is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Synchronizer:
    """Serve cached entity rows no older than their descriptor's TTL."""

    def __init__(
        self,
        store: Store,
        upstream: UpstreamSource,
        descriptors: Mapping[str, EntityDescriptor] | None = None,
        *,
        settings: AppSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._upstream = upstream
        self._descriptors = dict(descriptors if descriptors is not None else build_descriptors(self._settings))
        if not self._descriptors:
            raise ConfigurationError("Synchronizer requires at least one entity descriptor")
        for descriptor in self._descriptors.values():
            descriptor.validate()
        self._clock = clock or utcnow
        self._upstream_timeout = self._settings.upstream_timeout_seconds

    @property
    def entities(self) -> list[str]:
        return list(self._descriptors)

    def descriptor(self, entity: str) -> EntityDescriptor:
        try:
            return self._descriptors[entity]
        except KeyError as exc:
            raise ConfigurationError(f"Unknown entity {entity!r}") from exc

    async def ensure_fresh(self, entity: str, symbol: str) -> dict[str, Any]:
        """Return the latest row for ``symbol``, refreshing it from upstream when stale.

        Single-record entities return their one row; history entities return
        the row with the greatest ``latest_sort_field``. For full-collection
        entities the whole collection is brought up to date first.
        """

        descriptor = self.descriptor(entity)
        symbol = normalise_symbol(symbol)
        if descriptor.full_collection:
            await self.ensure_collection(entity)
            row = await self._latest(descriptor, symbol)
            if row is None:
                raise UpstreamFetchError(f"No {descriptor.name} data found for {symbol}")
            return descriptor.project(row)

        with tracer.start_as_current_span("sync.ensure_fresh") as span:
            span.set_attribute("sync.entity", descriptor.name)
            span.set_attribute("sync.symbol", symbol)

            cached = await self._latest(descriptor, symbol)
            now = self._clock()
            if cached is not None and self._is_fresh(descriptor, cached, now):
                span.set_attribute("sync.cache_hit", True)
                logger.debug("Cache hit for %s %s", descriptor.name, symbol)
                return descriptor.project(cached)

            span.set_attribute("sync.cache_hit", False)
            try:
                rows = await self._fetch_rows(descriptor, symbol, now)
            except UpstreamFetchError as exc:
                if cached is None:
                    logger.error("Fetching %s for %s failed with no cached fallback: %s", descriptor.name, symbol, exc)
                    raise
                logger.warning("Serving stale %s for %s after fetch failure: %s", descriptor.name, symbol, exc)
                span.set_attribute("sync.stale_fallback", True)
                return descriptor.project(cached)

            await self._store.upsert(descriptor.model, rows, descriptor.unique_columns)
            logger.info("Refreshed %s for %s (%s rows)", descriptor.name, symbol, len(rows))

            written = await self._latest(descriptor, symbol)
            if written is None:
                raise StoreError(f"{descriptor.name} for {symbol} was not readable after upsert")
            return descriptor.project(written)

    async def ensure_collection(self, entity: str, limit: int | None = None) -> list[dict[str, Any]]:
        """Return the cached full collection ordered by symbol, refetching all of it when stale."""

        descriptor = self.descriptor(entity)
        if not descriptor.full_collection:
            raise ConfigurationError(f"{descriptor.name} is fetched per symbol; use ensure_fresh")
        with tracer.start_as_current_span("sync.ensure_collection") as span:
            span.set_attribute("sync.entity", descriptor.name)

            newest = await self._store.find_latest(
                descriptor.model,
                filters={},
                order_by="modified_at",
                columns=["modified_at"],
            )
            now = self._clock()
            if newest is not None and self._is_fresh(descriptor, newest, now):
                span.set_attribute("sync.cache_hit", True)
                logger.debug("Collection cache hit for %s", descriptor.name)
                return await self._collection(descriptor, limit)

            span.set_attribute("sync.cache_hit", False)
            try:
                rows = await self._fetch_rows(descriptor, None, now)
            except UpstreamFetchError as exc:
                if newest is None:
                    logger.error("Fetching %s failed with no cached fallback: %s", descriptor.name, exc)
                    raise
                logger.warning("Serving stale %s collection after fetch failure: %s", descriptor.name, exc)
                span.set_attribute("sync.stale_fallback", True)
                return await self._collection(descriptor, limit)

            await self._store.upsert(descriptor.model, rows, descriptor.unique_columns)
            logger.info("Refreshed %s collection (%s rows)", descriptor.name, len(rows))
            return await self._collection(descriptor, limit)

    async def history(self, entity: str, symbol: str, limit: int | None = None) -> list[dict[str, Any]]:
        """Ensure freshness, then return every cached row for ``symbol``, most recent first."""

        descriptor = self.descriptor(entity)
        if descriptor.single_record:
            raise ConfigurationError(f"{descriptor.name} keeps a single record per symbol; use ensure_fresh")
        symbol = normalise_symbol(symbol)
        await self.ensure_fresh(entity, symbol)
        rows = await self._store.find(
            descriptor.model,
            filters={"symbol": symbol},
            order_by=descriptor.order_field,
            descending=True,
            limit=limit,
        )
        return [descriptor.project(row) for row in rows]

    async def list_cached(self, entity: str, limit: int = 1000) -> list[dict[str, Any]]:
        """List cached rows across symbols with the descriptor's list projection; never calls upstream."""

        descriptor = self.descriptor(entity)
        columns = descriptor.list_projection or descriptor.projection
        order = ["symbol", descriptor.latest_sort_field] if descriptor.latest_sort_field else "symbol"
        return await self._store.find(
            descriptor.model,
            order_by=order,
            limit=limit,
            columns=list(columns) if columns else None,
        )

    async def _collection(self, descriptor: EntityDescriptor, limit: int | None) -> list[dict[str, Any]]:
        rows = await self._store.find(descriptor.model, order_by="symbol", limit=limit)
        return [descriptor.project(row) for row in rows]

    async def _latest(self, descriptor: EntityDescriptor, symbol: str) -> dict[str, Any] | None:
        return await self._store.find_latest(
            descriptor.model,
            filters={"symbol": symbol},
            order_by=descriptor.order_field,
        )

    @staticmethod
    def _is_fresh(descriptor: EntityDescriptor, row: Mapping[str, Any], now: datetime) -> bool:
        modified_at = row.get("modified_at")
        if modified_at is None:
            return False
        return as_utc(now) - as_utc(modified_at) < descriptor.ttl

    async def _fetch_items(self, descriptor: EntityDescriptor, symbol: str | None) -> list[Any]:
        """Fetch and unwrap the raw items; any upstream or payload failure becomes :class:`UpstreamFetchError`."""

        target = symbol or "the full collection"
        try:
            payload = await asyncio.wait_for(
                self._upstream.fetch(
                    descriptor.path,
                    symbol=symbol,
                    params=descriptor.params,
                    symbol_location=descriptor.symbol_location,
                ),
                timeout=self._upstream_timeout,
            )
            items = descriptor.extract(payload)
            if descriptor.process_raw is not None:
                items = descriptor.process_raw(items)
        except UpstreamFetchError:
            raise
        except asyncio.TimeoutError as exc:
            raise UpstreamFetchError(f"{descriptor.name} request for {target} timed out") from exc
        except Exception as exc:
            raise UpstreamFetchError(f"{descriptor.name} request for {target} failed: {exc!r}") from exc
        return items

    async def _fetch_rows(
        self,
        descriptor: EntityDescriptor,
        symbol: str | None,
        now: datetime,
    ) -> list[dict[str, Any]]:
        """Validate fetched items into upsert rows stamped with ``now``.

        Per-symbol fetches store every row under the requested symbol; a
        full-collection fetch keeps each item's own symbol and drops items
        without one.
        """

        items = await self._fetch_items(descriptor, symbol)
        target = symbol or "the full collection"

        rows: dict[tuple[Any, ...], dict[str, Any]] = {}
        skipped = 0
        for item in items:
            result = descriptor.transform(item, now)
            if not result.ok or result.row is None:
                skipped += 1
                logger.warning("Skipping %s item for %s: %s", descriptor.name, target, result.error)
                continue
            row = result.row
            if symbol is None:
                if not row.get("symbol"):
                    skipped += 1
                    logger.warning("Skipping %s item without a symbol", descriptor.name)
                    continue
            else:
                if row.get("symbol") not in (None, symbol):
                    logger.warning(
                        "Upstream returned symbol %s for %s request %s; keeping the requested symbol",
                        row["symbol"],
                        descriptor.name,
                        symbol,
                    )
                row["symbol"] = symbol
            row["modified_at"] = now
            key = tuple(row.get(column) for column in descriptor.unique_columns)
            rows[key] = row

        if not rows:
            raise UpstreamFetchError(f"No valid {descriptor.name} data found for {target}")
        if skipped:
            logger.info("Dropped %s invalid %s items for %s", skipped, descriptor.name, target)
        return list(rows.values())


__all__ = ["Clock", "Synchronizer", "UpstreamSource", "as_utc", "normalise_symbol", "utcnow"]
