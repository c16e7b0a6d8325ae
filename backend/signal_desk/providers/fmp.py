"""Financial Modeling Prep client used by the synchroniser."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Deque, Literal, Mapping

import httpx

from signal_desk.config import get_settings
from signal_desk.core.errors import UpstreamFetchError

logger = logging.getLogger(__name__)

SymbolLocation = Literal["param", "path"]

_WINDOW_SECONDS = 60.0
_ERROR_KEYS = ("Error Message", "error")


class FMPClient:
    """Throttled FMP client returning decoded JSON payloads.

    Every failure mode (transport error, timeout, status >= 400, provider
    error payload, undecodable body) is raised as :class:`UpstreamFetchError`.
    """

    def __init__(
        self,
        api_key: str | None = None,
        *,
        requests_per_minute: int | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | Any | None = None,
    ) -> None:
        settings = get_settings()
        self._api_key = api_key or settings.fmp_api_key
        self._requests_per_minute = requests_per_minute or settings.fmp_requests_per_minute
        self._base_url = (base_url or settings.fmp_base_url).rstrip("/")
        self._timeout = timeout or settings.upstream_timeout_seconds
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._timeout)
        self._calls: Deque[float] = deque()
        self._lock = asyncio.Lock()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "FMPClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _throttle(self) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            now = loop.time()
            while self._calls and now - self._calls[0] >= _WINDOW_SECONDS:
                self._calls.popleft()
            if len(self._calls) >= self._requests_per_minute:
                wait_for = _WINDOW_SECONDS - (now - self._calls[0])
                logger.info("FMP rate limit reached, sleeping %.1fs", wait_for)
                await asyncio.sleep(wait_for)
                now = loop.time()
                while self._calls and now - self._calls[0] >= _WINDOW_SECONDS:
                    self._calls.popleft()
            self._calls.append(now)

    async def fetch(
        self,
        path: str,
        *,
        symbol: str | None = None,
        params: Mapping[str, Any] | None = None,
        symbol_location: SymbolLocation = "param",
    ) -> Any:
        """GET ``path`` and return the decoded JSON payload."""

        query: dict[str, Any] = dict(params or {})
        path = path.strip("/")
        if symbol is not None:
            if symbol_location == "path":
                path = f"{path}/{symbol}"
            else:
                query["symbol"] = symbol
        url = f"{self._base_url}/{path}"
        query["apikey"] = self._api_key

        await self._throttle()
        try:
            response = await self._client.get(url, params=query, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            raise UpstreamFetchError(f"Request to {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(f"Request to {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise UpstreamFetchError(f"{path} returned HTTP {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamFetchError(f"{path} returned a non-JSON body") from exc

        if isinstance(payload, dict):
            for key in _ERROR_KEYS:
                if key in payload:
                    raise UpstreamFetchError(f"{path} error: {payload[key]}")
        logger.debug("Fetched %s for %s", path, symbol or "-")
        return payload


__all__ = ["FMPClient", "SymbolLocation"]
