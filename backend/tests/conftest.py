import asyncio
import inspect
import pathlib
import sys
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Mapping

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from signal_desk.config import AppSettings  # noqa: E402
from signal_desk.core.errors import UpstreamFetchError  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        names = pyfuncitem._fixtureinfo.argnames
        kwargs = {name: pyfuncitem.funcargs[name] for name in names}
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            loop.run_until_complete(test_function(**kwargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


class StubUpstream:
    """In-memory upstream keyed by path; values may be payloads or exceptions to raise."""

    def __init__(self, payloads: Mapping[str, Any] | None = None) -> None:
        self.payloads: dict[str, Any] = dict(payloads or {})
        self.calls: list[dict[str, Any]] = []

    async def fetch(
        self,
        path: str,
        *,
        symbol: str | None = None,
        params: Mapping[str, Any] | None = None,
        symbol_location: str = "param",
    ) -> Any:
        self.calls.append({"path": path, "symbol": symbol, "params": dict(params or {})})
        if path not in self.payloads:
            raise UpstreamFetchError(f"{path} returned HTTP 404")
        payload = self.payloads[path]
        if isinstance(payload, Exception):
            raise payload
        if callable(payload):
            return payload(symbol)
        return payload

    def calls_for(self, path: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["path"] == path]


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def trading_days(count: int, end: date = date(2024, 6, 28)) -> list[date]:
    """``count`` weekdays ending at ``end``, oldest first."""

    days: list[date] = []
    current = end
    while len(days) < count:
        if current.weekday() < 5:
            days.append(current)
        current -= timedelta(days=1)
    return days[::-1]


def price_items(symbol: str, closes: list[float], end: date = date(2024, 6, 28)) -> list[dict[str, Any]]:
    """Provider-shaped end-of-day items, most recent first like the live endpoint."""

    items = [
        {
            "symbol": symbol,
            "date": day.isoformat(),
            "open": close,
            "high": close + 1,
            "low": close - 1,
            "close": close,
            "volume": 1_000_000,
        }
        for day, close in zip(trading_days(len(closes), end), closes)
    ]
    return items[::-1]


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        database_url="sqlite+aiosqlite:///:memory:",
        fmp_api_key="test",
        symbols=[],
        cron_secret=None,
        telemetry_enabled=False,
        max_concurrency=3,
        batch_size=2,
    )


@pytest.fixture
def database_url(tmp_path: pathlib.Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'signal_desk.db'}"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 7, 1, 14, 0, tzinfo=timezone.utc))


@pytest.fixture
def upstream() -> StubUpstream:
    return StubUpstream()


@pytest.fixture
def make_prices() -> Callable[..., list[dict[str, Any]]]:
    return price_items
