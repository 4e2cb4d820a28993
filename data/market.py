"""Market data provider: 24h ticker snapshots per symbol."""

from dataclasses import dataclass
from typing import Any, Protocol
import aiohttp
import structlog
from config.settings import settings
from utils.formatting import safe_number
from utils.retry import async_retry
from utils.time_utils import now_ms

log = structlog.get_logger(__name__)


class MarketDataError(Exception):
    """Raised when a snapshot cannot be fetched or parsed."""

    def __init__(self, symbol: str, message: str) -> None:
        self.symbol = symbol
        super().__init__(message)


@dataclass(frozen=True)
class MarketSnapshot:
    """Price/volume state of one symbol at fetch time."""
    symbol: str
    price: float
    volume: float = 0.0
    price_change_percent: float = 0.0
    timestamp: int = 0


class MarketDataProvider(Protocol):
    async def get_current_price(self, symbol: str) -> MarketSnapshot: ...


class BinanceMarketData:
    """Binance public REST 24h ticker collector."""

    api_name = "binance"

    def __init__(self, base_url: str | None = None, timeout_seconds: float = 10.0) -> None:
        self._base_url = (base_url or settings.market_data_url).rstrip("/")
        self._timeout = timeout_seconds
        self._session: aiohttp.ClientSession | None = None

    async def get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                headers={"User-Agent": "MarketNotifier/0.1"},
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    @async_retry(max_retries=2, base_delay=1.0, exceptions=(aiohttp.ClientError, TimeoutError))
    async def _request(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        session = await self.get_session()
        async with session.get(f"{self._base_url}{path}", params=params) as resp:
            if resp.status == 429:
                log.warning("rate_limited_by_server", api=self.api_name, path=path)
                raise aiohttp.ClientError("Rate limited")
            if resp.status in (400, 404):
                raise MarketDataError(params.get("symbol", ""), f"HTTP {resp.status} for {path}")
            resp.raise_for_status()
            return await resp.json()

    async def get_current_price(self, symbol: str) -> MarketSnapshot:
        """Fetch the 24h rolling ticker for ``symbol``."""
        data = await self._request("/ticker/24hr", {"symbol": symbol})
        return parse_ticker(symbol, data)


def parse_ticker(symbol: str, data: dict[str, Any]) -> MarketSnapshot:
    """Turn a 24h ticker payload into a snapshot. Raises on a missing price."""
    price = safe_number(data.get("lastPrice", data.get("price")))
    if price <= 0:
        raise MarketDataError(symbol, f"No usable price for {symbol}")
    return MarketSnapshot(
        symbol=symbol,
        price=price,
        volume=safe_number(data.get("volume")),
        price_change_percent=safe_number(data.get("priceChangePercent")),
        timestamp=int(safe_number(data.get("closeTime"), default=now_ms())),
    )
