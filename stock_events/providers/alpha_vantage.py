"""Alpha Vantage REST client for daily and weekly bars.

Alpha Vantage answers throttled requests with HTTP 200 and a ``Note`` or
``Information`` field instead of data; both are mapped to :class:`RateLimited`.
"""

from typing import Any, Dict, List, Optional

import requests

from stock_events.core.errors import ProviderError, RateLimited
from stock_events.core.logger import logger
from stock_events.core.rate_limit import RateLimiter
from stock_events.core.retry import with_retries
from stock_events.models.datatypes import Bar, sort_bars
from stock_events.providers.base import BarProvider

_BASE_URL = "https://www.alphavantage.co/query"


def parse_series(payload: Dict[str, Any], series_key: str, symbol: str) -> List[Bar]:
    """Convert an Alpha Vantage time-series object into ascending bars."""
    series = payload.get(series_key)
    if not isinstance(series, dict):
        raise ProviderError("alpha_vantage", f"Alpha Vantage payload for {symbol} lacks '{series_key}'")
    try:
        return sort_bars(
            Bar.from_dict({
                "date": day,
                "open": values["1. open"],
                "high": values["2. high"],
                "low": values["3. low"],
                "close": values["4. close"],
                "volume": values.get("5. volume", 0),
            })
            for day, values in series.items()
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ProviderError("alpha_vantage", f"Malformed Alpha Vantage bar for {symbol}: {exc}") from exc


class AlphaVantageProvider(BarProvider):
    """Primary bar provider. Free tier: 25 requests/day, 5/minute.

    Args:
        api_key: Alpha Vantage API key.
        rate_limiter: Shared limiter (provider key ``"alpha_vantage"``).
        output_size: ``"compact"`` (last ~100 daily bars) or ``"full"``.
        timeout: Per-request timeout in seconds.
    """

    name = "alpha_vantage"

    def __init__(
        self,
        api_key: str,
        rate_limiter: Optional[RateLimiter] = None,
        output_size: str = "compact",
        timeout: float = 15,
    ) -> None:
        self.api_key = api_key
        self.rate_limiter = rate_limiter or RateLimiter()
        self.output_size = output_size
        self.timeout = timeout

    @with_retries(max_retries=2, initial_delay=2, retry_on=(requests.RequestException,))
    def _request(self, params: Dict[str, str]) -> requests.Response:
        self.rate_limiter.acquire(self.name, params["function"], params.get("symbol"))
        return requests.get(_BASE_URL, params={**params, "apikey": self.api_key}, timeout=self.timeout)

    def _query(self, function: str, symbol: str, **extra: str) -> Dict[str, Any]:
        logger.info(f"AlphaVantageProvider: {function} for {symbol}")
        try:
            resp = self._request({"function": function, "symbol": symbol, **extra})
        except requests.RequestException as exc:
            raise ProviderError(self.name, f"Alpha Vantage request failed for {symbol}: {exc}") from exc

        if resp.status_code != 200:
            raise ProviderError(
                self.name,
                f"Alpha Vantage API error: {resp.status_code} {resp.reason}",
                status_code=resp.status_code,
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ProviderError(self.name, f"Alpha Vantage returned invalid JSON for {symbol}") from exc

        if not isinstance(payload, dict):
            raise ProviderError(self.name, f"Unexpected Alpha Vantage payload for {symbol}")
        if payload.get("Note"):
            raise RateLimited(self.name, message=f"Alpha Vantage rate limit: {payload['Note']}")
        if payload.get("Information"):
            raise RateLimited(self.name, message=f"Alpha Vantage: {payload['Information']}")
        if payload.get("Error Message"):
            raise ProviderError(self.name, f"Alpha Vantage error: {payload['Error Message']}")
        return payload

    def get_daily(self, symbol: str) -> List[Bar]:
        payload = self._query("TIME_SERIES_DAILY", symbol, outputsize=self.output_size)
        return parse_series(payload, "Time Series (Daily)", symbol)

    def get_weekly(self, symbol: str) -> List[Bar]:
        payload = self._query("TIME_SERIES_WEEKLY", symbol)
        return parse_series(payload, "Weekly Time Series", symbol)
