"""Finnhub REST client: daily/weekly candles, company news, profile and quote."""

import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from stock_events.core.errors import ProviderError, RateLimited
from stock_events.core.logger import logger
from stock_events.core.rate_limit import RateLimiter
from stock_events.core.retry import with_retries
from stock_events.models.datatypes import Bar, CompanyProfile, NewsArticle, sort_bars
from stock_events.providers.base import BarProvider, NewsProvider, ProfileProvider, QuoteProvider

_BASE_URL = "https://finnhub.io/api/v1"
_SECONDS_PER_DAY = 86400


class FinnhubProvider(BarProvider, NewsProvider, ProfileProvider, QuoteProvider):
    """Finnhub implementation of every provider interface the pipeline uses.

    Args:
        api_key: Finnhub API token.
        rate_limiter: Shared limiter (provider key ``"finnhub"``).
        days_back: Calendar days of candle history requested.
        timeout: Per-request timeout in seconds.
        clock: Returns the current UNIX time (candle window end).
    """

    name = "finnhub"

    def __init__(
        self,
        api_key: str,
        rate_limiter: Optional[RateLimiter] = None,
        days_back: int = 730,
        timeout: float = 15,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api_key = api_key
        self.rate_limiter = rate_limiter or RateLimiter()
        self.days_back = days_back
        self.timeout = timeout
        self.clock = clock

    # ── transport ────────────────────────────────────────────────────────────

    @with_retries(max_retries=2, initial_delay=1, retry_on=(requests.RequestException,))
    def _request(self, endpoint: str, params: Dict[str, Any], symbol: str) -> requests.Response:
        self.rate_limiter.acquire(self.name, endpoint, symbol)
        return requests.get(
            f"{_BASE_URL}/{endpoint}",
            params={**params, "token": self.api_key},
            timeout=self.timeout,
        )

    def _get(self, endpoint: str, params: Dict[str, Any], symbol: str) -> Any:
        """GET ``endpoint`` and return decoded JSON; 429 → RateLimited, other non-200 → ProviderError."""
        try:
            resp = self._request(endpoint, params, symbol)
        except requests.RequestException as exc:
            raise ProviderError(self.name, f"Finnhub request failed for {symbol}: {exc}") from exc

        if resp.status_code == 429:
            raise RateLimited(self.name, message=f"Finnhub rate limit hit on {endpoint} for {symbol}")
        if resp.status_code != 200:
            raise ProviderError(
                self.name,
                f"Finnhub API error {resp.status_code} on {endpoint}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderError(self.name, f"Finnhub returned invalid JSON on {endpoint}") from exc

    # ── bars ─────────────────────────────────────────────────────────────────

    def _candles(self, symbol: str, resolution: str) -> List[Bar]:
        now = int(self.clock())
        params = {
            "symbol": symbol,
            "resolution": resolution,
            "from": now - self.days_back * _SECONDS_PER_DAY,
            "to": now,
        }
        try:
            payload = self._get("stock/candle", params, symbol)
        except ProviderError as exc:
            # Some plans do not include candles; treat as "no data" so the caller can move on.
            if exc.status_code in (401, 403):
                logger.warning(f"FinnhubProvider: candles not available on this plan for {symbol}")
                return []
            raise

        if not isinstance(payload, dict) or payload.get("s") != "ok":
            logger.warning(f"FinnhubProvider: no {resolution} candles returned for {symbol}")
            return []
        try:
            return sort_bars(
                Bar(
                    date=datetime.fromtimestamp(ts, tz=timezone.utc).date(),
                    open=float(o), high=float(h), low=float(lo), close=float(c), volume=float(v),
                )
                for ts, o, h, lo, c, v in zip(
                    payload["t"], payload["o"], payload["h"], payload["l"], payload["c"], payload["v"]
                )
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(self.name, f"Malformed candle payload for {symbol}: {exc}") from exc

    def get_daily(self, symbol: str) -> List[Bar]:
        return self._candles(symbol, "D")

    def get_weekly(self, symbol: str) -> List[Bar]:
        return self._candles(symbol, "W")

    # ── news ─────────────────────────────────────────────────────────────────

    def get_company_news(self, symbol: str, from_date: date, to_date: date) -> List[NewsArticle]:
        logger.info(f"FinnhubProvider: fetching news for {symbol} {from_date} → {to_date}")
        payload = self._get(
            "company-news",
            {"symbol": symbol, "from": from_date.isoformat(), "to": to_date.isoformat()},
            symbol,
        )
        if not isinstance(payload, list):
            raise ProviderError(self.name, f"Malformed company-news payload for {symbol}")

        articles = []
        for item in payload:
            headline = (item.get("headline") or "").strip()
            timestamp = item.get("datetime")
            if not headline or not isinstance(timestamp, (int, float)):
                continue
            articles.append(
                NewsArticle(
                    id=str(item.get("id", "")),
                    headline=headline,
                    summary=item.get("summary") or "",
                    source=item.get("source") or "Finnhub",
                    url=item.get("url") or "",
                    published_at=datetime.fromtimestamp(timestamp, tz=timezone.utc),
                )
            )
        return articles

    # ── enrichment ───────────────────────────────────────────────────────────

    def get_profile(self, symbol: str) -> Optional[CompanyProfile]:
        payload = self._get("stock/profile2", {"symbol": symbol}, symbol)
        if not isinstance(payload, dict) or not payload.get("name"):
            return None
        market_cap = payload.get("marketCapitalization")
        return CompanyProfile(
            name=payload["name"],
            industry=payload.get("finnhubIndustry"),
            # Finnhub reports market cap in millions
            market_cap=market_cap * 1e6 if market_cap else None,
        )

    def get_quote(self, symbol: str) -> Optional[float]:
        payload = self._get("quote", {"symbol": symbol}, symbol)
        if not isinstance(payload, dict):
            return None
        price = payload.get("c")
        return float(price) if price else None
