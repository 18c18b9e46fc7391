"""Market data integration via yfinance."""

from typing import List, Optional

import pandas as pd
import yfinance as yf

from stock_events.core.errors import ProviderError
from stock_events.core.logger import logger
from stock_events.core.rate_limit import RateLimiter
from stock_events.core.retry import with_retries
from stock_events.models.datatypes import Bar, CompanyProfile, sort_bars
from stock_events.providers.base import BarProvider, ProfileProvider, QuoteProvider


def frame_to_bars(hist: pd.DataFrame) -> List[Bar]:
    """Convert a yfinance ``history()`` frame into ascending :class:`Bar` objects.

    Rows without a close are dropped; missing volume becomes 0.
    """
    if hist is None or hist.empty:
        return []

    hist = hist.reset_index()
    date_col = "Date" if "Date" in hist.columns else hist.columns[0]
    # In yfinance, Date is often timezone-aware. We remove the tz before taking the day.
    dates = pd.to_datetime(hist[date_col])
    if getattr(dates.dt, "tz", None) is not None:
        dates = dates.dt.tz_localize(None)
    hist[date_col] = dates.dt.date

    hist["Close"] = pd.to_numeric(hist["Close"], errors="coerce")
    if "Volume" in hist.columns:
        hist["Volume"] = pd.to_numeric(hist["Volume"], errors="coerce").fillna(0)
    else:
        hist["Volume"] = 0.0
    hist = hist.dropna(subset=["Close"])

    return sort_bars(
        Bar(
            date=row[date_col],
            open=float(row.get("Open", row["Close"])),
            high=float(row.get("High", row["Close"])),
            low=float(row.get("Low", row["Close"])),
            close=float(row["Close"]),
            volume=float(row["Volume"]),
        )
        for _, row in hist.iterrows()
    )


class YFinanceProvider(BarProvider, ProfileProvider, QuoteProvider):
    """Yahoo Finance implementation for bars, company profile and quote.

    Args:
        rate_limiter: Shared limiter (provider key ``"yfinance"``).
        suffix: Exchange suffix appended to every symbol (``".NS"`` for NSE).
        period: History span requested for bars.
    """

    name = "yfinance"

    def __init__(self, rate_limiter: Optional[RateLimiter] = None, suffix: str = "", period: str = "2y") -> None:
        self.rate_limiter = rate_limiter or RateLimiter()
        self.suffix = suffix
        self.period = period

    def _ticker(self, symbol: str) -> "yf.Ticker":
        return yf.Ticker(f"{symbol}{self.suffix}")

    @with_retries(max_retries=2, initial_delay=2, retry_on=(ProviderError,))
    def _history(self, symbol: str, interval: str) -> List[Bar]:
        self.rate_limiter.acquire(self.name, f"history:{interval}", symbol)
        logger.info(f"YFinanceProvider: fetching {interval} history for {symbol}{self.suffix}")
        try:
            hist = self._ticker(symbol).history(period=self.period, interval=interval, auto_adjust=True)
        except Exception as exc:
            raise ProviderError(self.name, f"yfinance history failed for {symbol}: {exc}") from exc

        bars = frame_to_bars(hist)
        if not bars:
            logger.warning(f"YFinanceProvider: no {interval} data returned for {symbol}")
        return bars

    def get_daily(self, symbol: str) -> List[Bar]:
        return self._history(symbol, "1d")

    def get_weekly(self, symbol: str) -> List[Bar]:
        return self._history(symbol, "1wk")

    def get_profile(self, symbol: str) -> Optional[CompanyProfile]:
        """Company name and industry from ``Ticker.info``; None on any failure."""
        try:
            self.rate_limiter.acquire(self.name, "info", symbol)
            info: dict = self._ticker(symbol).info or {}
        except Exception as exc:
            logger.warning(f"YFinanceProvider: profile lookup failed for {symbol}: {exc}")
            return None

        name = (info.get("longName") or info.get("shortName") or "").strip()
        if not name:
            return None
        return CompanyProfile(name=name, industry=info.get("industry"), market_cap=info.get("marketCap"))

    def get_quote(self, symbol: str) -> Optional[float]:
        """Last close of the most recent few sessions; None on any failure."""
        try:
            bars = self._recent_bars(symbol)
        except Exception as exc:
            logger.warning(f"YFinanceProvider: quote lookup failed for {symbol}: {exc}")
            return None
        return bars[-1].close if bars else None

    def _recent_bars(self, symbol: str) -> List[Bar]:
        self.rate_limiter.acquire(self.name, "history:quote", symbol)
        hist = self._ticker(symbol).history(period="5d", interval="1d")
        return frame_to_bars(hist)
