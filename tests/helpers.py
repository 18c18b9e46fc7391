"""Builders and in-memory provider doubles shared by the test modules."""

from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from stock_events.models.datatypes import Bar, CompanyProfile, NewsArticle
from stock_events.providers.base import BarProvider, NewsProvider, ProfileProvider, QuoteProvider

NOW = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


class FakeClock:
    """Callable clock returning a settable UNIX time."""

    def __init__(self, start: float = NOW.timestamp()) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_bars(
    closes: Sequence[float],
    end: date = TODAY - timedelta(days=1),
    step_days: int = 1,
    volumes: Optional[Sequence[float]] = None,
) -> List[Bar]:
    """Bars ending on ``end``, one every ``step_days`` calendar days."""
    n = len(closes)
    volumes = volumes if volumes is not None else [1_000_000.0] * n
    start = end - timedelta(days=step_days * (n - 1))
    return [
        Bar(
            date=start + timedelta(days=step_days * i),
            open=c, high=c * 1.01, low=c * 0.99, close=c, volume=v,
        )
        for i, (c, v) in enumerate(zip(closes, volumes))
    ]


def wiggle_closes(n: int, shock_at: Optional[int] = None, shock: float = -0.08, start: float = 100.0) -> List[float]:
    """Closes alternating +0.5 % / -0.5 %, with one ``shock`` return at index ``shock_at``."""
    closes = [start]
    for i in range(1, n):
        if i == shock_at:
            r = shock
        else:
            r = 0.005 if i % 2 else -0.005
        closes.append(closes[-1] * (1 + r))
    return closes


def shock_volumes(n: int, shock_at: Optional[int] = None, multiple: float = 3.0) -> List[float]:
    volumes = [1_000_000.0] * n
    if shock_at is not None:
        volumes[shock_at] = 1_000_000.0 * multiple
    return volumes


def article(
    headline: str,
    published_at: datetime,
    source: str = "Reuters",
    summary: str = "",
    article_id: Optional[str] = None,
) -> NewsArticle:
    return NewsArticle(
        id=article_id or f"{headline[:10]}-{published_at.isoformat()}",
        headline=headline,
        source=source,
        url=f"https://example.com/{abs(hash(headline))}",
        published_at=published_at,
        summary=summary,
    )


class FakeBarProvider(BarProvider):
    """Serves fixed series per symbol; ``error`` is raised on every call when set."""

    def __init__(
        self,
        daily: Optional[Dict[str, List[Bar]]] = None,
        weekly: Optional[Dict[str, List[Bar]]] = None,
        error: Optional[Exception] = None,
        name: str = "fake_bars",
    ) -> None:
        self.daily = daily or {}
        self.weekly = weekly or {}
        self.error = error
        self.name = name
        self.calls: List[tuple] = []

    def get_daily(self, symbol: str) -> List[Bar]:
        self.calls.append(("daily", symbol))
        if self.error is not None:
            raise self.error
        return list(self.daily.get(symbol, []))

    def get_weekly(self, symbol: str) -> List[Bar]:
        self.calls.append(("weekly", symbol))
        if self.error is not None:
            raise self.error
        return list(self.weekly.get(symbol, []))


class FakeNewsProvider(NewsProvider):
    """Returns the stored articles of a symbol that fall inside the requested window."""

    name = "fake_news"

    def __init__(self, articles: Optional[Dict[str, List[NewsArticle]]] = None, error: Optional[Exception] = None) -> None:
        self.articles = articles or {}
        self.error = error
        self.calls: List[tuple] = []

    def get_company_news(self, symbol: str, from_date: date, to_date: date) -> List[NewsArticle]:
        self.calls.append((symbol, from_date, to_date))
        if self.error is not None:
            raise self.error
        return [
            a for a in self.articles.get(symbol, [])
            if from_date <= a.published_at.date() <= to_date
        ]


class FakeQuoteProvider(QuoteProvider):
    def __init__(self, price: Optional[float] = 123.0) -> None:
        self.price = price

    def get_quote(self, symbol: str) -> Optional[float]:
        return self.price


class FakeProfileProvider(ProfileProvider):
    def __init__(self, names: Optional[Dict[str, str]] = None) -> None:
        self.names = names or {}
        self.calls = 0

    def get_profile(self, symbol: str) -> Optional[CompanyProfile]:
        self.calls += 1
        name = self.names.get(symbol)
        return CompanyProfile(name=name) if name else None
