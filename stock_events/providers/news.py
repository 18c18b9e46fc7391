"""News providers beyond Finnhub, and the ordered news chain.

Chain per request:
  1. Each configured provider in order (Finnhub company-news, Google News RSS)
  2. First non-empty article list wins
  3. All empty → ``[]``; all failing → the last error is raised
"""

import hashlib
import urllib.parse
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Sequence

import feedparser

from stock_events.core.errors import ProviderError, StockEventsError
from stock_events.core.logger import logger
from stock_events.core.rate_limit import RateLimiter
from stock_events.models.datatypes import NewsArticle
from stock_events.providers.base import NewsProvider

_GOOGLE_RSS_BASE = "https://news.google.com/rss/search"


class GoogleNewsProvider(NewsProvider):
    """Google News RSS provider.

    Query: ``"<ticker>" stock after:<from> before:<to + 1>``; the operators do the
    date filtering server-side and entries are re-checked against the window
    locally, since RSS search sometimes leaks older items.
    """

    name = "google_news"

    def __init__(self, rate_limiter: Optional[RateLimiter] = None, locale: str = "hl=en-US&gl=US&ceid=US:en") -> None:
        """Args:
            rate_limiter: Shared limiter (provider key ``"google_news"``).
            locale: Google News locale query string.
        """
        self.rate_limiter = rate_limiter or RateLimiter()
        self.locale = locale

    def get_company_news(self, symbol: str, from_date: date, to_date: date) -> List[NewsArticle]:
        query = f'"{symbol}" stock after:{from_date.isoformat()} before:{(to_date + timedelta(days=1)).isoformat()}'
        url = f"{_GOOGLE_RSS_BASE}?q={urllib.parse.quote(query)}&{self.locale}"
        self.rate_limiter.acquire(self.name, "rss/search", symbol)
        logger.info(f"GoogleNewsProvider: fetching [{symbol}] q={query!r}")

        try:
            feed = feedparser.parse(url)
        except Exception as exc:
            raise ProviderError(self.name, f"Google News RSS failed for {symbol}: {exc}") from exc

        if feed.bozo and not feed.entries:
            raise ProviderError(
                self.name, f"Google News RSS parse error for {symbol}: {getattr(feed, 'bozo_exception', 'unknown')}"
            )

        articles = []
        for entry in feed.entries:
            article = self._to_article(entry)
            if article is None:
                continue
            if not from_date <= article.published_at.date() <= to_date:
                continue
            articles.append(article)

        logger.info(f"GoogleNewsProvider: {len(articles)} entries in window for {symbol}")
        return articles

    @staticmethod
    def _to_article(entry) -> Optional[NewsArticle]:
        title = (getattr(entry, "title", "") or "").strip()
        pub_parsed = getattr(entry, "published_parsed", None)
        if not title or not pub_parsed:
            return None

        source_raw = getattr(entry, "source", {})
        source = (
            source_raw.get("title", "Google News")
            if isinstance(source_raw, dict)
            else str(source_raw) or "Google News"
        )
        link = getattr(entry, "link", "")
        return NewsArticle(
            id=hashlib.md5((link or title).encode("utf-8")).hexdigest()[:12],
            headline=title,
            source=source,
            url=link,
            published_at=datetime(*pub_parsed[:6], tzinfo=timezone.utc),
            summary=getattr(entry, "summary", "") or "",
        )


class ChainedNewsProvider(NewsProvider):
    """Try several news providers in order and return the first non-empty answer."""

    name = "news_chain"

    def __init__(self, providers: Sequence[NewsProvider]) -> None:
        if not providers:
            raise ValueError("ChainedNewsProvider needs at least one provider")
        self.providers = list(providers)

    def get_company_news(self, symbol: str, from_date: date, to_date: date) -> List[NewsArticle]:
        last_error: Optional[StockEventsError] = None
        any_succeeded = False
        for provider in self.providers:
            label = getattr(provider, "name", type(provider).__name__)
            try:
                articles = provider.get_company_news(symbol, from_date, to_date)
            except StockEventsError as exc:
                logger.warning(f"NEWS [{symbol}] {label} raised: {exc}")
                last_error = exc
                continue
            any_succeeded = True
            if articles:
                logger.info(f"NEWS [{symbol}] source={label} | {len(articles)} articles")
                return articles
            logger.info(f"NEWS [{symbol}] source={label} returned nothing for {from_date} → {to_date}")

        if not any_succeeded and last_error is not None:
            raise last_error
        return []
