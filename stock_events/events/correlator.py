"""News correlation: attach, rank and classify the articles around each anomaly.

Per anomaly:
  1. Fetch company news for [date - 1, date + 1] (cached per window)
  2. Keep articles that mention the company; prefer same-day ones
  3. Rank by a popularity proxy (source weight + recency)
  4. Classify the event type from keyword hits
  5. Draft a title and description, from the top headline when there is one
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from stock_events.core.cache import SQLiteCache
from stock_events.core.errors import StockEventsError
from stock_events.core.logger import logger
from stock_events.core.news_utils import build_mention_terms, mentions_company, truncate
from stock_events.models.datatypes import (
    CorrelatedAnomaly, EventType, NewsArticle, PriceAnomaly, Timeframe,
    articles_from_json, articles_to_json,
)
from stock_events.providers.base import NewsProvider, SentimentProvider

NEWS_NAMESPACE = "news"
DEFAULT_NEWS_TTL = 7200
MAX_ARTICLES = 5
TITLE_MAX_LEN = 80

# Keyword dictionaries for event type classification
EVENT_KEYWORDS: Dict[EventType, Tuple[str, ...]] = {
    EventType.EARNINGS: (
        "earnings", "eps", "revenue", "quarterly", "beat", "miss", "guidance",
        "profit", "loss", "income", "q1", "q2", "q3", "q4", "fiscal",
    ),
    EventType.GUIDANCE: (
        "guidance", "forecast", "outlook", "raised", "lowered", "expects",
        "projection", "estimate", "revised",
    ),
    EventType.ANALYST_RATING: (
        "upgrade", "downgrade", "price target", "rating", "buy", "sell", "hold",
        "overweight", "underweight", "neutral", "outperform", "analyst",
    ),
    EventType.PRODUCT_LAUNCH: (
        "launch", "announce", "release", "unveil", "fda", "approval", "patent",
        "product", "new feature", "innovation",
    ),
    EventType.REGULATORY: (
        "sec", "lawsuit", "fine", "investigation", "antitrust", "regulation",
        "compliance", "settlement", "probe", "subpoena",
    ),
    EventType.MACRO: (
        "fed", "interest rate", "inflation", "recession", "tariff", "trade war",
        "sanctions", "economic", "gdp",
    ),
    EventType.MANAGEMENT: (
        "ceo", "cfo", "coo", "resign", "appoint", "hire", "fired", "board",
        "executive", "leadership", "management",
        "stock split", "split", "spin-off", "spin off", "corporate action",
    ),
    EventType.SECTOR_MOVE: (
        "sector", "industry", "peers", "competitor", "market share",
        "saas", "software", "cloud", "ai", "artificial intelligence",
        "sentiment", "digital transformation", "enterprise software",
    ),
}

# Company-news feeds carry no popularity field, so source reputation stands in.
SOURCE_WEIGHTS: Dict[str, float] = {
    "reuters": 1.0,
    "bloomberg": 0.95,
    "cnbc": 0.9,
    "wsj": 0.9,
    "wall street journal": 0.9,
    "financial times": 0.9,
    "fortune": 0.8,
    "cnn": 0.75,
    "marketwatch": 0.7,
}
DEFAULT_SOURCE_WEIGHT = 0.6
RECENCY_HORIZON_HOURS = 48.0


def score_article_popularity(article: NewsArticle, now: datetime) -> float:
    """Source weight × 0.7 + recency × 0.3, recency falling linearly to 0 over 48 hours."""
    source_score = SOURCE_WEIGHTS.get(article.source.lower().strip(), DEFAULT_SOURCE_WEIGHT)
    age_hours = max(0.0, (now - article.published_at).total_seconds() / 3600)
    recency_score = max(0.0, 1 - age_hours / RECENCY_HORIZON_HOURS)
    return source_score * 0.7 + recency_score * 0.3


def classify_event(articles: Sequence[NewsArticle]) -> Tuple[EventType, float]:
    """Return ``(event type, relevance)`` from keyword hits across ``articles``.

    Each keyword counts once per article it appears in. The category with the
    most hits wins; on a tie the category that scored first keeps the lead.
    Relevance is the winning hit count over 5, capped at 1.
    """
    counts: Dict[EventType, int] = {}
    for article in articles:
        text = article.text.lower()
        for event_type, keywords in EVENT_KEYWORDS.items():
            hits = sum(1 for keyword in keywords if keyword in text)
            if hits:
                counts[event_type] = counts.get(event_type, 0) + hits

    best_type = EventType.UNKNOWN
    best_count = 0
    for event_type, count in counts.items():
        if count > best_count:
            best_type, best_count = event_type, count

    return best_type, min(best_count / 5, 1.0)


def _pct(value: float) -> str:
    return f"{abs(value * 100):.1f}"


def synthetic_narrative(symbol: str, anomaly: PriceAnomaly) -> Tuple[str, str]:
    """Title and description built from the price move alone."""
    rising = anomaly.relative_return >= 0
    weekly = anomaly.timeframe == Timeframe.WEEKLY
    verb = "rises" if rising else "drops"
    volume_word = "heavy" if anomaly.volume_spike > 2 else "notable"
    time_label = f"week of {anomaly.date.isoformat()}" if weekly else anomaly.date.isoformat()

    title = (
        f"{symbol} {verb} {_pct(anomaly.stock_return)}% in {'a week' if weekly else 'a day'} "
        f"on {volume_word} volume"
    )
    description = (
        f"{symbol} saw an unusual {'gain' if rising else 'decline'} of {_pct(anomaly.stock_return)}% "
        f"in the {'week' if weekly else 'day'} ending {time_label}, "
        f"{'outpacing' if rising else 'trailing'} the benchmark by "
        f"{_pct(anomaly.relative_return)} percentage points."
    )
    return title, description


def generate_description(symbol: str, anomaly: PriceAnomaly, top_articles: Sequence[NewsArticle]) -> str:
    """Templated paragraph: move, relative move, volume context, up to two headlines."""
    rising = anomaly.relative_return >= 0
    weekly = anomaly.timeframe == Timeframe.WEEKLY
    time_phrase = f"over the week ending {anomaly.date.isoformat()}" if weekly else f"on {anomaly.date.isoformat()}"

    desc = (
        f"{symbol} {'gained' if rising else 'lost'} {_pct(anomaly.stock_return)}% {time_phrase}, "
        f"{'outperforming' if rising else 'underperforming'} the benchmark by "
        f"{_pct(anomaly.relative_return)} percentage points."
    )
    if anomaly.volume_spike > 2:
        desc += f" Trading volume was {anomaly.volume_spike:.1f}x its recent average."

    if top_articles:
        desc += (
            f" Key headlines around {'this week' if weekly else 'this date'}: "
            f"\"{truncate(top_articles[0].headline, 100)}\""
        )
        if len(top_articles) > 1:
            desc += f" and \"{truncate(top_articles[1].headline, 80)}\""
        desc += "."
    return desc


class NewsCorrelator:
    """Attach news to price anomalies.

    Args:
        news_provider: Source of company news for a date window.
        cache: Shared cache; news windows are stored under the ``news`` namespace.
        news_ttl: Seconds a cached news window stays fresh.
        clock: Returns the current UNIX time (drives article recency).
        sentiment: Optional provider used to tag kept articles.
    """

    def __init__(
        self,
        news_provider: NewsProvider,
        cache: SQLiteCache,
        news_ttl: int = DEFAULT_NEWS_TTL,
        clock: Callable[[], float] = time.time,
        sentiment: Optional[SentimentProvider] = None,
    ) -> None:
        self.news_provider = news_provider
        self.cache = cache
        self.news_ttl = news_ttl
        self.clock = clock
        self.sentiment = sentiment

    def fetch_window(self, symbol: str, anomaly: PriceAnomaly) -> List[NewsArticle]:
        """Articles for ``[date - 1, date + 1]``; an upstream failure yields ``[]``."""
        day = anomaly.date
        start, end = day - timedelta(days=1), day + timedelta(days=1)
        key = f"{symbol}:{day.isoformat()}:{start.isoformat()}:{end.isoformat()}"
        try:
            return self.cache.get_or_fetch(
                NEWS_NAMESPACE,
                key,
                self.news_ttl,
                lambda: self.news_provider.get_company_news(symbol, start, end),
                dump=articles_to_json,
                load=articles_from_json,
            )
        except StockEventsError as exc:
            logger.warning(f"NewsCorrelator: news lookup failed for {symbol} {day}: {exc}")
            return []

    def correlate(
        self,
        symbol: str,
        anomalies: Sequence[PriceAnomaly],
        company_name: Optional[str] = None,
    ) -> List[CorrelatedAnomaly]:
        """Return one :class:`CorrelatedAnomaly` per anomaly, in input order."""
        now = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        terms = build_mention_terms(symbol, company_name)
        results: List[CorrelatedAnomaly] = []

        for anomaly in anomalies:
            articles = self.fetch_window(symbol, anomaly)
            mentioned = [a for a in articles if mentions_company(a, terms)]
            mentioned.sort(key=lambda a: score_article_popularity(a, now), reverse=True)
            same_day = [a for a in mentioned if a.published_at.date() == anomaly.date]
            context = same_day or mentioned

            event_type, relevance = classify_event(context)
            if relevance <= 0.2:
                event_type = EventType.UNKNOWN

            if context:
                title = truncate(context[0].headline, TITLE_MAX_LEN)
                description = generate_description(symbol, anomaly, context[:3])
            else:
                title, description = synthetic_narrative(symbol, anomaly)

            kept = context[:MAX_ARTICLES]
            self._tag_sentiment(kept)
            logger.info(
                f"NewsCorrelator: {symbol} {anomaly.date} [{anomaly.timeframe.value}] "
                f"{len(articles)} articles, {len(context)} relevant → {event_type.value} "
                f"(relevance={relevance:.2f})"
            )
            results.append(
                CorrelatedAnomaly(
                    anomaly=anomaly,
                    event_type=event_type,
                    title=title,
                    description=description,
                    news_articles=kept,
                    news_relevance=relevance,
                )
            )
        return results

    def _tag_sentiment(self, articles: List[NewsArticle]) -> None:
        if self.sentiment is None:
            return
        for article in articles:
            if article.sentiment is not None:
                continue
            try:
                article.sentiment = self.sentiment.analyze(article.headline).label.lower()
            except Exception as exc:
                logger.warning(f"NewsCorrelator: sentiment failed for {article.headline[:60]!r}: {exc}")
