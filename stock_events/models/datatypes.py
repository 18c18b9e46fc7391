"""Data structures for the stock event pipeline.

Every type that passes through the SQLite cache has a ``to_dict`` /
``from_dict`` pair producing plain JSON-compatible values (dates as ISO
strings).
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Optional

Magnitude = Literal["extreme", "high", "moderate"]
Direction = Literal["positive", "negative"]
Sentiment = Literal["positive", "negative", "neutral"]


class Timeframe(str, Enum):
    """Bar resolution an anomaly was detected on."""

    DAILY = "daily"
    WEEKLY = "weekly"


class EventType(str, Enum):
    """Closed set of event categories the correlator can assign."""

    EARNINGS = "earnings"
    GUIDANCE = "guidance"
    ANALYST_RATING = "analyst_rating"
    PRODUCT_LAUNCH = "product_launch"
    REGULATORY = "regulatory"
    MACRO = "macro"
    MANAGEMENT = "management"
    SECTOR_MOVE = "sector_move"
    UNKNOWN = "unknown"


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _parse_timestamp(value: Any) -> datetime:
    """Parse an ISO timestamp (``Z`` suffix allowed) into a UTC-aware datetime."""
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class Bar:
    """
    One OHLC bar of a daily or weekly series.
    """
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Bar":
        return cls(
            date=_parse_date(data["date"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data.get("volume") or 0),
        )


def sort_bars(bars: Iterable[Bar]) -> List[Bar]:
    """Return bars in ascending date order, one bar per date, volume clamped at 0.

    When a provider repeats a date the last occurrence wins.
    """
    by_date: Dict[date, Bar] = {}
    for bar in bars:
        if bar.volume < 0:
            bar = replace(bar, volume=0.0)
        by_date[bar.date] = bar
    return [by_date[d] for d in sorted(by_date)]


def bars_to_json(bars: List[Bar]) -> List[Dict[str, Any]]:
    return [b.to_dict() for b in bars]


def bars_from_json(data: List[Dict[str, Any]]) -> List[Bar]:
    return sort_bars(Bar.from_dict(d) for d in data)


@dataclass
class NewsArticle:
    """
    Represents a normalized news article fetched from any news provider.
    """
    id: str
    headline: str
    source: str
    url: str
    published_at: datetime  # UTC-aware
    summary: str = ""
    sentiment: Optional[Sentiment] = None

    @property
    def text(self) -> str:
        """Headline and summary joined, the text matched by every heuristic."""
        return f"{self.headline} {self.summary}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "headline": self.headline,
            "summary": self.summary,
            "source": self.source,
            "url": self.url,
            "published_at": self.published_at.isoformat(),
            "sentiment": self.sentiment,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NewsArticle":
        return cls(
            id=str(data.get("id", "")),
            headline=data.get("headline") or "",
            summary=data.get("summary") or "",
            source=data.get("source") or "",
            url=data.get("url") or "",
            published_at=_parse_timestamp(data["published_at"]),
            sentiment=data.get("sentiment"),
        )


def articles_to_json(articles: List[NewsArticle]) -> List[Dict[str, Any]]:
    return [a.to_dict() for a in articles]


def articles_from_json(data: List[Dict[str, Any]]) -> List[NewsArticle]:
    return [NewsArticle.from_dict(d) for d in data]


@dataclass
class CompanyProfile:
    """Optional enrichment used to widen article mention matching."""
    name: Optional[str] = None
    industry: Optional[str] = None
    market_cap: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "industry": self.industry, "market_cap": self.market_cap}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["CompanyProfile"]:
        if data is None:
            return None
        return cls(name=data.get("name"), industry=data.get("industry"), market_cap=data.get("market_cap"))


@dataclass(frozen=True)
class PriceAnomaly:
    """
    A date whose relative return passed the significance test.

    Returns are fractions (0.05 == 5 %). ``index`` points into the aligned
    security series the anomaly was detected on.
    """
    index: int
    date: date
    timeframe: Timeframe
    stock_return: float
    benchmark_return: float
    relative_return: float
    z_score: float
    volume_spike: float
    close: float
    volume: float


@dataclass
class CorrelatedAnomaly:
    """A price anomaly with the news context and classification attached."""
    anomaly: PriceAnomaly
    event_type: EventType
    title: str
    description: str
    news_articles: List[NewsArticle] = field(default_factory=list)
    news_relevance: float = 0.0


@dataclass
class EventImpact:
    magnitude: Magnitude
    direction: Direction
    absolute_move: float
    percent_move: float
    volume_spike: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "magnitude": self.magnitude,
            "direction": self.direction,
            "absolute_move": self.absolute_move,
            "percent_move": self.percent_move,
            "volume_spike": self.volume_spike,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventImpact":
        return cls(
            magnitude=data["magnitude"],
            direction=data["direction"],
            absolute_move=float(data["absolute_move"]),
            percent_move=float(data["percent_move"]),
            volume_spike=float(data["volume_spike"]),
        )


@dataclass
class StockEvent:
    """
    The externally visible event record. Return fields are in percent units.
    """
    id: str
    symbol: str
    date: date
    type: EventType
    title: str
    description: str
    impact: EventImpact
    price_at_event: float
    price_now: float
    change_since_event: float
    change_percent_since_event: float
    daily_return: float
    benchmark_return: float
    relative_return: float
    z_score: float
    news_articles: List[NewsArticle]
    recovery_days: Optional[int]
    impact_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "symbol": self.symbol,
            "date": self.date.isoformat(),
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "impact": self.impact.to_dict(),
            "price_at_event": self.price_at_event,
            "price_now": self.price_now,
            "change_since_event": self.change_since_event,
            "change_percent_since_event": self.change_percent_since_event,
            "daily_return": self.daily_return,
            "benchmark_return": self.benchmark_return,
            "relative_return": self.relative_return,
            "z_score": self.z_score,
            "news_articles": articles_to_json(self.news_articles),
            "recovery_days": self.recovery_days,
            "impact_score": self.impact_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StockEvent":
        daily_return = float(data.get("daily_return", 0.0))
        relative_return = float(data.get("relative_return", 0.0))
        # Payloads cached before benchmark_return existed carry only the other two.
        benchmark_return = data.get("benchmark_return")
        if benchmark_return is None:
            benchmark_return = daily_return - relative_return
        return cls(
            id=data["id"],
            symbol=data["symbol"],
            date=_parse_date(data["date"]),
            type=EventType(data.get("type", EventType.UNKNOWN.value)),
            title=data.get("title", ""),
            description=data.get("description", ""),
            impact=EventImpact.from_dict(data["impact"]),
            price_at_event=float(data.get("price_at_event", 0.0)),
            price_now=float(data.get("price_now", 0.0)),
            change_since_event=float(data.get("change_since_event", 0.0)),
            change_percent_since_event=float(data.get("change_percent_since_event", 0.0)),
            daily_return=daily_return,
            benchmark_return=float(benchmark_return),
            relative_return=relative_return,
            z_score=float(data.get("z_score", 0.0)),
            news_articles=articles_from_json(data.get("news_articles") or []),
            recovery_days=data.get("recovery_days"),
            impact_score=float(data.get("impact_score", 0.0)),
        )


def events_to_json(events: List[StockEvent]) -> List[Dict[str, Any]]:
    return [e.to_dict() for e in events]


def events_from_json(data: List[Dict[str, Any]]) -> List[StockEvent]:
    return [StockEvent.from_dict(d) for d in data]


@dataclass
class EventsResult:
    """
    What ``compute_events`` hands back to its caller. Always well-formed:
    a failed run is an empty ``events`` list with ``error`` set.

    Attributes:
        events: Highest impact score first; ``news_only`` results are newest
            first instead, since their placeholder scores are all equal.
        stale: True when any input came from an expired cache or a fallback tier.
        error: Upstream failure surfaced to the caller, if any.
        source: Name of the tier that produced the result
            (``"cache"``, ``"primary"``, ``"stale_events"``...).
    """
    events: List[StockEvent]
    stale: bool = False
    error: Optional[str] = None
    source: str = "primary"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "events": events_to_json(self.events),
            "stale": self.stale,
            "error": self.error,
            "source": self.source,
        }
