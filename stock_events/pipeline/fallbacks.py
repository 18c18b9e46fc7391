"""Fallback tiers of the events pipeline.

Each tier implements ``attempt(ctx)`` and either returns an
:class:`EventsResult`, which ends the run, or :data:`CONTINUE`, which hands
over to the next tier. A tier raising :class:`StockEventsError` is treated
like ``CONTINUE`` by the pipeline, with the failure recorded on the context.

Tiers, in default order:
  1. primary                : fresh bars, fingerprint check, full recompute
  2. stale_events           : last cached event set, whatever its fingerprint
  3. cached_weekly_anchors  : largest relative moves over cached weekly bars
  4. secondary_candles      : daily bars from the secondary provider
  5. news_only              : recent articles turned into placeholder events
"""

import hashlib
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, timedelta
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Union

from stock_events.core.cache import SQLiteCache
from stock_events.core.errors import InsufficientData, PipelineCancelled
from stock_events.core.logger import logger
from stock_events.core.news_utils import truncate
from stock_events.events.detector import (
    DetectionOptions, align_series, detect_anomalies, select_top_relative_moves, top_by_abs_z,
)
from stock_events.events.scorer import dedupe_event_ids
from stock_events.models.datatypes import (
    Bar, EventImpact, EventsResult, EventType, NewsArticle, StockEvent, Timeframe, bars_from_json,
)

if TYPE_CHECKING:
    from stock_events.pipeline.engine import EventsPipeline

PRICE_NAMESPACE = "price"
NEWS_ONLY_IMPACT_SCORE = 0.5


class _Continue:
    """Returned by a tier that has nothing to offer."""

    def __repr__(self) -> str:
        return "CONTINUE"


CONTINUE = _Continue()
AttemptResult = Union[EventsResult, _Continue]


@dataclass
class PipelineContext:
    """Per-request state shared by the tiers of one ``compute_events`` call.

    Attributes:
        symbol: Upper-cased security ticker.
        benchmark: Benchmark ticker.
        today: UTC calendar day the run is anchored on.
        min_date: Oldest event date kept (start of the lookback window).
        clock: Returns the current UNIX time.
        deadline: UNIX time after which the run is abandoned, if any.
        error: Message of the first upstream failure, surfaced on degraded results.
        stale: Set when any input came from an expired cache entry.
    """
    symbol: str
    benchmark: str
    today: date
    min_date: date
    clock: Callable[[], float] = time.time
    deadline: Optional[float] = None
    error: Optional[str] = None
    stale: bool = False
    company_name: Optional[str] = None
    company_resolved: bool = False

    def check_deadline(self) -> None:
        if self.deadline is not None and self.clock() > self.deadline:
            raise PipelineCancelled(f"Timed out computing events for {self.symbol}")

    def record_failure(self, tier: str, exc: Exception) -> None:
        logger.warning(f"EventsPipeline: [{self.symbol}] tier '{tier}' failed: {exc}")
        if self.error is None:
            self.error = str(exc)

    def degraded_message(self, what: str) -> str:
        if self.error:
            return f"{what} ({self.error})"
        return what


# ── helpers ───────────────────────────────────────────────────────────────────

def compute_fingerprint(version: str, series: Dict[str, Sequence[Bar]]) -> str:
    """Hash of the pipeline version plus the count and last date of every input series."""
    shape: Dict[str, object] = {"pipeline_version": version}
    for label, bars in series.items():
        shape[f"{label}_count"] = len(bars)
        shape[f"{label}_last"] = bars[-1].date.isoformat() if bars else None
    return SQLiteCache.hash_data(shape)


def normalize_events(events: Sequence[StockEvent], min_date: date) -> List[StockEvent]:
    """Drop events dated before ``min_date`` and make ids unique, keeping the incoming order."""
    return dedupe_event_ids([e for e in events if e.date >= min_date])


def has_history(stock_bars: Sequence[Bar], benchmark_bars: Sequence[Bar], options: DetectionOptions) -> bool:
    return len(align_series(stock_bars, benchmark_bars)) > options.rolling_window


def create_news_only_events(
    symbol: str,
    articles: Sequence[NewsArticle],
    price_now: float,
    min_date: date,
    limit: int = 10,
) -> List[StockEvent]:
    """
    One placeholder event per publication date, most recent first.

    Used when no price series is available at all: the event carries the
    article, an ``unknown`` type and a flat price snapshot.
    """
    events: List[StockEvent] = []
    seen_dates = set()
    for article in sorted(articles, key=lambda a: a.published_at, reverse=True):
        day = article.published_at.date()
        if day < min_date or day in seen_dates:
            continue
        seen_dates.add(day)
        raw_id = f"news:{symbol}:{day.isoformat()}:{article.id or article.headline}"
        events.append(
            StockEvent(
                id=hashlib.md5(raw_id.encode("utf-8")).hexdigest()[:12],
                symbol=symbol,
                date=day,
                type=EventType.UNKNOWN,
                title=truncate(article.headline, 80),
                description=article.summary or article.headline,
                impact=EventImpact(
                    magnitude="moderate",
                    direction="positive",
                    absolute_move=0.0,
                    percent_move=0.0,
                    volume_spike=1.0,
                ),
                price_at_event=price_now,
                price_now=price_now,
                change_since_event=0.0,
                change_percent_since_event=0.0,
                daily_return=0.0,
                benchmark_return=0.0,
                relative_return=0.0,
                z_score=0.0,
                news_articles=[article],
                recovery_days=None,
                impact_score=NEWS_ONLY_IMPACT_SCORE,
            )
        )
        if len(events) >= limit:
            break
    return events


# ── tiers ─────────────────────────────────────────────────────────────────────

class FallbackStrategy(ABC):
    """One tier of the chain.

    Args:
        pipeline: The owning pipeline; tiers reach providers, cache and
            settings through it.
    """

    name: str = "tier"

    def __init__(self, pipeline: "EventsPipeline") -> None:
        self.pipeline = pipeline

    @abstractmethod
    def attempt(self, ctx: PipelineContext) -> AttemptResult:
        pass


class PrimaryStrategy(FallbackStrategy):
    """Fresh (or cached) bars from the primary provider and a full recompute.

    The stored event set is reused untouched while the fingerprint of the four
    input series is unchanged.
    """

    name = "primary"

    def attempt(self, ctx: PipelineContext) -> AttemptResult:
        pipeline = self.pipeline
        settings = pipeline.settings
        series = pipeline.fetch_all_series(ctx)
        fingerprint = compute_fingerprint(settings.version, series)

        cached = pipeline.cache.get_events_cache(ctx.symbol, fingerprint)
        if cached is not None:
            return EventsResult(events=normalize_events(cached, ctx.min_date), stale=ctx.stale, source="cache")

        stock_daily, benchmark_daily = series["stock_daily"], series["benchmark_daily"]
        stock_weekly = [b for b in series["stock_weekly"] if b.date >= ctx.min_date]
        benchmark_weekly = [b for b in series["benchmark_weekly"] if b.date >= ctx.min_date]

        if not (
            has_history(stock_daily, benchmark_daily, settings.daily)
            or has_history(stock_weekly, benchmark_weekly, settings.weekly)
        ):
            raise InsufficientData(
                f"Not enough aligned history for {ctx.symbol} "
                f"({len(stock_daily)} daily, {len(stock_weekly)} weekly bars)"
            )

        daily = top_by_abs_z(detect_anomalies(stock_daily, benchmark_daily, settings.daily), settings.daily_top)
        weekly = top_by_abs_z(detect_anomalies(stock_weekly, benchmark_weekly, settings.weekly), settings.weekly_top)
        anomalies = sorted(daily + weekly, key=lambda a: a.date)
        logger.info(
            f"EventsPipeline: [{ctx.symbol}] {len(daily)} daily + {len(weekly)} weekly anomalies selected"
        )
        ctx.check_deadline()

        if not anomalies:
            pipeline.cache.set_events_cache(ctx.symbol, [], fingerprint)
            return EventsResult(events=[], stale=ctx.stale, source=self.name)

        events = pipeline.build_events(ctx, anomalies, stock_daily)
        ctx.check_deadline()
        pipeline.cache.set_events_cache(ctx.symbol, events, fingerprint)
        return EventsResult(events=events, stale=ctx.stale, source=self.name)


class StaleEventsStrategy(FallbackStrategy):
    """Serve the last stored event set, whatever data it was computed from."""

    name = "stale_events"

    def attempt(self, ctx: PipelineContext) -> AttemptResult:
        events = normalize_events(self.pipeline.cache.get_latest_events(ctx.symbol) or [], ctx.min_date)
        if not events:
            return CONTINUE
        return EventsResult(events=events, stale=True, error=ctx.error, source=self.name)


class CachedWeeklyAnchorsStrategy(FallbackStrategy):
    """Rank the largest relative moves over weekly bars still held by the price cache."""

    name = "cached_weekly_anchors"

    def attempt(self, ctx: PipelineContext) -> AttemptResult:
        pipeline = self.pipeline
        settings = pipeline.settings
        cache = pipeline.cache
        stock = cache.get_cached(PRICE_NAMESPACE, f"{ctx.symbol}:{Timeframe.WEEKLY.value}", bars_from_json) or []
        benchmark = cache.get_cached(PRICE_NAMESPACE, f"{ctx.benchmark}:{Timeframe.WEEKLY.value}", bars_from_json) or []

        need = settings.min_cached_weekly_bars
        if len(stock) < need or len(benchmark) < need:
            logger.info(
                f"EventsPipeline: [{ctx.symbol}] cached weekly bars too short "
                f"({len(stock)}/{len(benchmark)}, need {need})"
            )
            return CONTINUE

        anchors = select_top_relative_moves(
            stock,
            benchmark,
            min_date=ctx.min_date,
            timeframe=Timeframe.WEEKLY,
            limit=settings.weekly_top,
            volume_window=settings.weekly.volume_window,
        )
        if not anchors:
            return CONTINUE

        events = pipeline.build_events(ctx, sorted(anchors, key=lambda a: a.date), stock)
        if not events:
            return CONTINUE
        return EventsResult(
            events=events,
            stale=True,
            error=ctx.degraded_message("Using cached weekly prices"),
            source=self.name,
        )


class SecondaryCandlesStrategy(FallbackStrategy):
    """Daily bars from the secondary provider, strict detection first."""

    name = "secondary_candles"

    def attempt(self, ctx: PipelineContext) -> AttemptResult:
        pipeline = self.pipeline
        settings = pipeline.settings
        provider = pipeline.secondary
        if provider is None:
            return CONTINUE

        stock, benchmark = pipeline.fetch_pair(ctx, provider.get_daily)
        need = settings.min_secondary_bars
        if len(stock) < need or len(benchmark) < need:
            raise InsufficientData(
                f"{provider.name} returned {len(stock)}/{len(benchmark)} daily bars for "
                f"{ctx.symbol}/{ctx.benchmark}, need {need}"
            )

        anomalies = [
            a for a in top_by_abs_z(detect_anomalies(stock, benchmark, settings.daily), settings.secondary_top)
            if a.date >= ctx.min_date
        ]
        if not anomalies:
            logger.info(f"EventsPipeline: [{ctx.symbol}] no significant secondary moves, ranking raw moves")
            anomalies = select_top_relative_moves(
                stock,
                benchmark,
                min_date=ctx.min_date,
                timeframe=Timeframe.DAILY,
                limit=settings.secondary_top,
                volume_window=settings.daily.volume_window,
            )
        if not anomalies:
            return CONTINUE

        ctx.check_deadline()
        events = pipeline.build_events(ctx, sorted(anomalies, key=lambda a: a.date), stock)
        if not events:
            return CONTINUE
        return EventsResult(
            events=events,
            stale=True,
            error=ctx.degraded_message(f"Using {provider.name} daily prices"),
            source=self.name,
        )


class NewsOnlyStrategy(FallbackStrategy):
    """Placeholder events from the last couple of weeks of company news."""

    name = "news_only"

    def attempt(self, ctx: PipelineContext) -> AttemptResult:
        pipeline = self.pipeline
        settings = pipeline.settings
        start = ctx.today - timedelta(days=settings.news_only_days)
        articles = pipeline.news.get_company_news(ctx.symbol, start, ctx.today)
        if not articles:
            return CONTINUE

        price_now = pipeline.current_price(ctx.symbol)
        events = create_news_only_events(
            ctx.symbol, articles, price_now, ctx.min_date, limit=settings.news_only_limit
        )
        if not events:
            return CONTINUE
        return EventsResult(
            events=dedupe_event_ids(events),
            stale=True,
            error=ctx.degraded_message("Price data unavailable, showing recent news only"),
            source=self.name,
        )


STRATEGIES: Dict[str, type] = {
    strategy.name: strategy
    for strategy in (
        PrimaryStrategy,
        StaleEventsStrategy,
        CachedWeeklyAnchorsStrategy,
        SecondaryCandlesStrategy,
        NewsOnlyStrategy,
    )
}
DEFAULT_FALLBACK_ORDER = tuple(STRATEGIES)
