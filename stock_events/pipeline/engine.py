"""Pipeline engine: computes the ranked event list for one security.

Flow per ``compute_events(symbol)``:
  1. Validate the symbol (raises before any provider call)
  2. Run the fallback tiers in configured order, stopping at the first answer
       primary → stale_events → cached_weekly_anchors → secondary_candles → news_only
  3. Nothing answered → empty result carrying the upstream error

Provider failures never escape: each one is logged and turns into the next
tier. A run that outlives its deadline returns an empty result with a timeout
error and stores nothing.
"""

import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, fields, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from stock_events.core.cache import SQLiteCache
from stock_events.core.config import api_key, section
from stock_events.core.errors import (
    ConfigError, InsufficientData, PipelineCancelled, ProviderError, StockEventsError, ValidationError,
)
from stock_events.core.logger import logger
from stock_events.core.rate_limit import DEFAULT_LIMITS, RateLimiter
from stock_events.events.correlator import DEFAULT_NEWS_TTL, NewsCorrelator
from stock_events.events.detector import DetectionOptions
from stock_events.events.scorer import score_and_rank_events
from stock_events.models.datatypes import (
    Bar, CompanyProfile, EventsResult, PriceAnomaly, StockEvent, Timeframe, bars_from_json, bars_to_json,
)
from stock_events.pipeline.fallbacks import (
    CONTINUE, DEFAULT_FALLBACK_ORDER, PRICE_NAMESPACE, STRATEGIES, FallbackStrategy, PipelineContext,
    normalize_events,
)
from stock_events.providers.base import (
    BarProvider, NewsProvider, ProfileProvider, QuoteProvider, SentimentProvider,
)

PIPELINE_VERSION = "v3-adjusted-prices"
PROFILE_NAMESPACE = "profile"

_SYMBOL_RE = re.compile(r"^[A-Z0-9^][A-Z0-9.\-=]{0,14}$")

DAILY_DETECTION = DetectionOptions(
    rolling_window=40,
    volume_window=20,
    z_threshold=1.9,
    volume_spike_threshold=2.0,
    cluster_days=2,
    timeframe=Timeframe.DAILY,
)
WEEKLY_DETECTION = DetectionOptions(
    rolling_window=20,
    volume_window=8,
    z_threshold=1.7,
    volume_spike_threshold=2.0,
    cluster_days=7,
    timeframe=Timeframe.WEEKLY,
)


def validate_symbol(symbol: Any) -> str:
    """Return the upper-cased ticker or raise :class:`ValidationError`."""
    if not isinstance(symbol, str):
        raise ValidationError(f"Symbol must be a string, got {type(symbol).__name__}")
    cleaned = symbol.strip().upper()
    if not _SYMBOL_RE.match(cleaned):
        raise ValidationError(f"Invalid symbol: {symbol!r}")
    return cleaned


def detection_options(config: Dict[str, Any], timeframe: Timeframe) -> DetectionOptions:
    """Detection settings for ``timeframe`` with ``detection.<timeframe>`` overrides applied."""
    base = DAILY_DETECTION if timeframe == Timeframe.DAILY else WEEKLY_DETECTION
    overrides = section(config, "detection", timeframe.value)
    known = {f.name for f in fields(DetectionOptions)} - {"timeframe"}
    unknown = set(overrides) - known
    if unknown:
        raise ConfigError(f"Unknown detection.{timeframe.value} keys: {sorted(unknown)}")
    try:
        options = replace(
            base,
            **{key: (int(v) if key in ("rolling_window", "volume_window", "cluster_days") else float(v))
               for key, v in overrides.items()},
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid detection.{timeframe.value} value: {exc}") from exc
    if options.rolling_window < 2 or options.volume_window < 1:
        raise ConfigError(f"detection.{timeframe.value} windows are too small")
    return options


@dataclass(frozen=True)
class PipelineSettings:
    """Tunables of one pipeline, read from the ``pipeline``/``cache``/``detection`` sections."""
    version: str = PIPELINE_VERSION
    benchmark: str = "SPY"
    lookback_days: int = 365
    fallback_order: Tuple[str, ...] = DEFAULT_FALLBACK_ORDER
    daily: DetectionOptions = DAILY_DETECTION
    weekly: DetectionOptions = WEEKLY_DETECTION
    daily_top: int = 8
    weekly_top: int = 6
    secondary_top: int = 10
    min_secondary_bars: int = 50
    min_cached_weekly_bars: int = 20
    news_only_days: int = 14
    news_only_limit: int = 10
    price_ttl: int = 86400
    news_ttl: int = DEFAULT_NEWS_TTL
    profile_ttl: int = 7 * 86400
    timeout_seconds: Optional[float] = None

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "PipelineSettings":
        pipeline = section(config, "pipeline")
        cache = section(config, "cache")
        defaults = cls()
        try:
            order = tuple(pipeline.get("fallback_order") or defaults.fallback_order)
            unknown = [name for name in order if name not in STRATEGIES]
            if unknown:
                raise ConfigError(f"Unknown fallback tiers in pipeline.fallback_order: {unknown}")
            timeout = pipeline.get("timeout_seconds")
            return cls(
                version=str(pipeline.get("version", defaults.version)),
                benchmark=validate_symbol(config.get("benchmark", defaults.benchmark)),
                lookback_days=int(pipeline.get("lookback_days", defaults.lookback_days)),
                fallback_order=order,
                daily=detection_options(config, Timeframe.DAILY),
                weekly=detection_options(config, Timeframe.WEEKLY),
                daily_top=int(pipeline.get("daily_top", defaults.daily_top)),
                weekly_top=int(pipeline.get("weekly_top", defaults.weekly_top)),
                secondary_top=int(pipeline.get("secondary_top", defaults.secondary_top)),
                min_secondary_bars=int(pipeline.get("min_secondary_bars", defaults.min_secondary_bars)),
                min_cached_weekly_bars=int(
                    pipeline.get("min_cached_weekly_bars", defaults.min_cached_weekly_bars)
                ),
                news_only_days=int(pipeline.get("news_only_days", defaults.news_only_days)),
                news_only_limit=int(pipeline.get("news_only_limit", defaults.news_only_limit)),
                price_ttl=int(cache.get("price_ttl_seconds", defaults.price_ttl)),
                news_ttl=int(cache.get("news_ttl_seconds", defaults.news_ttl)),
                profile_ttl=int(cache.get("profile_ttl_seconds", defaults.profile_ttl)),
                timeout_seconds=float(timeout) if timeout else None,
            )
        except ValidationError as exc:
            raise ConfigError(f"Invalid benchmark in config: {exc}") from exc
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid pipeline setting: {exc}") from exc


class EventsPipeline:
    """Computes ranked stock events, degrading through fallback tiers.

    Args:
        primary: Bar provider for the fresh path.
        news: Company news provider (usually a :class:`ChainedNewsProvider`).
        cache: Shared SQLite cache.
        settings: Pipeline tunables; defaults when omitted.
        secondary: Bar provider used by the ``secondary_candles`` tier.
        profile: Company profile provider used to widen mention matching.
        quote: Current-price provider used by the ``news_only`` tier.
        sentiment: Optional article sentiment tagger.
        clock: Returns the current UNIX time.
    """

    def __init__(
        self,
        primary: BarProvider,
        news: NewsProvider,
        cache: SQLiteCache,
        settings: Optional[PipelineSettings] = None,
        secondary: Optional[BarProvider] = None,
        profile: Optional[ProfileProvider] = None,
        quote: Optional[QuoteProvider] = None,
        sentiment: Optional[SentimentProvider] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.primary = primary
        self.news = news
        self.cache = cache
        self.settings = settings or PipelineSettings()
        self.secondary = secondary
        self.profile = profile
        self.quote = quote
        self.clock = clock
        self.correlator = NewsCorrelator(
            news, cache, news_ttl=self.settings.news_ttl, clock=clock, sentiment=sentiment
        )
        self.strategies: List[FallbackStrategy] = [
            STRATEGIES[name](self) for name in self.settings.fallback_order
        ]

    @classmethod
    def from_config(cls, config: Dict[str, Any], clock: Callable[[], float] = time.time) -> "EventsPipeline":
        """Build the pipeline and its real providers from a parsed config.yaml.

        API keys are read from the environment (``FINNHUB_API_KEY``,
        ``ALPHA_VANTAGE_API_KEY``); a provider whose key is missing is skipped,
        except the primary bar provider, which is required.
        """
        from stock_events.providers.alpha_vantage import AlphaVantageProvider
        from stock_events.providers.finnhub import FinnhubProvider
        from stock_events.providers.market import YFinanceProvider
        from stock_events.providers.news import ChainedNewsProvider, GoogleNewsProvider

        settings = PipelineSettings.from_config(config)
        cache_cfg = section(config, "cache")
        providers_cfg = section(config, "providers")

        cache = SQLiteCache(db_path=cache_cfg.get("db_path", "output/.cache.db"), clock=clock)
        limits = {**DEFAULT_LIMITS, **section(config, "rate_limits")}
        rate_limiter = RateLimiter(limits=limits, cache=cache, clock=clock)
        timeout = settings.timeout_seconds or 15

        built: Dict[str, Any] = {}

        def provider(name: Optional[str]) -> Any:
            if not name:
                return None
            if name in built:
                return built[name]
            if name == "yfinance":
                instance = YFinanceProvider(rate_limiter=rate_limiter, suffix=providers_cfg.get("suffix", ""))
            elif name == "finnhub":
                key = api_key("FINNHUB_API_KEY")
                instance = FinnhubProvider(key, rate_limiter=rate_limiter, timeout=timeout, clock=clock) if key else None
            elif name == "alpha_vantage":
                key = api_key("ALPHA_VANTAGE_API_KEY")
                instance = AlphaVantageProvider(key, rate_limiter=rate_limiter, timeout=timeout) if key else None
            elif name == "google_news":
                instance = GoogleNewsProvider(rate_limiter=rate_limiter)
            else:
                raise ConfigError(f"Unknown provider: {name}")
            if instance is None:
                logger.warning(f"EventsPipeline: provider '{name}' has no API key configured, skipping it")
            built[name] = instance
            return instance

        primary = provider(providers_cfg.get("primary", "yfinance"))
        if primary is None:
            raise ConfigError("The primary bar provider is not available (missing API key?)")

        news_providers = [
            p for p in (provider(name) for name in providers_cfg.get("news", ["finnhub", "google_news"])) if p
        ]
        if not news_providers:
            raise ConfigError("No news provider is available")

        sentiment = None
        if providers_cfg.get("sentiment", False):
            from stock_events.providers.sentiment import FinBERTProvider
            sentiment = FinBERTProvider()

        return cls(
            primary=primary,
            news=ChainedNewsProvider(news_providers),
            cache=cache,
            settings=settings,
            secondary=provider(providers_cfg.get("secondary")),
            profile=provider(providers_cfg.get("profile", "yfinance")),
            quote=provider(providers_cfg.get("quote", "yfinance")),
            sentiment=sentiment,
            clock=clock,
        )

    # ── public ────────────────────────────────────────────────────────────────

    def compute_events(self, symbol: str, timeout_seconds: Optional[float] = None) -> EventsResult:
        """Compute the ranked events for ``symbol``.

        Args:
            symbol: Ticker of the security.
            timeout_seconds: Wall-clock budget for the run; falls back to
                ``pipeline.timeout_seconds`` from config.

        Returns:
            EventsResult: Always well-formed. Degraded answers carry
            ``stale=True`` and an ``error`` message.

        Raises:
            ValidationError: ``symbol`` is malformed.
        """
        symbol = validate_symbol(symbol)
        now = self.clock()
        today = datetime.fromtimestamp(now, tz=timezone.utc).date()
        timeout = timeout_seconds if timeout_seconds is not None else self.settings.timeout_seconds
        ctx = PipelineContext(
            symbol=symbol,
            benchmark=self.settings.benchmark,
            today=today,
            min_date=today - timedelta(days=self.settings.lookback_days),
            clock=self.clock,
            deadline=now + timeout if timeout else None,
        )
        logger.info(f"EventsPipeline: computing events for {symbol} vs {ctx.benchmark} since {ctx.min_date}")

        try:
            for strategy in self.strategies:
                ctx.check_deadline()
                try:
                    outcome = strategy.attempt(ctx)
                except PipelineCancelled:
                    raise
                except StockEventsError as exc:
                    ctx.record_failure(strategy.name, exc)
                    continue
                except Exception as exc:
                    logger.error(
                        f"EventsPipeline: [{symbol}] tier '{strategy.name}' raised unexpectedly: {exc}",
                        exc_info=True,
                    )
                    ctx.record_failure(strategy.name, exc)
                    continue

                if outcome is CONTINUE:
                    logger.warning(f"EventsPipeline: [{symbol}] tier '{strategy.name}' had nothing, falling back")
                    continue
                logger.info(
                    f"EventsPipeline: [{symbol}] {len(outcome.events)} events from '{outcome.source}'"
                    f"{' (stale)' if outcome.stale else ''}"
                )
                return outcome
        except PipelineCancelled as exc:
            logger.error(f"EventsPipeline: [{symbol}] {exc}")
            return EventsResult(events=[], stale=True, error=str(exc), source="timeout")

        message = ctx.error or f"No event data available for {symbol}"
        logger.error(f"EventsPipeline: [{symbol}] every tier failed: {message}")
        return EventsResult(events=[], stale=True, error=message, source="none")

    # ── shared by the tiers ───────────────────────────────────────────────────

    def fetch_series(self, ctx: PipelineContext, symbol: str, timeframe: Timeframe) -> List[Bar]:
        """Primary-provider bars through the price cache; a stale copy stands in on failure."""
        ctx.check_deadline()
        key = f"{symbol}:{timeframe.value}"
        fetch = self.primary.get_daily if timeframe == Timeframe.DAILY else self.primary.get_weekly

        def produce() -> List[Bar]:
            bars = fetch(symbol)
            if not bars:
                raise InsufficientData(f"{self.primary.name} returned no {timeframe.value} bars for {symbol}")
            return bars

        try:
            return self.cache.get_or_fetch(
                PRICE_NAMESPACE, key, self.settings.price_ttl, produce, dump=bars_to_json, load=bars_from_json
            )
        except (ProviderError, InsufficientData) as exc:
            stale = self.cache.get_cached(PRICE_NAMESPACE, key, bars_from_json)
            if not stale:
                raise
            logger.warning(f"EventsPipeline: using stale {timeframe.value} bars for {symbol}: {exc}")
            ctx.stale = True
            return stale

    def fetch_all_series(self, ctx: PipelineContext) -> Dict[str, List[Bar]]:
        """Daily and weekly bars of the security and the benchmark, fetched side by side."""

        def both(symbol: str) -> Tuple[List[Bar], List[Bar]]:
            return (
                self.fetch_series(ctx, symbol, Timeframe.DAILY),
                self.fetch_series(ctx, symbol, Timeframe.WEEKLY),
            )

        with ThreadPoolExecutor(max_workers=2) as executor:
            stock_future = executor.submit(both, ctx.symbol)
            benchmark_future = executor.submit(both, ctx.benchmark)
            stock_daily, stock_weekly = stock_future.result()
            benchmark_daily, benchmark_weekly = benchmark_future.result()

        return {
            "stock_daily": stock_daily,
            "stock_weekly": stock_weekly,
            "benchmark_daily": benchmark_daily,
            "benchmark_weekly": benchmark_weekly,
        }

    def fetch_pair(self, ctx: PipelineContext, fetch: Callable[[str], List[Bar]]) -> Tuple[List[Bar], List[Bar]]:
        """``fetch`` for the security and the benchmark concurrently, bypassing the cache."""
        ctx.check_deadline()
        with ThreadPoolExecutor(max_workers=2) as executor:
            stock_future = executor.submit(fetch, ctx.symbol)
            benchmark_future = executor.submit(fetch, ctx.benchmark)
            return stock_future.result(), benchmark_future.result()

    def company_name(self, ctx: PipelineContext) -> Optional[str]:
        """Display name of the company, or None; looked up at most once per run."""
        if ctx.company_resolved:
            return ctx.company_name
        ctx.company_resolved = True
        if self.profile is None:
            return None
        try:
            profile = self.cache.get_or_fetch(
                PROFILE_NAMESPACE,
                ctx.symbol,
                self.settings.profile_ttl,
                lambda: self.profile.get_profile(ctx.symbol),
                dump=lambda p: p.to_dict() if p else {},
                load=CompanyProfile.from_dict,
            )
        except Exception as exc:
            logger.warning(f"EventsPipeline: profile lookup failed for {ctx.symbol}: {exc}")
            return None
        # An empty profile row marks "looked up, nothing found" until it expires.
        ctx.company_name = profile.name if profile else None
        return ctx.company_name

    def current_price(self, symbol: str) -> float:
        """Latest price from the quote provider; 0.0 when unavailable."""
        if self.quote is None:
            return 0.0
        try:
            price = self.quote.get_quote(symbol)
        except Exception as exc:
            logger.warning(f"EventsPipeline: quote lookup failed for {symbol}: {exc}")
            return 0.0
        return float(price) if price else 0.0

    def build_events(
        self,
        ctx: PipelineContext,
        anomalies: Sequence[PriceAnomaly],
        stock_bars: Sequence[Bar],
    ) -> List[StockEvent]:
        """Correlate, score and normalize ``anomalies`` into events."""
        correlated = self.correlator.correlate(ctx.symbol, anomalies, self.company_name(ctx))
        ctx.check_deadline()
        events = score_and_rank_events(correlated, stock_bars, ctx.symbol)
        return normalize_events(events, ctx.min_date)
