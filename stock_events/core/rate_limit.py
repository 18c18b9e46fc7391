"""Per-provider rate limiting: rolling per-minute window plus a daily quota."""

import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Deque, Dict, Mapping, Optional

from stock_events.core.cache import SQLiteCache
from stock_events.core.errors import RateLimited
from stock_events.core.logger import logger

# Free-tier limits of the providers the pipeline talks to.
DEFAULT_LIMITS: Dict[str, Dict[str, Optional[int]]] = {
    "alpha_vantage": {"daily": 25, "per_minute": 5},
    "finnhub": {"daily": None, "per_minute": 60},
    "yfinance": {"daily": None, "per_minute": 30},
    "google_news": {"daily": None, "per_minute": 20},
}


@dataclass(frozen=True)
class ProviderLimits:
    daily: Optional[int] = None
    per_minute: Optional[int] = None


class RateLimiter:
    """Fail-fast limiter shared by all provider clients of one pipeline.

    :meth:`acquire` raises :class:`RateLimited` when another call would exceed
    either limit, and otherwise counts the call under the same lock, so no
    network round trip is spent on a call the vendor would refuse.
    :meth:`check` and :meth:`record` are the two halves, for callers that only
    need to peek or to log a call made elsewhere.

    Daily usage is persisted through the cache's ``api_usage`` table when a
    cache is given (so the quota survives restarts), otherwise kept in memory.

    Args:
        limits: ``{provider: {"daily": int|None, "per_minute": int|None}}``.
            Providers not listed are unlimited.
        cache: Optional :class:`SQLiteCache` used to persist daily usage.
        clock: Returns the current UNIX time.
    """

    def __init__(
        self,
        limits: Optional[Mapping[str, Mapping[str, Any]]] = None,
        cache: Optional[SQLiteCache] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        raw = DEFAULT_LIMITS if limits is None else limits
        self.limits: Dict[str, ProviderLimits] = {
            name: ProviderLimits(daily=entry.get("daily"), per_minute=entry.get("per_minute"))
            for name, entry in raw.items()
        }
        self.cache = cache
        self.clock = clock
        self._minute_calls: Dict[str, Deque[float]] = {}
        self._day_calls: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def _start_of_day(self, now: float) -> float:
        return datetime.fromtimestamp(now).replace(hour=0, minute=0, second=0, microsecond=0).timestamp()

    def used_today(self, provider: str) -> int:
        now = self.clock()
        since = self._start_of_day(now)
        if self.cache is not None:
            return self.cache.count_api_usage(provider, since)
        calls = self._day_calls.get(provider, deque())
        while calls and calls[0] < since:
            calls.popleft()
        return len(calls)

    def _check_locked(self, provider: str, limits: ProviderLimits) -> None:
        if limits.daily is not None:
            used = self.used_today(provider)
            if used >= limits.daily:
                logger.warning(f"RateLimiter: {provider} daily quota exhausted ({used}/{limits.daily})")
                raise RateLimited(provider, limits.daily, used, window="day")

        if limits.per_minute is not None:
            now = self.clock()
            tracker = self._minute_calls.setdefault(provider, deque())
            while tracker and now - tracker[0] >= 60:
                tracker.popleft()
            if len(tracker) >= limits.per_minute:
                logger.warning(
                    f"RateLimiter: {provider} per-minute cap hit ({len(tracker)}/{limits.per_minute})"
                )
                raise RateLimited(provider, limits.per_minute, len(tracker), window="minute")

    def _record_locked(self, provider: str, endpoint: str, symbol: Optional[str]) -> None:
        now = self.clock()
        self._minute_calls.setdefault(provider, deque()).append(now)
        if self.cache is not None:
            self.cache.record_api_usage(provider, endpoint, symbol)
        else:
            self._day_calls.setdefault(provider, deque()).append(now)

    def check(self, provider: str) -> None:
        """Raise :class:`RateLimited` if one more call to ``provider`` would break a limit."""
        limits = self.limits.get(provider)
        if limits is None:
            return
        with self._lock:
            self._check_locked(provider, limits)

    def record(self, provider: str, endpoint: str, symbol: Optional[str] = None) -> None:
        """Count one call against ``provider``'s limits without checking them."""
        with self._lock:
            self._record_locked(provider, endpoint, symbol)

    def acquire(self, provider: str, endpoint: str, symbol: Optional[str] = None) -> None:
        """Check the limits and count the call in one step; raises :class:`RateLimited` when full.

        Provider clients call this right before each network attempt, so two
        threads can never both take the last slot.
        """
        limits = self.limits.get(provider)
        with self._lock:
            if limits is not None:
                self._check_locked(provider, limits)
            self._record_locked(provider, endpoint, symbol)
