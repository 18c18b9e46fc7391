"""Tests for the SQLite cache: TTL entries, fingerprinted events, API usage."""

from datetime import date

import pytest

from stock_events.core.cache import SQLiteCache
from stock_events.core.errors import ProviderError
from stock_events.models.datatypes import (
    EventImpact, EventType, StockEvent, bars_from_json, bars_to_json,
)
from tests.helpers import make_bars


def _event(event_id: str = "abc123") -> StockEvent:
    return StockEvent(
        id=event_id,
        symbol="AAPL",
        date=date(2024, 6, 11),
        type=EventType.EARNINGS,
        title="AAPL slides",
        description="d",
        impact=EventImpact("extreme", "negative", 8.0, -8.0, 3.0),
        price_at_event=92.0,
        price_now=95.0,
        change_since_event=3.0,
        change_percent_since_event=3.26,
        daily_return=-8.0,
        benchmark_return=0.0,
        relative_return=-8.0,
        z_score=-5.9,
        news_articles=[],
        recovery_days=None,
        impact_score=3.4,
    )


class TestGetOrFetch:
    def test_fresh_entry_skips_the_producer(self, cache) -> None:
        calls = []

        def produce():
            calls.append(1)
            return {"v": 1}

        assert cache.get_or_fetch("ns", "k", 60, produce) == {"v": 1}
        assert cache.get_or_fetch("ns", "k", 60, produce) == {"v": 1}
        assert len(calls) == 1

    def test_expired_entry_is_refetched(self, cache, clock) -> None:
        values = iter([1, 2])
        cache.get_or_fetch("ns", "k", 60, lambda: next(values))
        clock.advance(61)

        assert cache.get_or_fetch("ns", "k", 60, lambda: next(values)) == 2

    def test_producer_error_keeps_stale_copy(self, cache, clock) -> None:
        """A failing refresh propagates and the old row stays readable."""
        bars = make_bars([1.0, 2.0, 3.0])
        cache.set("price", "AAPL:daily", bars, 60, dump=bars_to_json)
        clock.advance(3600)

        def fail():
            raise ProviderError("fake", "down")

        with pytest.raises(ProviderError):
            cache.get_or_fetch("price", "AAPL:daily", 60, fail, dump=bars_to_json, load=bars_from_json)
        assert cache.get_cached("price", "AAPL:daily", bars_from_json) == bars

    def test_codecs_round_trip_bars(self, cache) -> None:
        bars = make_bars([10.0, 11.0])
        cache.get_or_fetch("price", "X:daily", 60, lambda: bars, dump=bars_to_json, load=bars_from_json)

        assert cache.get_or_fetch("price", "X:daily", 60, lambda: [], dump=bars_to_json, load=bars_from_json) == bars

    def test_get_cached_miss_is_none(self, cache) -> None:
        assert cache.get_cached("ns", "missing") is None


class TestEventsCache:
    def test_hit_requires_matching_fingerprint(self, cache) -> None:
        cache.set_events_cache("AAPL", [_event()], "fp-1")

        assert cache.get_events_cache("AAPL", "fp-1") == [_event()]
        assert cache.get_events_cache("AAPL", "fp-2") is None

    def test_latest_ignores_fingerprint(self, cache) -> None:
        cache.set_events_cache("AAPL", [_event()], "fp-1")

        assert cache.get_latest_events("AAPL") == [_event()]
        assert cache.get_latest_events("MSFT") is None

    def test_last_writer_wins(self, cache) -> None:
        cache.set_events_cache("AAPL", [_event("one")], "fp-1")
        cache.set_events_cache("AAPL", [_event("two")], "fp-2")

        assert [e.id for e in cache.get_latest_events("AAPL")] == ["two"]

    def test_empty_event_set_is_a_hit(self, cache) -> None:
        cache.set_events_cache("AAPL", [], "fp-1")

        assert cache.get_events_cache("AAPL", "fp-1") == []


def test_api_usage_counts_since(cache, clock) -> None:
    cache.record_api_usage("finnhub", "quote", "AAPL")
    start = clock()
    clock.advance(10)
    cache.record_api_usage("finnhub", "quote", "AAPL")
    cache.record_api_usage("alpha_vantage", "TIME_SERIES_DAILY", "AAPL")

    assert cache.count_api_usage("finnhub", start) == 2
    assert cache.count_api_usage("finnhub", start + 1) == 1
    assert cache.count_api_usage("alpha_vantage", 0) == 1


def test_hash_data_is_key_order_independent() -> None:
    assert SQLiteCache.hash_data({"a": 1, "b": 2}) == SQLiteCache.hash_data({"b": 2, "a": 1})
    assert SQLiteCache.hash_data({"a": 1}) != SQLiteCache.hash_data({"a": 2})
