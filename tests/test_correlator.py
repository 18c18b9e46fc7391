"""Tests for news correlation, classification and narrative text."""

from datetime import date, datetime, timedelta, timezone

import pytest

from stock_events.core.errors import ProviderError
from stock_events.events.correlator import (
    MAX_ARTICLES, NewsCorrelator, classify_event, score_article_popularity, synthetic_narrative,
)
from stock_events.models.datatypes import EventType, PriceAnomaly, Timeframe
from stock_events.providers.base import SentimentProvider, SentimentResult
from tests.helpers import NOW, FakeNewsProvider, article

EVENT_DAY = date(2024, 6, 11)


def _anomaly(timeframe: Timeframe = Timeframe.DAILY, relative: float = -0.08, spike: float = 3.0) -> PriceAnomaly:
    return PriceAnomaly(
        index=45,
        date=EVENT_DAY,
        timeframe=timeframe,
        stock_return=relative,
        benchmark_return=0.0,
        relative_return=relative,
        z_score=-5.0,
        volume_spike=spike,
        close=92.0,
        volume=3_000_000.0,
    )


def _at(day: date, hour: int = 14) -> datetime:
    return datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)


class TestClassifyEvent:
    def test_earnings_headline(self) -> None:
        """Several earnings terms beat one guidance term."""
        event_type, relevance = classify_event(
            [article("AAPL beats earnings estimates as revenue jumps", _at(EVENT_DAY))]
        )

        assert event_type == EventType.EARNINGS
        assert relevance == pytest.approx(0.6)

    def test_no_keywords_is_unknown_with_zero_relevance(self) -> None:
        assert classify_event([article("Quiet day on the street", _at(EVENT_DAY))]) == (EventType.UNKNOWN, 0.0)

    def test_relevance_is_capped_at_one(self) -> None:
        headline = "earnings revenue profit quarterly fiscal eps guidance"
        _, relevance = classify_event([article(headline, _at(EVENT_DAY))] * 3)

        assert relevance == 1.0


def test_popularity_prefers_known_sources_and_recent_articles() -> None:
    """Source weight dominates; recency breaks ties."""
    fresh = article("a", NOW - timedelta(hours=1), source="Reuters")
    old = article("b", NOW - timedelta(hours=47), source="Reuters")
    unknown = article("c", NOW - timedelta(hours=1), source="Some Blog")

    assert score_article_popularity(fresh, NOW) > score_article_popularity(old, NOW)
    assert score_article_popularity(fresh, NOW) > score_article_popularity(unknown, NOW)


def test_synthetic_narrative_describes_the_move() -> None:
    title, description = synthetic_narrative("AAPL", _anomaly())

    assert title == "AAPL drops 8.0% in a day on heavy volume"
    assert "decline of 8.0%" in description
    assert "trailing the benchmark by 8.0 percentage points" in description


class _StubSentiment(SentimentProvider):
    def analyze(self, text: str) -> SentimentResult:
        return SentimentResult(label="Negative", score=-0.9, raw_label="negative", raw_score=0.9)


class TestNewsCorrelator:
    def _correlator(self, cache, clock, articles, **kwargs) -> NewsCorrelator:
        return NewsCorrelator(FakeNewsProvider({"AAPL": articles}), cache, clock=clock, **kwargs)

    def test_same_day_article_names_the_event(self, cache, clock) -> None:
        """The top same-day headline becomes the title and drives the type."""
        articles = [
            article("AAPL slides after earnings miss and weak revenue", _at(EVENT_DAY)),
            article("AAPL supplier news", _at(EVENT_DAY - timedelta(days=1)), source="Some Blog"),
        ]
        [result] = self._correlator(cache, clock, articles).correlate("AAPL", [_anomaly()])

        assert result.event_type == EventType.EARNINGS
        assert result.title == "AAPL slides after earnings miss and weak revenue"
        assert [a.headline for a in result.news_articles] == ["AAPL slides after earnings miss and weak revenue"]
        assert "Key headlines around this date" in result.description

    def test_articles_not_mentioning_the_company_are_ignored(self, cache, clock) -> None:
        articles = [article("Oil prices jump on supply fears", _at(EVENT_DAY))]

        [result] = self._correlator(cache, clock, articles).correlate("AAPL", [_anomaly()])

        assert result.news_articles == []
        assert result.event_type == EventType.UNKNOWN
        assert result.title == "AAPL drops 8.0% in a day on heavy volume"

    def test_company_name_widens_matching(self, cache, clock) -> None:
        """A profile name lets articles that never print the ticker count."""
        articles = [article("Apple unveils new product line", _at(EVENT_DAY))]

        [result] = self._correlator(cache, clock, articles).correlate("AAPL", [_anomaly()], company_name="Apple Inc.")

        assert len(result.news_articles) == 1

    def test_low_relevance_is_unknown(self, cache, clock) -> None:
        """A single keyword hit (relevance 0.2) is not enough to classify."""
        articles = [article("AAPL launch day", _at(EVENT_DAY))]

        [result] = self._correlator(cache, clock, articles).correlate("AAPL", [_anomaly()])

        assert result.event_type == EventType.UNKNOWN
        assert result.news_relevance == pytest.approx(0.2)

    def test_keeps_at_most_five_articles(self, cache, clock) -> None:
        articles = [article(f"AAPL story number {i}", _at(EVENT_DAY, hour=8 + i), article_id=str(i)) for i in range(8)]

        [result] = self._correlator(cache, clock, articles).correlate("AAPL", [_anomaly()])

        assert len(result.news_articles) == MAX_ARTICLES

    def test_long_headline_title_is_truncated(self, cache, clock) -> None:
        headline = "AAPL " + "x" * 200
        [result] = self._correlator(cache, clock, [article(headline, _at(EVENT_DAY))]).correlate("AAPL", [_anomaly()])

        assert len(result.title) == 80
        assert result.title.endswith("...")

    def test_news_windows_are_cached(self, cache, clock) -> None:
        """A second correlation of the same anomaly does not hit the provider."""
        news = FakeNewsProvider({"AAPL": [article("AAPL earnings", _at(EVENT_DAY))]})
        correlator = NewsCorrelator(news, cache, clock=clock)

        correlator.correlate("AAPL", [_anomaly()])
        correlator.correlate("AAPL", [_anomaly()])

        assert len(news.calls) == 1
        assert news.calls[0][1:] == (EVENT_DAY - timedelta(days=1), EVENT_DAY + timedelta(days=1))

    def test_provider_failure_degrades_to_synthetic_text(self, cache, clock) -> None:
        news = FakeNewsProvider(error=ProviderError("fake_news", "boom"))

        [result] = NewsCorrelator(news, cache, clock=clock).correlate("AAPL", [_anomaly(Timeframe.WEEKLY, 0.05, 1.0)])

        assert result.news_articles == []
        assert result.title == "AAPL rises 5.0% in a week on notable volume"

    def test_sentiment_tags_kept_articles(self, cache, clock) -> None:
        articles = [article("AAPL earnings miss", _at(EVENT_DAY))]

        [result] = self._correlator(cache, clock, articles, sentiment=_StubSentiment()).correlate("AAPL", [_anomaly()])

        assert result.news_articles[0].sentiment == "negative"
