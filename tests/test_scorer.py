"""Tests for event scoring, recovery measurement and id handling."""

from dataclasses import replace
from datetime import date

import pytest

from stock_events.events.scorer import (
    compute_impact_score, compute_recovery_days, dedupe_event_ids, event_id, magnitude_for,
    score_and_rank_events,
)
from stock_events.models.datatypes import CorrelatedAnomaly, EventType, PriceAnomaly, Timeframe
from tests.helpers import make_bars


def _anomaly(bars, index: int, relative: float, z: float = -3.0, spike: float = 1.0) -> PriceAnomaly:
    return PriceAnomaly(
        index=index,
        date=bars[index].date,
        timeframe=Timeframe.DAILY,
        stock_return=relative,
        benchmark_return=0.0,
        relative_return=relative,
        z_score=z,
        volume_spike=spike,
        close=bars[index].close,
        volume=bars[index].volume,
    )


class TestRecoveryDays:
    def test_negative_event_counts_bars_to_pre_event_close(self) -> None:
        """First bar whose close reaches the previous close ends the recovery."""
        bars = make_bars([100.0, 100.0, 90.0, 92.0, 95.0, 101.0, 99.0])

        assert compute_recovery_days(_anomaly(bars, 2, -0.1), bars) == 3

    def test_negative_event_that_never_recovers(self) -> None:
        bars = make_bars([100.0, 100.0, 90.0, 92.0, 95.0])

        assert compute_recovery_days(_anomaly(bars, 2, -0.1), bars) is None

    def test_positive_event_that_held(self) -> None:
        bars = make_bars([100.0, 110.0, 111.0, 112.0])

        assert compute_recovery_days(_anomaly(bars, 1, 0.1, z=3.0), bars) == 0

    def test_positive_event_that_gave_back(self) -> None:
        bars = make_bars([100.0, 110.0, 105.0, 112.0])

        assert compute_recovery_days(_anomaly(bars, 1, 0.1, z=3.0), bars) is None

    def test_event_on_last_bar_is_undefined(self) -> None:
        bars = make_bars([100.0, 90.0])

        assert compute_recovery_days(_anomaly(bars, 1, -0.1), bars) is None


@pytest.mark.parametrize("z, expected", [(3.2, "extreme"), (-3.0, "extreme"), (2.7, "high"), (1.9, "moderate")])
def test_magnitude_for(z: float, expected: str) -> None:
    assert magnitude_for(z) == expected


def test_impact_score_grows_with_significance() -> None:
    """Larger |z| with equal volume and relevance scores strictly higher."""
    assert compute_impact_score(3.5, 2.0, 0.4) > compute_impact_score(2.0, 2.0, 0.4)


def test_impact_score_caps_volume_contribution() -> None:
    assert compute_impact_score(2.0, 50.0, 0.0) == pytest.approx(2.0 * 0.5 + 0.3)


def test_event_id_is_stable() -> None:
    bars = make_bars([100.0, 90.0, 91.0])
    anomaly = _anomaly(bars, 1, -0.1)

    assert event_id("AAPL", anomaly, "earnings", "t") == event_id("AAPL", anomaly, "earnings", "t")
    assert event_id("AAPL", anomaly, "earnings", "t") != event_id("AAPL", anomaly, "macro", "t")


class TestScoreAndRank:
    def _correlated(self, anomaly: PriceAnomaly, relevance: float = 0.0, title: str = "title") -> CorrelatedAnomaly:
        return CorrelatedAnomaly(
            anomaly=anomaly,
            event_type=EventType.UNKNOWN,
            title=title,
            description="d",
            news_relevance=relevance,
        )

    def test_events_are_ordered_by_impact_score(self) -> None:
        bars = make_bars([100.0, 90.0, 91.0, 99.0, 100.0])
        weak = _anomaly(bars, 1, -0.1, z=-2.0)
        strong = _anomaly(bars, 3, 0.088, z=3.5)

        events = score_and_rank_events([self._correlated(weak), self._correlated(strong)], bars, "AAPL")

        assert [e.date for e in events] == [strong.date, weak.date]
        assert events[0].impact.magnitude == "extreme"
        assert events[1].impact.magnitude == "moderate"

    def test_event_fields_are_in_percent(self) -> None:
        bars = make_bars([100.0, 90.0, 95.0])
        events = score_and_rank_events([self._correlated(_anomaly(bars, 1, -0.1))], bars, "AAPL")

        event = events[0]
        assert event.daily_return == pytest.approx(-10.0)
        assert event.relative_return == pytest.approx(-10.0)
        assert event.price_at_event == 90.0
        assert event.price_now == 95.0
        assert event.change_percent_since_event == pytest.approx(5 / 90 * 100)
        assert event.impact.direction == "negative"

    def test_duplicate_ids_get_suffixes(self) -> None:
        bars = make_bars([100.0, 90.0, 95.0])
        anomaly = _anomaly(bars, 1, -0.1)

        events = score_and_rank_events([self._correlated(anomaly), self._correlated(anomaly)], bars, "AAPL")

        assert events[1].id == f"{events[0].id}-2"


def test_dedupe_event_ids_leaves_unique_ids_alone() -> None:
    bars = make_bars([100.0, 90.0, 95.0])
    [event] = score_and_rank_events(
        [CorrelatedAnomaly(anomaly=_anomaly(bars, 1, -0.1), event_type=EventType.MACRO, title="t", description="d")],
        bars,
        "AAPL",
    )
    renamed = replace(event, id="other")

    assert [e.id for e in dedupe_event_ids([event, renamed, event, event])] == [
        event.id, "other", f"{event.id}-2", f"{event.id}-3",
    ]
