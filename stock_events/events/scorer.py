"""Turn correlated anomalies into ranked :class:`StockEvent` records."""

import hashlib
from dataclasses import replace
from typing import Dict, List, Optional, Sequence

from stock_events.models.datatypes import (
    Bar, CorrelatedAnomaly, Direction, EventImpact, Magnitude, PriceAnomaly, StockEvent,
)


def magnitude_for(z_score: float) -> Magnitude:
    abs_z = abs(z_score)
    if abs_z >= 3.0:
        return "extreme"
    if abs_z >= 2.5:
        return "high"
    return "moderate"


def compute_impact_score(abs_z: float, volume_spike: float, news_relevance: float) -> float:
    """Statistical significance dominates; volume and news corroborate."""
    return abs_z * 0.5 + min(volume_spike / 5, 1.0) * 0.3 + news_relevance * 0.2


def compute_recovery_days(anomaly: PriceAnomaly, bars: Sequence[Bar]) -> Optional[int]:
    """
    Trading bars until the price got back to where it was before the event.

    Negative events: bars from the event until the close first reaches the
    pre-event close (the previous bar's close), None if it never has.
    Positive events: 0 when no later close dipped below the event close,
    otherwise None. None as well when the event date is not in ``bars`` or is
    the last bar.
    """
    event_idx = next((i for i, bar in enumerate(bars) if bar.date == anomaly.date), None)
    if event_idx is None or event_idx >= len(bars) - 1:
        return None

    if anomaly.relative_return >= 0:
        dipped = any(bar.close < anomaly.close for bar in bars[event_idx + 1 :])
        return None if dipped else 0

    pre_event_close = bars[event_idx - 1].close if event_idx > 0 else anomaly.close
    for i in range(event_idx + 1, len(bars)):
        if bars[i].close >= pre_event_close:
            return i - event_idx
    return None


def event_id(symbol: str, anomaly: PriceAnomaly, event_type: str, title: str) -> str:
    """Content-derived id: identical inputs always produce the same id."""
    raw = f"{symbol}:{anomaly.timeframe.value}:{anomaly.date.isoformat()}:{event_type}:{title}"
    return hashlib.md5(raw.encode("utf-8")).hexdigest()[:12]


def dedupe_event_ids(events: Sequence[StockEvent]) -> List[StockEvent]:
    """Give repeated ids a ``-2``, ``-3``... suffix; the first occurrence keeps its id."""
    seen: Dict[str, int] = {}
    out: List[StockEvent] = []
    for event in events:
        count = seen.get(event.id, 0) + 1
        seen[event.id] = count
        out.append(event if count == 1 else replace(event, id=f"{event.id}-{count}"))
    return out


def score_and_rank_events(
    correlated: Sequence[CorrelatedAnomaly],
    stock_bars: Sequence[Bar],
    symbol: str,
) -> List[StockEvent]:
    """
    Score, rank, and enrich correlated anomalies into full StockEvent objects.

    Args:
        correlated: Output of the news correlator.
        stock_bars: The security's daily bars; the last close is "price now"
            and recovery is measured on them.
        symbol: The ticker symbol.

    Returns:
        List[StockEvent]: Sorted by impact score, highest first.
    """
    current_price = stock_bars[-1].close if stock_bars else 0.0
    events: List[StockEvent] = []

    for ca in correlated:
        anomaly = ca.anomaly
        abs_z = abs(anomaly.z_score)
        direction: Direction = "positive" if anomaly.relative_return >= 0 else "negative"

        impact = EventImpact(
            magnitude=magnitude_for(anomaly.z_score),
            direction=direction,
            absolute_move=abs(anomaly.stock_return * anomaly.close),
            percent_move=anomaly.stock_return * 100,
            volume_spike=anomaly.volume_spike,
        )
        change = current_price - anomaly.close
        change_pct = (change / anomaly.close) * 100 if anomaly.close else 0.0

        events.append(
            StockEvent(
                id=event_id(symbol, anomaly, ca.event_type.value, ca.title),
                symbol=symbol,
                date=anomaly.date,
                type=ca.event_type,
                title=ca.title,
                description=ca.description,
                impact=impact,
                price_at_event=anomaly.close,
                price_now=current_price,
                change_since_event=change,
                change_percent_since_event=change_pct,
                daily_return=anomaly.stock_return * 100,
                benchmark_return=anomaly.benchmark_return * 100,
                relative_return=anomaly.relative_return * 100,
                z_score=anomaly.z_score,
                news_articles=list(ca.news_articles),
                recovery_days=compute_recovery_days(anomaly, stock_bars),
                impact_score=compute_impact_score(abs_z, anomaly.volume_spike, ca.news_relevance),
            )
        )

    events.sort(key=lambda e: e.impact_score, reverse=True)
    return dedupe_event_ids(events)
