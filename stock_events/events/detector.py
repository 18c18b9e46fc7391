"""Abnormal-move detection: security returns measured against a benchmark.

Pipeline per call:
  1. Align both series on exact dates (unmatched dates are dropped)
  2. Relative return = security return - benchmark return
  3. Rolling z-score of the relative return, plus a volume-spike ratio
  4. Flag significant dates (a volume surge relaxes the threshold)
  5. Collapse runs of nearby flags into their strongest member
"""

from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence, Tuple

from stock_events.core.logger import logger
from stock_events.events import stats
from stock_events.models.datatypes import Bar, PriceAnomaly, Timeframe

# A volume spike lowers the z-score bar to this fraction of the threshold.
VOLUME_RELAXATION = 0.85


@dataclass(frozen=True)
class DetectionOptions:
    rolling_window: int = 60
    volume_window: int = 20
    z_threshold: float = 2.0
    volume_spike_threshold: float = 2.0
    cluster_days: int = 2
    timeframe: Timeframe = Timeframe.DAILY


def align_series(stock_bars: Sequence[Bar], benchmark_bars: Sequence[Bar]) -> List[Tuple[Bar, Bar]]:
    """Pair security and benchmark bars that share a date, in the security's order."""
    benchmark_by_date = {b.date: b for b in benchmark_bars}
    return [(s, benchmark_by_date[s.date]) for s in stock_bars if s.date in benchmark_by_date]


def detect_anomalies(
    stock_bars: Sequence[Bar],
    benchmark_bars: Sequence[Bar],
    options: DetectionOptions = DetectionOptions(),
) -> List[PriceAnomaly]:
    """
    Return the statistically significant relative moves, one per cluster, ordered by date.

    Args:
        stock_bars: Security bars, ascending by date.
        benchmark_bars: Benchmark bars, ascending by date.
        options: Window sizes and thresholds.

    Returns:
        List[PriceAnomaly]: Empty when fewer than ``rolling_window + 1`` dates align.
    """
    aligned = align_series(stock_bars, benchmark_bars)
    if len(aligned) <= options.rolling_window:
        logger.debug(
            f"detect_anomalies: {len(aligned)} aligned {options.timeframe.value} bars, "
            f"need more than {options.rolling_window}"
        )
        return []

    stock_returns = stats.returns([s.close for s, _ in aligned])
    benchmark_returns = stats.returns([b.close for _, b in aligned])
    relative = [s - b for s, b in zip(stock_returns, benchmark_returns)]

    roll_mean = stats.rolling_mean(relative, options.rolling_window)
    roll_std = stats.rolling_stddev(relative, options.rolling_window)
    z = stats.z_scores(relative, roll_mean, roll_std)

    # returns[i] belongs to aligned[i + 1]
    volumes = [s.volume for s, _ in aligned[1:]]
    spikes = stats.trailing_ratios(volumes, options.volume_window)

    flagged: List[PriceAnomaly] = []
    for i in range(options.rolling_window, len(z)):
        threshold = options.z_threshold
        if spikes[i] >= options.volume_spike_threshold:
            threshold *= VOLUME_RELAXATION
        if abs(z[i]) < threshold:
            continue
        bar = aligned[i + 1][0]
        flagged.append(
            PriceAnomaly(
                index=i + 1,
                date=bar.date,
                timeframe=options.timeframe,
                stock_return=stock_returns[i],
                benchmark_return=benchmark_returns[i],
                relative_return=relative[i],
                z_score=z[i],
                volume_spike=spikes[i],
                close=bar.close,
                volume=volumes[i],
            )
        )

    clustered = cluster_anomalies(flagged, options.cluster_days)
    logger.debug(
        f"detect_anomalies: {len(flagged)} flagged {options.timeframe.value} dates "
        f"→ {len(clustered)} after clustering"
    )
    return clustered


def cluster_anomalies(anomalies: Sequence[PriceAnomaly], cluster_days: int) -> List[PriceAnomaly]:
    """Keep the highest-|z| anomaly of each run of flags.

    A flag joins the current run when it is at most ``cluster_days`` calendar
    days after the previous flag of that run (chain distance, so a slow drift
    of flags can form one long run).
    """
    if not anomalies:
        return []

    ordered = sorted(anomalies, key=lambda a: a.date)
    clusters: List[List[PriceAnomaly]] = [[ordered[0]]]
    for anomaly in ordered[1:]:
        if (anomaly.date - clusters[-1][-1].date).days <= cluster_days:
            clusters[-1].append(anomaly)
        else:
            clusters.append([anomaly])

    survivors = []
    for cluster in clusters:
        best = cluster[0]
        for candidate in cluster[1:]:
            if abs(candidate.z_score) > abs(best.z_score):
                best = candidate
        survivors.append(best)
    return survivors


def top_by_abs_z(anomalies: Sequence[PriceAnomaly], limit: int) -> List[PriceAnomaly]:
    return sorted(anomalies, key=lambda a: abs(a.z_score), reverse=True)[:limit]


def select_top_relative_moves(
    stock_bars: Sequence[Bar],
    benchmark_bars: Sequence[Bar],
    min_date: Optional[date] = None,
    timeframe: Timeframe = Timeframe.DAILY,
    limit: int = 8,
    volume_window: int = 20,
) -> List[PriceAnomaly]:
    """Rank aligned dates by raw |relative return| when no date passes the significance test.

    ``z_score`` on the returned anomalies is ``|relative return| * 100``, a
    ranking proxy rather than a statistic. Needs at least three aligned bars.
    """
    aligned = align_series(stock_bars, benchmark_bars)
    if len(aligned) < 3:
        return []

    candidates: List[PriceAnomaly] = []
    for i in range(1, len(aligned)):
        prev_stock, prev_bench = aligned[i - 1]
        stock, bench = aligned[i]
        stock_return = (stock.close - prev_stock.close) / prev_stock.close if prev_stock.close else 0.0
        bench_return = (bench.close - prev_bench.close) / prev_bench.close if prev_bench.close else 0.0
        relative = stock_return - bench_return

        window = [s.volume for s, _ in aligned[max(1, i - volume_window) : i]]
        avg_volume = stats.mean(window) if window else stock.volume
        volume_spike = stock.volume / avg_volume if avg_volume > 0 else 1.0

        candidates.append(
            PriceAnomaly(
                index=i,
                date=stock.date,
                timeframe=timeframe,
                stock_return=stock_return,
                benchmark_return=bench_return,
                relative_return=relative,
                z_score=abs(relative) * 100,
                volume_spike=volume_spike,
                close=stock.close,
                volume=stock.volume,
            )
        )

    if min_date is not None:
        candidates = [c for c in candidates if c.date >= min_date]
    candidates.sort(key=lambda c: abs(c.relative_return), reverse=True)
    return candidates[:limit]
