"""Return and rolling-window statistics, computed with pandas.

Inputs are plain numeric sequences and results come back as lists of the same
length (``returns`` is one shorter). Positions without a full window hold
``nan`` so that nothing near the start of a series can look significant.
"""

from typing import List, Sequence

import pandas as pd


def _series(values: Sequence[float]) -> pd.Series:
    return pd.Series(list(values), dtype="float64")


def returns(prices: Sequence[float]) -> List[float]:
    """Period-over-period fractional change, one shorter than ``prices``.

    A zero prior price yields 0 instead of ``inf``.
    """
    series = _series(prices)
    prior = series.shift(1)
    changes = series.pct_change(fill_method=None).where(prior != 0, 0.0)
    return changes.iloc[1:].tolist()


def mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(_series(values).mean())


def rolling_mean(values: Sequence[float], window: int) -> List[float]:
    if window <= 0:
        raise ValueError(f"window must be positive, got {window}")
    return _series(values).rolling(window).mean().tolist()


def rolling_stddev(values: Sequence[float], window: int) -> List[float]:
    """Population standard deviation over each trailing window.

    A window of identical values has a deviation of exactly 0, whatever
    rounding the rolling kernel leaves behind.
    """
    if window <= 0:
        raise ValueError(f"window must be positive, got {window}")
    rolling = _series(values).rolling(window)
    flat = rolling.max() == rolling.min()
    return rolling.std(ddof=0).mask(flat, 0.0).tolist()


def trailing_ratios(values: Sequence[float], window: int) -> List[float]:
    """Each value over the mean of the ``window`` values before it; 1.0 when that mean is undefined or 0."""
    series = _series(values)
    prior_mean = series.rolling(window).mean().shift(1)
    return (series / prior_mean).where(prior_mean > 0, 1.0).tolist()


def z_score(value: float, mean_: float, stddev: float) -> float:
    """Standard score, or 0 when the window statistics are undefined or flat."""
    if pd.isna(mean_) or pd.isna(stddev) or stddev == 0:
        return 0.0
    return (value - mean_) / stddev


def z_scores(values: Sequence[float], means: Sequence[float], stddevs: Sequence[float]) -> List[float]:
    """Element-wise :func:`z_score`."""
    n = min(len(values), len(means), len(stddevs))
    value_s, mean_s, std_s = _series(values[:n]), _series(means[:n]), _series(stddevs[:n])
    defined = mean_s.notna() & (std_s > 0)
    return ((value_s - mean_s) / std_s).where(defined, 0.0).tolist()
