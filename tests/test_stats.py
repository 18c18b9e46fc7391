"""Tests for the return and rolling-window statistics."""

import math

import pytest

from stock_events.events import stats


def test_returns_is_one_shorter_and_fractional() -> None:
    """Returns are period-over-period fractions."""
    assert stats.returns([100.0, 110.0, 99.0]) == pytest.approx([0.1, -0.1])


def test_returns_zero_prior_price_yields_zero() -> None:
    """A zero prior price must not raise."""
    assert stats.returns([0.0, 5.0]) == [0.0]


def test_mean_of_empty_is_zero() -> None:
    assert stats.mean([]) == 0.0


def test_rolling_mean_pads_with_nan() -> None:
    """Positions before the first full window are nan."""
    out = stats.rolling_mean([1.0, 2.0, 3.0, 4.0], 3)

    assert math.isnan(out[0]) and math.isnan(out[1])
    assert out[2:] == pytest.approx([2.0, 3.0])


def test_rolling_mean_rejects_non_positive_window() -> None:
    with pytest.raises(ValueError):
        stats.rolling_mean([1.0], 0)


def test_rolling_stddev_is_population() -> None:
    """Population deviation of [1, 2, 3, 4] is sqrt(1.25)."""
    out = stats.rolling_stddev([1.0, 2.0, 3.0, 4.0], 4)

    assert out[-1] == pytest.approx(math.sqrt(1.25))


def test_flat_window_has_exactly_zero_deviation_and_zero_z() -> None:
    """A flat window yields stddev 0 and a z-score of exactly 0."""
    values = [0.1] * 10
    means = stats.rolling_mean(values, 5)
    stds = stats.rolling_stddev(values, 5)

    assert stds[4:] == [0.0] * 6
    assert stats.z_scores(values, means, stds)[4:] == [0.0] * 6


def test_z_score_undefined_window_is_zero() -> None:
    """nan statistics give a neutral z-score."""
    assert stats.z_score(1.0, float("nan"), 1.0) == 0.0
    assert stats.z_score(1.0, 0.0, float("nan")) == 0.0


def test_z_score_standardises() -> None:
    assert stats.z_score(3.0, 1.0, 0.5) == pytest.approx(4.0)


def test_returns_zero_prior_mid_series_yields_zero() -> None:
    assert stats.returns([0.0, 5.0, 10.0]) == pytest.approx([0.0, 1.0])


def test_trailing_ratios_use_only_earlier_values() -> None:
    """The current value is excluded from its own baseline."""
    assert stats.trailing_ratios([1.0, 1.0, 1.0, 4.0], 3) == pytest.approx([1.0, 1.0, 1.0, 4.0])


def test_trailing_ratios_zero_baseline_is_neutral() -> None:
    assert stats.trailing_ratios([0.0, 0.0, 5.0], 2) == [1.0, 1.0, 1.0]


def test_z_scores_are_zero_until_the_window_fills() -> None:
    values = [1.0, 2.0, 3.0, 10.0]
    means = stats.rolling_mean(values, 3)
    stds = stats.rolling_stddev(values, 3)

    out = stats.z_scores(values, means, stds)

    assert out[:2] == [0.0, 0.0]
    assert out[3] == pytest.approx(5.0 / math.sqrt(38.0 / 3.0))
