"""Time bucketing and time-series statistics.

Pure numeric helpers used by the temporal engine. Everything here works on
plain sequences of floats and returns numpy arrays or Python floats; nothing
knows about events or patterns.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Literal

import numpy as np

Granularity = Literal["hour", "day", "week", "month", "year"]

GRANULARITIES: tuple[str, ...] = ("hour", "day", "week", "month", "year")

_FIXED_WIDTHS: dict[str, timedelta] = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
}


@dataclass(frozen=True)
class TimeWindow:
    """A half-open interval [start, end) with a display label."""

    start: datetime
    end: datetime
    label: str = ""

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


def next_boundary(moment: datetime, granularity: str) -> datetime:
    """Start of the bucket after the one beginning at `moment`.

    Hour, day and week buckets have fixed widths. Month and year buckets end
    on the next calendar boundary (first of the month, January 1st, UTC).
    """
    if granularity in _FIXED_WIDTHS:
        return moment + _FIXED_WIDTHS[granularity]
    if granularity == "month":
        if moment.month == 12:
            return datetime(moment.year + 1, 1, 1, tzinfo=UTC)
        return datetime(moment.year, moment.month + 1, 1, tzinfo=UTC)
    if granularity == "year":
        return datetime(moment.year + 1, 1, 1, tzinfo=UTC)
    raise ValueError(f"Unknown granularity '{granularity}'")


def create_time_buckets(window: TimeWindow, granularity: str) -> list[TimeWindow]:
    """Split a window into contiguous buckets; the last one is clipped to window.end.

    Examples:
        >>> start = datetime(2024, 1, 1, tzinfo=UTC)
        >>> len(create_time_buckets(TimeWindow(start, start + timedelta(days=10)), "day"))
        10
    """
    buckets = []
    current = window.start
    while current < window.end:
        bucket_end = min(next_boundary(current, granularity), window.end)
        buckets.append(TimeWindow(current, bucket_end, format_time_label(current, granularity)))
        current = bucket_end
    return buckets


def format_time_label(moment: datetime, granularity: str) -> str:
    if granularity == "hour":
        return moment.strftime("%Y-%m-%dT%H:00")
    if granularity == "week":
        return f"Week of {moment.strftime('%Y-%m-%d')}"
    if granularity == "month":
        return moment.strftime("%Y-%m")
    if granularity == "year":
        return str(moment.year)
    return moment.strftime("%Y-%m-%d")


def adjust_period_for_granularity(period_days: int, granularity: str) -> int:
    """Convert a period in days to a lag in buckets of the given granularity."""
    if granularity == "hour":
        return period_days * 24
    if granularity == "week":
        return math.ceil(period_days / 7)
    if granularity == "month":
        return math.ceil(period_days / 30)
    if granularity == "year":
        return math.ceil(period_days / 365)
    return period_days


def mean_and_std(values: Sequence[float]) -> tuple[float, float]:
    """Mean and population standard deviation; (0, 0) for an empty series."""
    if len(values) == 0:
        return 0.0, 0.0
    arr = np.asarray(values, dtype=float)
    return float(arr.mean()), float(arr.std())


def moving_average(values: Sequence[float], window: int) -> np.ndarray:
    """Centered moving average, shrinking at the edges.

    Point i averages values[i - window // 2 : i + ceil(window / 2)].

    Examples:
        >>> moving_average([0, 3, 6], 3).tolist()
        [1.5, 3.0, 4.5]
    """
    arr = np.asarray(values, dtype=float)
    n = len(arr)
    if n == 0 or window <= 1:
        return arr.copy()
    before = window // 2
    after = math.ceil(window / 2)
    cumulative = np.concatenate(([0.0], np.cumsum(arr)))
    idx = np.arange(n)
    lo = np.maximum(0, idx - before)
    hi = np.minimum(n, idx + after)
    return (cumulative[hi] - cumulative[lo]) / (hi - lo)


def exponential_smoothing(values: Sequence[float], alpha: float = 0.3) -> np.ndarray:
    """Simple exponential smoothing seeded with the first value."""
    arr = np.asarray(values, dtype=float)
    smoothed = np.empty_like(arr)
    if len(arr) == 0:
        return smoothed
    smoothed[0] = arr[0]
    for i in range(1, len(arr)):
        smoothed[i] = alpha * arr[i] + (1 - alpha) * smoothed[i - 1]
    return smoothed


def autocorrelation(values: Sequence[float], lag: int) -> float:
    """Correlation between the series and itself shifted by `lag` buckets.

    Computed as the Pearson correlation of values[:-lag] and values[lag:],
    so an exactly periodic series scores 1.0 at its period whatever its
    length. Returns 0.0 when either side is constant or too short.
    """
    arr = np.asarray(values, dtype=float)
    if lag <= 0 or lag >= len(arr) - 1:
        return 0.0
    head = arr[:-lag]
    tail = arr[lag:]
    if head.std() == 0 or tail.std() == 0:
        return 0.0
    return float(np.corrcoef(head, tail)[0, 1])


def cyclical_strength(values: Sequence[float]) -> float:
    """Largest absolute autocorrelation over lags 1 .. min(n / 3, 30)."""
    max_lag = min(len(values) / 3, 30)
    strongest = 0.0
    lag = 1
    while lag < max_lag:
        strongest = max(strongest, abs(autocorrelation(values, lag)))
        lag += 1
    return strongest


@dataclass(frozen=True)
class Regression:
    """Least-squares fit of value against bucket index."""

    slope: float
    intercept: float
    r_squared: float


def linear_regression(values: Sequence[float]) -> Regression:
    """Fit y = slope * i + intercept over i = 0 .. n-1.

    R² is 0 when the series is constant.
    """
    y = np.asarray(values, dtype=float)
    n = len(y)
    if n == 0:
        return Regression(0.0, 0.0, 0.0)
    if n == 1:
        return Regression(0.0, float(y[0]), 0.0)
    x = np.arange(n, dtype=float)
    slope, intercept = np.polyfit(x, y, 1)
    predicted = slope * x + intercept
    ss_res = float(np.sum((y - predicted) ** 2))
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    r_squared = 1 - ss_res / ss_tot if ss_tot > 0 else 0.0
    return Regression(float(slope), float(intercept), r_squared)
