"""Temporal pattern analysis over the event log.

TemporalEngine buckets event log entries into a time series, runs five
pattern detectors (periodic, trending, seasonal, burst, decay), summarizes
activity metrics, detects anomalies and makes a short-horizon forecast.
It is independent of the knowledge graph.

Results are cached per query. The caches are never invalidated when the
event log grows; call clear_caches() to see new entries.
"""

import calendar
import json
import logging
import math
from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

import numpy as np

from trellis.core.config import DEFAULT_CONFIG, TrellisConfig
from trellis.core.eventlog import EventLog
from trellis.core.exceptions import AnalysisError
from trellis.core.timeseries import (
    GRANULARITIES,
    TimeWindow,
    adjust_period_for_granularity,
    autocorrelation,
    create_time_buckets,
    cyclical_strength,
    exponential_smoothing,
    linear_regression,
    mean_and_std,
    moving_average,
    next_boundary,
)
from trellis.core.types import MemoryEntry

logger = logging.getLogger(__name__)

Aggregation = Literal["count", "success_rate", "activity_level", "diversity"]
PatternType = Literal["periodic", "trending", "seasonal", "burst", "decay"]
AnomalyType = Literal["spike", "drought", "shift"]

AGGREGATIONS: tuple[str, ...] = ("count", "success_rate", "activity_level", "diversity")
SMOOTHING_METHODS: tuple[str, ...] = ("moving_average", "exponential")

# Candidate cycle lengths in days: daily, weekly, monthly, yearly
CANDIDATE_PERIODS: tuple[int, ...] = (1, 7, 30, 365)

DEFAULT_RANGE_DAYS = 30

Listener = Callable[[dict[str, Any]], None]


@dataclass(frozen=True)
class QueryFilters:
    """Entry filters. Each populated field must match."""

    types: tuple[str, ...] | None = None
    projects: tuple[str, ...] | None = None
    outcomes: tuple[str, ...] | None = None
    tags: tuple[str, ...] | None = None


@dataclass(frozen=True)
class SmoothingOptions:
    enabled: bool = True
    method: str = "moving_average"
    window: int = 7


@dataclass(frozen=True)
class TemporalQuery:
    """What to bucket and how.

    Attributes:
        granularity: Bucket width.
        aggregation: Value computed per bucket.
        time_range: Window to analyze; the last 30 days when None.
        filters: Entry filters.
        smoothing: Smoothing applied to the bucket values.
    """

    granularity: str = "day"
    aggregation: str = "count"
    time_range: TimeWindow | None = None
    filters: QueryFilters | None = None
    smoothing: SmoothingOptions | None = None


@dataclass(frozen=True)
class DataPoint:
    """One bucket of the time series."""

    timestamp: datetime
    value: float
    entry_count: int = 0
    types: tuple[str, ...] = ()


@dataclass(frozen=True)
class TemporalPattern:
    """A detected regularity in the time series.

    Attributes:
        type: Detector that produced it.
        confidence: Strength of the detection in [0, 1].
        description: Human-readable summary.
        data_points: Points supporting the pattern.
        period: Cycle length for periodic patterns.
        trend: Direction for trending patterns.
        seasonality: Cycle name for seasonal patterns.
        half_life: Buckets for the value to halve, for decay patterns.
    """

    type: PatternType
    confidence: float
    description: str
    data_points: tuple[DataPoint, ...] = ()
    period: timedelta | None = None
    trend: Literal["increasing", "decreasing", "stable"] | None = None
    seasonality: Literal["daily", "weekly", "monthly", "yearly"] | None = None
    half_life: float | None = None


@dataclass(frozen=True)
class TemporalMetrics:
    """Summary statistics over the bucketed series.

    Attributes:
        activity_level: Total over (buckets * peak), in [0, 1].
        growth_rate: Percentage change from first half to second half.
        peak_timestamp: Start of the busiest bucket.
        peak_value: Value of the busiest bucket.
        average_interval: Mean gap between bucket starts.
        consistency: 1 - coefficient of variation, floored at 0.
        cyclical_strength: Largest absolute autocorrelation over short lags.
    """

    activity_level: float
    growth_rate: float
    peak_timestamp: datetime | None
    peak_value: float
    average_interval: timedelta
    consistency: float
    cyclical_strength: float


@dataclass(frozen=True)
class Anomaly:
    timestamp: datetime
    type: AnomalyType
    severity: float
    description: str


@dataclass(frozen=True)
class NextActivity:
    """Forecast for the bucket after the analyzed range."""

    probability: float
    time_range: TimeWindow
    expected_count: int
    confidence: float


@dataclass(frozen=True)
class PredictionResult:
    next_activity: NextActivity
    short_term: tuple[TemporalPattern, ...]
    long_term: tuple[TemporalPattern, ...]
    anomalies: tuple[Anomaly, ...]
    recommendations: tuple[str, ...]


@dataclass(frozen=True)
class TemporalInsight:
    type: Literal["pattern", "anomaly", "trend", "prediction"]
    title: str
    description: str
    confidence: float
    timeframe: TimeWindow
    actionable: bool
    recommendations: tuple[str, ...] = field(default_factory=tuple)


def _is_success(entry: MemoryEntry) -> bool:
    return entry.data.get("outcome") == "success" or entry.data.get("success") is True


def activity_level(entries: list[MemoryEntry]) -> float:
    """Composite activity score for one bucket, in [0, 1].

    Count contributes up to 1.0 (saturating at 10 entries), each distinct
    entry type adds 0.1 and the success ratio adds up to 0.3.
    """
    if not entries:
        return 0.0
    score = min(1.0, len(entries) / 10)
    score += len({e.type for e in entries}) * 0.1
    score += sum(1 for e in entries if _is_success(e)) / len(entries) * 0.3
    return min(1.0, score)


class TemporalEngine:
    """Pattern mining and forecasting over an event log.

    Args:
        event_log: Source of entries.
        config: Detection thresholds.
        clock: Source of the current time, used for the default range.
    """

    def __init__(
        self,
        event_log: EventLog,
        config: TrellisConfig = DEFAULT_CONFIG,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.event_log = event_log
        self.config = config
        self._clock = clock or (lambda: datetime.now(UTC))
        self._pattern_cache: dict[str, list[TemporalPattern]] = {}
        self._metrics_cache: dict[str, TemporalMetrics] = {}
        self._prediction_cache: dict[str, PredictionResult] = {}
        self._listeners: dict[str, list[Listener]] = {}

    # Events

    def add_listener(self, event: str, callback: Listener) -> None:
        """Register a callback for "patterns_analyzed" or "analysis_error"."""
        self._listeners.setdefault(event, []).append(callback)

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        for callback in self._listeners.get(event, []):
            callback(payload)

    def clear_caches(self) -> None:
        self._pattern_cache.clear()
        self._metrics_cache.clear()
        self._prediction_cache.clear()

    # Query handling

    def default_time_range(self) -> TimeWindow:
        end = self._clock()
        return TimeWindow(end - timedelta(days=DEFAULT_RANGE_DAYS), end, "Last 30 days")

    def _resolve(self, query: TemporalQuery | None, smoothed: bool = False) -> TemporalQuery:
        if query is None:
            query = TemporalQuery(granularity=self.config.default_granularity)
            if smoothed:
                query = replace(
                    query,
                    smoothing=SmoothingOptions(window=self.config.smoothing_window),
                )

        window = query.time_range or self.default_time_range()
        # Naive bounds are taken as UTC
        window = TimeWindow(
            window.start if window.start.tzinfo else window.start.replace(tzinfo=UTC),
            window.end if window.end.tzinfo else window.end.replace(tzinfo=UTC),
            window.label,
        )

        if query.granularity not in GRANULARITIES:
            raise AnalysisError(
                f"Invalid granularity '{query.granularity}'. "
                f"Must be one of: {', '.join(GRANULARITIES)}"
            )
        if query.aggregation not in AGGREGATIONS:
            raise AnalysisError(
                f"Invalid aggregation '{query.aggregation}'. "
                f"Must be one of: {', '.join(AGGREGATIONS)}"
            )
        if query.smoothing and query.smoothing.enabled:
            if query.smoothing.method not in SMOOTHING_METHODS:
                raise AnalysisError(f"Unsupported smoothing method '{query.smoothing.method}'")
        if window.start > window.end:
            raise AnalysisError("Time range start must not be after its end")
        return replace(query, time_range=window)

    def _window(self, query: TemporalQuery) -> TimeWindow:
        """Time range of a query returned by _resolve()."""
        return query.time_range or self.default_time_range()

    @staticmethod
    def _cache_key(query: TemporalQuery) -> str:
        return json.dumps(asdict(query), sort_keys=True, default=str)

    def _filter_entries(self, query: TemporalQuery) -> list[MemoryEntry]:
        entries = self.event_log.entries()
        window = query.time_range
        if window is not None:
            entries = [e for e in entries if window.start <= e.moment <= window.end]

        filters = query.filters
        if filters is None:
            return entries

        if filters.types is not None:
            entries = [e for e in entries if e.type in filters.types]
        if filters.projects is not None:
            entries = [e for e in entries if self._matches_project(e, filters.projects)]
        if filters.outcomes is not None:
            outcomes = filters.outcomes
            entries = [
                e
                for e in entries
                if e.data.get("outcome") in outcomes
                or (e.data.get("success") is True and "success" in outcomes)
                or (e.data.get("success") is False and "failure" in outcomes)
            ]
        if filters.tags is not None:
            entries = [e for e in entries if any(tag in filters.tags for tag in e.tags)]
        return entries

    @staticmethod
    def _matches_project(entry: MemoryEntry, projects: tuple[str, ...]) -> bool:
        project_path = str(entry.data.get("projectPath") or "")
        project_id = entry.data.get("projectId") or entry.project_id
        return any(
            (project_path and project in project_path) or project_id == project
            for project in projects
        )

    def build_time_series(self, query: TemporalQuery | None = None) -> list[DataPoint]:
        """Bucket filtered entries and aggregate each bucket.

        Buckets are contiguous and cover the whole range, so empty buckets
        appear with value 0.
        """
        query = self._resolve(query)
        entries = sorted(self._filter_entries(query), key=lambda e: e.moment)
        buckets = create_time_buckets(self._window(query), query.granularity)

        series = []
        cursor = 0
        for bucket in buckets:
            # Entries are sorted, so each bucket takes a contiguous slice
            while cursor < len(entries) and entries[cursor].moment < bucket.start:
                cursor += 1
            members = []
            while cursor < len(entries) and entries[cursor].moment < bucket.end:
                members.append(entries[cursor])
                cursor += 1

            series.append(
                DataPoint(
                    timestamp=bucket.start,
                    value=self._aggregate(members, query.aggregation),
                    entry_count=len(members),
                    types=tuple(sorted({e.type for e in members})),
                )
            )

        if query.smoothing and query.smoothing.enabled and series:
            series = self._smooth(series, query.smoothing)
        return series

    @staticmethod
    def _aggregate(entries: list[MemoryEntry], aggregation: str) -> float:
        if aggregation == "count":
            return float(len(entries))
        if aggregation == "success_rate":
            if not entries:
                return 0.0
            return sum(1 for e in entries if _is_success(e)) / len(entries)
        if aggregation == "activity_level":
            return activity_level(entries)
        return float(len({e.type for e in entries}))

    def _smooth(self, series: list[DataPoint], smoothing: SmoothingOptions) -> list[DataPoint]:
        values = [p.value for p in series]
        if smoothing.method == "exponential":
            smoothed = exponential_smoothing(values, self.config.smoothing_alpha)
        else:
            smoothed = moving_average(values, smoothing.window)
        return [replace(point, value=float(v)) for point, v in zip(series, smoothed, strict=True)]

    # Pattern detection

    def analyze_temporal_patterns(self, query: TemporalQuery | None = None) -> list[TemporalPattern]:
        """Run every detector and return patterns sorted by confidence.

        Without a query, analyzes the last 30 days by day with a 7-bucket
        moving average.

        Raises:
            AnalysisError: If the query is invalid.
        """
        try:
            query = self._resolve(query, smoothed=True)
            key = self._cache_key(query)
            if key in self._pattern_cache:
                return self._pattern_cache[key]

            series = self.build_time_series(query)
            patterns = [
                *self._detect_periodic(series, query),
                *self._detect_trend(series),
                *self._detect_seasonal(series, query),
                *self._detect_burst(series),
                *self._detect_decay(series),
            ]
            patterns.sort(key=lambda p: p.confidence, reverse=True)
        except Exception as e:
            self._emit("analysis_error", {"error": str(e)})
            raise

        self._pattern_cache[key] = patterns
        logger.debug("Detected %d temporal patterns", len(patterns))
        self._emit(
            "patterns_analyzed",
            {
                "query": query,
                "patterns": len(patterns),
                "high_confidence": sum(1 for p in patterns if p.confidence > 0.7),
            },
        )
        return patterns

    def _detect_periodic(
        self, series: list[DataPoint], query: TemporalQuery
    ) -> list[TemporalPattern]:
        values = [p.value for p in series]
        patterns = []
        for period in CANDIDATE_PERIODS:
            lag = adjust_period_for_granularity(period, query.granularity)
            # Need at least three cycles
            if lag >= len(values) / 3:
                continue
            correlation = autocorrelation(values, lag)
            if correlation > self.config.periodic_threshold:
                patterns.append(
                    TemporalPattern(
                        type="periodic",
                        confidence=correlation,
                        description=(
                            f"{period}-day cycle detected with {correlation * 100:.1f}% correlation"
                        ),
                        data_points=tuple(series),
                        period=timedelta(days=period),
                    )
                )
        return patterns

    def _detect_trend(self, series: list[DataPoint]) -> list[TemporalPattern]:
        if len(series) < 5:
            return []
        fit = linear_regression([p.value for p in series])
        if fit.r_squared <= self.config.trend_min_r2:
            return []
        if fit.slope > self.config.trend_min_slope:
            trend = "increasing"
        elif fit.slope < -self.config.trend_min_slope:
            trend = "decreasing"
        else:
            return []
        return [
            TemporalPattern(
                type="trending",
                confidence=fit.r_squared,
                description=f"{trend} trend detected with R² = {fit.r_squared:.3f}",
                data_points=tuple(series),
                trend=trend,
            )
        ]

    def _detect_seasonal(
        self, series: list[DataPoint], query: TemporalQuery
    ) -> list[TemporalPattern]:
        patterns = []
        if query.granularity == "hour":
            confidence, peak = self._profile(series, 24, lambda ts: ts.hour)
            if confidence > self.config.seasonal_threshold:
                patterns.append(
                    TemporalPattern(
                        type="seasonal",
                        confidence=confidence,
                        description=f"Daily pattern: peak activity at {peak}:00",
                        data_points=tuple(series),
                        seasonality="daily",
                    )
                )
        if query.granularity in ("hour", "day"):
            confidence, peak = self._profile(series, 7, lambda ts: ts.weekday())
            if confidence > self.config.seasonal_threshold:
                patterns.append(
                    TemporalPattern(
                        type="seasonal",
                        confidence=confidence,
                        description=f"Weekly pattern: peak activity on {calendar.day_name[peak]}",
                        data_points=tuple(series),
                        seasonality="weekly",
                    )
                )
        return patterns

    @staticmethod
    def _profile(
        series: list[DataPoint],
        slots: int,
        slot_of: Callable[[datetime], int],
    ) -> tuple[float, int]:
        """Coefficient of variation of per-slot averages, and the peak slot."""
        totals = np.zeros(slots)
        counts = np.zeros(slots)
        for point in series:
            slot = slot_of(point.timestamp)
            totals[slot] += point.value
            counts[slot] += 1
        averages = np.divide(totals, counts, out=np.zeros(slots), where=counts > 0)
        mean = float(averages.mean())
        confidence = min(0.9, float(averages.std()) / mean) if mean > 0 else 0.0
        return confidence, int(np.argmax(averages))

    def _detect_burst(self, series: list[DataPoint]) -> list[TemporalPattern]:
        values = [p.value for p in series]
        if not values:
            return []
        mean, std = mean_and_std(values)
        threshold = mean + self.config.burst_sigma * std
        bursts = [p for p in series if p.value > threshold]
        # Bursts must be rare to count
        if not bursts or len(bursts) >= len(values) * 0.1:
            return []
        confidence = min(0.9, len(bursts) / (len(values) * 0.05))
        return [
            TemporalPattern(
                type="burst",
                confidence=confidence,
                description=(
                    f"{len(bursts)} burst events detected ({threshold / mean:.1f}x normal activity)"
                ),
                data_points=tuple(bursts),
            )
        ]

    def _detect_decay(self, series: list[DataPoint]) -> list[TemporalPattern]:
        if len(series) < 10:
            return []
        log_values = [math.log(max(p.value, 0.1)) for p in series]
        fit = linear_regression(log_values)
        if fit.slope >= self.config.decay_max_slope or fit.r_squared <= self.config.decay_min_r2:
            return []
        half_life = -math.log(2) / fit.slope
        return [
            TemporalPattern(
                type="decay",
                confidence=fit.r_squared,
                description=f"Exponential decay detected (half-life ≈ {half_life:.1f} periods)",
                data_points=tuple(series),
                half_life=half_life,
            )
        ]

    # Metrics

    def get_temporal_metrics(self, query: TemporalQuery | None = None) -> TemporalMetrics:
        """Activity level, growth, peak, interval, consistency and cyclicality."""
        query = self._resolve(query)
        key = self._cache_key(query)
        if key in self._metrics_cache:
            return self._metrics_cache[key]

        series = self.build_time_series(query)
        values = [p.value for p in series]

        if not series:
            metrics = TemporalMetrics(0.0, 0.0, None, 0.0, timedelta(0), 0.0, 0.0)
            self._metrics_cache[key] = metrics
            return metrics

        peak_value = max(values)
        total = sum(values)
        level = total / (len(values) * peak_value) if peak_value > 0 else 0.0

        half = len(values) // 2
        first_avg = float(np.mean(values[:half])) if half else 0.0
        second_avg = float(np.mean(values[half:]))
        growth = (second_avg - first_avg) / first_avg * 100 if first_avg > 0 else 0.0

        peak_point = max(series, key=lambda p: p.value)

        gaps = [b.timestamp - a.timestamp for a, b in zip(series, series[1:], strict=False)]
        average_interval = sum(gaps, timedelta(0)) / len(gaps) if gaps else timedelta(0)

        mean, std = mean_and_std(values)
        consistency = max(0.0, 1 - std / mean) if mean > 0 else 0.0

        metrics = TemporalMetrics(
            activity_level=level,
            growth_rate=growth,
            peak_timestamp=peak_point.timestamp,
            peak_value=peak_point.value,
            average_interval=average_interval,
            consistency=consistency,
            cyclical_strength=cyclical_strength(values),
        )
        self._metrics_cache[key] = metrics
        return metrics

    # Prediction

    def predict_future_activity(self, query: TemporalQuery | None = None) -> PredictionResult:
        """Forecast the next bucket, list anomalies and recommend actions."""
        query = self._resolve(query)
        key = self._cache_key(query)
        if key in self._prediction_cache:
            return self._prediction_cache[key]

        patterns = self.analyze_temporal_patterns(query)
        metrics = self.get_temporal_metrics(query)
        series = self.build_time_series(query)

        anomalies = self.detect_anomalies(series)
        result = PredictionResult(
            next_activity=self._predict_next(series, patterns, query),
            short_term=tuple(p for p in patterns if self._is_short_term(p)),
            long_term=tuple(p for p in patterns if self._is_long_term(p)),
            anomalies=tuple(anomalies),
            recommendations=tuple(self._recommendations(patterns, metrics, anomalies)),
        )
        self._prediction_cache[key] = result
        return result

    def _predict_next(
        self,
        series: list[DataPoint],
        patterns: list[TemporalPattern],
        query: TemporalQuery,
    ) -> NextActivity:
        recent = [p.value for p in series[-self.config.forecast_window :]]
        expected = float(np.mean(recent)) if recent else 0.0
        probability = 0.5

        trend = next((p for p in patterns if p.type == "trending"), None)
        if trend is not None and trend.trend == "increasing":
            expected *= 1.2
            probability += 0.2
        elif trend is not None and trend.trend == "decreasing":
            expected *= 0.8
            probability -= 0.1

        if any(p.type == "periodic" and p.confidence > 0.7 for p in patterns):
            probability += 0.3

        start = self._window(query).end
        end = next_boundary(start, query.granularity)
        confidence = (
            min(0.9, sum(p.confidence for p in patterns) / len(patterns)) if patterns else 0.0
        )
        return NextActivity(
            probability=min(0.95, max(0.05, probability)),
            time_range=TimeWindow(start, end, f"Next {query.granularity}"),
            expected_count=int(math.floor(expected + 0.5)),
            confidence=confidence,
        )

    def detect_anomalies(self, series: list[DataPoint]) -> list[Anomaly]:
        """Spikes, droughts and regime shifts, most severe first."""
        values = [p.value for p in series]
        mean, std = mean_and_std(values)
        anomalies = []
        for point in series:
            value = point.value
            if std > 0 and value > mean + self.config.spike_sigma * std:
                anomalies.append(
                    Anomaly(
                        timestamp=point.timestamp,
                        type="spike",
                        severity=min(1.0, (value - mean) / (self.config.spike_sigma * std)),
                        description=(
                            f"Activity spike: {value:g} ({(value / mean - 1) * 100:.0f}% above normal)"
                        ),
                    )
                )
            if std > 0 and mean > 1 and value < mean - self.config.drought_sigma * std:
                anomalies.append(
                    Anomaly(
                        timestamp=point.timestamp,
                        type="drought",
                        severity=min(1.0, (mean - value) / (self.config.drought_sigma * std)),
                        description=(
                            f"Activity drought: {value:g} ({(1 - value / mean) * 100:.0f}% below normal)"
                        ),
                    )
                )

        anomalies.extend(self._detect_regime_shifts(series))
        anomalies.sort(key=lambda a: a.severity, reverse=True)
        return anomalies

    def _detect_regime_shifts(self, series: list[DataPoint]) -> list[Anomaly]:
        values = np.asarray([p.value for p in series], dtype=float)
        if len(values) < 20:
            return []
        window = len(values) // 4
        shifts = []
        for i in range(window, len(values) - window):
            before = float(values[i - window : i].mean())
            after = float(values[i : i + window].mean())
            relative = abs(after - before) / before if before > 0 else 0.0
            if relative > self.config.regime_shift_threshold:
                shifts.append(
                    Anomaly(
                        timestamp=series[i].timestamp,
                        type="shift",
                        severity=min(1.0, relative),
                        description=(
                            f"Regime shift: {before:.1f} → {after:.1f} ({relative * 100:.0f}% change)"
                        ),
                    )
                )
        return shifts

    @staticmethod
    def _is_short_term(pattern: TemporalPattern) -> bool:
        return pattern.period is None or pattern.period <= timedelta(days=7)

    @staticmethod
    def _is_long_term(pattern: TemporalPattern) -> bool:
        return pattern.period is not None and pattern.period > timedelta(days=30)

    @staticmethod
    def _recommendations(
        patterns: list[TemporalPattern],
        metrics: TemporalMetrics,
        anomalies: list[Anomaly],
    ) -> list[str]:
        recommendations = []
        if any(p.type == "periodic" and p.confidence > 0.7 for p in patterns):
            recommendations.append(
                "Schedule maintenance and optimizations during low-activity periods "
                "based on detected cycles"
            )

        trend = next((p for p in patterns if p.type == "trending"), None)
        if trend is not None and trend.trend == "increasing":
            recommendations.append(
                "Plan for increased storage and processing capacity based on growing activity trend"
            )
        elif trend is not None and trend.trend == "decreasing":
            recommendations.append(
                "Investigate causes of declining activity and consider engagement strategies"
            )

        if metrics.consistency < 0.5:
            recommendations.append(
                "High variability detected - consider implementing activity smoothing mechanisms"
            )
        if metrics.growth_rate > 50:
            recommendations.append("Rapid growth detected - implement proactive scaling measures")

        if any(a.type == "spike" and a.severity > 0.7 for a in anomalies):
            recommendations.append("Implement burst handling to manage activity spikes effectively")
        if any(a.type == "drought" and a.severity > 0.7 for a in anomalies):
            recommendations.append(
                "Investigate causes of activity droughts and implement retention strategies"
            )
        return recommendations

    # Insights

    def get_temporal_insights(self, query: TemporalQuery | None = None) -> list[TemporalInsight]:
        """Patterns, trends, anomalies and forecasts worth acting on.

        Actionable insights come first, then by confidence.
        """
        resolved = self._resolve(query)
        patterns = self.analyze_temporal_patterns(query)
        metrics = self.get_temporal_metrics(resolved)
        predictions = self.predict_future_activity(resolved)

        insights = []
        for pattern in patterns:
            if pattern.confidence <= 0.6:
                continue
            insights.append(
                TemporalInsight(
                    type="pattern",
                    title=f"{pattern.type.capitalize()} Pattern Detected",
                    description=pattern.description,
                    confidence=pattern.confidence,
                    timeframe=self._pattern_timeframe(pattern),
                    actionable=pattern.confidence > 0.7
                    and pattern.type in ("periodic", "trending", "seasonal"),
                    recommendations=_PATTERN_ADVICE.get(
                        (pattern.type, pattern.trend), _PATTERN_ADVICE.get((pattern.type, None), ())
                    ),
                )
            )

        if metrics.growth_rate > 20:
            insights.append(
                TemporalInsight(
                    type="trend",
                    title="Increasing Activity Trend",
                    description=(
                        f"Memory activity has increased by {metrics.growth_rate:.1f}% "
                        "over the analysis period"
                    ),
                    confidence=0.8,
                    timeframe=self._window(resolved),
                    actionable=True,
                    recommendations=(
                        "Consider optimizing memory storage for increased load",
                        "Monitor system performance as activity grows",
                        "Evaluate current pruning policies",
                    ),
                )
            )

        for anomaly in predictions.anomalies:
            if anomaly.severity <= 0.7:
                continue
            insights.append(
                TemporalInsight(
                    type="anomaly",
                    title=f"{anomaly.type.capitalize()} Anomaly",
                    description=anomaly.description,
                    confidence=anomaly.severity,
                    timeframe=TimeWindow(anomaly.timestamp, anomaly.timestamp, "Point Anomaly"),
                    actionable=True,
                    recommendations=_ANOMALY_ADVICE[anomaly.type],
                )
            )

        next_activity = predictions.next_activity
        if next_activity.probability > 0.7:
            insights.append(
                TemporalInsight(
                    type="prediction",
                    title="High Probability Activity Window",
                    description=(
                        f"{next_activity.probability * 100:.1f}% chance of "
                        f"{next_activity.expected_count} activities"
                    ),
                    confidence=next_activity.confidence,
                    timeframe=next_activity.time_range,
                    actionable=True,
                    recommendations=(
                        "Prepare system for predicted activity surge",
                        "Consider pre-emptive optimization",
                        "Monitor resource utilization during predicted window",
                    ),
                )
            )

        insights.sort(key=lambda i: (not i.actionable, -i.confidence))
        return insights

    def _pattern_timeframe(self, pattern: TemporalPattern) -> TimeWindow:
        if not pattern.data_points:
            return self.default_time_range()
        start = pattern.data_points[0].timestamp
        end = pattern.data_points[-1].timestamp
        return TimeWindow(start, end, f"{start:%Y-%m-%d} to {end:%Y-%m-%d}")


_PATTERN_ADVICE: dict[tuple[str, str | None], tuple[str, ...]] = {
    ("periodic", None): (
        "Schedule regular maintenance during low-activity periods",
        "Optimize resource allocation based on predictable cycles",
    ),
    ("trending", "increasing"): (
        "Plan for capacity expansion",
        "Implement proactive monitoring",
    ),
    ("trending", "decreasing"): (
        "Investigate root causes of decline",
        "Consider engagement interventions",
    ),
    ("seasonal", None): (
        "Adjust system configuration for seasonal patterns",
        "Plan marketing and engagement around peak periods",
    ),
}

_ANOMALY_ADVICE: dict[str, tuple[str, ...]] = {
    "spike": (
        "Implement burst protection mechanisms",
        "Investigate spike triggers for prevention",
        "Consider auto-scaling capabilities",
    ),
    "drought": (
        "Implement activity monitoring alerts",
        "Investigate user engagement issues",
        "Consider proactive outreach strategies",
    ),
    "shift": (
        "Investigate underlying system changes",
        "Update baseline metrics and thresholds",
        "Review configuration changes during this period",
    ),
}
