"""
Metrics Engine

Derives operator, queue and aggregate KPIs from a slice of CallRecords.
Every public computation is a pure function of its input records plus the
current MetricsConfig. Windowing by time range is the caller's job
(see filter_window).

Operator Formulas:
- service_level = answered with wait <= target / answered * 100
- efficiency = min(100, 70 + min(answered * 0.2, 20) + min(talk_hours * 2, 10))
- availability = answered / total * 100
- productivity = total / (working_hours - break_hours)        [calls per hour]
- adherence = answered with duration > 30s / total * 100
- first_call_resolution = answered with duration > 120s / answered * 100
- satisfaction_proxy = answered with 60s < duration < 600s and wait < 30s
  / answered * 100
- score = service_level*0.3 + efficiency*0.25 + availability*0.2
  + productivity*0.15 + satisfaction_proxy*0.1
- percentile = clamp(round(score), 0, 100)

Trend:
The record slice is split into two contiguous halves by index (or by two
explicit windows). Efficiency of the second half minus the first half is the
improvement; > +5 is "up", < -5 is "down", anything else "stable".

Every ratio is 0 when its denominator is 0; an empty slice yields all-zero
metrics with a stable trend.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from callpulse.models import (
    WEEKDAY_NAMES,
    CallRecord,
    CallStatus,
    GeneralMetrics,
    MetricsConfig,
    OperatorMetrics,
    PeriodComparison,
    PeriodOfDay,
    QueueMetrics,
    TimeWindow,
    Trend,
)

logger = logging.getLogger(__name__)


# =============================================================================
# CONSTANTS
# =============================================================================

BASE_EFFICIENCY: float = 70.0
CALL_BONUS_PER_CALL: float = 0.2
CALL_BONUS_CAP: float = 20.0
DURATION_BONUS_PER_HOUR: float = 2.0
DURATION_BONUS_CAP: float = 10.0

ADHERENCE_MIN_SECONDS: int = 30
RESOLUTION_MIN_SECONDS: int = 120
SATISFIED_MIN_SECONDS: int = 60
SATISFIED_MAX_SECONDS: int = 600
SATISFIED_MAX_WAIT_SECONDS: int = 30

TREND_THRESHOLD: float = 5.0

SCORE_WEIGHTS: Dict[str, float] = {
    'service_level': 0.3,
    'efficiency': 0.25,
    'availability': 0.2,
    'productivity': 0.15,
    'satisfaction_proxy': 0.1,
}

# Thresholds for operational recommendations
TARGET_ANSWER_RATE: float = 80.0
TARGET_SERVICE_LEVEL: float = 80.0
MAX_AVERAGE_WAIT_SECONDS: float = 60.0
MIN_AVERAGE_SATISFACTION: float = 3.5
MAX_ABANDONMENT_RATE: float = 5.0

PeriodPair = Tuple[TimeWindow, TimeWindow]


# =============================================================================
# Helper Functions
# =============================================================================


def percentage(numerator: float, denominator: float) -> float:
    """numerator / denominator * 100, or 0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return numerator / denominator * 100


def safe_divide(numerator: float, denominator: float) -> float:
    if not denominator:
        return 0.0
    return numerator / denominator


def round_half_up(value: float) -> int:
    return int(np.floor(value + 0.5))


def efficiency_score(answered_calls: int, total_talk_seconds: int) -> float:
    """Composite output score blending answered volume and talk time."""
    talk_hours = total_talk_seconds / 3600
    call_bonus = min(answered_calls * CALL_BONUS_PER_CALL, CALL_BONUS_CAP)
    duration_bonus = min(talk_hours * DURATION_BONUS_PER_HOUR, DURATION_BONUS_CAP)
    return min(100.0, BASE_EFFICIENCY + call_bonus + duration_bonus)


def filter_window(
    records: Iterable[CallRecord],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[CallRecord]:
    """Records with start <= timestamp < end, in their original order."""
    window = TimeWindow(start=start, end=end)
    return [record for record in records if window.contains(record.timestamp)]


def _answered(records: Sequence[CallRecord]) -> List[CallRecord]:
    return [record for record in records if record.status == CallStatus.ANSWERED]


def _status_counts(records: Sequence[CallRecord]) -> Counter:
    return Counter(record.status for record in records)


def _average_satisfaction(records: Sequence[CallRecord]) -> Optional[float]:
    scores = [record.satisfaction for record in records if record.satisfaction is not None]
    if not scores:
        return None
    return float(np.mean(scores))


# =============================================================================
# Metrics Engine
# =============================================================================


class MetricsEngine:
    """
    KPI calculator with a runtime-mutable configuration.

    Args:
        config: Initial metric configuration; defaults to MetricsConfig().
    """

    def __init__(self, config: Optional[MetricsConfig] = None):
        self.config = config or MetricsConfig()

    def update_config(self, **changes) -> MetricsConfig:
        """
        Apply configuration changes to all subsequent computations.

        Raises:
            ValueError: On unknown keys.
            pydantic.ValidationError: On out-of-range values.
        """
        unknown = set(changes) - set(MetricsConfig.model_fields)
        if unknown:
            raise ValueError(f"Unknown metrics config keys: {sorted(unknown)}")
        self.config = MetricsConfig.model_validate({**self.config.model_dump(), **changes})
        logger.info(f"Metrics config updated: {self.config.model_dump()}")
        return self.config

    @property
    def productive_hours(self) -> float:
        return self.config.working_hours - self.config.break_hours

    # -------------------------------------------------------------------------
    # Operator metrics
    # -------------------------------------------------------------------------

    def compute_operator_metrics(
        self,
        records: Sequence[CallRecord],
        operator: Optional[str] = None,
        periods: Optional[PeriodPair] = None,
    ) -> OperatorMetrics:
        """
        KPIs for one operator's calls.

        Args:
            records: The operator's calls, in source order.
            operator: Name to report; inferred when every record shares one.
            periods: Optional (first, second) windows for the trend
                comparison instead of the index half-split.

        Returns:
            OperatorMetrics with ranking 0 (unranked); see rank_operators.
        """
        if operator is None:
            names = {record.operator for record in records}
            operator = names.pop() if len(names) == 1 else ''

        if not records:
            return OperatorMetrics(operator=operator)

        metrics = self._core_metrics(records)
        trend, improvement = self._trend(records, periods)
        return metrics.model_copy(update={
            'operator': operator,
            'trend': trend,
            'improvement': improvement,
        })

    def rank_operators(
        self,
        records: Sequence[CallRecord],
        periods: Optional[PeriodPair] = None,
    ) -> List[OperatorMetrics]:
        """
        Compute metrics for every operator in `records` and rank them.

        Operators are sorted by score descending, ties broken by name, and
        ranking is the 1-based position in that order.
        """
        grouped: Dict[str, List[CallRecord]] = {}
        for record in records:
            grouped.setdefault(record.operator, []).append(record)

        computed = [
            self.compute_operator_metrics(calls, operator=name, periods=periods)
            for name, calls in grouped.items()
        ]
        computed.sort(key=lambda m: (-m.score, m.operator))

        return [
            metrics.model_copy(update={'ranking': position})
            for position, metrics in enumerate(computed, start=1)
        ]

    def _core_metrics(self, records: Sequence[CallRecord]) -> OperatorMetrics:
        total = len(records)
        counts = _status_counts(records)
        answered = _answered(records)
        answered_count = len(answered)

        total_talk = sum(record.duration_seconds for record in answered)
        total_wait = sum(record.wait_seconds for record in answered)
        target = self.config.service_level_target_seconds

        within_target = sum(1 for record in answered if record.wait_seconds <= target)
        engaged = sum(1 for record in answered if record.duration_seconds > ADHERENCE_MIN_SECONDS)
        resolved = sum(1 for record in answered if record.duration_seconds > RESOLUTION_MIN_SECONDS)
        satisfied = sum(
            1 for record in answered
            if SATISFIED_MIN_SECONDS < record.duration_seconds < SATISFIED_MAX_SECONDS
            and record.wait_seconds < SATISFIED_MAX_WAIT_SECONDS
        )

        service_level = percentage(within_target, answered_count)
        efficiency = efficiency_score(answered_count, total_talk)
        availability = percentage(answered_count, total)
        productivity = safe_divide(total, self.productive_hours) if self.productive_hours > 0 else 0.0
        satisfaction_proxy = percentage(satisfied, answered_count)

        score = (
            service_level * SCORE_WEIGHTS['service_level']
            + efficiency * SCORE_WEIGHTS['efficiency']
            + availability * SCORE_WEIGHTS['availability']
            + productivity * SCORE_WEIGHTS['productivity']
            + satisfaction_proxy * SCORE_WEIGHTS['satisfaction_proxy']
        )

        return OperatorMetrics(
            total_calls=total,
            answered_calls=answered_count,
            missed_calls=counts[CallStatus.MISSED],
            abandoned_calls=counts[CallStatus.ABANDONED],
            waiting_calls=counts[CallStatus.WAITING],
            total_talk_seconds=total_talk,
            average_talk_seconds=safe_divide(total_talk, answered_count),
            total_wait_seconds=total_wait,
            average_wait_seconds=safe_divide(total_wait, answered_count),
            service_level=service_level,
            efficiency=efficiency,
            availability=availability,
            productivity=productivity,
            adherence=percentage(engaged, total),
            first_call_resolution=percentage(resolved, answered_count),
            satisfaction_proxy=satisfaction_proxy,
            average_satisfaction=_average_satisfaction(records),
            score=score,
            percentile=min(100, max(0, round_half_up(score))),
        )

    def _trend(
        self,
        records: Sequence[CallRecord],
        periods: Optional[PeriodPair],
    ) -> Tuple[Trend, float]:
        if periods is not None:
            first_window, second_window = periods
            first = [r for r in records if first_window.contains(r.timestamp)]
            second = [r for r in records if second_window.contains(r.timestamp)]
        else:
            half = len(records) // 2
            first, second = records[:half], records[half:]

        if not first or not second:
            return Trend.STABLE, 0.0

        first_efficiency = efficiency_score(*self._answered_totals(first))
        second_efficiency = efficiency_score(*self._answered_totals(second))
        difference = second_efficiency - first_efficiency

        if difference > TREND_THRESHOLD:
            return Trend.UP, difference
        if difference < -TREND_THRESHOLD:
            return Trend.DOWN, difference
        return Trend.STABLE, difference

    @staticmethod
    def _answered_totals(records: Sequence[CallRecord]) -> Tuple[int, int]:
        answered = _answered(records)
        return len(answered), sum(record.duration_seconds for record in answered)

    # -------------------------------------------------------------------------
    # Aggregate metrics
    # -------------------------------------------------------------------------

    def compute_aggregate(self, records: Sequence[CallRecord]) -> GeneralMetrics:
        """
        Dataset-wide KPIs and distributions.

        Average wait covers every call (time spent in queue regardless of
        outcome); average talk covers answered calls only.
        """
        if not records:
            return GeneralMetrics(
                period_distribution={period.value: 0 for period in PeriodOfDay},
                weekday_distribution={name: 0 for name in WEEKDAY_NAMES},
            )

        total = len(records)
        counts = _status_counts(records)
        answered = _answered(records)
        answered_count = len(answered)
        target = self.config.service_level_target_seconds

        hours = np.array([record.timestamp.hour for record in records], dtype=int)
        hourly = np.bincount(hours, minlength=24)

        period_counts = Counter(record.period_of_day.value for record in records)
        weekday_counts = Counter(record.day_of_week for record in records)

        timestamps = [record.timestamp for record in records]
        period_start, period_end = min(timestamps), max(timestamps)

        return GeneralMetrics(
            total_calls=total,
            answered_calls=answered_count,
            missed_calls=counts[CallStatus.MISSED],
            abandoned_calls=counts[CallStatus.ABANDONED],
            waiting_calls=counts[CallStatus.WAITING],
            answer_rate=percentage(answered_count, total),
            abandonment_rate=percentage(counts[CallStatus.ABANDONED], total),
            service_level=percentage(
                sum(1 for record in answered if record.wait_seconds <= target),
                answered_count,
            ),
            average_talk_seconds=safe_divide(
                sum(record.duration_seconds for record in answered), answered_count
            ),
            average_wait_seconds=safe_divide(sum(record.wait_seconds for record in records), total),
            average_satisfaction=_average_satisfaction(records),
            active_operators=len({record.operator for record in records}),
            active_queues=len({record.queue for record in records}),
            period_start=period_start,
            period_end=period_end,
            peak_hour=int(np.argmax(hourly)),
            hourly_distribution=[int(count) for count in hourly],
            period_distribution={period.value: period_counts.get(period.value, 0) for period in PeriodOfDay},
            weekday_distribution={name: weekday_counts.get(name, 0) for name in WEEKDAY_NAMES},
            volume_change=self._volume_change(timestamps, period_start, period_end),
        )

    @staticmethod
    def _volume_change(timestamps: List[datetime], start: datetime, end: datetime) -> float:
        midpoint = start + (end - start) / 2
        first = sum(1 for moment in timestamps if moment < midpoint)
        second = len(timestamps) - first
        return percentage(second - first, first)

    # -------------------------------------------------------------------------
    # Queue metrics
    # -------------------------------------------------------------------------

    def compute_queue_metrics(self, records: Sequence[CallRecord]) -> List[QueueMetrics]:
        """Per-queue KPIs, sorted by call volume (descending, stable)."""
        grouped: Dict[str, List[CallRecord]] = {}
        for record in records:
            grouped.setdefault(record.queue, []).append(record)

        target = self.config.service_level_target_seconds
        results: List[QueueMetrics] = []
        for queue, calls in grouped.items():
            counts = _status_counts(calls)
            answered = _answered(calls)
            results.append(QueueMetrics(
                queue=queue,
                total_calls=len(calls),
                answered_calls=len(answered),
                missed_calls=counts[CallStatus.MISSED],
                abandoned_calls=counts[CallStatus.ABANDONED],
                answer_rate=percentage(len(answered), len(calls)),
                service_level=percentage(
                    sum(1 for record in answered if record.wait_seconds <= target),
                    len(answered),
                ),
                average_wait_seconds=safe_divide(sum(r.wait_seconds for r in calls), len(calls)),
                average_talk_seconds=safe_divide(sum(r.duration_seconds for r in answered), len(answered)),
                operators=len({record.operator for record in calls}),
            ))

        results.sort(key=lambda queue_metrics: -queue_metrics.total_calls)
        return results

    # -------------------------------------------------------------------------
    # Comparisons and recommendations
    # -------------------------------------------------------------------------

    def compare_periods(
        self,
        current: Sequence[CallRecord],
        previous: Sequence[CallRecord],
    ) -> PeriodComparison:
        """Deltas of volume, answer rate, talk time and satisfaction between two windows."""
        now = self.compute_aggregate(current)
        before = self.compute_aggregate(previous)

        satisfaction_change = None
        if now.average_satisfaction is not None and before.average_satisfaction is not None:
            satisfaction_change = now.average_satisfaction - before.average_satisfaction

        return PeriodComparison(
            current_total=now.total_calls,
            previous_total=before.total_calls,
            total_calls_change=percentage(now.total_calls - before.total_calls, before.total_calls),
            answer_rate_change=now.answer_rate - before.answer_rate,
            average_talk_change=now.average_talk_seconds - before.average_talk_seconds,
            average_satisfaction_change=satisfaction_change,
        )

    @staticmethod
    def build_recommendations(general: GeneralMetrics) -> List[str]:
        """Operational recommendations derived from aggregate KPIs, in fixed order."""
        if general.total_calls == 0:
            return []

        recommendations: List[str] = []
        if general.answer_rate < TARGET_ANSWER_RATE:
            recommendations.append(
                f"Answer rate is {general.answer_rate:.1f}%: add staff to peak hours"
                + (f" (busiest hour {general.peak_hour:02d}:00)" if general.peak_hour is not None else '')
            )
        if general.service_level < TARGET_SERVICE_LEVEL:
            recommendations.append(
                f"Service level is {general.service_level:.1f}%: review queue routing to cut wait times"
            )
        if general.average_wait_seconds > MAX_AVERAGE_WAIT_SECONDS:
            recommendations.append(
                f"Average wait is {general.average_wait_seconds:.0f}s: consider callback options"
            )
        if general.average_satisfaction is not None and general.average_satisfaction < MIN_AVERAGE_SATISFACTION:
            recommendations.append(
                f"Average satisfaction is {general.average_satisfaction:.2f}: schedule service quality training"
            )
        if general.abandonment_rate > MAX_ABANDONMENT_RATE:
            recommendations.append(
                f"Abandonment rate is {general.abandonment_rate:.1f}%: shorten IVR paths and announce queue position"
            )
        return recommendations
