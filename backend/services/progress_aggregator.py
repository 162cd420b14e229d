"""
Progress Aggregator
Derives trend, activity, recovery and data-quality statistics from stored
measurements and calendar records over a rolling analysis period.

Read-only with respect to its inputs; always returns a complete ProgressData.
"""

import logging
import math
from datetime import date, datetime, timedelta
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from domain.clinical_tables import DEFAULT_NORMAL_RANGES, MEASUREMENT_FIELDS, WRIST_FIELDS, NormalRange
from domain.measurement import MotionMeasurement
from domain.progress import (
    ActivityProgress,
    AngleTrend,
    CalendarRecord,
    MotionProgress,
    PeriodStats,
    ProgressData,
    ProgressInsights,
    period_days,
)

logger = logging.getLogger(__name__)


def percent_change(current: float, previous: Optional[float]) -> float:
    """Change relative to |previous| in percent, 1 decimal; 0 when previous is 0 or missing."""
    if previous is None or previous == 0:
        return 0.0
    return round((current - previous) / abs(previous) * 100, 1)


def measurement_average(measurement: MotionMeasurement, fields: Sequence[str] = WRIST_FIELDS) -> float:
    values = [getattr(measurement, f) for f in fields]
    return float(np.mean(values)) if values else 0.0


class ProgressAggregator:
    """
    aggregate(user_id, measurements, records, period) -> ProgressData

    Trend rules:
    - Fewer than two measurements: every field is stable with zero change
    - Field trend: latest vs immediately previous value, +/- trend_threshold %
    - Overall trend: declining if any wrist field declines; otherwise a vote
      over the non-reference fields (improving wins when it beats
      declining + stable / 2, and symmetrically for declining)
    """

    THRESHOLDS = {
        'trend_threshold': 5.0,            # % change to leave "stable"
        'measurements_per_day': 1.0,       # expected measurement cadence
        'records_per_day': 0.7,            # expected calendar record cadence
        'measurement_weight': 0.4,
        'record_weight': 0.6,
        'low_data_quality': 0.5,
        'low_completion': 50.0,
        'attention_completion': 30.0,
        'good_completion': 70.0,
        'full_recovery': 100.0,
    }

    WEEKLY_DAYS = 7
    MONTHLY_DAYS = 30

    def __init__(self, normal_ranges: Optional[Mapping[str, NormalRange]] = None, thresholds: Optional[Dict[str, float]] = None):
        self.normal_ranges = dict(normal_ranges or DEFAULT_NORMAL_RANGES)
        self.thresholds = dict(self.THRESHOLDS)
        if thresholds:
            self.thresholds.update(thresholds)

    # ----- entry point -----

    def aggregate(
        self,
        user_id: str,
        measurements: Sequence[MotionMeasurement],
        records: Sequence[CalendarRecord],
        period: str,
        now: Optional[datetime] = None,
        previous: Optional[ProgressData] = None,
    ) -> ProgressData:
        now = now or datetime.now()
        days = period_days(period)
        start = now - timedelta(days=days)

        windowed = self._measurements_between(measurements, start, now)
        window_records = self._records_between(records, start.date(), now.date())

        if not windowed and not window_records:
            logger.info(f"No data for {user_id} in {period}; returning empty progress")
            return self.empty_progress(user_id, period, now)

        motion = self.motion_progress(windowed)
        averages = [measurement_average(m) for m in windowed]
        average_angle = round(float(np.mean(averages)), 1) if averages else 0.0

        activity = self.activity_progress(window_records, now.date())
        quality = self.data_quality(len(windowed), len(window_records), days)

        progress = ProgressData(
            user_id=user_id,
            analysis_period=period,
            analysis_date=now,
            motion_progress=motion,
            activity_progress=activity,
            weekly_stats=self.period_stats(measurements, records, self.WEEKLY_DAYS, now),
            monthly_stats=self.period_stats(measurements, records, self.MONTHLY_DAYS, now),
            average_angle=average_angle,
            max_angle=round(max(averages), 1) if averages else 0.0,
            min_angle=round(min(averages), 1) if averages else 0.0,
            improvement_rate=self.improvement_rate(average_angle, previous) if averages else 0.0,
            recovery_rate=self.recovery_rate(windowed[-1]) if windowed else 0.0,
            predicted_recovery=self.predict_recovery(windowed),
            measurement_count=len(windowed),
            record_count=len(window_records),
            data_quality=quality,
            insights=self.insights(motion, activity, quality),
            created_at=now,
        )
        logger.info(
            f"Progress {user_id}/{period}: {len(windowed)} measurements, "
            f"{len(window_records)} records, trend {motion.overall_trend}"
        )
        return progress

    def empty_progress(self, user_id: str, period: str, now: Optional[datetime] = None) -> ProgressData:
        now = now or datetime.now()
        return ProgressData(
            user_id=user_id,
            analysis_period=period,
            analysis_date=now,
            motion_progress=MotionProgress(fields={f: AngleTrend() for f in MEASUREMENT_FIELDS}),
            created_at=now,
        )

    # ----- windows -----

    @staticmethod
    def _measurements_between(measurements, start: datetime, end: datetime) -> List[MotionMeasurement]:
        return sorted(
            (m for m in measurements if start <= m.measurement_date <= end),
            key=lambda m: m.measurement_date,
        )

    @staticmethod
    def _records_between(records, start: date, end: date) -> List[CalendarRecord]:
        return sorted(
            (r for r in records if start <= r.record_date <= end),
            key=lambda r: r.record_date,
        )

    # ----- motion trends -----

    def field_trend(self, current: float, previous: Optional[float]) -> AngleTrend:
        if previous is None:
            return AngleTrend(current_value=current)

        pct = percent_change(current, previous)
        threshold = self.thresholds['trend_threshold']
        if pct >= threshold:
            trend = "improving"
        elif pct <= -threshold:
            trend = "declining"
        else:
            trend = "stable"
        return AngleTrend(
            current_value=current,
            previous_value=previous,
            change_amount=round(current - previous, 1),
            change_percentage=pct,
            trend=trend,
        )

    def motion_progress(self, measurements: Sequence[MotionMeasurement]) -> MotionProgress:
        if not measurements:
            return MotionProgress(fields={f: AngleTrend() for f in MEASUREMENT_FIELDS})

        latest = measurements[-1].angles()
        prior = measurements[-2].angles() if len(measurements) >= 2 else {}

        fields: Dict[str, AngleTrend] = {}
        for name, value in latest.items():
            fields[name] = self.field_trend(value, prior.get(name))

        voting = [
            name for name in fields
            if name in self.normal_ranges and not self.normal_ranges[name].is_reference
        ]
        overall = self.overall_trend({name: fields[name] for name in voting})
        changes = [fields[name].change_percentage for name in voting]
        improvement = round(float(np.mean(changes)), 1) if changes else 0.0
        return MotionProgress(fields=fields, overall_trend=overall, overall_improvement=improvement)

    def overall_trend(self, fields: Mapping[str, AngleTrend]) -> str:
        if any(fields[f].trend == "declining" for f in WRIST_FIELDS if f in fields):
            return "declining"

        improving = sum(1 for t in fields.values() if t.trend == "improving")
        declining = sum(1 for t in fields.values() if t.trend == "declining")
        stable = sum(1 for t in fields.values() if t.trend == "stable")
        if improving > declining + stable / 2:
            return "improving"
        if declining > improving + stable / 2:
            return "declining"
        return "stable"

    def improvement_rate(self, average_angle: float, previous: Optional[ProgressData]) -> float:
        if previous is None:
            return 0.0
        return percent_change(average_angle, previous.average_angle)

    # ----- recovery -----

    def recovery_rate(self, measurement: MotionMeasurement) -> float:
        """Mean share of the normal maximum reached over non-reference fields, in %."""
        ratios = []
        for name, value in measurement.angles().items():
            rng = self.normal_ranges.get(name)
            if rng is None or rng.is_reference or rng.max <= 0:
                continue
            ratios.append(min(value / rng.max, 1.0))
        if not ratios:
            return 0.0
        return round(float(np.mean(ratios)) * 100, 1)

    def predict_recovery(self, measurements: Sequence[MotionMeasurement]) -> Optional[date]:
        """
        Date at which a least-squares line through the per-measurement
        recovery rates reaches full recovery; None without an upward trend.
        """
        if len(measurements) < 2:
            return None

        origin = measurements[0].measurement_date
        x = np.array([(m.measurement_date - origin).total_seconds() / 86400 for m in measurements])
        y = np.array([self.recovery_rate(m) for m in measurements])
        if np.ptp(x) == 0:
            return None

        slope, intercept = np.polyfit(x, y, 1)
        target = self.thresholds['full_recovery']
        if y[-1] >= target:
            return measurements[-1].measurement_date.date()
        if slope <= 0:
            return None

        days_to_target = max((target - intercept) / slope, x[-1])
        return (origin + timedelta(days=math.ceil(days_to_target))).date()

    # ----- activity -----

    def activity_progress(self, records: Sequence[CalendarRecord], today: date) -> ActivityProgress:
        if not records:
            return ActivityProgress()
        rehab, measured, overall = self._completion_rates(records)
        current, longest = self.streaks(records, today)
        return ActivityProgress(
            rehab_completion_rate=rehab,
            measurement_completion_rate=measured,
            overall_completion_rate=overall,
            current_streak=current,
            longest_streak=longest,
        )

    @staticmethod
    def _completion_rates(records: Sequence[CalendarRecord]):
        total = len(records)
        rehab = sum(1 for r in records if r.rehab_completed)
        measured = sum(1 for r in records if r.measurement_completed)
        return (
            round(rehab / total * 100, 1),
            round(measured / total * 100, 1),
            round((rehab + measured) / (total * 2) * 100, 1),
        )

    @staticmethod
    def streaks(records: Sequence[CalendarRecord], today: date):
        """(current, longest) runs of consecutive active days."""
        active = sorted({r.record_date for r in records if r.rehab_completed or r.measurement_completed})
        if not active:
            return 0, 0

        longest = run = 1
        for prev, cur in zip(active, active[1:]):
            run = run + 1 if (cur - prev).days == 1 else 1
            longest = max(longest, run)

        # Current streak must reach today or yesterday
        if (today - active[-1]).days > 1:
            return 0, longest
        current = 1
        for i in range(len(active) - 1, 0, -1):
            if (active[i] - active[i - 1]).days != 1:
                break
            current += 1
        return current, longest

    def period_stats(
        self,
        measurements: Sequence[MotionMeasurement],
        records: Sequence[CalendarRecord],
        days: int,
        now: datetime,
    ) -> PeriodStats:
        start = now - timedelta(days=days)
        window_records = self._records_between(records, start.date(), now.date())
        window_measurements = self._measurements_between(measurements, start, now)

        def level_mean(attr: str) -> Optional[float]:
            values = [getattr(r, attr) for r in window_records if getattr(r, attr) is not None]
            return round(float(np.mean(values)), 1) if values else None

        rates = self._completion_rates(window_records) if window_records else (0.0, 0.0, 0.0)
        averages = [measurement_average(m) for m in window_measurements]
        return PeriodStats(
            days=len(window_records),
            rehab_completed_days=sum(1 for r in window_records if r.rehab_completed),
            measurement_completed_days=sum(1 for r in window_records if r.measurement_completed),
            fully_completed_days=sum(1 for r in window_records if r.rehab_completed and r.measurement_completed),
            rehab_completion_rate=rates[0],
            measurement_completion_rate=rates[1],
            overall_completion_rate=rates[2],
            average_pain=level_mean("pain_level"),
            average_motivation=level_mean("motivation_level"),
            average_performance=level_mean("performance_level"),
            measurement_count=len(window_measurements),
            average_angle=round(float(np.mean(averages)), 1) if averages else 0.0,
        )

    # ----- quality and insights -----

    def data_quality(self, measurement_count: int, record_count: int, days: int) -> float:
        """Weighted coverage of expected measurements and records, within [0, 1]."""
        t = self.thresholds
        expected_measurements = max(days * t['measurements_per_day'], 1.0)
        expected_records = max(days * t['records_per_day'], 1.0)
        score = (
            min(measurement_count / expected_measurements, 1.0) * t['measurement_weight']
            + min(record_count / expected_records, 1.0) * t['record_weight']
        )
        return round(min(max(score, 0.0), 1.0), 2)

    def insights(self, motion: MotionProgress, activity: ActivityProgress, quality: float) -> ProgressInsights:
        t = self.thresholds
        completion = activity.overall_completion_rate

        recommendations = []
        if quality < t['low_data_quality']:
            recommendations.append("Measure more regularly to make your progress data more reliable.")
        if completion < t['low_completion']:
            recommendations.append("Try to complete your rehabilitation exercises on more days.")
        if motion.overall_trend == "declining":
            recommendations.append("Range of motion is declining; consider reviewing your exercise plan with your therapist.")

        return ProgressInsights(
            is_improving=motion.overall_trend == "improving" or completion > t['good_completion'],
            needs_attention=(
                motion.overall_trend == "declining"
                or completion < t['attention_completion']
                or quality < t['low_data_quality']
            ),
            recommendations=recommendations,
        )
