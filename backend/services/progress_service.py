"""
Progress Service
Returns the day's ProgressData for a (user, period), recomputing it when
the stored rollup is stale and superseding same-day rollups on save.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from domain.errors import ValidationError
from domain.progress import ProgressData, period_days
from domain.repositories import CalendarRepository, MeasurementRepository, ProgressRepository
from services.progress_aggregator import ProgressAggregator

logger = logging.getLogger(__name__)


class ProgressService:

    def __init__(
        self,
        measurements: MeasurementRepository,
        calendar: CalendarRepository,
        progress: ProgressRepository,
        aggregator: Optional[ProgressAggregator] = None,
    ):
        self.measurements = measurements
        self.calendar = calendar
        self.progress = progress
        self.aggregator = aggregator or ProgressAggregator()

    def get_progress(self, user_id: str, period: str, force: bool = False, now: Optional[datetime] = None) -> ProgressData:
        if not user_id:
            raise ValidationError(["userId is required"])
        days = period_days(period)
        now = now or datetime.now()

        latest = self.progress.find_latest(user_id, period)
        if latest is not None and latest.analysis_date.date() == now.date() and not force:
            return latest

        baseline = self._baseline(user_id, period, now)

        # Weekly and monthly stats need at least 30 days of history
        lookback = timedelta(days=max(days, self.aggregator.MONTHLY_DAYS))
        measurements = self.measurements.find_by_date_range(user_id, now - lookback, now)
        records = self.calendar.find_by_date_range(user_id, (now - lookback).date(), now.date())

        result = self.aggregator.aggregate(user_id, measurements, records, period, now=now, previous=baseline)
        if result.measurement_count == 0 and result.record_count == 0:
            return result
        return self.progress.save(result)

    def _baseline(self, user_id: str, period: str, now: datetime) -> Optional[ProgressData]:
        """Most recent rollup analysed before today."""
        for record in self.progress.history(user_id, period):
            if record.analysis_date.date() < now.date():
                return record
        return None
