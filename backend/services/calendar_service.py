"""
Calendar Service
Daily rehabilitation activity records: memos, self-reported levels and the
measurement-completed flag set when a session finishes.
"""

import calendar
import logging
from datetime import date, datetime
from typing import List, Optional

from domain.errors import ValidationError
from domain.progress import CalendarPatch, CalendarRecord, apply_calendar_patch
from domain.repositories import CalendarRepository

logger = logging.getLogger(__name__)

DEFAULT_LEVEL = 3  # neutral self-report for a day first created from a memo


class CalendarService:

    def __init__(self, repository: CalendarRepository):
        self.repository = repository

    def upsert(self, user_id: str, record_date: date, patch: CalendarPatch, now: Optional[datetime] = None) -> CalendarRecord:
        """Apply `patch` to the day's record, creating the record if needed."""
        if not user_id:
            raise ValidationError(["userId is required"])
        now = now or datetime.now()
        existing = self.repository.find_by_date(user_id, record_date)
        if existing is None:
            existing = CalendarRecord(user_id=user_id, record_date=record_date, created_at=now, updated_at=now)
        record = apply_calendar_patch(existing, patch, now)
        return self.repository.save(record)

    def mark_measurement_completed(self, user_id: str, record_date: date) -> CalendarRecord:
        record = self.upsert(user_id, record_date, CalendarPatch(measurement_completed=True))
        logger.info(f"Calendar {user_id} {record_date}: measurement completed")
        return record

    def save_memo(
        self,
        user_id: str,
        record_date: date,
        memo: str,
        pain_level: Optional[int] = None,
        motivation_level: Optional[int] = None,
        performance_level: Optional[int] = None,
        rehab_completed: Optional[bool] = None,
    ) -> CalendarRecord:
        """
        Save the day's memo and self-reported levels.

        Levels not given keep their stored value; a record created here
        starts every level at 3.
        """
        is_new = self.repository.find_by_date(user_id, record_date) is None
        if is_new:
            pain_level = pain_level if pain_level is not None else DEFAULT_LEVEL
            motivation_level = motivation_level if motivation_level is not None else DEFAULT_LEVEL
            performance_level = performance_level if performance_level is not None else DEFAULT_LEVEL

        try:
            patch = CalendarPatch(
                notes=memo,
                pain_level=pain_level,
                motivation_level=motivation_level,
                performance_level=performance_level,
                rehab_completed=rehab_completed,
            )
        except ValueError as e:
            raise ValidationError([str(e)])
        return self.upsert(user_id, record_date, patch)

    def get_month(self, user_id: str, year: int, month: int) -> List[CalendarRecord]:
        if not 1 <= month <= 12:
            raise ValidationError([f"Invalid month {month}"])
        last_day = calendar.monthrange(year, month)[1]
        return self.repository.find_by_date_range(user_id, date(year, month, 1), date(year, month, last_day))
