"""
Repository contracts for the persistence collaborator.

Implementations are injected into the services at construction. Store
failures are raised as PersistenceError and left to the caller to retry.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import List, Optional, Tuple

from domain.context import SessionState
from domain.measurement import MotionMeasurement
from domain.progress import CalendarRecord, ProgressData


class MeasurementRepository(ABC):
    """Daily MotionMeasurement snapshots, upserted by (user_id, date)."""

    @abstractmethod
    def upsert_daily(self, measurement: MotionMeasurement) -> MotionMeasurement:
        """
        Store `measurement` as the record for its (user_id, date) key.
        If a record exists for the key, the stored record keeps the existing
        id and created_at and takes the new content. Returns the stored record.
        """
        pass

    @abstractmethod
    def find_by_user_and_date(self, user_id: str, day: date) -> Optional[MotionMeasurement]:
        pass

    @abstractmethod
    def find_by_date_range(self, user_id: str, start: datetime, end: datetime) -> List[MotionMeasurement]:
        """Records with start <= measurement_date <= end, oldest first."""
        pass

    @abstractmethod
    def find_by_user(self, user_id: str, limit: Optional[int] = None, offset: int = 0) -> List[MotionMeasurement]:
        """Records for a user, newest first."""
        pass


class SessionRepository(ABC):
    """Session state snapshots keyed by session id."""

    @abstractmethod
    def save(self, state: SessionState) -> None:
        pass

    @abstractmethod
    def find_by_id(self, session_id: str) -> Optional[SessionState]:
        pass


class CalendarRepository(ABC):
    """Daily activity records keyed by (user_id, record_date)."""

    @abstractmethod
    def find_by_date(self, user_id: str, record_date: date) -> Optional[CalendarRecord]:
        pass

    @abstractmethod
    def save(self, record: CalendarRecord) -> CalendarRecord:
        """Insert or replace the record for its (user_id, record_date) key."""
        pass

    @abstractmethod
    def find_by_date_range(self, user_id: str, start: date, end: date) -> List[CalendarRecord]:
        """Records with start <= record_date <= end, oldest first."""
        pass


class ProgressRepository(ABC):
    """ProgressData rollups keyed by (user_id, analysis_period)."""

    @abstractmethod
    def find_latest(self, user_id: str, analysis_period: str) -> Optional[ProgressData]:
        pass

    @abstractmethod
    def save(self, progress: ProgressData) -> ProgressData:
        """
        Store a rollup. A record for the same (user_id, analysis_period)
        analysed on the same day is superseded, not appended.
        """
        pass

    @abstractmethod
    def history(self, user_id: str, analysis_period: str) -> List[ProgressData]:
        """All stored rollups for the key, newest first."""
        pass


RepositoryBundle = Tuple[MeasurementRepository, SessionRepository, CalendarRepository, ProgressRepository]
