"""
JSON File Store
Persists measurements, sessions, calendar records and progress rollups as
JSON documents under DATA_FOLDER so state survives Flask restarts.
"""

import json
import logging
import os
import tempfile
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Optional

from domain.context import SessionState
from domain.errors import PersistenceError
from domain.measurement import MotionMeasurement, superseding
from domain.progress import CalendarRecord, ProgressData
from domain.repositories import (
    CalendarRepository,
    MeasurementRepository,
    ProgressRepository,
    RepositoryBundle,
    SessionRepository,
)

logger = logging.getLogger(__name__)

DATA_DIR = os.getenv('DATA_FOLDER', './data')


class JsonStore:
    """
    Thread-safe collection files in one directory.

    Every write rewrites the whole collection through a temp file and
    os.replace, so readers never see a half-written document.
    """

    def __init__(self, data_dir: Optional[str] = None):
        data_dir = data_dir or DATA_DIR
        if not os.path.isabs(data_dir):
            data_dir = os.path.abspath(data_dir)
        self.data_dir = Path(data_dir)
        self._lock = threading.RLock()

    def _path(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    def load(self, collection: str):
        path = self._path(collection)
        with self._lock:
            if not path.exists():
                return {}
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"Error loading {path}: {e}")
                raise PersistenceError(f"Cannot read {collection}: {e}")

    def save(self, collection: str, data) -> None:
        path = self._path(collection)
        with self._lock:
            try:
                os.makedirs(self.data_dir, exist_ok=True)
                fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=f".{collection}.", suffix=".tmp")
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2)
                os.replace(tmp_path, path)
            except OSError as e:
                logger.error(f"Error saving {path}: {e}")
                raise PersistenceError(f"Cannot write {collection}: {e}")

    def lock(self):
        return self._lock


def _day_key(user_id: str, day: date) -> str:
    return f"{user_id}:{day.isoformat()}"


class JsonMeasurementRepository(MeasurementRepository):
    COLLECTION = "measurements"

    def __init__(self, store: JsonStore):
        self.store = store

    def _all(self) -> List[MotionMeasurement]:
        return [MotionMeasurement.model_validate(v) for v in self.store.load(self.COLLECTION).values()]

    def upsert_daily(self, measurement: MotionMeasurement) -> MotionMeasurement:
        key = _day_key(measurement.user_id, measurement.measurement_date.date())
        with self.store.lock():
            data = self.store.load(self.COLLECTION)
            existing = MotionMeasurement.model_validate(data[key]) if key in data else None
            stored = superseding(measurement, existing)
            data[key] = stored.model_dump(mode="json")
            self.store.save(self.COLLECTION, data)

        if existing is not None:
            logger.info(f"Measurement {stored.id} superseded for {key}")
        else:
            logger.info(f"Measurement {stored.id} stored for {key}")
        return stored

    def find_by_user_and_date(self, user_id: str, day: date) -> Optional[MotionMeasurement]:
        raw = self.store.load(self.COLLECTION).get(_day_key(user_id, day))
        return MotionMeasurement.model_validate(raw) if raw else None

    def find_by_date_range(self, user_id: str, start: datetime, end: datetime) -> List[MotionMeasurement]:
        records = [
            m for m in self._all()
            if m.user_id == user_id and start <= m.measurement_date <= end
        ]
        return sorted(records, key=lambda m: m.measurement_date)

    def find_by_user(self, user_id: str, limit: Optional[int] = None, offset: int = 0) -> List[MotionMeasurement]:
        records = sorted(
            (m for m in self._all() if m.user_id == user_id),
            key=lambda m: m.measurement_date,
            reverse=True,
        )
        records = records[offset:]
        return records[:limit] if limit is not None else records


class JsonSessionRepository(SessionRepository):
    COLLECTION = "sessions"

    def __init__(self, store: JsonStore):
        self.store = store

    def save(self, state: SessionState) -> None:
        with self.store.lock():
            data = self.store.load(self.COLLECTION)
            data[state.session_id] = state.model_dump(mode="json")
            self.store.save(self.COLLECTION, data)

    def find_by_id(self, session_id: str) -> Optional[SessionState]:
        raw = self.store.load(self.COLLECTION).get(session_id)
        return SessionState.model_validate(raw) if raw else None


class JsonCalendarRepository(CalendarRepository):
    COLLECTION = "calendar"

    def __init__(self, store: JsonStore):
        self.store = store

    def find_by_date(self, user_id: str, record_date: date) -> Optional[CalendarRecord]:
        raw = self.store.load(self.COLLECTION).get(_day_key(user_id, record_date))
        return CalendarRecord.model_validate(raw) if raw else None

    def save(self, record: CalendarRecord) -> CalendarRecord:
        with self.store.lock():
            data = self.store.load(self.COLLECTION)
            data[_day_key(record.user_id, record.record_date)] = record.model_dump(mode="json")
            self.store.save(self.COLLECTION, data)
        return record

    def find_by_date_range(self, user_id: str, start: date, end: date) -> List[CalendarRecord]:
        records = [CalendarRecord.model_validate(v) for v in self.store.load(self.COLLECTION).values()]
        records = [r for r in records if r.user_id == user_id and start <= r.record_date <= end]
        return sorted(records, key=lambda r: r.record_date)


class JsonProgressRepository(ProgressRepository):
    COLLECTION = "progress"

    def __init__(self, store: JsonStore):
        self.store = store

    def _bucket(self, data: Dict, user_id: str, analysis_period: str) -> List[Dict]:
        return data.setdefault(f"{user_id}:{analysis_period}", [])

    def history(self, user_id: str, analysis_period: str) -> List[ProgressData]:
        data = self.store.load(self.COLLECTION)
        records = [ProgressData.model_validate(v) for v in data.get(f"{user_id}:{analysis_period}", [])]
        return sorted(records, key=lambda p: p.analysis_date, reverse=True)

    def find_latest(self, user_id: str, analysis_period: str) -> Optional[ProgressData]:
        records = self.history(user_id, analysis_period)
        return records[0] if records else None

    def save(self, progress: ProgressData) -> ProgressData:
        with self.store.lock():
            data = self.store.load(self.COLLECTION)
            bucket = self._bucket(data, progress.user_id, progress.analysis_period)
            day = progress.analysis_date.date()

            stored = progress
            kept = []
            for raw in bucket:
                existing = ProgressData.model_validate(raw)
                if existing.analysis_date.date() == day:
                    stored = progress.model_copy(update={"id": existing.id, "created_at": existing.created_at})
                    logger.info(f"Progress {existing.id} superseded for {progress.user_id}/{progress.analysis_period}")
                    continue
                kept.append(raw)

            kept.append(stored.model_dump(mode="json"))
            data[f"{progress.user_id}:{progress.analysis_period}"] = kept
            self.store.save(self.COLLECTION, data)
        return stored


def create_repositories(data_dir: Optional[str] = None) -> RepositoryBundle:
    """Build all four JSON repositories over one store directory."""
    store = JsonStore(data_dir)
    return (
        JsonMeasurementRepository(store),
        JsonSessionRepository(store),
        JsonCalendarRepository(store),
        JsonProgressRepository(store),
    )
