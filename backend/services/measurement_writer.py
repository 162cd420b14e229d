"""
Measurement Writer
Background persistence of daily MotionMeasurement snapshots.

At most one write per (user_id, date) key is in flight. A write submitted
while another is running for the same key waits as the key's pending write;
a further submit replaces the pending measurement instead of queueing a
duplicate. Failures are delivered through the returned Future.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, Optional, Tuple

from domain.measurement import MotionMeasurement
from domain.repositories import MeasurementRepository

logger = logging.getLogger(__name__)

WriteKey = Tuple[str, str]


class MeasurementWriter:

    def __init__(self, repository: MeasurementRepository, max_workers: int = 2):
        self.repository = repository
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="measurement-writer")
        self._lock = threading.Lock()
        self._inflight: Dict[WriteKey, Future] = {}
        self._pending: Dict[WriteKey, Tuple[MotionMeasurement, Future]] = {}

    @staticmethod
    def key_for(measurement: MotionMeasurement) -> WriteKey:
        return (measurement.user_id, measurement.date_key)

    def submit(self, measurement: MotionMeasurement) -> Future:
        """Schedule an upsert; the Future resolves to the stored record."""
        key = self.key_for(measurement)
        with self._lock:
            if key in self._inflight:
                if key in self._pending:
                    _, future = self._pending[key]
                    logger.info(f"Pending write for {key} superseded")
                else:
                    future = Future()
                self._pending[key] = (measurement, future)
                return future

            future = Future()
            self._inflight[key] = future
        self._executor.submit(self._run, key, measurement, future)
        return future

    def write(self, measurement: MotionMeasurement, timeout: Optional[float] = None) -> MotionMeasurement:
        """Submit and wait. Store failures are re-raised here."""
        return self.submit(measurement).result(timeout=timeout)

    def _run(self, key: WriteKey, measurement: MotionMeasurement, future: Future) -> None:
        try:
            stored = self.repository.upsert_daily(measurement)
        except Exception as e:
            logger.error(f"Measurement write failed for {key}: {e}")
            future.set_exception(e)
        else:
            future.set_result(stored)
        finally:
            with self._lock:
                queued = self._pending.pop(key, None)
                if queued is None:
                    self._inflight.pop(key, None)
                else:
                    self._inflight[key] = queued[1]
            if queued is not None:
                self._executor.submit(self._run, key, queued[0], queued[1])

    def outstanding(self, user_id: str, day_key: str) -> int:
        """Number of writes (in flight plus pending) for a key; never above 2."""
        key = (user_id, day_key)
        with self._lock:
            return int(key in self._inflight) + int(key in self._pending)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
