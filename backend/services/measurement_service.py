"""
Measurement Service
Session use cases: start, per-frame capture, advance, complete, cancel.

Completing a session flattens its phase results into the day's
MotionMeasurement, scores it against the normal ranges, upserts it through
the MeasurementWriter and marks the day's calendar record.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np

from domain.clinical_tables import ClinicalTables, PhaseId
from domain.context import SessionState
from domain.errors import SessionStateError, ValidationError
from domain.hand import HandFrame
from domain.measurement import MotionMeasurement, validate_measurement
from domain.repositories import MeasurementRepository, SessionRepository
from services.calendar_service import CalendarService
from services.comparison_engine import ComparisonEngine
from services.measurement_capture import FrameOutcome, MeasurementCapture
from services.measurement_writer import MeasurementWriter
from services.phase_state_machine import PhaseStateMachine, complete, start_session

logger = logging.getLogger(__name__)

VALID_HANDS = ("left", "right")


@dataclass
class CompletedSession:
    state: SessionState
    measurement: MotionMeasurement
    average_angle: float
    overall_achievement: float

    def to_dict(self) -> Dict:
        return {
            "session": self.state.session.model_dump(mode="json"),
            "results": [r.model_dump(mode="json") for r in self.state.results],
            "measurement": self.measurement.model_dump(mode="json"),
            "average_angle": self.average_angle,
            "overall_achievement": self.overall_achievement,
        }


class MeasurementService:

    def __init__(
        self,
        tables: ClinicalTables,
        sessions: SessionRepository,
        measurements: MeasurementRepository,
        writer: MeasurementWriter,
        calendar: CalendarService,
        capture: Optional[MeasurementCapture] = None,
        comparison: Optional[ComparisonEngine] = None,
    ):
        self.tables = tables
        self.sessions = sessions
        self.measurements = measurements
        self.writer = writer
        self.calendar = calendar
        self.capture = capture or MeasurementCapture()
        self.comparison = comparison or ComparisonEngine(tables.normal_ranges)
        self._machines: Dict[str, PhaseStateMachine] = {}
        self._lock = threading.Lock()

    # ----- session lookup -----

    def _machine(self, session_id: str) -> PhaseStateMachine:
        with self._lock:
            machine = self._machines.get(session_id)
            if machine is None:
                state = self.sessions.find_by_id(session_id)
                if state is None:
                    raise SessionStateError(f"Session {session_id} not found", session_id=session_id, not_found=True)
                machine = PhaseStateMachine(state, self.tables)
                self._machines[session_id] = machine
            return machine

    def get_session(self, session_id: str) -> SessionState:
        return self._machine(session_id).state

    # ----- transitions -----

    def start_session(self, user_id: str, hand: str) -> SessionState:
        errors = []
        if not user_id or not str(user_id).strip():
            errors.append("userId is required")
        if hand not in VALID_HANDS:
            errors.append(f"hand must be one of {VALID_HANDS}")
        if errors:
            raise ValidationError(errors)

        state = start_session(user_id, hand, self.tables)
        self.sessions.save(state)
        with self._lock:
            self._machines[state.session_id] = PhaseStateMachine(state, self.tables)
        return state

    def process_frame(self, session_id: str, frame: Optional[HandFrame]) -> FrameOutcome:
        machine = self._machine(session_id)
        outcome = FrameOutcome(state=machine.state)

        def step(state: SessionState) -> SessionState:
            nonlocal outcome
            outcome = self.capture.process_frame(state, frame)
            return outcome.state

        machine.with_state(step)
        return outcome

    def advance(self, session_id: str) -> SessionState:
        state = self._machine(session_id).advance()
        self.sessions.save(state)
        return state

    def cancel(self, session_id: str) -> SessionState:
        state = self._machine(session_id).cancel()
        self.sessions.save(state)
        return state

    def complete(self, session_id: str) -> CompletedSession:
        """
        Close the session and persist the day's measurement.

        The session only becomes terminal after the measurement write
        succeeds; a PersistenceError leaves it active so the caller can retry.
        While the write is in flight, cancel, frames and a second complete
        raise SessionStateError.
        """
        machine = self._machine(session_id)
        before = machine.begin_completion()
        try:
            completed = complete(before, self.tables)

            measurement = self.build_measurement(completed)
            errors = validate_measurement(measurement, self.tables.normal_ranges)
            if errors:
                raise ValidationError(errors)

            stored = self.writer.write(measurement)
        except Exception:
            machine.abort_completion()
            raise

        machine.finish_completion(before, completed)
        self.sessions.save(completed)
        self.calendar.mark_measurement_completed(stored.user_id, stored.measurement_date.date())

        angles = [r.angle_value for r in completed.results]
        achievements = [r.achievement for r in completed.results]
        return CompletedSession(
            state=completed,
            measurement=stored,
            average_angle=round(float(np.mean(angles)), 1) if angles else 0.0,
            overall_achievement=round(float(np.mean(achievements)), 1) if achievements else 0.0,
        )

    # ----- records -----

    def build_measurement(self, state: SessionState) -> MotionMeasurement:
        """Flatten phase results and the thumb snapshot into one daily record."""
        values: Dict[str, float] = {}
        for result in state.results:
            spec = self.tables.phase(PhaseId(result.phase_id))
            values[spec.measurement_field] = result.angle_value
        if state.thumb_angles:
            values.update(state.thumb_angles)

        accuracies = [r.accuracy for r in state.results]
        comparison = self.comparison.compare_measurement(values)
        return MotionMeasurement(
            user_id=state.session.user_id,
            measurement_date=state.session.end_time or datetime.now(),
            accuracy_score=round(float(np.mean(accuracies)), 2) if accuracies else 0.0,
            hand_used=state.session.hand,
            comparison_result=comparison,
            session_id=state.session_id,
            **values,
        )

    def list_measurements(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[MotionMeasurement]:
        if not user_id:
            raise ValidationError(["userId is required"])
        if start is None and end is None:
            return self.measurements.find_by_user(user_id, limit=limit, offset=offset)

        records = self.measurements.find_by_date_range(
            user_id,
            start or datetime.min,
            end or datetime.max,
        )
        records = list(reversed(records))[offset:]
        return records[:limit] if limit is not None else records
