"""
Phase State Machine
Sequences a capture session through its ordered movement phases.

Transitions are pure functions SessionState -> SessionState. PhaseStateMachine
wraps one state behind a lock and notifies listeners after every change.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, List, Optional

from domain.clinical_tables import ClinicalTables, PhaseId
from domain.context import PhaseReading, SessionState
from domain.errors import IncompleteSessionError, SessionStateError
from domain.hand import Hand
from domain.measurement import MeasurementResult, MeasurementSession
from services.angle_calculator import AngleResult

logger = logging.getLogger(__name__)

StateListener = Callable[[SessionState], None]


def achievement(angle: float, target_angle: float) -> float:
    """Percent of target reached, 1 decimal, capped at 100."""
    if target_angle <= 0:
        return 0.0
    return min(round(max(angle, 0.0) / target_angle * 100, 1), 100.0)


def _require_active(state: SessionState, action: str) -> None:
    if state.is_terminal:
        raise SessionStateError(
            f"Cannot {action}: session {state.session_id} is {state.session.status}",
            session_id=state.session_id,
        )


def start_session(user_id: str, hand: Hand, tables: ClinicalTables, now: Optional[datetime] = None) -> SessionState:
    session = MeasurementSession(
        user_id=user_id,
        hand=hand,
        start_time=now or datetime.now(),
        total_phases=len(tables.phases),
    )
    state = SessionState(session=session, phase_order=tuple(tables.phase_ids))
    logger.info(f"Session {session.session_id} started for {user_id} ({hand} hand, {len(tables.phases)} phases)")
    return state.logged("start", f"Session started with {len(tables.phases)} phases")


def record_angle(state: SessionState, phase_id: PhaseId, result: AngleResult, now: Optional[datetime] = None) -> SessionState:
    """
    Hold `result` as the latest reading for the current phase.

    Each call replaces the previous reading. Invalid readings leave the state
    unchanged.
    """
    _require_active(state, "record angle")
    phase_id = PhaseId(phase_id)
    if phase_id != state.current_phase:
        raise SessionStateError(
            f"Phase {phase_id.value} is not current (current: {state.position})",
            session_id=state.session_id,
        )
    if not result.is_valid:
        logger.debug(f"Ignoring invalid reading for {phase_id.value} (accuracy {result.accuracy})")
        return state

    reading = PhaseReading(
        phase_id=phase_id,
        angle=result.angle,
        accuracy=result.accuracy,
        timestamp=now or datetime.now(),
    )
    return state.model_copy(update={"pending": reading})


def _finalize_current(state: SessionState, tables: ClinicalTables, now: Optional[datetime]) -> SessionState:
    reading = state.pending
    spec = tables.phase(reading.phase_id)
    result = MeasurementResult(
        session_id=state.session_id,
        phase_id=spec.phase_id,
        phase_name=spec.name,
        angle_value=reading.angle,
        target_angle=spec.target_angle,
        achievement=achievement(reading.angle, spec.target_angle),
        accuracy=reading.accuracy,
        timestamp=now or datetime.now(),
    )
    results = tuple(r for r in state.results if r.phase_id != spec.phase_id) + (result,)
    session = state.session.model_copy(update={"completed_phases": len(results)})
    return state.model_copy(update={"results": results, "pending": None, "session": session})


def advance(state: SessionState, tables: ClinicalTables, now: Optional[datetime] = None) -> SessionState:
    """Finalize the current phase's latest reading and move to the next phase."""
    _require_active(state, "advance")
    phase = state.current_phase
    if state.pending is None:
        raise SessionStateError(
            f"No reading recorded for phase {phase.value}",
            session_id=state.session_id,
        )
    if state.current_index >= len(state.phase_order) - 1:
        raise SessionStateError(
            f"Phase {phase.value} is the last phase; complete the session instead",
            session_id=state.session_id,
        )

    state = _finalize_current(state, tables, now)
    state = state.model_copy(update={"current_index": state.current_index + 1})
    logger.info(f"Session {state.session_id}: {phase.value} -> {state.position}")
    return state.logged("advance", f"Finished {phase.value}", {"next": state.position})


def complete(state: SessionState, tables: ClinicalTables, now: Optional[datetime] = None) -> SessionState:
    """
    Finalize any pending reading and close the session.

    Raises IncompleteSessionError when any configured phase lacks a result;
    the input state is not modified in that case.
    """
    _require_active(state, "complete")
    candidate = state
    if candidate.pending is not None:
        candidate = _finalize_current(candidate, tables, now)

    missing = [p.value for p in candidate.phase_order if candidate.result_for(p) is None]
    if missing:
        logger.warning(f"Session {state.session_id} incomplete: missing {missing}")
        raise IncompleteSessionError(state.session_id, missing)

    session = candidate.session.model_copy(update={
        "status": "completed",
        "end_time": now or datetime.now(),
        "completed_phases": len(candidate.results),
    })
    logger.info(f"Session {state.session_id} completed")
    candidate = candidate.model_copy(update={"session": session, "current_index": len(candidate.phase_order)})
    return candidate.logged("complete", "Session completed")


def cancel(state: SessionState, now: Optional[datetime] = None) -> SessionState:
    _require_active(state, "cancel")
    session = state.session.model_copy(update={"status": "cancelled", "end_time": now or datetime.now()})
    logger.info(f"Session {state.session_id} cancelled at {state.position}")
    return state.model_copy(update={"session": session, "pending": None}).logged("cancel", "Session cancelled")


class PhaseStateMachine:
    """
    One session's mutable holder.

    Frame readings and user-driven transitions are serialized by a lock so a
    transition never interleaves with an in-flight record_angle.
    """

    def __init__(self, state: SessionState, tables: ClinicalTables):
        self._state = state
        self.tables = tables
        self._lock = threading.Lock()
        self._listeners: List[StateListener] = []
        self._completing = False

    @classmethod
    def start(cls, user_id: str, hand: Hand, tables: ClinicalTables) -> "PhaseStateMachine":
        return cls(start_session(user_id, hand, tables), tables)

    @property
    def state(self) -> SessionState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def _notify(self, state: SessionState) -> None:
        for listener in list(self._listeners):
            listener(state)

    def _require_idle(self) -> None:
        if self._completing:
            raise SessionStateError(
                f"Session {self._state.session_id} is being completed",
                session_id=self._state.session_id,
            )

    def _apply(self, transition: Callable[[SessionState], SessionState]) -> SessionState:
        with self._lock:
            self._require_idle()
            before = self._state
            after = transition(before)
            self._state = after
        if after is not before:
            self._notify(after)
        return after

    def begin_completion(self) -> SessionState:
        """
        Reserve the session for a completion that persists before committing.

        Until finish_completion or abort_completion, every other transition
        and a second completion raise SessionStateError.
        """
        with self._lock:
            _require_active(self._state, "complete")
            self._require_idle()
            self._completing = True
            return self._state

    def finish_completion(self, before: SessionState, completed: SessionState) -> SessionState:
        with self._lock:
            self._completing = False
            if self._state is not before:
                raise SessionStateError(
                    f"Session {before.session_id} changed during completion",
                    session_id=before.session_id,
                )
            self._state = completed
        self._notify(completed)
        return completed

    def abort_completion(self) -> None:
        with self._lock:
            self._completing = False

    def record_angle(self, phase_id: PhaseId, result: AngleResult) -> SessionState:
        return self._apply(lambda s: record_angle(s, phase_id, result))

    def advance(self) -> SessionState:
        return self._apply(lambda s: advance(s, self.tables))

    def complete(self) -> SessionState:
        return self._apply(lambda s: complete(s, self.tables))

    def cancel(self) -> SessionState:
        return self._apply(cancel)

    def with_state(self, update: Callable[[SessionState], SessionState]) -> SessionState:
        """Apply an arbitrary pure update under the lock."""
        return self._apply(update)
