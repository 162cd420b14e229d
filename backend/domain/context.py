from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Any, Optional, Tuple
from datetime import datetime

from domain.clinical_tables import PhaseId
from domain.measurement import MeasurementResult, MeasurementSession


class StateEvent(BaseModel):
    """A single transition in a session's history, replayable for the UI."""
    model_config = ConfigDict(frozen=True)

    step: str  # e.g., "start", "advance", "complete", "cancel"
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    meta: Optional[Dict[str, Any]] = None


class PhaseReading(BaseModel):
    """Latest angle reading held for the current phase until it is finalized."""
    model_config = ConfigDict(frozen=True)

    phase_id: PhaseId
    angle: float
    accuracy: float
    timestamp: datetime = Field(default_factory=datetime.now)


class SessionState(BaseModel):
    """Serializable state of one capture session. Transitions return new instances."""
    model_config = ConfigDict(frozen=True)

    session: MeasurementSession
    phase_order: Tuple[PhaseId, ...]

    # Workflow position; equals len(phase_order) once the session is complete
    current_index: int = 0
    pending: Optional[PhaseReading] = None

    # Finalized results, one per phase id
    results: Tuple[MeasurementResult, ...] = ()

    # Latest valid thumb angles seen during capture
    thumb_angles: Optional[Dict[str, float]] = None

    events: Tuple[StateEvent, ...] = ()

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def is_terminal(self) -> bool:
        return self.session.status != "active"

    @property
    def current_phase(self) -> Optional[PhaseId]:
        """Phase accepting readings, or None in the terminal `complete` state."""
        if self.is_terminal or self.current_index >= len(self.phase_order):
            return None
        return self.phase_order[self.current_index]

    @property
    def position(self) -> str:
        phase = self.current_phase
        return phase.value if phase is not None else "complete"

    def result_for(self, phase_id: PhaseId) -> Optional[MeasurementResult]:
        for result in self.results:
            if result.phase_id == phase_id:
                return result
        return None

    def logged(self, step: str, message: str, meta: Optional[Dict[str, Any]] = None) -> "SessionState":
        """Return a copy with an event appended."""
        event = StateEvent(step=step, message=message, meta=meta)
        return self.model_copy(update={"events": self.events + (event,)})
