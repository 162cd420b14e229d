"""
Measurement Capture
Per-frame pipeline: LandmarkValidator -> AngleCalculator -> record_angle
"""

import logging
from dataclasses import dataclass
from typing import Optional

from domain.context import SessionState
from domain.errors import SessionStateError
from domain.hand import HandFrame
from services.angle_calculator import AngleCalculator, AngleResult
from services.landmark_validator import LandmarkValidator
from services.phase_state_machine import record_angle

logger = logging.getLogger(__name__)


@dataclass
class FrameOutcome:
    state: SessionState
    result: Optional[AngleResult] = None
    accepted: bool = False


class MeasurementCapture:
    """Runs synchronously once per detector callback."""

    def __init__(self, validator: Optional[LandmarkValidator] = None, calculator: Optional[AngleCalculator] = None):
        self.validator = validator or LandmarkValidator()
        self.calculator = calculator or AngleCalculator()

    def process_frame(self, state: SessionState, frame: Optional[HandFrame]) -> FrameOutcome:
        """
        Feed one frame into the session.

        Detector gaps (None), structurally invalid frames, frames from the
        other hand and low-confidence readings all leave the phase state as
        it was.
        """
        if state.is_terminal:
            raise SessionStateError(
                f"Session {state.session_id} is {state.session.status}; frames are not accepted",
                session_id=state.session_id,
            )
        if frame is None or not self.validator.validate(frame):
            return FrameOutcome(state=state)

        if frame.handedness != state.session.hand:
            logger.debug(f"Ignoring {frame.handedness} hand frame in {state.session.hand} hand session")
            return FrameOutcome(state=state)

        phase = state.current_phase
        result = self.calculator.calculate_angle_for_phase(frame, phase)
        new_state = record_angle(state, phase, result)

        thumb = self.calculator.calculate_thumb_angles(frame)
        if thumb.accuracy >= self.calculator.thresholds['min_accuracy']:
            new_state = new_state.model_copy(update={"thumb_angles": thumb.as_measurement_fields()})

        return FrameOutcome(state=new_state, result=result, accepted=result.is_valid)
