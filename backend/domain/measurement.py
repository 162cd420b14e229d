"""
Measurement records: per-phase results, sessions, and the persisted daily
MotionMeasurement snapshot with its normal-range comparison.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from domain.clinical_tables import MEASUREMENT_FIELDS, NormalRange, PhaseId
from domain.hand import Hand

SessionStatus = Literal["active", "completed", "cancelled"]
ComparisonStatus = Literal["normal", "below_normal", "above_normal"]


class MeasurementResult(BaseModel):
    """Outcome of one phase; written once when the phase is finalized."""
    model_config = ConfigDict(frozen=True)

    result_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str
    phase_id: PhaseId
    phase_name: str
    angle_value: float
    target_angle: float
    achievement: float  # % of target, capped at 100
    accuracy: float
    timestamp: datetime = Field(default_factory=datetime.now)
    is_completed: bool = True


class MeasurementSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    hand: Hand
    start_time: datetime = Field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    status: SessionStatus = "active"
    total_phases: int
    completed_phases: int = 0


class FieldComparison(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ComparisonStatus
    within_range: bool
    deficit_or_excess: float = 0.0  # degrees outside the range, 0 when normal


class ComparisonResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    fields: Dict[str, FieldComparison]
    overall_status: ComparisonStatus = "normal"


class MotionMeasurement(BaseModel):
    """Flattened snapshot of one completed session; one per user per day."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    measurement_date: datetime = Field(default_factory=datetime.now)

    # Wrist ROM (degrees)
    wrist_flexion: float = 0.0
    wrist_extension: float = 0.0
    wrist_ulnar_deviation: float = 0.0
    wrist_radial_deviation: float = 0.0
    wrist_pronation: Optional[float] = None
    wrist_supination: Optional[float] = None

    # Thumb ROM (degrees)
    thumb_flexion: float = 0.0
    thumb_extension: float = 0.0
    thumb_adduction: float = 0.0
    thumb_abduction: float = 0.0

    accuracy_score: float = 0.0
    hand_used: Hand = "right"
    comparison_result: Optional[ComparisonResult] = None
    session_id: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def date_key(self) -> str:
        return self.measurement_date.date().isoformat()

    def angles(self) -> Dict[str, float]:
        values = {name: getattr(self, name) for name in MEASUREMENT_FIELDS}
        if self.wrist_pronation is not None:
            values["wrist_pronation"] = self.wrist_pronation
        if self.wrist_supination is not None:
            values["wrist_supination"] = self.wrist_supination
        return values


def superseding(new: MotionMeasurement, existing: Optional[MotionMeasurement]) -> MotionMeasurement:
    """New content under the identity (id, created_at) of the record it replaces."""
    if existing is None:
        return new
    return new.model_copy(update={"id": existing.id, "created_at": existing.created_at})


def validate_measurement(
    measurement: MotionMeasurement,
    normal_ranges: Dict[str, NormalRange],
    now: Optional[datetime] = None,
) -> List[str]:
    """Return a list of validation messages; empty when the record is valid."""
    errors: List[str] = []
    now = now or datetime.now()

    if not measurement.user_id or not measurement.user_id.strip():
        errors.append("user_id is required")
    if measurement.measurement_date > now:
        errors.append("measurement_date cannot be in the future")

    for name, value in measurement.angles().items():
        if value < 0:
            errors.append(f"{name} must be >= 0 degrees")
            continue
        rng = normal_ranges.get(name)
        upper = 180.0 if rng is None or rng.is_reference else rng.max * 2
        if value > upper:
            errors.append(f"{name} is implausibly large ({value} degrees)")

    if not 0.0 <= measurement.accuracy_score <= 1.0:
        errors.append("accuracy_score must be within 0..1")
    return errors
