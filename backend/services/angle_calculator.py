"""
Angle Calculator for Wrist and Thumb Range of Motion
Computes joint angles from 21-point hand landmarks

Conventions:
- Image coordinates: x right, y down, z toward the camera is negative
- Angles in degrees, rounded to 2 decimals
- Each motion is clamped to its anatomically valid range
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, field, asdict
from typing import Deque, Dict, Iterable, Optional, Sequence, Tuple

import numpy as np

from domain.clinical_tables import PhaseId
from domain.hand import HandFrame, HandLandmark

logger = logging.getLogger(__name__)

# ===== NUMERICAL SAFETY CONSTANTS =====
ZERO_MAGNITUDE = 1e-10  # Vectors shorter than this are degenerate
DEGENERATE_ANGLE = 0.0  # Sentinel returned for degenerate geometry

VERTICAL_AXIS = np.array([0.0, -1.0, 0.0])
HORIZONTAL_AXIS = np.array([1.0, 0.0, 0.0])
DEPTH_AXIS = np.array([0.0, 0.0, 1.0])

PALM_MCPS = (
    HandLandmark.INDEX_FINGER_MCP,
    HandLandmark.MIDDLE_FINGER_MCP,
    HandLandmark.RING_FINGER_MCP,
    HandLandmark.PINKY_MCP,
)


def angle_between(p1: Sequence[float], vertex: Sequence[float], p2: Sequence[float]) -> float:
    """
    Interior angle p1-vertex-p2 in degrees, within [0, 180].

    Returns DEGENERATE_ANGLE when either arm has zero length.
    """
    v1 = np.asarray(p1, dtype=float) - np.asarray(vertex, dtype=float)
    v2 = np.asarray(p2, dtype=float) - np.asarray(vertex, dtype=float)
    n1 = np.linalg.norm(v1)
    n2 = np.linalg.norm(v2)
    if n1 < ZERO_MAGNITUDE or n2 < ZERO_MAGNITUDE:
        return DEGENERATE_ANGLE

    cos_angle = np.clip(np.dot(v1, v2) / (n1 * n2), -1.0, 1.0)
    return float(np.degrees(np.arccos(cos_angle)))


def axis_angle(vector: np.ndarray, axis: np.ndarray) -> float:
    """Unsigned angle between a vector and an axis line, folded into [0, 90]."""
    angle = angle_between(vector, np.zeros(3), axis)
    return min(angle, 180.0 - angle)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass
class AngleResult:
    """Angle reading with a confidence estimate from the contributing points"""
    angle: float
    accuracy: float
    is_valid: bool
    landmarks: Tuple[int, ...] = ()

    def to_dict(self) -> Dict:
        return asdict(self)


INVALID_RESULT = AngleResult(angle=DEGENERATE_ANGLE, accuracy=0.0, is_valid=False)


@dataclass
class WristAngles:
    """Directional wrist angles for one frame; the inactive direction reads 0"""
    palmar_flexion: float = 0.0
    dorsal_flexion: float = 0.0
    ulnar_deviation: float = 0.0
    radial_deviation: float = 0.0
    pronation: float = 0.0
    supination: float = 0.0
    accuracy: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class ThumbAngles:
    flexion: float = 0.0
    extension: float = 0.0  # reference position
    adduction: float = 0.0  # reference position
    abduction: float = 0.0
    accuracy: float = 0.0

    def to_dict(self) -> Dict:
        return asdict(self)

    def as_measurement_fields(self) -> Dict[str, float]:
        return {
            "thumb_flexion": self.flexion,
            "thumb_extension": self.extension,
            "thumb_adduction": self.adduction,
            "thumb_abduction": self.abduction,
        }


class AngleCalculator:
    """
    Geometric angle engine for one hand frame.

    All entry points expect a frame that passed LandmarkValidator.
    """

    THRESHOLDS = {
        'reference_length': 0.1,  # arm length giving full accuracy (normalized units)
        'min_accuracy': 0.3,      # below this a reading is discounted
        'flexion_max': 90.0,
        'deviation_max': 45.0,
        'rotation_max': 90.0,
        'thumb_flexion_max': 90.0,
        'thumb_abduction_max': 60.0,
    }

    FLEXION_TRIPLE = (HandLandmark.MIDDLE_FINGER_MCP, HandLandmark.WRIST, HandLandmark.INDEX_FINGER_MCP)
    DEVIATION_TRIPLE = (HandLandmark.THUMB_CMC, HandLandmark.WRIST, HandLandmark.PINKY_MCP)
    ROTATION_TRIPLE = (HandLandmark.INDEX_FINGER_MCP, HandLandmark.WRIST, HandLandmark.PINKY_MCP)
    THUMB_FLEXION_TRIPLE = (HandLandmark.THUMB_CMC, HandLandmark.THUMB_MCP, HandLandmark.THUMB_IP)
    THUMB_ABDUCTION_TRIPLE = (HandLandmark.THUMB_MCP, HandLandmark.THUMB_CMC, HandLandmark.INDEX_FINGER_MCP)

    def __init__(self, thresholds: Optional[Dict[str, float]] = None):
        self.thresholds = dict(self.THRESHOLDS)
        if thresholds:
            self.thresholds.update(thresholds)

    # ----- accuracy -----

    def landmark_accuracy(self, frame: HandFrame, triple: Sequence[int]) -> float:
        """
        Confidence of a landmark triple: shortest arm length over the
        reference length (capped at 1), scaled by mean visibility.
        """
        p1, vertex, p2 = (frame.point(i) for i in triple)
        arm1 = np.linalg.norm(p1.as_array() - vertex.as_array())
        arm2 = np.linalg.norm(p2.as_array() - vertex.as_array())
        shortest = min(arm1, arm2)
        if not math.isfinite(shortest) or shortest < ZERO_MAGNITUDE:
            return 0.0

        length_score = min(1.0, shortest / self.thresholds['reference_length'])
        # non-finite visibility counts as unseen
        visibility = float(np.mean([
            p.visibility if math.isfinite(p.visibility) else 0.0
            for p in (p1, vertex, p2)
        ]))
        return round(clamp(length_score * visibility, 0.0, 1.0), 2)

    def _result(self, angle: float, degenerate: bool, frame: HandFrame, triple: Sequence[int], upper: float) -> AngleResult:
        landmarks = tuple(int(i) for i in triple)
        if degenerate:
            return AngleResult(angle=DEGENERATE_ANGLE, accuracy=0.0, is_valid=False, landmarks=landmarks)
        accuracy = self.landmark_accuracy(frame, triple)
        return AngleResult(
            angle=round(clamp(angle, 0.0, upper), 2),
            accuracy=accuracy,
            is_valid=accuracy >= self.thresholds['min_accuracy'],
            landmarks=landmarks,
        )

    # ----- generic -----

    def _interior(self, frame: HandFrame, triple: Sequence[int]) -> Tuple[float, bool]:
        p1, vertex, p2 = (frame.point(i).as_array() for i in triple)
        degenerate = bool(
            np.linalg.norm(p1 - vertex) < ZERO_MAGNITUDE
            or np.linalg.norm(p2 - vertex) < ZERO_MAGNITUDE
        )
        return angle_between(p1, vertex, p2), degenerate

    def calculate_angle(self, frame: HandFrame, triple: Sequence[int]) -> AngleResult:
        """Raw interior angle at the vertex of a landmark triple, within [0, 180]."""
        angle, degenerate = self._interior(frame, triple)
        return self._result(angle, degenerate, frame, triple, 180.0)

    # ----- wrist -----

    def palm_center(self, frame: HandFrame) -> np.ndarray:
        return np.mean([frame.point(i).as_array() for i in PALM_MCPS], axis=0)

    def calculate_flexion_extension(self, frame: HandFrame) -> AngleResult:
        """
        Wrist flexion/extension magnitude: tilt of the wrist->middle-MCP
        direction away from the vertical, clamped to [0, 90].
        """
        wrist = frame.point(HandLandmark.WRIST).as_array()
        middle = frame.point(HandLandmark.MIDDLE_FINGER_MCP).as_array()
        direction = middle - wrist
        degenerate = np.linalg.norm(direction) < ZERO_MAGNITUDE
        angle = axis_angle(direction, VERTICAL_AXIS)
        return self._result(angle, degenerate, frame, self.FLEXION_TRIPLE, self.thresholds['flexion_max'])

    def calculate_deviation(self, frame: HandFrame) -> AngleResult:
        """
        Ulnar/radial deviation magnitude: tilt of the thumb-CMC->pinky-MCP
        line against the horizontal in the image plane, clamped to [0, 45].
        """
        thumb = frame.point(HandLandmark.THUMB_CMC).as_array()
        pinky = frame.point(HandLandmark.PINKY_MCP).as_array()
        chord = pinky - thumb
        chord[2] = 0.0
        degenerate = np.linalg.norm(chord) < ZERO_MAGNITUDE
        angle = axis_angle(chord, HORIZONTAL_AXIS)
        return self._result(angle, degenerate, frame, self.DEVIATION_TRIPLE, self.thresholds['deviation_max'])

    def calculate_forearm_rotation(self, frame: HandFrame) -> AngleResult:
        """
        Pronation/supination magnitude: how far the index-MCP->pinky-MCP line
        has turned toward the depth axis, clamped to [0, 90].
        """
        index = frame.point(HandLandmark.INDEX_FINGER_MCP).as_array()
        pinky = frame.point(HandLandmark.PINKY_MCP).as_array()
        chord = pinky - index
        degenerate = np.linalg.norm(chord) < ZERO_MAGNITUDE
        angle = 90.0 - axis_angle(chord, DEPTH_AXIS)
        return self._result(angle, degenerate, frame, self.ROTATION_TRIPLE, self.thresholds['rotation_max'])

    def _palm_normal(self, frame: HandFrame) -> np.ndarray:
        wrist = frame.point(HandLandmark.WRIST).as_array()
        index = frame.point(HandLandmark.INDEX_FINGER_MCP).as_array()
        pinky = frame.point(HandLandmark.PINKY_MCP).as_array()
        normal = np.cross(index - wrist, pinky - wrist)
        # Mirror so both hands share one orientation
        if frame.handedness == "left":
            normal = -normal
        return normal

    def calculate_wrist_angles(self, frame: HandFrame) -> WristAngles:
        """
        All wrist angles with direction.

        Flexion direction: palm centre moving toward the camera (z < 0) is
        palmar, away is dorsal. Deviation direction: palm centre shifting
        toward the thumb side is radial, toward the little finger is ulnar.
        Rotation direction: sign of the palm normal's x component.
        """
        wrist = frame.point(HandLandmark.WRIST).as_array()
        tilt = self.palm_center(frame) - wrist

        flexion = self.calculate_flexion_extension(frame)
        deviation = self.calculate_deviation(frame)
        rotation = self.calculate_forearm_rotation(frame)

        angles = WristAngles(accuracy=min(flexion.accuracy, deviation.accuracy))
        if tilt[2] < 0:
            angles.palmar_flexion = flexion.angle
        else:
            angles.dorsal_flexion = flexion.angle

        thumb_x = frame.point(HandLandmark.THUMB_CMC).x
        pinky_x = frame.point(HandLandmark.PINKY_MCP).x
        thumb_side = math.copysign(1.0, thumb_x - pinky_x)
        if tilt[0] * thumb_side > 0:
            angles.radial_deviation = deviation.angle
        else:
            angles.ulnar_deviation = deviation.angle

        if self._palm_normal(frame)[0] > 0:
            angles.pronation = rotation.angle
        else:
            angles.supination = rotation.angle
        return angles

    # ----- thumb -----

    def calculate_thumb_flexion(self, frame: HandFrame) -> AngleResult:
        """Bend at the thumb MCP joint: 180 minus the CMC-MCP-IP interior angle."""
        interior, degenerate = self._interior(frame, self.THUMB_FLEXION_TRIPLE)
        return self._result(180.0 - interior, degenerate, frame, self.THUMB_FLEXION_TRIPLE,
                            self.thresholds['thumb_flexion_max'])

    def calculate_thumb_abduction(self, frame: HandFrame) -> AngleResult:
        """Spread at the thumb CMC between the thumb MCP and the index MCP."""
        spread, degenerate = self._interior(frame, self.THUMB_ABDUCTION_TRIPLE)
        return self._result(spread, degenerate, frame, self.THUMB_ABDUCTION_TRIPLE,
                            self.thresholds['thumb_abduction_max'])

    def calculate_thumb_angles(self, frame: HandFrame) -> ThumbAngles:
        flexion = self.calculate_thumb_flexion(frame)
        abduction = self.calculate_thumb_abduction(frame)
        return ThumbAngles(
            flexion=flexion.angle,
            abduction=abduction.angle,
            accuracy=min(flexion.accuracy, abduction.accuracy),
        )

    # ----- phase dispatch -----

    def calculate_angle_for_phase(self, frame: HandFrame, phase_id: PhaseId) -> AngleResult:
        """Angle reading for the motion a capture phase measures."""
        dispatch = {
            PhaseId.PALMAR_FLEXION: self.calculate_flexion_extension,
            PhaseId.DORSAL_FLEXION: self.calculate_flexion_extension,
            PhaseId.ULNAR_DEVIATION: self.calculate_deviation,
            PhaseId.RADIAL_DEVIATION: self.calculate_deviation,
            PhaseId.PRONATION: self.calculate_forearm_rotation,
            PhaseId.SUPINATION: self.calculate_forearm_rotation,
        }
        handler = dispatch.get(PhaseId(phase_id))
        if handler is None:
            logger.warning(f"No angle routine for phase {phase_id}")
            return INVALID_RESULT
        return handler(frame)


def combine_angle_results(results: Iterable[AngleResult]) -> AngleResult:
    """Accuracy-weighted mean of valid readings; invalid when none are valid."""
    valid = [r for r in results if r.is_valid]
    total_weight = sum(r.accuracy for r in valid)
    if not valid or total_weight <= 0:
        return INVALID_RESULT

    angle = sum(r.angle * r.accuracy for r in valid) / total_weight
    accuracy = total_weight / len(valid)
    return AngleResult(
        angle=round(angle, 2),
        accuracy=round(accuracy, 2),
        is_valid=True,
        landmarks=valid[0].landmarks,
    )


@dataclass
class AngleSmoother:
    """Moving average over the last `window` valid angles, for display only."""
    window: int = 5
    _values: Deque[float] = field(default_factory=deque, init=False, repr=False)

    def __post_init__(self):
        if self.window < 1:
            raise ValueError("window must be >= 1")
        self._values = deque(maxlen=self.window)

    def add(self, result: AngleResult) -> Optional[float]:
        if result.is_valid:
            self._values.append(result.angle)
        return self.value

    @property
    def value(self) -> Optional[float]:
        if not self._values:
            return None
        return round(float(np.mean(self._values)), 2)

    def reset(self) -> None:
        self._values.clear()
