"""
Hand landmark types
21-point hand skeleton as emitted by the external landmark detector
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Literal, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

Hand = Literal["left", "right"]

NUM_HAND_LANDMARKS = 21


class HandLandmark(IntEnum):
    """MediaPipe Hands landmark indices"""
    WRIST = 0
    THUMB_CMC = 1
    THUMB_MCP = 2
    THUMB_IP = 3
    THUMB_TIP = 4
    INDEX_FINGER_MCP = 5
    INDEX_FINGER_PIP = 6
    INDEX_FINGER_DIP = 7
    INDEX_FINGER_TIP = 8
    MIDDLE_FINGER_MCP = 9
    MIDDLE_FINGER_PIP = 10
    MIDDLE_FINGER_DIP = 11
    MIDDLE_FINGER_TIP = 12
    RING_FINGER_MCP = 13
    RING_FINGER_PIP = 14
    RING_FINGER_DIP = 15
    RING_FINGER_TIP = 16
    PINKY_MCP = 17
    PINKY_PIP = 18
    PINKY_DIP = 19
    PINKY_TIP = 20


@dataclass(frozen=True)
class Landmark:
    """Normalized camera-space point (x, y in 0-1, z relative depth)"""
    x: float
    y: float
    z: float = 0.0
    visibility: float = 1.0

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)


@dataclass(frozen=True)
class HandFrame:
    """One detector callback: 21 landmarks, handedness and detection confidence"""
    landmarks: Tuple[Landmark, ...]
    handedness: Hand = "right"
    confidence: float = 1.0
    timestamp: Optional[float] = None

    def __len__(self) -> int:
        return len(self.landmarks)

    def point(self, index: int) -> Landmark:
        return self.landmarks[int(index)]

    @classmethod
    def from_keypoints(
        cls,
        keypoints: Sequence[Dict[str, float]],
        handedness: Hand = "right",
        confidence: float = 1.0,
        timestamp: Optional[float] = None,
    ) -> "HandFrame":
        """
        Build a frame from detector keypoint dicts.

        Accepts the `[{"id", "x", "y", "z", "visibility"}]` layout used by the
        skeleton extraction output. Keypoints without an id are taken in order.
        Missing ids are filled with NaN points so the validator can reject them;
        ids outside 0..20 are dropped.
        """
        by_id: Dict[int, Dict[str, float]] = {}
        dropped = 0
        for order, kp in enumerate(keypoints):
            idx = int(kp.get("id", order))
            if not 0 <= idx < NUM_HAND_LANDMARKS:
                dropped += 1
                continue
            by_id[idx] = kp
        if dropped:
            logger.warning(f"Ignored {dropped} keypoints with ids outside 0..{NUM_HAND_LANDMARKS - 1}")

        if not by_id:
            return cls(landmarks=(), handedness=handedness, confidence=confidence, timestamp=timestamp)

        landmarks: List[Landmark] = []
        for idx in range(NUM_HAND_LANDMARKS):
            kp = by_id.get(idx)
            if kp is None:
                landmarks.append(Landmark(float("nan"), float("nan"), float("nan"), 0.0))
                continue
            landmarks.append(Landmark(
                x=float(kp["x"]),
                y=float(kp["y"]),
                z=float(kp.get("z", 0.0) or 0.0),
                visibility=float(kp.get("visibility", 1.0)),
            ))
        return cls(
            landmarks=tuple(landmarks),
            handedness=handedness,
            confidence=confidence,
            timestamp=timestamp,
        )

    def to_keypoints(self) -> List[Dict[str, float]]:
        return [
            {"id": i, "x": lm.x, "y": lm.y, "z": lm.z, "visibility": lm.visibility}
            for i, lm in enumerate(self.landmarks)
        ]
