"""
Landmark Validator
Structural check of a hand frame before any angle math runs
"""

import logging
import math
from typing import Optional, Sequence

from domain.hand import HandFrame, HandLandmark, NUM_HAND_LANDMARKS

logger = logging.getLogger(__name__)

REQUIRED_LANDMARKS: Sequence[HandLandmark] = (
    HandLandmark.WRIST,
    HandLandmark.THUMB_CMC,
    HandLandmark.INDEX_FINGER_MCP,
    HandLandmark.MIDDLE_FINGER_MCP,
    HandLandmark.PINKY_MCP,
)


class LandmarkValidator:
    """
    Returns False (never raises) for frames that cannot be measured.
    Callers treat False as "no measurement this frame".
    """

    def __init__(self, required: Sequence[HandLandmark] = REQUIRED_LANDMARKS):
        self.required = tuple(required)

    def validate(self, frame: Optional[HandFrame]) -> bool:
        if frame is None:
            logger.debug("No hand in frame")
            return False

        count = len(frame.landmarks)
        if count < NUM_HAND_LANDMARKS:
            logger.warning(f"Landmark count too low: {count} < {NUM_HAND_LANDMARKS}")
            return False

        for index in self.required:
            lm = frame.point(index)
            if not all(math.isfinite(v) for v in (lm.x, lm.y, lm.z)):
                logger.warning(f"Non-finite coordinate at landmark {int(index)} ({index.name})")
                return False
        return True
