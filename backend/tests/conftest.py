"""
Pytest Configuration and Fixtures for WristROM Backend Tests
"""
import sys
import os
import math
import pytest

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from domain.hand import HandFrame, Landmark  # noqa: E402

WRIST = (0.5, 0.8, 0.0)

# Right hand, palm to camera, fingers up, knuckle line horizontal
NEUTRAL_HAND = {
    0: WRIST,
    1: (0.40, 0.60, 0.0),   # thumb CMC
    2: (0.36, 0.55, 0.0),   # thumb MCP
    3: (0.33, 0.50, 0.0),   # thumb IP
    4: (0.31, 0.46, 0.0),   # thumb tip
    5: (0.44, 0.60, 0.0),   # index MCP
    6: (0.44, 0.52, 0.0),
    7: (0.44, 0.47, 0.0),
    8: (0.44, 0.43, 0.0),
    9: (0.50, 0.60, 0.0),   # middle MCP
    10: (0.50, 0.51, 0.0),
    11: (0.50, 0.46, 0.0),
    12: (0.50, 0.42, 0.0),
    13: (0.55, 0.60, 0.0),  # ring MCP
    14: (0.55, 0.52, 0.0),
    15: (0.55, 0.47, 0.0),
    16: (0.55, 0.43, 0.0),
    17: (0.60, 0.60, 0.0),  # pinky MCP
    18: (0.60, 0.54, 0.0),
    19: (0.60, 0.50, 0.0),
    20: (0.60, 0.47, 0.0),
}


def _rotate(point, flexion=0.0, deviation=0.0, rotation=0.0):
    """Rotate a point about the wrist: flexion (y-z), deviation (x-y), rotation (x-z)."""
    x, y, z = (point[i] - WRIST[i] for i in range(3))

    c, s = math.cos(math.radians(flexion)), math.sin(math.radians(flexion))
    y, z = y * c - z * s, y * s + z * c

    c, s = math.cos(math.radians(deviation)), math.sin(math.radians(deviation))
    x, y = x * c - y * s, x * s + y * c

    c, s = math.cos(math.radians(rotation)), math.sin(math.radians(rotation))
    x, z = x * c + z * s, -x * s + z * c

    return (x + WRIST[0], y + WRIST[1], z + WRIST[2])


def build_hand_frame(flexion=0.0, deviation=0.0, rotation=0.0, handedness="right", visibility=1.0, overrides=None):
    """
    Synthetic 21-point hand.

    flexion > 0 bends the palm toward the camera (palmar), deviation > 0
    tilts toward the little finger (ulnar), rotation turns the knuckle line
    out of the image plane.
    """
    overrides = overrides or {}
    landmarks = []
    for idx in range(21):
        if idx in overrides:
            x, y, z = overrides[idx]
        else:
            x, y, z = _rotate(NEUTRAL_HAND[idx], flexion, deviation, rotation)
        landmarks.append(Landmark(x=x, y=y, z=z, visibility=visibility))
    return HandFrame(landmarks=tuple(landmarks), handedness=handedness, confidence=0.95)


@pytest.fixture
def hand_frame():
    """Factory fixture for synthetic hand frames"""
    return build_hand_frame


@pytest.fixture
def tables():
    from domain.clinical_tables import default_tables
    return default_tables()


@pytest.fixture
def repositories(tmp_path):
    """JSON repositories over a temporary data folder"""
    from services.json_store import create_repositories
    return create_repositories(str(tmp_path / "data"))


@pytest.fixture
def measurement_service(tables, repositories):
    from services.calendar_service import CalendarService
    from services.measurement_service import MeasurementService
    from services.measurement_writer import MeasurementWriter

    measurement_repo, session_repo, calendar_repo, _ = repositories
    writer = MeasurementWriter(measurement_repo)
    service = MeasurementService(tables, session_repo, measurement_repo, writer, CalendarService(calendar_repo))
    yield service
    writer.shutdown()


@pytest.fixture
def app(tmp_path, monkeypatch):
    """Flask app on a temporary data folder"""
    monkeypatch.setenv("DATA_FOLDER", str(tmp_path / "api-data"))
    monkeypatch.delenv("CLINICAL_TABLES_PATH", raising=False)
    monkeypatch.delenv("INCLUDE_FOREARM_ROTATION", raising=False)
    from app import create_app
    flask_app = create_app({"TESTING": True})
    yield flask_app
    flask_app.extensions['rom'].writer.shutdown()


@pytest.fixture
def client(app):
    return app.test_client()
