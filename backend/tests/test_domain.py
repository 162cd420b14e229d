"""
Unit Tests for domain records and clinical tables
"""

import json
from datetime import datetime, timedelta

import pytest


class TestClinicalTables:
    """Test phase protocol and normal-range loading"""

    def test_default_protocol(self):
        from domain.clinical_tables import default_tables

        tables = default_tables()
        assert [p.value for p in tables.phase_ids] == [
            "palmar-flexion", "dorsal-flexion", "ulnar-deviation", "radial-deviation",
        ]
        assert [s.target_angle for s in tables.phases] == [90, 70, 55, 25]
        assert tables.range_for("wrist_ulnar_deviation").max == 55
        assert tables.range_for("wrist_radial_deviation").max == 25

    def test_load_overrides(self, tmp_path):
        from domain.clinical_tables import PhaseId, load_clinical_tables

        path = tmp_path / "tables.json"
        path.write_text(json.dumps({
            "normal_ranges": {"wrist_flexion": {"min": 0, "max": 80}},
            "phases": [
                {"phase_id": "palmar-flexion", "target_angle": 80},
                {"phase_id": "dorsal-flexion"},
            ],
        }))
        tables = load_clinical_tables(str(path))
        assert tables.phase_ids == [PhaseId.PALMAR_FLEXION, PhaseId.DORSAL_FLEXION]
        assert tables.phase(PhaseId.PALMAR_FLEXION).target_angle == 80
        assert tables.phase(PhaseId.PALMAR_FLEXION).normal_range.max == 80
        assert tables.range_for("wrist_flexion").max == 80

    def test_invalid_file(self, tmp_path):
        from domain.clinical_tables import load_clinical_tables
        from domain.errors import ValidationError

        path = tmp_path / "tables.json"
        path.write_text(json.dumps({"normal_ranges": {"wrist_flexion": {"min": 50, "max": 10}}}))
        with pytest.raises(ValidationError):
            load_clinical_tables(str(path))

        with pytest.raises(ValidationError):
            load_clinical_tables(str(tmp_path / "missing.json"))

    def test_duplicate_phase_rejected(self):
        from pydantic import ValidationError as PydanticValidationError
        from domain.clinical_tables import WRIST_PHASES, ClinicalTables

        with pytest.raises(PydanticValidationError):
            ClinicalTables(phases=WRIST_PHASES + WRIST_PHASES[:1])


class TestMeasurementValidation:
    """Test MotionMeasurement validation"""

    def test_valid(self):
        from domain.clinical_tables import DEFAULT_NORMAL_RANGES
        from domain.measurement import MotionMeasurement, validate_measurement

        m = MotionMeasurement(user_id="u", wrist_flexion=60, accuracy_score=0.8)
        assert validate_measurement(m, DEFAULT_NORMAL_RANGES) == []

    def test_invalid_values(self):
        from domain.clinical_tables import DEFAULT_NORMAL_RANGES
        from domain.measurement import MotionMeasurement, validate_measurement

        m = MotionMeasurement(
            user_id=" ",
            measurement_date=datetime.now() + timedelta(days=2),
            wrist_flexion=-5,
            wrist_extension=200,
            accuracy_score=1.5,
        )
        errors = validate_measurement(m, DEFAULT_NORMAL_RANGES)
        assert len(errors) == 5, errors

    def test_superseding_keeps_identity(self):
        from domain.measurement import MotionMeasurement, superseding

        old = MotionMeasurement(user_id="u", wrist_flexion=10)
        new = MotionMeasurement(user_id="u", wrist_flexion=20)
        merged = superseding(new, old)
        assert merged.id == old.id
        assert merged.created_at == old.created_at
        assert merged.wrist_flexion == 20

    def test_optional_rotation_fields(self):
        from domain.measurement import MotionMeasurement

        m = MotionMeasurement(user_id="u")
        assert "wrist_pronation" not in m.angles()
        assert MotionMeasurement(user_id="u", wrist_pronation=70).angles()["wrist_pronation"] == 70


class TestHandFrame:
    """Test detector keypoint conversion"""

    def test_from_keypoints_roundtrip_order(self, hand_frame):
        from domain.hand import HandFrame, HandLandmark

        frame = hand_frame()
        rebuilt = HandFrame.from_keypoints(frame.to_keypoints(), handedness="left")
        assert len(rebuilt) == 21
        assert rebuilt.handedness == "left"
        assert rebuilt.point(HandLandmark.PINKY_MCP).x == pytest.approx(0.60)

    def test_keypoints_without_ids(self):
        from domain.hand import HandFrame

        frame = HandFrame.from_keypoints([{"x": 0.1 * i, "y": 0.5} for i in range(21)])
        assert frame.point(3).x == pytest.approx(0.3)
        assert frame.point(3).z == 0.0

    def test_out_of_range_ids_are_dropped(self, hand_frame):
        """A stray large id neither grows the frame nor replaces a real point"""
        from domain.hand import HandFrame
        from services.landmark_validator import LandmarkValidator

        keypoints = hand_frame().to_keypoints() + [
            {"id": 3_000_000, "x": 0.1, "y": 0.1},
            {"id": -1, "x": 0.2, "y": 0.2},
        ]
        frame = HandFrame.from_keypoints(keypoints)
        assert len(frame) == 21
        assert LandmarkValidator().validate(frame) is True

        only_stray = HandFrame.from_keypoints([{"id": 3_000_000, "x": 0.1, "y": 0.1}])
        assert len(only_stray) == 0
