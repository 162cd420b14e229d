"""
Clinical Tables
Ordered measurement phases, phase targets and normal range-of-motion tables.

The engine receives these as values; nothing downstream hard-codes them.
Defaults follow the Japanese Orthopaedic Association ROM reference values
used by the capture protocol (ulnar 55 deg, radial 25 deg).
"""

import json
import os
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, model_validator

from domain.errors import ValidationError
from domain.hand import HandLandmark


class PhaseId(str, Enum):
    """Movement directions captured in a session"""
    PALMAR_FLEXION = "palmar-flexion"
    DORSAL_FLEXION = "dorsal-flexion"
    ULNAR_DEVIATION = "ulnar-deviation"
    RADIAL_DEVIATION = "radial-deviation"
    PRONATION = "pronation"
    SUPINATION = "supination"


# MotionMeasurement angle fields, in declaration order (tie-break order for overall status)
MEASUREMENT_FIELDS: Tuple[str, ...] = (
    "wrist_flexion",
    "wrist_extension",
    "wrist_ulnar_deviation",
    "wrist_radial_deviation",
    "thumb_flexion",
    "thumb_extension",
    "thumb_adduction",
    "thumb_abduction",
)
OPTIONAL_MEASUREMENT_FIELDS: Tuple[str, ...] = ("wrist_pronation", "wrist_supination")
WRIST_FIELDS: Tuple[str, ...] = MEASUREMENT_FIELDS[:4]


class NormalRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: float = 0.0
    max: float

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.max < self.min:
            raise ValueError(f"normal range max {self.max} below min {self.min}")
        return self

    @property
    def is_reference(self) -> bool:
        """Pinned reference position (min == max), e.g. thumb extension at 0 deg"""
        return self.max == self.min


class PhaseSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase_id: PhaseId
    name: str
    target_angle: float = Field(gt=0)
    normal_range: NormalRange
    measurement_field: str
    # (point1, vertex, point2) used for the accuracy estimate
    landmarks: Tuple[HandLandmark, HandLandmark, HandLandmark]


DEFAULT_NORMAL_RANGES: Dict[str, NormalRange] = {
    "wrist_flexion": NormalRange(min=0, max=90),
    "wrist_extension": NormalRange(min=0, max=70),
    "wrist_ulnar_deviation": NormalRange(min=0, max=55),
    "wrist_radial_deviation": NormalRange(min=0, max=25),
    "thumb_flexion": NormalRange(min=0, max=90),
    "thumb_extension": NormalRange(min=0, max=0),
    "thumb_adduction": NormalRange(min=0, max=0),
    "thumb_abduction": NormalRange(min=0, max=60),
    "wrist_pronation": NormalRange(min=0, max=90),
    "wrist_supination": NormalRange(min=0, max=90),
}

_FLEXION_TRIPLE = (HandLandmark.MIDDLE_FINGER_MCP, HandLandmark.WRIST, HandLandmark.INDEX_FINGER_MCP)
_DEVIATION_TRIPLE = (HandLandmark.THUMB_CMC, HandLandmark.WRIST, HandLandmark.PINKY_MCP)
_ROTATION_TRIPLE = (HandLandmark.INDEX_FINGER_MCP, HandLandmark.WRIST, HandLandmark.PINKY_MCP)

WRIST_PHASES: Tuple[PhaseSpec, ...] = (
    PhaseSpec(phase_id=PhaseId.PALMAR_FLEXION, name="Palmar flexion", target_angle=90,
              normal_range=DEFAULT_NORMAL_RANGES["wrist_flexion"],
              measurement_field="wrist_flexion", landmarks=_FLEXION_TRIPLE),
    PhaseSpec(phase_id=PhaseId.DORSAL_FLEXION, name="Dorsal flexion", target_angle=70,
              normal_range=DEFAULT_NORMAL_RANGES["wrist_extension"],
              measurement_field="wrist_extension", landmarks=_FLEXION_TRIPLE),
    PhaseSpec(phase_id=PhaseId.ULNAR_DEVIATION, name="Ulnar deviation", target_angle=55,
              normal_range=DEFAULT_NORMAL_RANGES["wrist_ulnar_deviation"],
              measurement_field="wrist_ulnar_deviation", landmarks=_DEVIATION_TRIPLE),
    PhaseSpec(phase_id=PhaseId.RADIAL_DEVIATION, name="Radial deviation", target_angle=25,
              normal_range=DEFAULT_NORMAL_RANGES["wrist_radial_deviation"],
              measurement_field="wrist_radial_deviation", landmarks=_DEVIATION_TRIPLE),
)

FOREARM_PHASES: Tuple[PhaseSpec, ...] = (
    PhaseSpec(phase_id=PhaseId.PRONATION, name="Pronation", target_angle=90,
              normal_range=DEFAULT_NORMAL_RANGES["wrist_pronation"],
              measurement_field="wrist_pronation", landmarks=_ROTATION_TRIPLE),
    PhaseSpec(phase_id=PhaseId.SUPINATION, name="Supination", target_angle=90,
              normal_range=DEFAULT_NORMAL_RANGES["wrist_supination"],
              measurement_field="wrist_supination", landmarks=_ROTATION_TRIPLE),
)


class ClinicalTables(BaseModel):
    """Phase protocol plus per-field normal ranges"""
    model_config = ConfigDict(frozen=True)

    phases: Tuple[PhaseSpec, ...] = WRIST_PHASES
    normal_ranges: Dict[str, NormalRange] = Field(default_factory=lambda: dict(DEFAULT_NORMAL_RANGES))

    @model_validator(mode="after")
    def _check_tables(self):
        if not self.phases:
            raise ValueError("at least one phase is required")
        seen = set()
        for spec in self.phases:
            if spec.phase_id in seen:
                raise ValueError(f"duplicate phase {spec.phase_id.value}")
            seen.add(spec.phase_id)
        missing = [f for f in MEASUREMENT_FIELDS if f not in self.normal_ranges]
        if missing:
            raise ValueError(f"normal range missing for {', '.join(missing)}")
        return self

    def phase(self, phase_id: PhaseId) -> PhaseSpec:
        for spec in self.phases:
            if spec.phase_id == phase_id:
                return spec
        raise KeyError(phase_id)

    @property
    def phase_ids(self) -> List[PhaseId]:
        return [spec.phase_id for spec in self.phases]

    def range_for(self, field_name: str) -> NormalRange:
        return self.normal_ranges[field_name]


def default_tables(include_forearm_rotation: bool = False) -> ClinicalTables:
    phases = WRIST_PHASES + FOREARM_PHASES if include_forearm_rotation else WRIST_PHASES
    return ClinicalTables(phases=phases)


def load_clinical_tables(path: Optional[str] = None, include_forearm_rotation: bool = False) -> ClinicalTables:
    """
    Load clinical tables, overlaying an optional JSON document on the defaults.

    JSON layout:
        {"normal_ranges": {"wrist_flexion": {"min": 0, "max": 80}, ...},
         "phases": [{"phase_id": "palmar-flexion", "target_angle": 80}, ...]}

    Listed phases replace the protocol order; each entry may override any
    PhaseSpec field of the default spec with the same id.
    """
    base = default_tables(include_forearm_rotation)
    if not path:
        return base
    if not os.path.exists(path):
        raise ValidationError([f"Clinical tables file not found: {path}"])

    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ValidationError([f"Cannot read clinical tables {path}: {e}"])

    defaults_by_id = {spec.phase_id: spec for spec in WRIST_PHASES + FOREARM_PHASES}
    ranges = dict(base.normal_ranges)
    try:
        for name, rng in (doc.get("normal_ranges") or {}).items():
            ranges[name] = NormalRange.model_validate(rng)

        phases = list(base.phases)
        if doc.get("phases"):
            phases = []
            for entry in doc["phases"]:
                phase_id = PhaseId(entry["phase_id"])
                merged = defaults_by_id[phase_id].model_dump()
                merged.update(entry)
                if "normal_range" not in entry:
                    merged["normal_range"] = ranges.get(merged["measurement_field"], merged["normal_range"])
                phases.append(PhaseSpec.model_validate(merged))
        return ClinicalTables(phases=tuple(phases), normal_ranges=ranges)
    except (KeyError, ValueError, PydanticValidationError) as e:
        raise ValidationError([f"Invalid clinical tables {path}: {e}"])
