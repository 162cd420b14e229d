"""
Comparison Engine
Classifies measured angles against clinical normal ranges
"""

from typing import Dict, Iterable, Mapping, Optional

from domain.clinical_tables import DEFAULT_NORMAL_RANGES, MEASUREMENT_FIELDS, OPTIONAL_MEASUREMENT_FIELDS, NormalRange
from domain.measurement import ComparisonResult, FieldComparison


def deviation(angle: float, normal_range: NormalRange) -> float:
    """Unrounded degrees outside the range; 0 when inside"""
    if angle < normal_range.min:
        return normal_range.min - angle
    if angle > normal_range.max:
        return angle - normal_range.max
    return 0.0


def compare(angle: float, normal_range: NormalRange) -> FieldComparison:
    """
    normal:       min <= angle <= max
    below_normal: deficit = min - angle
    above_normal: excess = angle - max
    """
    magnitude = round(deviation(angle, normal_range), 2)
    if angle < normal_range.min:
        return FieldComparison(status="below_normal", within_range=False, deficit_or_excess=magnitude)
    if angle > normal_range.max:
        return FieldComparison(status="above_normal", within_range=False, deficit_or_excess=magnitude)
    return FieldComparison(status="normal", within_range=True)


class ComparisonEngine:
    """Scores a full measurement against a per-field normal-range table."""

    def __init__(self, normal_ranges: Optional[Mapping[str, NormalRange]] = None):
        self.normal_ranges: Dict[str, NormalRange] = dict(normal_ranges or DEFAULT_NORMAL_RANGES)

    def compare(self, angle: float, normal_range: NormalRange) -> FieldComparison:
        return compare(angle, normal_range)

    def compare_field(self, field_name: str, angle: float) -> FieldComparison:
        return compare(angle, self.normal_ranges[field_name])

    def compare_measurement(self, angles: Mapping[str, float]) -> ComparisonResult:
        """
        Compare every field present in both `angles` and the range table.

        overall_status is `normal` only if every field is normal; otherwise it
        is the status of the field with the largest deviation, ties going to
        the field declared first.
        """
        fields: Dict[str, FieldComparison] = {}
        for name in self._field_order(angles):
            fields[name] = self.compare_field(name, angles[name])

        worst_name = None
        worst_magnitude = 0.0
        for name, result in fields.items():
            if result.status == "normal":
                continue
            magnitude = deviation(angles[name], self.normal_ranges[name])
            if worst_name is None or magnitude > worst_magnitude:
                worst_name = name
                worst_magnitude = magnitude

        overall = fields[worst_name].status if worst_name else "normal"
        return ComparisonResult(fields=fields, overall_status=overall)

    def _field_order(self, angles: Mapping[str, float]) -> Iterable[str]:
        declared = MEASUREMENT_FIELDS + OPTIONAL_MEASUREMENT_FIELDS
        ordered = [f for f in declared if f in angles and f in self.normal_ranges]
        extras = [f for f in angles if f not in declared and f in self.normal_ranges]
        return ordered + extras
