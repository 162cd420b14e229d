"""
Progress records: calendar activity, per-field angle trends and the periodic
ProgressData rollup.
"""

import uuid
from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from domain.errors import ValidationError

TrendDirection = Literal["improving", "stable", "declining"]
AnalysisPeriod = Literal["week", "2weeks", "month", "3months", "6months", "year"]

ANALYSIS_PERIOD_DAYS: Dict[str, int] = {
    "week": 7,
    "2weeks": 14,
    "month": 30,
    "3months": 90,
    "6months": 180,
    "year": 365,
}

MAX_NOTES_LENGTH = 500


def period_days(period: str) -> int:
    try:
        return ANALYSIS_PERIOD_DAYS[period]
    except KeyError:
        raise ValidationError([f"Unknown analysis period '{period}'"])


class CalendarRecord(BaseModel):
    """Daily rehabilitation activity record; one per user per date."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    record_date: date
    rehab_completed: bool = False
    measurement_completed: bool = False
    performance_level: Optional[int] = Field(default=None, ge=1, le=5)
    pain_level: Optional[int] = Field(default=None, ge=1, le=5)
    motivation_level: Optional[int] = Field(default=None, ge=1, le=5)
    notes: Optional[str] = Field(default=None, max_length=MAX_NOTES_LENGTH)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class CalendarPatch(BaseModel):
    """Typed partial update for a CalendarRecord; None means 'leave unchanged'."""
    model_config = ConfigDict(frozen=True)

    rehab_completed: Optional[bool] = None
    measurement_completed: Optional[bool] = None
    performance_level: Optional[int] = Field(default=None, ge=1, le=5)
    pain_level: Optional[int] = Field(default=None, ge=1, le=5)
    motivation_level: Optional[int] = Field(default=None, ge=1, le=5)
    notes: Optional[str] = Field(default=None, max_length=MAX_NOTES_LENGTH)


def apply_calendar_patch(record: CalendarRecord, patch: CalendarPatch, now: Optional[datetime] = None) -> CalendarRecord:
    """Build a new record from `record` plus the fields set in `patch`."""
    changes = {k: v for k, v in patch.model_dump().items() if v is not None}
    changes["updated_at"] = now or datetime.now()
    return record.model_copy(update=changes)


class AngleTrend(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_value: float = 0.0
    previous_value: Optional[float] = None
    change_amount: float = 0.0
    change_percentage: float = 0.0
    trend: TrendDirection = "stable"


class MotionProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    fields: Dict[str, AngleTrend]
    overall_trend: TrendDirection = "stable"
    overall_improvement: float = 0.0


class ActivityProgress(BaseModel):
    model_config = ConfigDict(frozen=True)

    rehab_completion_rate: float = 0.0
    measurement_completion_rate: float = 0.0
    overall_completion_rate: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0


class PeriodStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    days: int = 0
    rehab_completed_days: int = 0
    measurement_completed_days: int = 0
    fully_completed_days: int = 0
    rehab_completion_rate: float = 0.0
    measurement_completion_rate: float = 0.0
    overall_completion_rate: float = 0.0
    average_pain: Optional[float] = None
    average_motivation: Optional[float] = None
    average_performance: Optional[float] = None
    measurement_count: int = 0
    average_angle: float = 0.0


class ProgressInsights(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_improving: bool = False
    needs_attention: bool = False
    recommendations: List[str] = Field(default_factory=list)


class ProgressData(BaseModel):
    """Periodic rollup keyed by (user_id, analysis_period). Recomputed, never patched."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    analysis_period: AnalysisPeriod
    analysis_date: datetime = Field(default_factory=datetime.now)

    motion_progress: MotionProgress
    activity_progress: ActivityProgress = Field(default_factory=ActivityProgress)
    weekly_stats: PeriodStats = Field(default_factory=PeriodStats)
    monthly_stats: PeriodStats = Field(default_factory=PeriodStats)

    average_angle: float = 0.0
    max_angle: float = 0.0
    min_angle: float = 0.0
    improvement_rate: float = 0.0
    recovery_rate: float = 0.0
    predicted_recovery: Optional[date] = None

    measurement_count: int = 0
    record_count: int = 0
    data_quality: float = Field(default=0.0, ge=0.0, le=1.0)
    insights: ProgressInsights = Field(default_factory=ProgressInsights)

    created_at: datetime = Field(default_factory=datetime.now)
