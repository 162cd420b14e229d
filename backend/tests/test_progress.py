"""
Unit Tests for progress aggregation, progress caching and calendar records
"""

from datetime import date, datetime, timedelta

import pytest

NOW = datetime(2026, 3, 10, 12, 0)


def measurement(days_ago, **angles):
    from domain.measurement import MotionMeasurement
    return MotionMeasurement(user_id="u", measurement_date=NOW - timedelta(days=days_ago), **angles)


def record(days_ago, rehab=False, measured=False, pain=None):
    from domain.progress import CalendarRecord
    return CalendarRecord(
        user_id="u",
        record_date=(NOW - timedelta(days=days_ago)).date(),
        rehab_completed=rehab,
        measurement_completed=measured,
        pain_level=pain,
    )


class TestProgressAggregator:
    """Test trend and statistics derivation"""

    def test_empty_input_returns_default(self):
        from services.progress_aggregator import ProgressAggregator

        progress = ProgressAggregator().aggregate("u", [], [], "week", now=NOW)
        assert progress.motion_progress.overall_trend == "stable"
        assert progress.motion_progress.overall_improvement == 0
        assert progress.data_quality == 0.0
        assert progress.measurement_count == 0
        assert all(t.trend == "stable" for t in progress.motion_progress.fields.values())

    def test_single_measurement_is_stable(self):
        from services.progress_aggregator import ProgressAggregator

        progress = ProgressAggregator().aggregate("u", [measurement(1, wrist_flexion=50)], [], "week", now=NOW)
        trend = progress.motion_progress.fields["wrist_flexion"]
        assert trend.trend == "stable"
        assert trend.change_amount == 0
        assert trend.current_value == 50

    def test_improving_field(self):
        """40 then 55 degrees: improving by 37.5%"""
        from services.progress_aggregator import ProgressAggregator

        progress = ProgressAggregator().aggregate(
            "u",
            [measurement(3, wrist_flexion=40), measurement(1, wrist_flexion=55)],
            [],
            "week",
            now=NOW,
        )
        trend = progress.motion_progress.fields["wrist_flexion"]
        assert trend.trend == "improving"
        assert trend.change_percentage == pytest.approx(37.5)
        assert trend.change_amount == pytest.approx(15.0)
        assert trend.previous_value == 40

    def test_zero_previous_is_guarded(self):
        from services.progress_aggregator import ProgressAggregator

        progress = ProgressAggregator().aggregate(
            "u",
            [measurement(3, wrist_flexion=0), measurement(1, wrist_flexion=30)],
            [],
            "week",
            now=NOW,
        )
        assert progress.motion_progress.fields["wrist_flexion"].change_percentage == 0.0

    def test_wrist_decline_dominates(self):
        from services.progress_aggregator import ProgressAggregator

        before = dict(wrist_flexion=50, wrist_extension=40, wrist_ulnar_deviation=30,
                      wrist_radial_deviation=15, thumb_flexion=40, thumb_abduction=30)
        after = dict(before, wrist_flexion=70, wrist_extension=60, thumb_flexion=60,
                     thumb_abduction=45, wrist_radial_deviation=10)
        progress = ProgressAggregator().aggregate(
            "u", [measurement(2, **before), measurement(1, **after)], [], "week", now=NOW,
        )
        assert progress.motion_progress.fields["wrist_radial_deviation"].trend == "declining"
        assert progress.motion_progress.overall_trend == "declining"
        assert progress.insights.needs_attention

    def test_majority_improving(self):
        from services.progress_aggregator import ProgressAggregator

        before = dict(wrist_flexion=50, wrist_extension=40, wrist_ulnar_deviation=30,
                      wrist_radial_deviation=15, thumb_flexion=40, thumb_abduction=30)
        after = {k: v * 1.2 for k, v in before.items()}
        progress = ProgressAggregator().aggregate(
            "u", [measurement(2, **before), measurement(1, **after)], [], "week", now=NOW,
        )
        assert progress.motion_progress.overall_trend == "improving"
        assert progress.motion_progress.overall_improvement == pytest.approx(20.0)

    def test_window_filter(self):
        """Measurements older than the period are ignored"""
        from services.progress_aggregator import ProgressAggregator

        progress = ProgressAggregator().aggregate(
            "u",
            [measurement(20, wrist_flexion=10), measurement(1, wrist_flexion=50)],
            [],
            "week",
            now=NOW,
        )
        assert progress.measurement_count == 1
        assert progress.motion_progress.fields["wrist_flexion"].trend == "stable"

    def test_data_quality(self):
        from services.progress_aggregator import ProgressAggregator

        aggregator = ProgressAggregator()
        assert aggregator.data_quality(3, 0, 7) == pytest.approx(0.17)
        assert aggregator.data_quality(7, 5, 7) == 1.0
        assert aggregator.data_quality(100, 100, 7) == 1.0

    def test_improvement_rate_against_previous(self):
        from domain.progress import MotionProgress, ProgressData
        from services.progress_aggregator import ProgressAggregator

        previous = ProgressData(
            user_id="u", analysis_period="week", average_angle=40.0,
            motion_progress=MotionProgress(fields={}),
        )
        progress = ProgressAggregator().aggregate(
            "u",
            [measurement(1, wrist_flexion=50, wrist_extension=50, wrist_ulnar_deviation=50, wrist_radial_deviation=50)],
            [],
            "week",
            now=NOW,
            previous=previous,
        )
        assert progress.average_angle == 50.0
        assert progress.improvement_rate == pytest.approx(25.0)

    def test_recovery_rate(self):
        from services.progress_aggregator import ProgressAggregator

        m = measurement(1, wrist_flexion=45, wrist_extension=35, wrist_ulnar_deviation=27.5,
                        wrist_radial_deviation=12.5, thumb_flexion=45, thumb_abduction=30)
        assert ProgressAggregator().recovery_rate(m) == pytest.approx(50.0)

    def test_recovery_rate_capped(self):
        from services.progress_aggregator import ProgressAggregator

        m = measurement(1, wrist_flexion=120, wrist_extension=70, wrist_ulnar_deviation=55,
                        wrist_radial_deviation=25, thumb_flexion=90, thumb_abduction=60)
        assert ProgressAggregator().recovery_rate(m) == 100.0

    def test_predicted_recovery(self):
        from services.progress_aggregator import ProgressAggregator

        aggregator = ProgressAggregator()
        rising = [
            measurement(4, wrist_flexion=30, wrist_extension=20),
            measurement(2, wrist_flexion=50, wrist_extension=40),
            measurement(0, wrist_flexion=70, wrist_extension=60),
        ]
        predicted = aggregator.predict_recovery(rising)
        assert predicted is not None
        assert predicted > NOW.date()

        falling = [
            measurement(4, wrist_flexion=70),
            measurement(2, wrist_flexion=50),
            measurement(0, wrist_flexion=30),
        ]
        assert aggregator.predict_recovery(falling) is None
        assert aggregator.predict_recovery(rising[:1]) is None

    def test_activity_and_streaks(self):
        from services.progress_aggregator import ProgressAggregator

        records = [
            record(0, rehab=True, measured=True, pain=2),
            record(1, rehab=True, pain=4),
            record(2, measured=True),
            record(4, rehab=True),
            record(5, rehab=True),
            record(6),
        ]
        progress = ProgressAggregator().aggregate("u", [], records, "week", now=NOW)
        activity = progress.activity_progress
        assert activity.current_streak == 3
        assert activity.longest_streak == 3
        assert activity.rehab_completion_rate == pytest.approx(66.7)
        assert activity.measurement_completion_rate == pytest.approx(33.3)
        assert activity.overall_completion_rate == pytest.approx(50.0)
        assert progress.weekly_stats.fully_completed_days == 1
        assert progress.weekly_stats.average_pain == pytest.approx(3.0)

    def test_broken_streak(self):
        from services.progress_aggregator import ProgressAggregator

        current, longest = ProgressAggregator.streaks([record(3, rehab=True), record(4, rehab=True)], NOW.date())
        assert current == 0
        assert longest == 2

    def test_unknown_period(self):
        from domain.errors import ValidationError
        from services.progress_aggregator import ProgressAggregator

        with pytest.raises(ValidationError):
            ProgressAggregator().aggregate("u", [], [], "decade", now=NOW)


class TestProgressService:
    """Test same-day caching and supersede semantics"""

    def _service(self, repositories):
        from services.progress_service import ProgressService
        measurement_repo, _, calendar_repo, progress_repo = repositories
        return ProgressService(measurement_repo, calendar_repo, progress_repo)

    def test_cached_for_the_day(self, repositories):
        repositories[0].upsert_daily(measurement(1, wrist_flexion=40))
        service = self._service(repositories)

        first = service.get_progress("u", "week", now=NOW)
        repositories[0].upsert_daily(measurement(0, wrist_flexion=60))
        second = service.get_progress("u", "week", now=NOW + timedelta(hours=1))
        assert second.id == first.id
        assert second.measurement_count == 1

    def test_force_supersedes_same_day(self, repositories):
        repositories[0].upsert_daily(measurement(1, wrist_flexion=40))
        service = self._service(repositories)

        first = service.get_progress("u", "week", now=NOW)
        repositories[0].upsert_daily(measurement(0, wrist_flexion=60))
        forced = service.get_progress("u", "week", force=True, now=NOW + timedelta(hours=1))

        assert forced.id == first.id
        assert forced.created_at == first.created_at
        assert forced.measurement_count == 2
        assert len(repositories[3].history("u", "week")) == 1

    def test_previous_day_is_baseline(self, repositories):
        repositories[0].upsert_daily(measurement(2, wrist_flexion=40, wrist_extension=40,
                                                 wrist_ulnar_deviation=40, wrist_radial_deviation=40))
        service = self._service(repositories)
        yesterday = service.get_progress("u", "week", now=NOW - timedelta(days=1))
        assert yesterday.improvement_rate == 0.0

        repositories[0].upsert_daily(measurement(0, wrist_flexion=60, wrist_extension=60,
                                                 wrist_ulnar_deviation=60, wrist_radial_deviation=60))
        today = service.get_progress("u", "week", now=NOW)
        assert today.id != yesterday.id
        assert today.average_angle == pytest.approx(50.0)
        assert today.improvement_rate == pytest.approx(25.0)
        assert len(repositories[3].history("u", "week")) == 2

    def test_no_data_is_not_stored(self, repositories):
        service = self._service(repositories)
        progress = service.get_progress("nobody", "month", now=NOW)
        assert progress.measurement_count == 0
        assert repositories[3].find_latest("nobody", "month") is None


class TestCalendarService:
    """Test memo saving and calendar patches"""

    def test_new_memo_defaults_levels(self, repositories):
        from services.calendar_service import CalendarService

        service = CalendarService(repositories[2])
        saved = service.save_memo("u", date(2026, 3, 1), "felt stiff")
        assert saved.notes == "felt stiff"
        assert (saved.pain_level, saved.motivation_level, saved.performance_level) == (3, 3, 3)

    def test_existing_levels_kept(self, repositories):
        from services.calendar_service import CalendarService

        service = CalendarService(repositories[2])
        service.save_memo("u", date(2026, 3, 1), "first", pain_level=5)
        updated = service.save_memo("u", date(2026, 3, 1), "second", motivation_level=1)
        assert updated.notes == "second"
        assert updated.pain_level == 5
        assert updated.motivation_level == 1

    def test_memo_too_long(self, repositories):
        from domain.errors import ValidationError
        from services.calendar_service import CalendarService

        with pytest.raises(ValidationError):
            CalendarService(repositories[2]).save_memo("u", date(2026, 3, 1), "x" * 501)

    def test_patch_builder_keeps_unset_fields(self):
        from domain.progress import CalendarPatch, apply_calendar_patch

        original = record(0, rehab=True, pain=2)
        patched = apply_calendar_patch(original, CalendarPatch(measurement_completed=True))
        assert patched.rehab_completed is True
        assert patched.measurement_completed is True
        assert patched.pain_level == 2
        assert patched.id == original.id
        assert original.measurement_completed is False

    def test_get_month(self, repositories):
        from services.calendar_service import CalendarService

        service = CalendarService(repositories[2])
        service.save_memo("u", date(2026, 2, 28), "feb")
        service.save_memo("u", date(2026, 3, 1), "mar")
        records = service.get_month("u", 2026, 3)
        assert [r.notes for r in records] == ["mar"]
