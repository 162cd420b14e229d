"""
Unit Tests for the PhaseStateMachine transitions
"""

import pytest


def reading(angle, accuracy=0.9, valid=True):
    from services.angle_calculator import AngleResult
    return AngleResult(angle=angle, accuracy=accuracy, is_valid=valid)


class TestAchievement:
    """Test achievement percentage"""

    def test_at_target(self):
        from services.phase_state_machine import achievement
        assert achievement(90, 90) == 100.0

    def test_capped_above_target(self):
        from services.phase_state_machine import achievement
        assert achievement(180, 90) == 100.0

    def test_zero_angle(self):
        from services.phase_state_machine import achievement
        assert achievement(0, 90) == 0.0

    def test_rounding(self):
        from services.phase_state_machine import achievement
        assert achievement(46.2, 90) == 51.3

    def test_monotonic(self):
        from services.phase_state_machine import achievement
        values = [achievement(a, 70) for a in range(0, 150, 5)]
        assert values == sorted(values)


class TestTransitions:
    """Test the pure transition functions"""

    def test_start(self, tables):
        from domain.clinical_tables import PhaseId
        from services.phase_state_machine import start_session

        state = start_session("user-1", "right", tables)
        assert state.session.status == "active"
        assert state.session.total_phases == 4
        assert state.current_phase == PhaseId.PALMAR_FLEXION
        assert state.events[-1].step == "start"

    def test_record_overwrites_latest(self, tables):
        from domain.clinical_tables import PhaseId
        from services.phase_state_machine import record_angle, start_session

        state = start_session("user-1", "right", tables)
        state = record_angle(state, PhaseId.PALMAR_FLEXION, reading(30))
        state = record_angle(state, PhaseId.PALMAR_FLEXION, reading(42))
        assert state.pending.angle == 42

    def test_invalid_reading_ignored(self, tables):
        from domain.clinical_tables import PhaseId
        from services.phase_state_machine import record_angle, start_session

        state = start_session("user-1", "right", tables)
        state = record_angle(state, PhaseId.PALMAR_FLEXION, reading(30))
        after = record_angle(state, PhaseId.PALMAR_FLEXION, reading(80, accuracy=0.1, valid=False))
        assert after is state

    def test_record_wrong_phase(self, tables):
        from domain.clinical_tables import PhaseId
        from domain.errors import SessionStateError
        from services.phase_state_machine import record_angle, start_session

        state = start_session("user-1", "right", tables)
        with pytest.raises(SessionStateError):
            record_angle(state, PhaseId.ULNAR_DEVIATION, reading(20))

    def test_advance_requires_reading(self, tables):
        from domain.errors import SessionStateError
        from services.phase_state_machine import advance, start_session

        state = start_session("user-1", "right", tables)
        with pytest.raises(SessionStateError):
            advance(state, tables)

    def test_no_auto_advance(self, tables):
        """A good reading alone never moves the phase"""
        from domain.clinical_tables import PhaseId
        from services.phase_state_machine import record_angle, start_session

        state = start_session("user-1", "right", tables)
        state = record_angle(state, PhaseId.PALMAR_FLEXION, reading(90, accuracy=1.0))
        assert state.current_phase == PhaseId.PALMAR_FLEXION

    def test_advance_finalizes_result(self, tables):
        from domain.clinical_tables import PhaseId
        from services.phase_state_machine import advance, record_angle, start_session

        state = start_session("user-1", "right", tables)
        state = record_angle(state, PhaseId.PALMAR_FLEXION, reading(46.2))
        state = advance(state, tables)

        result = state.result_for(PhaseId.PALMAR_FLEXION)
        assert result.angle_value == 46.2
        assert result.target_angle == 90
        assert result.achievement == 51.3
        assert state.current_phase == PhaseId.DORSAL_FLEXION
        assert state.session.completed_phases == 1
        assert state.pending is None

    def test_complete_with_missing_phase_fails(self, tables):
        """3 of 4 phases recorded: completion is refused"""
        from domain.errors import IncompleteSessionError
        from services.phase_state_machine import advance, complete, record_angle, start_session

        state = start_session("user-1", "right", tables)
        for phase in tables.phase_ids[:3]:
            state = record_angle(state, phase, reading(20))
            state = advance(state, tables)

        with pytest.raises(IncompleteSessionError) as exc:
            complete(state, tables)
        assert exc.value.missing_phases == ["radial-deviation"]
        assert state.session.status == "active"

    def test_full_session(self, tables):
        from services.phase_state_machine import advance, complete, record_angle, start_session

        state = start_session("user-1", "left", tables)
        angles = [70, 60, 40, 20]
        for i, (phase, angle) in enumerate(zip(tables.phase_ids, angles)):
            state = record_angle(state, phase, reading(angle))
            if i < len(angles) - 1:
                state = advance(state, tables)
        state = complete(state, tables)

        assert state.session.status == "completed"
        assert state.session.end_time is not None
        assert state.session.completed_phases == 4
        assert state.position == "complete"
        assert len({r.phase_id for r in state.results}) == 4

    def test_advance_past_last_phase(self, tables):
        from domain.errors import SessionStateError
        from services.phase_state_machine import advance, record_angle, start_session

        state = start_session("user-1", "right", tables)
        for phase in tables.phase_ids[:3]:
            state = record_angle(state, phase, reading(20))
            state = advance(state, tables)
        state = record_angle(state, tables.phase_ids[3], reading(20))
        with pytest.raises(SessionStateError):
            advance(state, tables)

    def test_terminal_session_rejects_operations(self, tables):
        from domain.clinical_tables import PhaseId
        from domain.errors import SessionStateError
        from services.phase_state_machine import cancel, complete, record_angle, start_session

        state = cancel(start_session("user-1", "right", tables))
        assert state.session.status == "cancelled"
        with pytest.raises(SessionStateError):
            record_angle(state, PhaseId.PALMAR_FLEXION, reading(20))
        with pytest.raises(SessionStateError):
            complete(state, tables)
        with pytest.raises(SessionStateError):
            cancel(state)


class TestPhaseStateMachine:
    """Test the locked holder and its notifications"""

    def test_listeners_notified_on_change(self, tables):
        from domain.clinical_tables import PhaseId
        from services.phase_state_machine import PhaseStateMachine

        machine = PhaseStateMachine.start("user-1", "right", tables)
        seen = []
        unsubscribe = machine.subscribe(seen.append)

        machine.record_angle(PhaseId.PALMAR_FLEXION, reading(50))
        machine.record_angle(PhaseId.PALMAR_FLEXION, reading(50, accuracy=0.1, valid=False))
        assert len(seen) == 1, "Unchanged state must not notify"

        unsubscribe()
        machine.advance()
        assert len(seen) == 1

    def test_forearm_protocol_has_six_phases(self):
        from domain.clinical_tables import default_tables
        from services.phase_state_machine import PhaseStateMachine

        machine = PhaseStateMachine.start("user-1", "right", default_tables(include_forearm_rotation=True))
        assert machine.state.session.total_phases == 6
        assert machine.state.phase_order[-1].value == "supination"
