from datetime import timedelta

import pytest

from db.models import Routine
from api.services.exceptions import AuthorizationError, NotFoundError, ValidationError
from api.services.routines import (
    calculate_due_date, hours_until_due, interval_label, is_due, progress_percentage, should_generate,
)


def runtime_routine(**overrides):
    values = dict(
        trigger_type="runtime_hours",
        trigger_runtime_hours=500,
        last_execution_runtime_hours=400,
        advance_generation_hours=24,
        is_active=True,
    )
    values.update(overrides)
    return Routine(**values)


def calendar_routine(**overrides):
    values = dict(
        trigger_type="calendar_days",
        trigger_calendar_days=30,
        advance_generation_hours=48,
        is_active=True,
    )
    values.update(overrides)
    return Routine(**values)


class TestRuntimeTrigger:
    def test_due_when_interval_elapsed(self, now):
        routine = runtime_routine()
        assert hours_until_due(routine, 900, now) == 0
        assert is_due(routine, 900, now)
        assert should_generate(routine, 900, now)

    def test_overdue_is_floored_at_zero(self, now):
        assert hours_until_due(runtime_routine(), 1200, now) == 0

    def test_remaining_hours(self, now):
        routine = runtime_routine()
        assert hours_until_due(routine, 800, now) == 100
        assert not is_due(routine, 800, now)
        assert not should_generate(routine, 800, now)

    def test_advance_window_is_inclusive(self, now):
        assert should_generate(runtime_routine(advance_generation_hours=100), 800, now)
        assert not should_generate(runtime_routine(advance_generation_hours=99), 800, now)

    def test_never_executed_is_due_now(self, now):
        routine = runtime_routine(last_execution_runtime_hours=None)
        assert hours_until_due(routine, 900, now) == 0
        assert should_generate(routine, 900, now)

    def test_unknown_runtime_is_due_now(self, now):
        assert hours_until_due(runtime_routine(), None, now) == 0

    def test_missing_trigger_never_generates(self, now):
        routine = runtime_routine(trigger_runtime_hours=None)
        assert hours_until_due(routine, 900, now) is None
        assert not is_due(routine, 900, now)
        assert not should_generate(routine, 900, now)

    def test_inactive_routine_never_generates(self, now):
        assert not should_generate(runtime_routine(is_active=False), 900, now)

    def test_progress_and_due_date(self, now):
        routine = runtime_routine()
        assert progress_percentage(routine, 650, now) == 50.0
        assert calculate_due_date(routine, 800, now) == now + timedelta(hours=100)
        assert interval_label(routine) == "500h"


class TestCalendarTrigger:
    def test_inside_advance_window(self, now):
        routine = calendar_routine(last_execution_completed_at=now - timedelta(days=29))
        assert hours_until_due(routine, None, now) == pytest.approx(24)
        assert not is_due(routine, None, now)
        assert should_generate(routine, None, now)

    def test_outside_advance_window(self, now):
        routine = calendar_routine(
            last_execution_completed_at=now - timedelta(days=29), advance_generation_hours=12
        )
        assert not should_generate(routine, None, now)

    def test_never_executed_is_due_now(self, now):
        routine = calendar_routine()
        assert hours_until_due(routine, None, now) == 0
        assert is_due(routine, None, now)

    def test_due_date_and_label(self, now):
        last = now - timedelta(days=10)
        routine = calendar_routine(last_execution_completed_at=last)
        assert calculate_due_date(routine, None, now) == last + timedelta(days=30)
        assert interval_label(routine) == "30 days"


class TestRoutineService:
    def test_create_applies_defaults_and_form(self, make_routine):
        routine = make_routine(execution_mode=None, advance_generation_hours=None)
        assert routine.execution_mode == "manual"
        assert routine.advance_generation_hours == 24
        assert routine.priority_score == 50
        assert routine.form.name == "Pump service - Form"

    def test_runtime_routine_needs_hours(self, make_routine):
        with pytest.raises(ValidationError):
            make_routine(trigger_runtime_hours=None)

    def test_calendar_routine_needs_days(self, make_routine):
        with pytest.raises(ValidationError):
            make_routine(trigger_type="calendar_days", trigger_runtime_hours=None)

    def test_unknown_asset(self, make_routine):
        with pytest.raises(NotFoundError):
            make_routine(asset_id=9999)

    def test_auto_approve_requires_permission(self, routines, asset, technician):
        data = {
            "asset_id": asset.asset_id,
            "name": "Auto approved",
            "trigger_type": "runtime_hours",
            "trigger_runtime_hours": 100,
            "auto_approve_work_orders": True,
        }
        with pytest.raises(AuthorizationError):
            routines.create_routine(data, technician.user_id)

    def test_due_status(self, routines, runtime, make_routine, asset, now):
        routine = make_routine(last_execution_runtime_hours=400)
        runtime.record_measurement(asset.asset_id, 800, measured_at=now)
        status = routines.due_status(routine, now)
        assert status["current_runtime_hours"] == 800
        assert status["hours_until_due"] == 100
        assert status["is_due"] is False
        assert status["should_generate_work_order"] is False
        assert status["progress_percentage"] == 80.0
        # 100 remaining hours at the default 8 hours a day
        assert status["next_execution_date"] == now + timedelta(days=12.5)

    def test_get_hours_until_due_defaults_to_zero(self, routines, make_routine, now):
        routine = make_routine(trigger_type="calendar_days", trigger_runtime_hours=None, trigger_calendar_days=30)
        assert routines.hours_until_due(routine, now) == 0
        routine.trigger_calendar_days = None
        assert routines.hours_until_due(routine, now) is None
        assert routines.get_hours_until_due(routine, now) == 0.0

    def test_deactivated_routine_is_not_generated(self, routines, make_routine, admin, now):
        routine = make_routine()
        assert routines.should_generate_work_order(routine, now)
        routines.update_routine(routine.routine_id, {"is_active": False}, admin.user_id)
        assert not routines.should_generate_work_order(routine, now)
