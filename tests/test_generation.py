import logging
from datetime import timedelta

import pytest

from db import repositories
from db.models import WorkOrder
from api.services import generation
from api.services.audit import list_events
from api.services.exceptions import StateConflictError
from api.services.generation import WorkOrderGenerationService
from api.services.work_orders import WorkOrderService


def _routine_orders(db, routine):
    return db.query(WorkOrder).filter(
        WorkOrder.source_type == "routine", WorkOrder.source_id == routine.routine_id
    ).all()


class TestGenerateDueWorkOrders:
    def test_due_routine_gets_one_work_order(self, db, make_routine, runtime, asset, now):
        routine = make_routine(last_execution_runtime_hours=400)
        runtime.record_measurement(asset.asset_id, 900, measured_at=now)

        generated = WorkOrderGenerationService(db).generate_due_work_orders(now)

        assert len(generated) == 1
        work_order = generated[0]
        assert work_order.status == "requested"
        assert work_order.source_type == "routine"
        assert work_order.source_id == routine.routine_id
        assert work_order.asset_id == asset.asset_id
        assert work_order.title == "Preventive maintenance - Pump service (500h)"
        assert work_order.wo_number == "WO-2026-03-00001"
        assert work_order.category.code == "preventive"

    def test_second_scan_is_idempotent(self, db, make_routine, runtime, asset, now):
        routine = make_routine(last_execution_runtime_hours=400)
        runtime.record_measurement(asset.asset_id, 900, measured_at=now)
        service = WorkOrderGenerationService(db)

        service.generate_due_work_orders(now)
        second = service.generate_due_work_orders(now + timedelta(hours=1))

        assert second == []
        assert len(_routine_orders(db, routine)) == 1

    def test_closed_order_no_longer_blocks(self, db, make_routine, admin, now):
        routine = make_routine()
        service = WorkOrderGenerationService(db)
        first = service.generate_due_work_orders(now)[0]
        WorkOrderService(db).cancel(first.work_order_id, admin.user_id, "Duplicate")

        again = service.generate_due_work_orders(now)
        assert len(again) == 1
        assert again[0].work_order_id != first.work_order_id

    def test_routine_outside_window_is_skipped(self, db, make_routine, runtime, asset, now):
        make_routine(last_execution_runtime_hours=400)
        runtime.record_measurement(asset.asset_id, 800, measured_at=now)
        assert WorkOrderGenerationService(db).generate_due_work_orders(now) == []

    def test_manual_and_inactive_routines_are_ignored(self, db, make_routine, now):
        make_routine(execution_mode="manual")
        make_routine(name="Retired", is_active=False)
        assert WorkOrderGenerationService(db).generate_due_work_orders(now) == []

    def test_auto_approve(self, db, make_routine, admin, now):
        routine = make_routine(auto_approve_work_orders=True)
        work_order = WorkOrderService(db).get_work_order(
            WorkOrderGenerationService(db).generate_due_work_orders(now)[0].work_order_id
        )
        assert work_order.status == "approved"
        assert work_order.approved_by == admin.user_id
        assert [log.new_status for log in work_order.status_logs] == ["requested", "approved"]
        assert routine.routine_id == work_order.source_id

    def test_snapshot_is_attached(self, db, make_routine, published_form, now):
        form, version = published_form
        make_routine(form_id=form.form_id)
        work_order = WorkOrderGenerationService(db).generate_due_work_orders(now)[0]
        assert work_order.form_version_id == version.form_version_id
        assert [t["description"] for t in work_order.form_snapshot["tasks"]] == [
            "A: check seal", "B: notes", "C: discharge pressure",
        ]

    def test_generation_is_audited(self, db, make_routine, now):
        make_routine()
        work_order = WorkOrderGenerationService(db).generate_due_work_orders(now)[0]
        events = list_events(db, subject_type="work_order", subject_id=work_order.work_order_id)
        assert "work_order.generated" in [e.event_name for e in events]

    def test_one_failing_routine_does_not_stop_the_scan(self, db, make_routine, monkeypatch, now):
        broken = make_routine(name="Broken")
        healthy = make_routine(name="Healthy")
        service = WorkOrderGenerationService(db)
        original = service.routines.generate_work_order

        def flaky(routine, actor_id=None, now=None):
            if routine.routine_id == broken.routine_id:
                raise StateConflictError("Preventive category not found for maintenance discipline")
            return original(routine, actor_id=actor_id, now=now)

        monkeypatch.setattr(service.routines, "generate_work_order", flaky)
        generated = service.generate_due_work_orders(now)

        assert [wo.source_id for wo in generated] == [healthy.routine_id]
        assert _routine_orders(db, broken) == []

    def test_overlapping_scan_is_skipped(self, db, make_routine, now):
        make_routine()
        assert generation._scan_lock.acquire(blocking=False)
        try:
            assert WorkOrderGenerationService(db).generate_due_work_orders(now) == []
        finally:
            generation._scan_lock.release()
        assert len(WorkOrderGenerationService(db).generate_due_work_orders(now)) == 1

    def test_order_opened_while_waiting_for_the_routine_lock(self, db, make_routine, monkeypatch, caplog, now):
        routine = make_routine()
        service = WorkOrderGenerationService(db)
        lock_routine = repositories.lock_routine

        def lock_after_concurrent_scan(session, routine_id):
            locked = lock_routine(session, routine_id)
            # another scanner committed its order before the lock was granted
            service.routines.generate_work_order(locked, now=now)
            session.flush()
            return locked

        monkeypatch.setattr(repositories, "lock_routine", lock_after_concurrent_scan)
        with caplog.at_level(logging.INFO, logger="api.services.generation"):
            assert service.generate_due_work_orders(now) == []

        assert len(_routine_orders(db, routine)) == 1
        assert "skipped: open work order" in caplog.text
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]


class TestManualRequest:
    def test_request_from_manual_routine(self, db, routines, make_routine, technician, now):
        routine = make_routine(execution_mode="manual")
        work_order = routines.request_work_order(routine.routine_id, technician.user_id, now)
        assert work_order.requested_by == technician.user_id
        assert work_order.source_id == routine.routine_id

    def test_automatic_routine_with_open_order_is_refused(self, db, routines, make_routine, admin, now):
        routine = make_routine()
        WorkOrderGenerationService(db).generate_due_work_orders(now)
        with pytest.raises(StateConflictError):
            routines.request_work_order(routine.routine_id, admin.user_id, now)
