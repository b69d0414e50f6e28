import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from db import repositories
from db.database import atomic
from db.models import (
    Discipline, ExecutionMode, Form, FormVersion, Routine, SourceType, TriggerType, WorkOrder,
    WorkOrderStatus,
)
from api.services.audit import record_event
from api.services.exceptions import NotFoundError, StateConflictError, ValidationError
from api.services.runtime import RuntimeService
from api.services.snapshots import FormSnapshot
from api.services.users import require_permission
from api.services.work_orders import WorkOrderService, priority_from_score
from api.utils.config import (
    APPROVE_WORK_ORDERS_PERMISSION, DEFAULT_ADVANCE_GENERATION_HOURS, DEFAULT_PRIORITY_SCORE,
)
from api.utils.util import hours_between, utcnow

logger = logging.getLogger(__name__)


# --- due calculation over plain values ---
def hours_until_due(routine, current_runtime: Optional[float], now: datetime) -> Optional[float]:
    """Hours left before the routine is due, floored at 0.

    None means the routine has no trigger configured for its trigger type.
    A routine without an execution baseline is due immediately.
    """
    if routine.trigger_type == TriggerType.RUNTIME_HOURS.value:
        if not routine.trigger_runtime_hours:
            return None
        if routine.last_execution_runtime_hours is None or current_runtime is None:
            return 0.0
        since_last = current_runtime - routine.last_execution_runtime_hours
        return max(0.0, routine.trigger_runtime_hours - since_last)

    if routine.trigger_type == TriggerType.CALENDAR_DAYS.value:
        if not routine.trigger_calendar_days:
            return None
        if routine.last_execution_completed_at is None:
            return 0.0
        due_at = routine.last_execution_completed_at + timedelta(days=routine.trigger_calendar_days)
        return max(0.0, hours_between(now, due_at))

    return None


def is_due(routine, current_runtime: Optional[float], now: datetime) -> bool:
    hours = hours_until_due(routine, current_runtime, now)
    return hours is not None and hours <= 0


def should_generate(routine, current_runtime: Optional[float], now: datetime) -> bool:
    """Active and inside the advance window. The window is counted in hours for both trigger types."""
    if not routine.is_active:
        return False
    hours = hours_until_due(routine, current_runtime, now)
    if hours is None:
        return False
    advance = routine.advance_generation_hours
    if advance is None:
        advance = DEFAULT_ADVANCE_GENERATION_HOURS
    return 0 <= hours <= advance


def calculate_due_date(routine, current_runtime: Optional[float], now: datetime) -> datetime:
    if routine.trigger_type == TriggerType.RUNTIME_HOURS.value:
        hours = hours_until_due(routine, current_runtime, now) or 0.0
        return now + timedelta(hours=hours)
    if routine.last_execution_completed_at is None or not routine.trigger_calendar_days:
        return now
    return routine.last_execution_completed_at + timedelta(days=routine.trigger_calendar_days)


def progress_percentage(routine, current_runtime: Optional[float], now: datetime) -> float:
    if hours_until_due(routine, current_runtime, now) is None:
        return 0.0
    if routine.trigger_type == TriggerType.RUNTIME_HOURS.value:
        if routine.last_execution_runtime_hours is None or current_runtime is None:
            return 100.0
        progress = (current_runtime - routine.last_execution_runtime_hours) / routine.trigger_runtime_hours * 100
    else:
        if routine.last_execution_completed_at is None:
            return 100.0
        elapsed_days = (now - routine.last_execution_completed_at).total_seconds() / 86400.0
        progress = elapsed_days / routine.trigger_calendar_days * 100
    return round(min(100.0, max(0.0, progress)), 2)


def interval_label(routine) -> str:
    if routine.trigger_type == TriggerType.RUNTIME_HOURS.value:
        return f"{routine.trigger_runtime_hours:g}h"
    return f"{routine.trigger_calendar_days} days"


class RoutineService:
    def __init__(self, db: Session):
        self.db = db
        self.runtime = RuntimeService(db)

    # --- due state ---
    def current_runtime(self, routine: Routine) -> Optional[float]:
        return self.runtime.current_runtime(routine.asset_id)

    def hours_until_due(self, routine: Routine, now: Optional[datetime] = None) -> Optional[float]:
        return hours_until_due(routine, self.current_runtime(routine), now or utcnow())

    def get_hours_until_due(self, routine: Routine, now: Optional[datetime] = None) -> float:
        return self.hours_until_due(routine, now) or 0.0

    def is_due(self, routine: Routine, now: Optional[datetime] = None) -> bool:
        return is_due(routine, self.current_runtime(routine), now or utcnow())

    def should_generate_work_order(self, routine: Routine, now: Optional[datetime] = None) -> bool:
        return should_generate(routine, self.current_runtime(routine), now or utcnow())

    def calculate_due_date(self, routine: Routine, now: Optional[datetime] = None) -> datetime:
        return calculate_due_date(routine, self.current_runtime(routine), now or utcnow())

    def has_open_work_order(self, routine: Routine) -> bool:
        return repositories.open_work_order_for_routine(self.db, routine.routine_id) is not None

    def next_execution_date(self, routine: Routine, now: Optional[datetime] = None) -> Optional[datetime]:
        """Estimated date the routine falls due; runtime routines use the asset's average daily runtime."""
        now = now or utcnow()
        if routine.trigger_type == TriggerType.CALENDAR_DAYS.value:
            if routine.last_execution_completed_at is None:
                return None
            return routine.last_execution_completed_at + timedelta(days=routine.trigger_calendar_days)
        remaining = self.hours_until_due(routine, now)
        if remaining is None:
            return None
        if remaining <= 0:
            return now
        per_day = self.runtime.average_runtime_per_day(routine.asset_id, now)
        return now + timedelta(days=remaining / per_day)

    def due_status(self, routine: Routine, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        current = self.current_runtime(routine)
        open_order = repositories.open_work_order_for_routine(self.db, routine.routine_id)
        return {
            "routine_id": routine.routine_id,
            "current_runtime_hours": current,
            "hours_until_due": hours_until_due(routine, current, now),
            "is_due": is_due(routine, current, now),
            "should_generate_work_order": should_generate(routine, current, now) and open_order is None,
            "due_date": calculate_due_date(routine, current, now),
            "next_execution_date": self.next_execution_date(routine, now),
            "progress_percentage": progress_percentage(routine, current, now),
            "open_work_order_id": open_order.work_order_id if open_order else None,
        }

    # --- CRUD ---
    def get_routine(self, routine_id: int) -> Routine:
        routine = self.db.get(Routine, routine_id)
        if routine is None:
            raise NotFoundError(f"Routine {routine_id} not found")
        return routine

    def list_routines(
        self, asset_id: Optional[int] = None, execution_mode: Optional[str] = None, active_only: bool = False
    ) -> List[Routine]:
        stmt = select(Routine)
        if asset_id is not None:
            stmt = stmt.where(Routine.asset_id == asset_id)
        if execution_mode:
            stmt = stmt.where(Routine.execution_mode == execution_mode)
        if active_only:
            stmt = stmt.where(Routine.is_active.is_(True))
        return list(self.db.execute(stmt.order_by(Routine.routine_id)).scalars().all())

    def _validate(self, values: Dict[str, Any]) -> None:
        trigger_type = values.get("trigger_type")
        if trigger_type not in [t.value for t in TriggerType]:
            raise ValidationError(f"Invalid trigger type: {trigger_type}")
        if trigger_type == TriggerType.RUNTIME_HOURS.value:
            hours = values.get("trigger_runtime_hours")
            if hours is None or hours <= 0:
                raise ValidationError("Runtime routines need trigger_runtime_hours greater than 0")
        else:
            days = values.get("trigger_calendar_days")
            if days is None or days <= 0:
                raise ValidationError("Calendar routines need trigger_calendar_days greater than 0")
        if values.get("execution_mode") not in [m.value for m in ExecutionMode]:
            raise ValidationError(f"Invalid execution mode: {values.get('execution_mode')}")
        score = values.get("priority_score")
        if score is not None and not 0 <= score <= 100:
            raise ValidationError("priority_score must be between 0 and 100")
        advance = values.get("advance_generation_hours")
        if advance is not None and advance < 0:
            raise ValidationError("advance_generation_hours cannot be negative")

    def create_routine(self, data: Dict[str, Any], actor_id: int) -> Routine:
        values = {
            "execution_mode": ExecutionMode.MANUAL.value,
            "advance_generation_hours": DEFAULT_ADVANCE_GENERATION_HOURS,
            "priority_score": DEFAULT_PRIORITY_SCORE,
            "auto_approve_work_orders": False,
            "is_active": True,
        }
        values.update({k: v for k, v in data.items() if v is not None})
        self._validate(values)
        if repositories.get_asset(self.db, values.get("asset_id")) is None:
            raise NotFoundError(f"Asset {values.get('asset_id')} not found")
        if values.get("auto_approve_work_orders"):
            require_permission(self.db, actor_id, APPROVE_WORK_ORDERS_PERMISSION)

        with atomic(self.db):
            if values.get("form_id") is None:
                form = Form(
                    name=f"{values['name']} - Form",
                    description=f"Inspection form for routine {values['name']}",
                    created_by=actor_id,
                )
                self.db.add(form)
                self.db.flush()
                values["form_id"] = form.form_id
            else:
                form = repositories.get_form(self.db, values["form_id"])
                if form is None:
                    raise NotFoundError(f"Form {values['form_id']} not found")
                values.setdefault("active_form_version_id", form.current_version_id)

            routine = Routine(created_by=actor_id, **values)
            self.db.add(routine)
            self.db.flush()
            record_event(
                self.db, "routine.created", "routine", routine.routine_id,
                actor_id=actor_id,
                metadata={"asset_id": routine.asset_id, "trigger_type": routine.trigger_type},
            )
        self.db.refresh(routine)
        logger.info(f"Created routine {routine.routine_id} '{routine.name}' for asset {routine.asset_id}")
        return routine

    def update_routine(self, routine_id: int, data: Dict[str, Any], actor_id: int) -> Routine:
        routine = self.get_routine(routine_id)
        changes = {k: v for k, v in data.items() if v is not None}
        merged = {
            "trigger_type": routine.trigger_type,
            "trigger_runtime_hours": routine.trigger_runtime_hours,
            "trigger_calendar_days": routine.trigger_calendar_days,
            "execution_mode": routine.execution_mode,
            "priority_score": routine.priority_score,
            "advance_generation_hours": routine.advance_generation_hours,
        }
        merged.update(changes)
        self._validate(merged)
        if changes.get("auto_approve_work_orders") and not routine.auto_approve_work_orders:
            require_permission(self.db, actor_id, APPROVE_WORK_ORDERS_PERMISSION)
        if "active_form_version_id" in changes:
            version = self.db.get(FormVersion, changes["active_form_version_id"])
            if version is None or version.form_id != routine.form_id:
                raise ValidationError("Form version does not belong to the routine's form")

        with atomic(self.db):
            for key, value in changes.items():
                setattr(routine, key, value)
            record_event(
                self.db, "routine.updated", "routine", routine.routine_id,
                actor_id=actor_id, metadata={"fields": sorted(changes)},
            )
        self.db.refresh(routine)
        return routine

    # --- work order generation ---
    def form_snapshot_for(self, routine: Routine) -> Optional[FormSnapshot]:
        version_id = routine.active_form_version_id
        if version_id is None and routine.form is not None:
            version_id = routine.form.current_version_id
        if version_id is None:
            return None
        version = self.db.get(FormVersion, version_id)
        if version is None:
            return None
        return FormSnapshot.from_version(version)

    def generate_work_order(
        self, routine: Routine, actor_id: Optional[int] = None, now: Optional[datetime] = None
    ) -> WorkOrder:
        """Build the routine's next work order inside the caller's transaction."""
        now = now or utcnow()
        category = repositories.category_by_code(self.db, "preventive")
        if category is None or category.discipline != Discipline.MAINTENANCE.value:
            raise StateConflictError("Preventive category not found for maintenance discipline")
        wo_type = repositories.first_active_type(self.db, category.category_id)
        if wo_type is None:
            raise StateConflictError("No active preventive work order type found")

        snapshot = self.form_snapshot_for(routine)
        requester = actor_id or routine.created_by
        trigger_info = (
            f"Runtime based: every {routine.trigger_runtime_hours:g} hours"
            if routine.trigger_type == TriggerType.RUNTIME_HOURS.value
            else f"Calendar based: every {routine.trigger_calendar_days} days"
        )
        description = routine.description or "Run the preventive maintenance routine per standard procedure."
        score = routine.priority_score if routine.priority_score is not None else DEFAULT_PRIORITY_SCORE

        service = WorkOrderService(self.db)
        work_order = service.build_work_order(
            requester,
            "Generated from routine",
            now=now,
            discipline=Discipline.MAINTENANCE.value,
            work_order_category_id=category.category_id,
            work_order_type_id=wo_type.work_order_type_id,
            title=f"Preventive maintenance - {routine.name} ({interval_label(routine)})",
            description=f"{description}\n\n{trigger_info}",
            asset_id=routine.asset_id,
            priority=priority_from_score(score),
            priority_score=score,
            source_type=SourceType.ROUTINE.value,
            source_id=routine.routine_id,
            form_id=routine.form_id,
            form_version_id=snapshot.form_version_id if snapshot else None,
            form_snapshot=snapshot.model_dump(mode="json") if snapshot else None,
            requested_by=requester,
            requested_due_date=calculate_due_date(routine, self.current_runtime(routine), now),
        )
        record_event(
            self.db, "work_order.generated", "work_order", work_order.work_order_id,
            after_state=work_order.status, actor_id=requester,
            metadata={"routine_id": routine.routine_id, "wo_number": work_order.wo_number},
        )
        if routine.auto_approve_work_orders:
            service.apply_transition(
                work_order, WorkOrderStatus.APPROVED.value, routine.created_by or requester,
                "Auto-approved by routine configuration", now=now,
            )
        return work_order

    def request_work_order(self, routine_id: int, actor_id: int, now: Optional[datetime] = None) -> WorkOrder:
        """Manual generation; automatic routines still get at most one open work order."""
        routine = self.get_routine(routine_id)
        if not routine.is_active:
            raise StateConflictError("Routine is inactive")
        with atomic(self.db):
            repositories.lock_routine(self.db, routine.routine_id)
            if routine.execution_mode == ExecutionMode.AUTOMATIC.value and self.has_open_work_order(routine):
                raise StateConflictError("Automatic routine already has an open work order")
            work_order = self.generate_work_order(routine, actor_id, now)
        self.db.refresh(work_order)
        logger.info(f"Work order {work_order.wo_number} requested from routine {routine.routine_id}")
        return work_order
