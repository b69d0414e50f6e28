import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db import repositories
from db.database import atomic
from db.models import (
    CLOSED_WORK_ORDER_STATUSES, Discipline, ExecutionStatus, Routine, SourceType, TriggerType, WorkOrder,
    WorkOrderCategory, WorkOrderPriority, WorkOrderStatus, WorkOrderStatusLog, WorkOrderType,
)
from api.services.audit import record_event
from api.services.exceptions import IncompleteExecutionError, NotFoundError, StateConflictError, ValidationError
from api.services.runtime import RuntimeService
from api.services.snapshots import FormSnapshot, describe_missing, missing_required_tasks
from api.utils.config import DEFAULT_PRIORITY_SCORE, WORK_ORDER_PREFIX
from api.utils.util import utcnow

logger = logging.getLogger(__name__)

S = WorkOrderStatus

_STATUS_GRAPH = {
    S.REQUESTED: [S.APPROVED, S.REJECTED, S.CANCELLED],
    S.APPROVED: [S.PLANNED, S.SCHEDULED, S.IN_PROGRESS, S.ON_HOLD, S.CANCELLED],
    S.PLANNED: [S.SCHEDULED, S.IN_PROGRESS, S.ON_HOLD, S.CANCELLED],
    S.SCHEDULED: [S.IN_PROGRESS, S.ON_HOLD, S.CANCELLED],
    S.IN_PROGRESS: [S.COMPLETED, S.ON_HOLD],
    S.ON_HOLD: [S.APPROVED, S.PLANNED, S.SCHEDULED, S.IN_PROGRESS, S.CANCELLED],
    S.COMPLETED: [S.VERIFIED, S.IN_PROGRESS],
    S.VERIFIED: [S.CLOSED, S.COMPLETED],
    S.REJECTED: [],
    S.CLOSED: [],
    S.CANCELLED: [],
}
ALLOWED_TRANSITIONS: Dict[str, List[str]] = {
    k.value: [s.value for s in v] for k, v in _STATUS_GRAPH.items()
}

STARTABLE_STATUSES = (S.APPROVED.value, S.PLANNED.value, S.SCHEDULED.value)


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in ALLOWED_TRANSITIONS.get(current_status, [])


def priority_from_score(score: Optional[int]) -> str:
    score = DEFAULT_PRIORITY_SCORE if score is None else score
    if score >= 90:
        return WorkOrderPriority.EMERGENCY.value
    if score >= 75:
        return WorkOrderPriority.URGENT.value
    if score >= 60:
        return WorkOrderPriority.HIGH.value
    if score >= 30:
        return WorkOrderPriority.NORMAL.value
    return WorkOrderPriority.LOW.value


class WorkOrderService:
    def __init__(self, db: Session):
        self.db = db

    # --- lookup ---
    def get_work_order(self, work_order_id: int) -> WorkOrder:
        work_order = self.db.get(WorkOrder, work_order_id)
        if work_order is None:
            raise NotFoundError(f"Work order {work_order_id} not found")
        return work_order

    def list_work_orders(
        self,
        status: Optional[str] = None,
        asset_id: Optional[int] = None,
        source_type: Optional[str] = None,
        source_id: Optional[int] = None,
        open_only: bool = False,
        skip: int = 0,
        limit: int = 100,
    ) -> List[WorkOrder]:
        stmt = select(WorkOrder).where(WorkOrder.active.is_(True))
        if status:
            stmt = stmt.where(WorkOrder.status == status)
        if asset_id is not None:
            stmt = stmt.where(WorkOrder.asset_id == asset_id)
        if source_type:
            stmt = stmt.where(WorkOrder.source_type == source_type)
        if source_id is not None:
            stmt = stmt.where(WorkOrder.source_id == source_id)
        if open_only:
            stmt = stmt.where(WorkOrder.status.notin_(CLOSED_WORK_ORDER_STATUSES))
        stmt = stmt.order_by(WorkOrder.work_order_id.desc()).offset(skip).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def status_summary(self) -> Dict[str, int]:
        rows = self.db.execute(
            select(WorkOrder.status, func.count(WorkOrder.work_order_id))
            .where(WorkOrder.active.is_(True))
            .group_by(WorkOrder.status)
        ).all()
        summary = {s.value: 0 for s in WorkOrderStatus}
        for status, count in rows:
            summary[status] = count
        summary["total"] = sum(count for _, count in rows)
        return summary

    def status_history(self, work_order_id: int) -> List[WorkOrderStatusLog]:
        return list(self.get_work_order(work_order_id).status_logs)

    # --- creation ---
    def generate_wo_number(self, now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        prefix = f"{WORK_ORDER_PREFIX}-{now.year}-{now.month:02d}-"
        sequence = repositories.count_work_orders_with_prefix(self.db, prefix) + 1
        candidate = f"{prefix}{sequence:05d}"
        while self.db.scalar(select(WorkOrder.work_order_id).where(WorkOrder.wo_number == candidate)):
            sequence += 1
            candidate = f"{prefix}{sequence:05d}"
        return candidate

    def build_work_order(self, actor_id: Optional[int], reason: str, **fields) -> WorkOrder:
        """Insert a requested work order with its first status log row. Does not commit."""
        now = fields.pop("now", None) or utcnow()
        work_order = WorkOrder(
            wo_number=self.generate_wo_number(now),
            status=WorkOrderStatus.REQUESTED.value,
            requested_at=now,
            **fields,
        )
        self.db.add(work_order)
        self.db.flush()
        self.db.add(
            WorkOrderStatusLog(
                work_order_id=work_order.work_order_id,
                previous_status=None,
                new_status=WorkOrderStatus.REQUESTED.value,
                changed_by=actor_id,
                reason=reason,
                changed_at=now,
            )
        )
        return work_order

    def validate_classification(
        self,
        discipline: str,
        category_id: Optional[int],
        type_id: Optional[int],
        source_type: str,
        asset_id: Optional[int],
    ) -> None:
        if discipline not in [d.value for d in Discipline]:
            raise ValidationError(f"Invalid discipline: {discipline}")
        if category_id is None:
            raise ValidationError("Work order category is required")
        category = self.db.get(WorkOrderCategory, category_id)
        if category is None or not category.active:
            raise ValidationError(f"Work order category {category_id} not found")
        if category.discipline != discipline:
            raise ValidationError(
                f"Category '{category.code}' does not belong to the {discipline} discipline"
            )
        if not category.allows_source(source_type):
            raise ValidationError(
                f"Source type '{source_type}' is not allowed for category '{category.code}'"
            )
        if type_id is not None:
            wo_type = self.db.get(WorkOrderType, type_id)
            if wo_type is None or not wo_type.is_active:
                raise ValidationError(f"Work order type {type_id} not found")
            if wo_type.category_id != category.category_id:
                raise ValidationError(
                    f"Work order type '{wo_type.code}' does not belong to category '{category.code}'"
                )
        if discipline == Discipline.MAINTENANCE.value:
            if asset_id is None:
                raise ValidationError("Maintenance work orders require an asset")
            if repositories.get_asset(self.db, asset_id) is None:
                raise ValidationError(f"Asset {asset_id} not found")

    def create_work_order(self, data: Dict[str, Any], actor_id: int) -> WorkOrder:
        """Create a manually requested work order after classification checks."""
        discipline = data.get("discipline") or Discipline.MAINTENANCE.value
        source_type = data.get("source_type") or SourceType.MANUAL.value
        if source_type == SourceType.ROUTINE.value:
            raise ValidationError("Routine work orders are created through the routine")
        self.validate_classification(
            discipline,
            data.get("work_order_category_id"),
            data.get("work_order_type_id"),
            source_type,
            data.get("asset_id"),
        )
        priority_score = data.get("priority_score")
        if priority_score is None:
            priority_score = DEFAULT_PRIORITY_SCORE
        with atomic(self.db):
            work_order = self.build_work_order(
                actor_id,
                "Work order requested",
                discipline=discipline,
                title=data.get("title"),
                description=data.get("description"),
                work_order_category_id=data.get("work_order_category_id"),
                work_order_type_id=data.get("work_order_type_id"),
                priority=data.get("priority") or priority_from_score(priority_score),
                priority_score=priority_score,
                asset_id=data.get("asset_id"),
                source_type=source_type,
                source_id=data.get("source_id"),
                requested_by=actor_id,
                requested_due_date=data.get("requested_due_date"),
            )
            record_event(
                self.db, "work_order.created", "work_order", work_order.work_order_id,
                after_state=work_order.status, actor_id=actor_id,
                metadata={"wo_number": work_order.wo_number, "source_type": source_type},
            )
        self.db.refresh(work_order)
        logger.info(f"Created work order {work_order.wo_number} (source={source_type})")
        return work_order

    def create_follow_up(self, work_order_id: int, description: str, actor_id: int) -> WorkOrder:
        original = self.get_work_order(work_order_id)
        corrective = repositories.category_by_code(self.db, "corrective")
        data = {
            "discipline": original.discipline,
            "title": f"Follow-up: {original.title}",
            "description": description,
            "work_order_category_id": corrective.category_id if corrective else original.work_order_category_id,
            "asset_id": original.asset_id,
            "priority": WorkOrderPriority.NORMAL.value,
            "source_type": SourceType.WORK_ORDER.value,
            "source_id": original.work_order_id,
        }
        follow_up = self.create_work_order(data, actor_id)
        logger.info(f"Follow-up work order {follow_up.wo_number} created from {original.wo_number}")
        return follow_up

    # --- lifecycle ---
    def unanswered_execution_tasks(self, work_order: WorkOrder) -> List[Dict[str, Any]]:
        """Required tasks still unanswered on the order's open form executions."""
        missing: List[Dict[str, Any]] = []
        for execution in work_order.executions:
            if execution.status in (ExecutionStatus.COMPLETED.value, ExecutionStatus.CANCELLED.value):
                continue
            snapshot = FormSnapshot.model_validate(execution.form_snapshot)
            missing.extend(describe_missing(missing_required_tasks(snapshot, execution.responses)))
        return missing

    def apply_transition(
        self,
        work_order: WorkOrder,
        new_status: str,
        actor_id: Optional[int],
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Move a work order along a legal edge. Does not commit; returns False on an illegal edge."""
        previous = work_order.status
        if not can_transition(previous, new_status):
            logger.warning(
                f"Refused transition of work order {work_order.wo_number}: {previous} -> {new_status}"
            )
            return False
        if new_status == S.COMPLETED.value and self.unanswered_execution_tasks(work_order):
            logger.warning(
                f"Refused completion of work order {work_order.wo_number}: form execution has unanswered required tasks"
            )
            return False

        now = now or utcnow()
        work_order.status = new_status
        if new_status == S.APPROVED.value and previous == S.REQUESTED.value:
            work_order.approved_by = actor_id
            work_order.approved_at = now
        elif new_status == S.PLANNED.value:
            work_order.planned_by = actor_id
            work_order.planned_at = now
        elif new_status == S.IN_PROGRESS.value and work_order.actual_start_date is None:
            work_order.actual_start_date = now
        elif new_status == S.COMPLETED.value:
            work_order.actual_end_date = now
            work_order.completed_by = actor_id
        elif new_status == S.VERIFIED.value:
            work_order.verified_by = actor_id
            work_order.verified_at = now
        elif new_status == S.CLOSED.value:
            work_order.closed_by = actor_id
            work_order.closed_at = now

        self.db.add(
            WorkOrderStatusLog(
                work_order_id=work_order.work_order_id,
                previous_status=previous,
                new_status=new_status,
                changed_by=actor_id,
                reason=reason,
                changed_at=now,
            )
        )
        record_event(
            self.db, "work_order.status_changed", "work_order", work_order.work_order_id,
            before_state=previous, after_state=new_status, actor_id=actor_id,
            metadata={"reason": reason} if reason else {},
        )
        if new_status == S.COMPLETED.value and work_order.source_type == SourceType.ROUTINE.value:
            self._record_routine_execution(work_order, now)
        logger.info(f"Work order {work_order.wo_number}: {previous} -> {new_status} by {actor_id}")
        return True

    def _record_routine_execution(self, work_order: WorkOrder, now: datetime) -> None:
        routine = self.db.get(Routine, work_order.source_id)
        if routine is None:
            logger.warning(f"Routine {work_order.source_id} for work order {work_order.wo_number} no longer exists")
            return
        current = RuntimeService(self.db).current_runtime(routine.asset_id)
        if current is not None:
            routine.last_execution_runtime_hours = current
        elif routine.trigger_type == TriggerType.RUNTIME_HOURS.value:
            logger.warning(
                f"Routine {routine.routine_id} completed via {work_order.wo_number} but asset {routine.asset_id} "
                f"has no runtime reading; it stays due until one is recorded"
            )
        routine.last_execution_completed_at = now
        routine.last_execution_form_version_id = work_order.form_version_id
        logger.info(
            f"Routine {routine.routine_id} executed at {current}h via {work_order.wo_number}"
        )

    def transition_to(
        self, work_order_id: int, new_status: str, actor_id: Optional[int], reason: Optional[str] = None
    ) -> bool:
        work_order = self.get_work_order(work_order_id)
        with atomic(self.db):
            changed = self.apply_transition(work_order, new_status, actor_id, reason)
        if changed:
            self.db.refresh(work_order)
        return changed

    def raise_transition_conflict(self, work_order_id: int, new_status: str) -> None:
        """Raise the error explaining why a transition was refused."""
        work_order = self.get_work_order(work_order_id)
        if new_status == S.COMPLETED.value and can_transition(work_order.status, new_status):
            missing = self.unanswered_execution_tasks(work_order)
            if missing:
                raise IncompleteExecutionError(missing)
        raise StateConflictError(f"Cannot transition from {work_order.status} to {new_status}")

    def _transition_or_conflict(
        self, work_order_id: int, new_status: str, actor_id: int, reason: Optional[str] = None
    ) -> WorkOrder:
        if not self.transition_to(work_order_id, new_status, actor_id, reason):
            self.raise_transition_conflict(work_order_id, new_status)
        return self.get_work_order(work_order_id)

    def approve(self, work_order_id: int, actor_id: int, reason: Optional[str] = None) -> WorkOrder:
        return self._transition_or_conflict(work_order_id, S.APPROVED.value, actor_id, reason)

    def reject(self, work_order_id: int, actor_id: int, reason: str) -> WorkOrder:
        if not reason:
            raise ValidationError("A reason is required to reject a work order")
        return self._transition_or_conflict(work_order_id, S.REJECTED.value, actor_id, reason)

    def plan(self, work_order_id: int, actor_id: int, reason: Optional[str] = None) -> WorkOrder:
        return self._transition_or_conflict(work_order_id, S.PLANNED.value, actor_id, reason)

    def schedule(self, work_order_id: int, actor_id: int, scheduled_start_date: datetime) -> WorkOrder:
        work_order = self.get_work_order(work_order_id)
        with atomic(self.db):
            if not self.apply_transition(work_order, S.SCHEDULED.value, actor_id, "Scheduled"):
                raise StateConflictError(f"Cannot transition from {work_order.status} to scheduled")
            work_order.scheduled_start_date = scheduled_start_date
        self.db.refresh(work_order)
        return work_order

    def put_on_hold(self, work_order_id: int, actor_id: int, reason: str) -> WorkOrder:
        if not reason:
            raise ValidationError("A reason is required to put a work order on hold")
        return self._transition_or_conflict(work_order_id, S.ON_HOLD.value, actor_id, reason)

    def resume(self, work_order_id: int, actor_id: int, to_status: Optional[str] = None) -> WorkOrder:
        """Leave on_hold, by default back to the status held before."""
        work_order = self.get_work_order(work_order_id)
        if work_order.status != S.ON_HOLD.value:
            raise StateConflictError("Work order is not on hold")
        if to_status is None:
            held = [log for log in work_order.status_logs if log.new_status == S.ON_HOLD.value]
            to_status = held[-1].previous_status if held else S.APPROVED.value
        return self._transition_or_conflict(work_order_id, to_status, actor_id, "Resumed from hold")

    def cancel(self, work_order_id: int, actor_id: int, reason: str) -> WorkOrder:
        if not reason:
            raise ValidationError("A reason is required to cancel a work order")
        return self._transition_or_conflict(work_order_id, S.CANCELLED.value, actor_id, reason)

    def complete(self, work_order_id: int, actor_id: int, reason: Optional[str] = None) -> WorkOrder:
        return self._transition_or_conflict(work_order_id, S.COMPLETED.value, actor_id, reason)

    def verify(self, work_order_id: int, actor_id: int, notes: Optional[str] = None) -> WorkOrder:
        return self._transition_or_conflict(work_order_id, S.VERIFIED.value, actor_id, notes)

    def close(self, work_order_id: int, actor_id: int, notes: Optional[str] = None) -> WorkOrder:
        return self._transition_or_conflict(work_order_id, S.CLOSED.value, actor_id, notes)

    # --- scoring ---
    def calculate_priority_score(self, work_order: WorkOrder, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        score = work_order.priority_score if work_order.priority_score is not None else DEFAULT_PRIORITY_SCORE
        created = work_order.created_at or now
        score += min((now - created).days, 10)
        due = work_order.requested_due_date
        if due is not None and due < now:
            score += min((now - due).days * 2, 20)
        return max(0, min(100, score))

    def update_priority_score(self, work_order_id: int, actor_id: Optional[int] = None) -> WorkOrder:
        work_order = self.get_work_order(work_order_id)
        with atomic(self.db):
            work_order.priority_score = self.calculate_priority_score(work_order)
            work_order.priority = priority_from_score(work_order.priority_score)
        self.db.refresh(work_order)
        return work_order
