import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from db import repositories
from db.database import atomic
from db.models import (
    ExecutionStatus, FormExecution, FormVersion, ResponseAttachment, TaskResponse, TaskType,
    WorkOrder, WorkOrderStatus,
)
from api.services.audit import record_event
from api.services.exceptions import (
    IncompleteExecutionError, NotFoundError, StateConflictError, ValidationError,
)
from api.services.snapshots import FormSnapshot, TaskSnapshot, describe_missing, missing_required_tasks
from api.services.work_orders import STARTABLE_STATUSES, WorkOrderService
from api.utils.util import to_float, utcnow

logger = logging.getLogger(__name__)

ATTACHMENT_TASK_TYPES = (TaskType.PHOTO.value, TaskType.FILE_UPLOAD.value)


@dataclass
class ValidatedResponse:
    payload: Dict[str, Any]
    is_completed: bool
    is_out_of_range: bool = False
    attachments: Tuple[Dict[str, Any], ...] = ()


def _options(task: TaskSnapshot) -> List[str]:
    return [str(o) for o in task.configuration.get("options") or []]


def validate_response(task: TaskSnapshot, payload: Dict[str, Any]) -> ValidatedResponse:
    """Check a payload against its task type. Empty answers are kept but not counted as completed."""
    if not isinstance(payload, dict):
        raise ValidationError("Response must be an object")

    if task.type in (TaskType.QUESTION.value, TaskType.CODE_READER.value):
        key = "text" if task.type == TaskType.QUESTION.value else "code"
        value = payload.get(key)
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"'{key}' must be a string")
        value = (value or "").strip()
        return ValidatedResponse({key: value}, bool(value))

    if task.type == TaskType.MULTIPLE_CHOICE.value:
        value = payload.get("value")
        if value in (None, ""):
            return ValidatedResponse({"value": None}, False)
        if str(value) not in _options(task):
            raise ValidationError(f"'{value}' is not one of the options")
        return ValidatedResponse({"value": str(value)}, True)

    if task.type == TaskType.MULTIPLE_SELECT.value:
        values = payload.get("values") or []
        if not isinstance(values, list):
            raise ValidationError("'values' must be a list")
        invalid = [v for v in values if str(v) not in _options(task)]
        if invalid:
            raise ValidationError(f"{invalid} are not among the options")
        values = list(dict.fromkeys(str(v) for v in values))
        return ValidatedResponse({"values": values}, bool(values))

    if task.type == TaskType.MEASUREMENT.value:
        raw = payload.get("value")
        if raw in (None, ""):
            return ValidatedResponse({"value": None}, False)
        value = to_float(raw)
        if value is None:
            raise ValidationError("Measurement value must be a number")
        low = to_float(task.configuration.get("min"))
        high = to_float(task.configuration.get("max"))
        out_of_range = (low is not None and value < low) or (high is not None and value > high)
        stored = {"value": value, "unit": task.configuration.get("unit")}
        if out_of_range:
            stored["warning"] = f"Value {value:g} outside expected range [{low}, {high}]"
        return ValidatedResponse(stored, True, is_out_of_range=out_of_range)

    if task.type in ATTACHMENT_TASK_TYPES:
        attachments = payload.get("attachments") or []
        if not isinstance(attachments, list):
            raise ValidationError("'attachments' must be a list")
        for item in attachments:
            if not isinstance(item, dict) or not item.get("file_path"):
                raise ValidationError("Each attachment needs a file_path")
        return ValidatedResponse(
            {"attachment_count": len(attachments), "notes": payload.get("notes")},
            bool(attachments),
            attachments=tuple(attachments),
        )

    raise ValidationError(f"Unsupported task type: {task.type}")


class FormExecutionService:
    def __init__(self, db: Session):
        self.db = db

    def get_execution(self, execution_id: int) -> FormExecution:
        execution = self.db.get(FormExecution, execution_id)
        if execution is None:
            raise NotFoundError(f"Form execution {execution_id} not found")
        return execution

    def snapshot(self, execution: FormExecution) -> FormSnapshot:
        return FormSnapshot.model_validate(execution.form_snapshot)

    def list_executions(
        self, form_version_id: Optional[int] = None, work_order_id: Optional[int] = None, status: Optional[str] = None
    ) -> List[FormExecution]:
        stmt = select(FormExecution)
        if form_version_id is not None:
            stmt = stmt.where(FormExecution.form_version_id == form_version_id)
        if work_order_id is not None:
            stmt = stmt.where(FormExecution.work_order_id == work_order_id)
        if status:
            stmt = stmt.where(FormExecution.status == status)
        return list(self.db.execute(stmt.order_by(FormExecution.execution_id.desc())).scalars().all())

    # --- creation ---
    def _new_execution(
        self, snapshot: FormSnapshot, user_id: int, work_order_id: Optional[int] = None
    ) -> FormExecution:
        execution = FormExecution(
            form_version_id=snapshot.form_version_id,
            work_order_id=work_order_id,
            user_id=user_id,
            status=ExecutionStatus.PENDING.value,
            form_snapshot=snapshot.model_dump(mode="json"),
        )
        self.db.add(execution)
        self.db.flush()
        return execution

    def create_execution(
        self,
        user_id: int,
        form_version_id: Optional[int] = None,
        form_id: Optional[int] = None,
        work_order_id: Optional[int] = None,
    ) -> FormExecution:
        if form_version_id is None:
            if form_id is None:
                raise ValidationError("form_version_id or form_id is required")
            form = repositories.get_form(self.db, form_id)
            if form is None:
                raise NotFoundError(f"Form {form_id} not found")
            if form.current_version_id is None:
                raise StateConflictError("Form has no published version")
            form_version_id = form.current_version_id
        version = self.db.get(FormVersion, form_version_id)
        if version is None:
            raise NotFoundError(f"Form version {form_version_id} not found")
        if not version.is_active:
            raise StateConflictError("Form version is inactive")
        if work_order_id is not None:
            WorkOrderService(self.db).get_work_order(work_order_id)

        with atomic(self.db):
            execution = self._new_execution(FormSnapshot.from_version(version), user_id, work_order_id)
        self.db.refresh(execution)
        logger.info(f"Created form execution {execution.execution_id} for version {form_version_id}")
        return execution

    def start_for_work_order(self, work_order_id: int, user_id: int) -> Tuple[WorkOrder, Optional[FormExecution]]:
        """Move a work order into in_progress and open an execution of its frozen form snapshot."""
        work_orders = WorkOrderService(self.db)
        work_order = work_orders.get_work_order(work_order_id)
        if work_order.status not in STARTABLE_STATUSES:
            raise StateConflictError(f"Cannot start a work order in status {work_order.status}")

        execution = None
        with atomic(self.db):
            work_orders.apply_transition(work_order, WorkOrderStatus.IN_PROGRESS.value, user_id, "Execution started")
            if work_order.form_snapshot:
                execution = self._new_execution(
                    FormSnapshot.model_validate(work_order.form_snapshot), user_id, work_order.work_order_id
                )
                execution.status = ExecutionStatus.IN_PROGRESS.value
                execution.started_at = utcnow()
        self.db.refresh(work_order)
        if execution is not None:
            self.db.refresh(execution)
        logger.info(f"Started work order {work_order.wo_number}")
        return work_order, execution

    # --- lifecycle ---
    def start(self, execution_id: int, user_id: int) -> FormExecution:
        execution = self.get_execution(execution_id)
        if execution.status != ExecutionStatus.PENDING.value:
            raise StateConflictError("Execution has already been started")
        with atomic(self.db):
            execution.status = ExecutionStatus.IN_PROGRESS.value
            execution.started_at = utcnow()
            execution.user_id = execution.user_id or user_id
            record_event(
                self.db, "form_execution.started", "form_execution", execution.execution_id,
                before_state=ExecutionStatus.PENDING.value, after_state=execution.status, actor_id=user_id,
            )
        self.db.refresh(execution)
        return execution

    def _mark_completed(self, execution: FormExecution, user_id: Optional[int]) -> None:
        execution.status = ExecutionStatus.COMPLETED.value
        execution.completed_at = utcnow()
        record_event(
            self.db, "form_execution.completed", "form_execution", execution.execution_id,
            before_state=ExecutionStatus.IN_PROGRESS.value, after_state=execution.status, actor_id=user_id,
            metadata={"work_order_id": execution.work_order_id},
        )
        work_order = execution.work_order
        if work_order is not None and work_order.status == WorkOrderStatus.IN_PROGRESS.value:
            WorkOrderService(self.db).apply_transition(
                work_order, WorkOrderStatus.COMPLETED.value, user_id, "Form execution completed"
            )
        logger.info(f"Form execution {execution.execution_id} completed")

    def complete(self, execution_id: int, user_id: int) -> FormExecution:
        execution = self.get_execution(execution_id)
        if execution.status != ExecutionStatus.IN_PROGRESS.value:
            raise StateConflictError("Execution is not in progress")
        missing = missing_required_tasks(self.snapshot(execution), execution.responses)
        if missing:
            raise IncompleteExecutionError(describe_missing(missing))
        with atomic(self.db):
            self._mark_completed(execution, user_id)
        self.db.refresh(execution)
        return execution

    def cancel(self, execution_id: int, user_id: int, reason: Optional[str] = None) -> FormExecution:
        execution = self.get_execution(execution_id)
        if execution.status == ExecutionStatus.COMPLETED.value:
            raise StateConflictError("Cannot cancel a completed execution")
        if execution.status == ExecutionStatus.CANCELLED.value:
            raise StateConflictError("Execution is already cancelled")
        previous = execution.status
        with atomic(self.db):
            execution.status = ExecutionStatus.CANCELLED.value
            execution.cancelled_at = utcnow()
            record_event(
                self.db, "form_execution.cancelled", "form_execution", execution.execution_id,
                before_state=previous, after_state=execution.status, actor_id=user_id,
                metadata={"reason": reason} if reason else {},
            )
        self.db.refresh(execution)
        return execution

    # --- responses ---
    def record_response(
        self, execution_id: int, task_id: int, payload: Dict[str, Any], user_id: int
    ) -> TaskResponse:
        execution = self.get_execution(execution_id)
        if execution.status != ExecutionStatus.IN_PROGRESS.value:
            raise StateConflictError("Execution is not in progress")
        snapshot = self.snapshot(execution)
        task = snapshot.task(task_id)
        if task is None:
            raise ValidationError(f"Task {task_id} is not part of this execution's form")
        validated = validate_response(task, payload)

        with atomic(self.db):
            response = repositories.response_for_task(self.db, execution_id, task_id)
            if response is None:
                response = TaskResponse(execution_id=execution_id, task_id=task_id)
                self.db.add(response)
            response.response = validated.payload
            response.is_completed = validated.is_completed
            response.is_out_of_range = validated.is_out_of_range
            response.user_id = user_id
            response.responded_at = utcnow()
            response.attachments = [
                ResponseAttachment(
                    file_path=a["file_path"],
                    file_name=a.get("file_name"),
                    mime_type=a.get("mime_type"),
                )
                for a in validated.attachments
            ]
            self.db.flush()
            self.db.refresh(execution)

            completed_count = sum(1 for r in execution.responses if r.is_completed)
            if completed_count == len(snapshot.tasks) and not missing_required_tasks(snapshot, execution.responses):
                self._mark_completed(execution, user_id)
        self.db.refresh(response)
        if validated.is_out_of_range:
            logger.warning(
                f"Execution {execution_id} task {task_id}: measurement outside range ({validated.payload.get('value')})"
            )
        return response

    # --- reporting ---
    def validate_completion(self, execution_id: int) -> Dict[str, Any]:
        execution = self.get_execution(execution_id)
        missing = missing_required_tasks(self.snapshot(execution), execution.responses)
        return {
            "is_valid": not missing,
            "missing_required_tasks": describe_missing(missing),
        }

    def progress_percentage(self, execution: FormExecution) -> float:
        total = len(self.snapshot(execution).tasks)
        if total == 0:
            return 0.0
        completed = sum(1 for r in execution.responses if r.is_completed)
        return round(completed / total * 100, 2)

    def task_summary(self, execution: FormExecution) -> Dict[str, int]:
        total = len(self.snapshot(execution).tasks)
        completed = sum(1 for r in execution.responses if r.is_completed)
        return {
            "total": total,
            "completed": completed,
            "pending": total - completed,
            "with_issues": sum(1 for r in execution.responses if r.is_out_of_range),
        }
