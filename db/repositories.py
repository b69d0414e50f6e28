"""Query helpers the services share, kept apart from the due-date and completion rules."""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models import (
    Asset, AssetRuntimeMeasurement, CLOSED_WORK_ORDER_STATUSES, ExecutionMode, Form,
    FormExecution, FormTask, FormVersion, Routine, SourceType, TaskResponse, WorkOrder,
    WorkOrderCategory, WorkOrderType,
)


def get_asset(db: Session, asset_id: int) -> Optional[Asset]:
    return db.get(Asset, asset_id)


def latest_measurement(
    db: Session, asset_id: int, at_or_before: Optional[datetime] = None
) -> Optional[AssetRuntimeMeasurement]:
    stmt = select(AssetRuntimeMeasurement).where(AssetRuntimeMeasurement.asset_id == asset_id)
    if at_or_before is not None:
        stmt = stmt.where(AssetRuntimeMeasurement.measurement_datetime <= at_or_before)
    stmt = stmt.order_by(
        AssetRuntimeMeasurement.measurement_datetime.desc(),
        AssetRuntimeMeasurement.measurement_id.desc(),
    ).limit(1)
    return db.execute(stmt).scalars().first()


def measurements_since(db: Session, asset_id: int, since: datetime) -> List[AssetRuntimeMeasurement]:
    stmt = (
        select(AssetRuntimeMeasurement)
        .where(
            AssetRuntimeMeasurement.asset_id == asset_id,
            AssetRuntimeMeasurement.measurement_datetime >= since,
        )
        .order_by(AssetRuntimeMeasurement.measurement_datetime)
    )
    return list(db.execute(stmt).scalars().all())


def automatic_routines(db: Session) -> List[Routine]:
    stmt = (
        select(Routine)
        .where(Routine.is_active.is_(True), Routine.execution_mode == ExecutionMode.AUTOMATIC.value)
        .order_by(Routine.routine_id)
    )
    return list(db.execute(stmt).scalars().all())


def open_work_order_for_routine(db: Session, routine_id: int) -> Optional[WorkOrder]:
    stmt = (
        select(WorkOrder)
        .where(
            WorkOrder.source_type == SourceType.ROUTINE.value,
            WorkOrder.source_id == routine_id,
            WorkOrder.status.notin_(CLOSED_WORK_ORDER_STATUSES),
        )
        .order_by(WorkOrder.work_order_id.desc())
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def count_work_orders_with_prefix(db: Session, prefix: str) -> int:
    return db.scalar(select(func.count(WorkOrder.work_order_id)).where(WorkOrder.wo_number.like(f"{prefix}%"))) or 0


def category_by_code(db: Session, code: str) -> Optional[WorkOrderCategory]:
    return db.execute(select(WorkOrderCategory).where(WorkOrderCategory.code == code)).scalars().first()


def first_active_type(db: Session, category_id: int) -> Optional[WorkOrderType]:
    stmt = (
        select(WorkOrderType)
        .where(WorkOrderType.category_id == category_id, WorkOrderType.is_active.is_(True))
        .order_by(WorkOrderType.work_order_type_id)
        .limit(1)
    )
    return db.execute(stmt).scalars().first()


def draft_tasks(db: Session, form_id: int) -> List[FormTask]:
    stmt = (
        select(FormTask)
        .where(FormTask.form_id == form_id, FormTask.form_version_id.is_(None))
        .order_by(FormTask.position, FormTask.task_id)
    )
    return list(db.execute(stmt).scalars().all())


def max_version_number(db: Session, form_id: int) -> int:
    return db.scalar(select(func.max(FormVersion.version_number)).where(FormVersion.form_id == form_id)) or 0


def routines_for_form(db: Session, form_id: int) -> List[Routine]:
    return list(db.execute(select(Routine).where(Routine.form_id == form_id)).scalars().all())


def count_executions_for_version(db: Session, form_version_id: int) -> int:
    return db.scalar(
        select(func.count(FormExecution.execution_id)).where(FormExecution.form_version_id == form_version_id)
    ) or 0


def response_for_task(db: Session, execution_id: int, task_id: int) -> Optional[TaskResponse]:
    stmt = select(TaskResponse).where(TaskResponse.execution_id == execution_id, TaskResponse.task_id == task_id)
    return db.execute(stmt).scalars().first()


def get_form(db: Session, form_id: int) -> Optional[Form]:
    return db.get(Form, form_id)


def lock_routine(db: Session, routine_id: int) -> Optional[Routine]:
    """Row-lock a routine for the rest of the transaction (no-op on SQLite)."""
    stmt = select(Routine).where(Routine.routine_id == routine_id).with_for_update()
    return db.execute(stmt).scalars().first()
