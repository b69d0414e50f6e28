from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from db.database import get_db
from db.models import User
from api.schemas import (
    FollowUpRequest, FormExecutionResponse, WorkOrderCreate, WorkOrderReasonRequest,
    WorkOrderResponse, WorkOrderResumeRequest, WorkOrderScheduleRequest, WorkOrderStartResponse,
    WorkOrderStatusLogResponse, WorkOrderTransitionRequest,
)
from api.services.exceptions import MaintenanceError
from api.services.form_execution import FormExecutionService
from api.services.users import role_required
from api.services.work_orders import WorkOrderService
from api.utils.util import to_http_exception
from auth.auth import get_current_user

router = APIRouter(prefix="/work-orders", tags=["work-orders"])


@router.post("", response_model=WorkOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_work_order(
    payload: WorkOrderCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return WorkOrderService(db).create_work_order(payload.model_dump(), current_user.user_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("", response_model=List[WorkOrderResponse])
async def list_work_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    asset_id: Optional[int] = None,
    source_type: Optional[str] = None,
    source_id: Optional[int] = None,
    open_only: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return WorkOrderService(db).list_work_orders(
        status=status_filter,
        asset_id=asset_id,
        source_type=source_type,
        source_id=source_id,
        open_only=open_only,
        skip=skip,
        limit=limit,
    )


@router.get("/status-summary", response_model=Dict[str, int])
@role_required(["admin", "supervisor", "planner"])
async def work_order_status_summary(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return WorkOrderService(db).status_summary()


@router.get("/{work_order_id}", response_model=WorkOrderResponse)
async def get_work_order(
    work_order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return WorkOrderService(db).get_work_order(work_order_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("/{work_order_id}/history", response_model=List[WorkOrderStatusLogResponse])
async def work_order_history(
    work_order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return WorkOrderService(db).status_history(work_order_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{work_order_id}/transition", response_model=WorkOrderResponse)
async def transition_work_order(
    work_order_id: int,
    payload: WorkOrderTransitionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Move a work order along the lifecycle; illegal moves answer 409 and change nothing."""
    try:
        service = WorkOrderService(db)
        if not service.transition_to(work_order_id, payload.new_status, current_user.user_id, payload.reason):
            service.raise_transition_conflict(work_order_id, payload.new_status)
        return service.get_work_order(work_order_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{work_order_id}/approve", response_model=WorkOrderResponse)
@role_required(["admin", "supervisor"])
async def approve_work_order(
    work_order_id: int,
    payload: Optional[WorkOrderReasonRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return WorkOrderService(db).approve(
            work_order_id, current_user.user_id, payload.reason if payload else None
        )
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{work_order_id}/reject", response_model=WorkOrderResponse)
@role_required(["admin", "supervisor"])
async def reject_work_order(
    work_order_id: int,
    payload: WorkOrderReasonRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return WorkOrderService(db).reject(work_order_id, current_user.user_id, payload.reason)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{work_order_id}/schedule", response_model=WorkOrderResponse)
async def schedule_work_order(
    work_order_id: int,
    payload: WorkOrderScheduleRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return WorkOrderService(db).schedule(work_order_id, current_user.user_id, payload.scheduled_start_date)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{work_order_id}/hold", response_model=WorkOrderResponse)
async def hold_work_order(
    work_order_id: int,
    payload: WorkOrderReasonRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return WorkOrderService(db).put_on_hold(work_order_id, current_user.user_id, payload.reason)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{work_order_id}/resume", response_model=WorkOrderResponse)
async def resume_work_order(
    work_order_id: int,
    payload: Optional[WorkOrderResumeRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return WorkOrderService(db).resume(
            work_order_id, current_user.user_id, payload.to_status if payload else None
        )
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{work_order_id}/cancel", response_model=WorkOrderResponse)
async def cancel_work_order(
    work_order_id: int,
    payload: WorkOrderReasonRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return WorkOrderService(db).cancel(work_order_id, current_user.user_id, payload.reason)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{work_order_id}/start", response_model=WorkOrderStartResponse)
async def start_work_order(
    work_order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Start work; when the order carries a form snapshot an execution opens with it."""
    try:
        service = FormExecutionService(db)
        work_order, execution = service.start_for_work_order(work_order_id, current_user.user_id)
        execution_response = None
        if execution is not None:
            execution_response = FormExecutionResponse.model_validate(execution)
            execution_response.progress_percentage = service.progress_percentage(execution)
        return WorkOrderStartResponse(
            work_order=WorkOrderResponse.model_validate(work_order),
            execution=execution_response,
        )
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{work_order_id}/complete", response_model=WorkOrderResponse)
async def complete_work_order(
    work_order_id: int,
    payload: Optional[WorkOrderReasonRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Finish work; refused with the missing tasks while a linked form execution is unanswered."""
    try:
        return WorkOrderService(db).complete(work_order_id, current_user.user_id, payload.reason if payload else None)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{work_order_id}/verify", response_model=WorkOrderResponse)
@role_required(["admin", "supervisor"])
async def verify_work_order(
    work_order_id: int,
    payload: Optional[WorkOrderReasonRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return WorkOrderService(db).verify(work_order_id, current_user.user_id, payload.reason if payload else None)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{work_order_id}/close", response_model=WorkOrderResponse)
@role_required(["admin", "supervisor"])
async def close_work_order(
    work_order_id: int,
    payload: Optional[WorkOrderReasonRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return WorkOrderService(db).close(work_order_id, current_user.user_id, payload.reason if payload else None)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post(
    "/{work_order_id}/follow-up",
    response_model=WorkOrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_follow_up(
    work_order_id: int,
    payload: FollowUpRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return WorkOrderService(db).create_follow_up(work_order_id, payload.description, current_user.user_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{work_order_id}/priority-score", response_model=WorkOrderResponse)
async def refresh_priority_score(
    work_order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return WorkOrderService(db).update_priority_score(work_order_id, current_user.user_id)
    except MaintenanceError as e:
        raise to_http_exception(e)
