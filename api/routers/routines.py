from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from db.database import get_db
from db.models import User
from api.schemas import (
    RoutineCreate, RoutineDueStatus, RoutineResponse, RoutineUpdate, WorkOrderResponse,
)
from api.services.exceptions import MaintenanceError
from api.services.generation import WorkOrderGenerationService
from api.services.routines import RoutineService
from api.services.users import role_required
from api.utils.util import to_http_exception
from auth.auth import get_current_user

router = APIRouter(prefix="/routines", tags=["routines"])


@router.post("", response_model=RoutineResponse, status_code=status.HTTP_201_CREATED)
async def create_routine(
    payload: RoutineCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return RoutineService(db).create_routine(payload.model_dump(), current_user.user_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("", response_model=List[RoutineResponse])
async def list_routines(
    asset_id: Optional[int] = None,
    execution_mode: Optional[str] = None,
    active_only: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return RoutineService(db).list_routines(asset_id, execution_mode, active_only)


@router.post("/generate-due", response_model=List[WorkOrderResponse])
@role_required(["admin", "supervisor"])
async def generate_due_work_orders(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Run the same scan the scheduled job runs."""
    return WorkOrderGenerationService(db).generate_due_work_orders()


@router.get("/{routine_id}", response_model=RoutineResponse)
async def get_routine(
    routine_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return RoutineService(db).get_routine(routine_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.patch("/{routine_id}", response_model=RoutineResponse)
async def update_routine(
    routine_id: int,
    payload: RoutineUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return RoutineService(db).update_routine(
            routine_id, payload.model_dump(exclude_unset=True), current_user.user_id
        )
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("/{routine_id}/status", response_model=RoutineDueStatus)
async def routine_due_status(
    routine_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        service = RoutineService(db)
        return service.due_status(service.get_routine(routine_id))
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post(
    "/{routine_id}/work-orders",
    response_model=WorkOrderResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_routine_work_order(
    routine_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return RoutineService(db).request_work_order(routine_id, current_user.user_id)
    except MaintenanceError as e:
        raise to_http_exception(e)
