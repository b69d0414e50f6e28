from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from db.database import get_db
from db.models import FormExecution, User
from api.schemas import (
    CompletionValidationResponse, FormExecutionCreate, FormExecutionResponse, TaskResponseCreate,
    TaskResponseResponse, WorkOrderReasonRequest,
)
from api.services.exceptions import MaintenanceError
from api.services.form_execution import FormExecutionService
from api.utils.util import to_http_exception
from auth.auth import get_current_user

router = APIRouter(prefix="/form-executions", tags=["form-executions"])


def _execution_response(service: FormExecutionService, execution: FormExecution) -> FormExecutionResponse:
    response = FormExecutionResponse.model_validate(execution)
    response.progress_percentage = service.progress_percentage(execution)
    return response


@router.post("", response_model=FormExecutionResponse, status_code=status.HTTP_201_CREATED)
async def create_execution(
    payload: FormExecutionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        service = FormExecutionService(db)
        execution = service.create_execution(
            current_user.user_id,
            form_version_id=payload.form_version_id,
            form_id=payload.form_id,
            work_order_id=payload.work_order_id,
        )
        return _execution_response(service, execution)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("", response_model=List[FormExecutionResponse])
async def list_executions(
    form_version_id: Optional[int] = None,
    work_order_id: Optional[int] = None,
    status_filter: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    service = FormExecutionService(db)
    return [
        _execution_response(service, e)
        for e in service.list_executions(form_version_id, work_order_id, status_filter)
    ]


@router.get("/{execution_id}", response_model=FormExecutionResponse)
async def get_execution(
    execution_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        service = FormExecutionService(db)
        return _execution_response(service, service.get_execution(execution_id))
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{execution_id}/start", response_model=FormExecutionResponse)
async def start_execution(
    execution_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        service = FormExecutionService(db)
        return _execution_response(service, service.start(execution_id, current_user.user_id))
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{execution_id}/complete", response_model=FormExecutionResponse)
async def complete_execution(
    execution_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Complete the execution; 409 lists the required tasks still unanswered."""
    try:
        service = FormExecutionService(db)
        return _execution_response(service, service.complete(execution_id, current_user.user_id))
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{execution_id}/cancel", response_model=FormExecutionResponse)
async def cancel_execution(
    execution_id: int,
    payload: Optional[WorkOrderReasonRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        service = FormExecutionService(db)
        execution = service.cancel(execution_id, current_user.user_id, payload.reason if payload else None)
        return _execution_response(service, execution)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{execution_id}/responses", response_model=TaskResponseResponse)
async def record_response(
    execution_id: int,
    payload: TaskResponseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return FormExecutionService(db).record_response(
            execution_id, payload.task_id, payload.response, current_user.user_id
        )
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("/{execution_id}/validation", response_model=CompletionValidationResponse)
async def validate_completion(
    execution_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return FormExecutionService(db).validate_completion(execution_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("/{execution_id}/summary", response_model=Dict[str, int])
async def execution_task_summary(
    execution_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        service = FormExecutionService(db)
        return service.task_summary(service.get_execution(execution_id))
    except MaintenanceError as e:
        raise to_http_exception(e)
