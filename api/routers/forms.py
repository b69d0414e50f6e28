# api/routers/forms.py

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from db.database import get_db
from db.models import User
from api.schemas import (
    FormCreate, FormResponse, FormTaskCreate, FormTaskResponse, FormTaskUpdate, FormVersionResponse,
    InstructionCreate, InstructionResponse, TaskReorderRequest,
)
from api.services.exceptions import MaintenanceError
from api.services.forms import FormService
from api.services.users import role_required
from api.utils.util import to_http_exception
from auth.auth import get_current_user

router = APIRouter(
    prefix="/forms",
    tags=["forms"]
)


@router.post("", response_model=FormResponse, status_code=status.HTTP_201_CREATED)
async def create_form(
    payload: FormCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return FormService(db).create_form(payload.name, payload.description, current_user.user_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("", response_model=List[FormResponse])
async def list_forms(
    active_only: bool = True,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return FormService(db).list_forms(active_only)


@router.get("/{form_id}", response_model=FormResponse)
async def get_form(
    form_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return FormService(db).get_form(form_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


# Draft tasks
@router.get("/{form_id}/tasks", response_model=List[FormTaskResponse])
async def list_draft_tasks(
    form_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return FormService(db).draft_tasks(form_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{form_id}/tasks", response_model=FormTaskResponse, status_code=status.HTTP_201_CREATED)
async def add_task(
    form_id: int,
    payload: FormTaskCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return FormService(db).add_task(form_id, payload.model_dump())
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{form_id}/tasks/reorder", response_model=List[FormTaskResponse])
async def reorder_tasks(
    form_id: int,
    payload: TaskReorderRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return FormService(db).reorder_tasks(form_id, payload.task_ids)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.patch("/{form_id}/tasks/{task_id}", response_model=FormTaskResponse)
async def update_task(
    form_id: int,
    task_id: int,
    payload: FormTaskUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return FormService(db).update_task(form_id, task_id, payload.model_dump(exclude_unset=True))
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.delete("/{form_id}/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    form_id: int,
    task_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        FormService(db).delete_task(form_id, task_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post(
    "/{form_id}/tasks/{task_id}/instructions",
    response_model=InstructionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_instruction(
    form_id: int,
    task_id: int,
    payload: InstructionCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return FormService(db).add_instruction(form_id, task_id, payload.model_dump())
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.delete(
    "/{form_id}/tasks/{task_id}/instructions/{instruction_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_instruction(
    form_id: int,
    task_id: int,
    instruction_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        FormService(db).delete_instruction(form_id, task_id, instruction_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


# Versions
@router.post("/{form_id}/publish", response_model=FormVersionResponse, status_code=status.HTTP_201_CREATED)
@role_required(["admin", "supervisor"])
async def publish_form(
    form_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return FormService(db).publish(form_id, current_user.user_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("/{form_id}/versions", response_model=List[FormVersionResponse])
async def list_versions(
    form_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return FormService(db).list_versions(form_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("/{form_id}/versions/compare")
async def compare_versions(
    form_id: int,
    v1: int = Query(..., description="Older version id"),
    v2: int = Query(..., description="Newer version id"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, Any]:
    try:
        return FormService(db).compare_versions(form_id, v1, v2)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("/{form_id}/versions/{version_id}", response_model=FormVersionResponse)
async def get_version(
    form_id: int,
    version_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return FormService(db).get_version(form_id, version_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.post("/{form_id}/versions/{version_id}/deactivate", response_model=FormVersionResponse)
@role_required(["admin", "supervisor"])
async def deactivate_version(
    form_id: int,
    version_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return FormService(db).deactivate(form_id, version_id, current_user.user_id)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("/{form_id}/draft-changes")
async def draft_changes(
    form_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> Dict[str, bool]:
    try:
        return {"has_draft_changes": FormService(db).has_draft_changes(form_id)}
    except MaintenanceError as e:
        raise to_http_exception(e)
