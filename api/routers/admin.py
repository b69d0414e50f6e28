from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session
import logging

from db.database import get_db
from db.models import Role, User
from api.schemas import AuditLogResponse, RoleAssignment, UserCreate, UserResponse
from api.services.audit import list_events
from api.services.exceptions import MaintenanceError
from api.services.users import assign_role, create_user, role_required, user_to_response
from api.utils.util import to_http_exception
from auth.auth import get_current_user

admin_router = APIRouter()

logger = logging.getLogger(__name__)


# --- User Management ---
@admin_router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
@role_required(["admin"])
async def create_new_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        user = create_user(
            db,
            username=payload.username,
            email=payload.email,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
            roles=payload.roles,
        )
    except MaintenanceError as e:
        raise to_http_exception(e)
    logger.info(f"User {user.user_id} created by admin {current_user.user_id}")
    return UserResponse(**user_to_response(db, user))


@admin_router.post("/users/{user_id}/roles", response_model=UserResponse)
@role_required(["admin"])
async def add_user_role(
    user_id: int,
    payload: RoleAssignment,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        user = assign_role(db, user_id, payload.role_name)
    except MaintenanceError as e:
        raise to_http_exception(e)
    return UserResponse(**user_to_response(db, user))


@admin_router.get("/roles", response_model=List[str])
@role_required(["admin"])
async def list_roles(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return list(db.execute(select(Role.role_name).order_by(Role.role_name)).scalars().all())


# --- Audit ---
@admin_router.get("/audit-logs", response_model=List[AuditLogResponse])
@role_required(["admin", "supervisor"])
async def get_audit_logs(
    subject_type: Optional[str] = None,
    subject_id: Optional[int] = None,
    event_name: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return list_events(db, subject_type, subject_id, event_name, limit)
