from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
import logging

from db.database import atomic, get_db
from db.models import User
from api.schemas import LoginRequest, LoginResponse, TokenResponse, UserResponse
from api.services.exceptions import MaintenanceError
from api.services.users import authenticate, user_to_response
from api.utils.util import to_http_exception
from api.utils.config import ACCESS_TOKEN_EXPIRE_MINUTES
from auth.auth import active_token, get_current_user, security

logger = logging.getLogger(__name__)

users_router = APIRouter()


# --- Authentication ---
@users_router.post(
    "/login",
    summary="User login",
    description="Authenticate user and generate access token for API access. Accepts JSON body only.",
    response_model=LoginResponse,
    response_description="Access token and user info",
)
async def login_for_access_token(
    login_data: LoginRequest = Body(
        ..., example={"email": "user@example.com", "password": "yourpassword"}
    ),
    db: Session = Depends(get_db),
):
    try:
        user, access_token = authenticate(db, login_data.email, login_data.password)
    except MaintenanceError as e:
        logger.warning(f"Failed login for {login_data.email}: {e.message}")
        raise HTTPException(status_code=401, detail=e.message)
    return LoginResponse(
        token=TokenResponse(access_token=access_token, expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60),
        user=UserResponse(**user_to_response(db, user)),
    )


@users_router.post("/logout")
async def logout(
    current_user: User = Depends(get_current_user),
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
):
    """Revoke the bearer token used for this request."""
    token = active_token(db, credentials.credentials)
    if token is None or token.user_id != current_user.user_id:
        raise HTTPException(status_code=404, detail="Token not found or already revoked")
    try:
        with atomic(db):
            token.revoked = True
    except MaintenanceError as e:
        raise to_http_exception(e)
    logger.info(f"User {current_user.email} logged out")
    return {"message": "Successfully logged out"}


@users_router.get("/users/me", response_model=UserResponse)
async def read_current_user(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return UserResponse(**user_to_response(db, current_user))
