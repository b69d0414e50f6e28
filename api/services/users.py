import logging
from functools import wraps
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException
from passlib.hash import pbkdf2_sha256
from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from db.database import atomic
from db.models import Permission, Role, RolePermission, Token, User, UserRole
from auth.auth import create_access_token
from api.services.exceptions import AuthorizationError, NotFoundError, ValidationError
from api.utils.util import utcnow

logger = logging.getLogger(__name__)


def hash_password(password: str) -> str:
    return pbkdf2_sha256.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pbkdf2_sha256.verify(password, password_hash)
    except ValueError:
        logger.warning("Stored password hash is not in a recognised format")
        return False


def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
    return db.execute(select(User).where(User.user_id == user_id)).scalar_one_or_none()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.execute(select(User).where(User.email.ilike(email.strip()))).scalar_one_or_none()


def get_user_roles(db: Session, user_id: int) -> List[str]:
    """Get list of active role names for a user."""
    stmt = (
        select(Role.role_name)
        .join(UserRole, UserRole.role_id == Role.role_id)
        .where(and_(UserRole.user_id == user_id, UserRole.active.is_(True), Role.active.is_(True)))
    )
    return [str(name) for name in db.execute(stmt).scalars().all()]


def get_user_permissions(db: Session, user_id: int) -> List[str]:
    stmt = (
        select(Permission.feature)
        .join(RolePermission, RolePermission.permission_id == Permission.permission_id)
        .join(UserRole, UserRole.role_id == RolePermission.role_id)
        .where(
            and_(
                UserRole.user_id == user_id,
                UserRole.active.is_(True),
                RolePermission.active.is_(True),
                Permission.active.is_(True),
            )
        )
        .distinct()
    )
    return [str(feature) for feature in db.execute(stmt).scalars().all()]


def has_permission(db: Session, user_id: Optional[int], feature: str) -> bool:
    """Check if user has a specific permission."""
    if user_id is None:
        return False
    return feature in get_user_permissions(db, user_id)


def require_permission(db: Session, user_id: Optional[int], feature: str) -> None:
    if not has_permission(db, user_id, feature):
        raise AuthorizationError(f"Permission '{feature}' is required")


def role_required(required_roles):
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, current_user, db, **kwargs):
            role_names = [r.lower() for r in get_user_roles(db, current_user.user_id)]
            allowed_roles = [r.lower() for r in required_roles]
            if not any(role in allowed_roles for role in role_names):
                raise HTTPException(
                    status_code=403,
                    detail=f"User does not have required roles: {', '.join(allowed_roles)}",
                )
            return await func(*args, current_user=current_user, db=db, **kwargs)
        return wrapper
    return decorator


def create_user(
    db: Session,
    username: str,
    email: str,
    password: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    roles: Optional[List[str]] = None,
) -> User:
    if get_user_by_email(db, email) is not None:
        raise ValidationError(f"A user with email {email} already exists")
    with atomic(db):
        user = User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            first_name=first_name,
            last_name=last_name,
        )
        db.add(user)
        db.flush()
        for role_name in roles or []:
            _attach_role(db, user, role_name)
    db.refresh(user)
    logger.info(f"Created user {user.email} (id={user.user_id})")
    return user


def _attach_role(db: Session, user: User, role_name: str) -> None:
    role = db.execute(select(Role).where(Role.role_name == role_name)).scalar_one_or_none()
    if role is None:
        raise NotFoundError(f"Role '{role_name}' not found")
    db.add(UserRole(user_id=user.user_id, role_id=role.role_id, active=True))


def assign_role(db: Session, user_id: int, role_name: str) -> User:
    user = get_user_by_id(db, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    if role_name in get_user_roles(db, user_id):
        return user
    with atomic(db):
        _attach_role(db, user, role_name)
    logger.info(f"Assigned role {role_name} to user {user_id}")
    return user


def authenticate(db: Session, email: str, password: str) -> Tuple[User, str]:
    """Verify credentials and persist a fresh bearer token for the user."""
    user = get_user_by_email(db, email)
    if user is None or not verify_password(password, user.password_hash):
        raise AuthorizationError("Invalid credentials")
    if not user.activated:
        raise AuthorizationError("Account is not activated")

    access_token, expires_at = create_access_token(
        user.user_id, {"email": user.email, "roles": get_user_roles(db, user.user_id)}
    )
    with atomic(db):
        db.add(Token(user_id=user.user_id, access_token=access_token, expires_at=expires_at))
        user.last_login = utcnow()
    logger.info(f"User {user.email} logged in")
    return user, access_token


def user_to_response(db: Session, user: User) -> Dict[str, Any]:
    data = user.to_dict()
    data["roles"] = get_user_roles(db, user.user_id)
    data["permissions"] = get_user_permissions(db, user.user_id)
    return data
