from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session
import logging

from db.database import get_db
from db.models import User, Token
from api.utils.config import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALGORITHM, JWT_SECRET_KEY
from api.utils.util import utcnow

security = HTTPBearer()

logger = logging.getLogger(__name__)


def create_access_token(user_id: int, claims: Dict[str, Any],
                        expires_delta: Optional[timedelta] = None) -> Tuple[str, datetime]:
    """Sign a bearer token for the user; returns the token and its expiry."""
    expires_at = utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {**claims, "sub": str(user_id), "exp": expires_at}
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM), expires_at


def decode_user_id(token: str) -> Optional[int]:
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        return int(payload["sub"])
    except (JWTError, KeyError, ValueError) as e:
        logger.warning(f"[AUTH] Rejected bearer token: {e}")
        return None


def active_token(db: Session, token: str) -> Optional[Token]:
    """Stored token row, unless it was revoked at logout or has expired."""
    row = (
        db.query(Token)
        .filter(Token.access_token == token, Token.revoked.is_(False))
        .first()
    )
    if row is not None and row.expires_at is not None and row.expires_at <= utcnow():
        return None
    return row


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    token = credentials.credentials
    user_id = decode_user_id(token)
    if user_id is None:
        raise unauthorized

    stored = active_token(db, token)
    if stored is None or stored.user_id != user_id:
        logger.warning(f"[AUTH] Token for user {user_id} is unknown, revoked or expired")
        raise unauthorized

    user = db.get(User, user_id)
    if user is None or not user.activated:
        logger.warning(f"[AUTH] No active user for user_id: {user_id}")
        raise unauthorized
    return user
