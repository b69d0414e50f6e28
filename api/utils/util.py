from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import HTTPException


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_float(val) -> Optional[float]:
    """Coerce a numeric payload value to float; None when it is not a number."""
    if isinstance(val, bool) or val is None:
        return None
    if isinstance(val, (int, float)):
        return float(val)
    if isinstance(val, str):
        try:
            return float(val.strip())
        except ValueError:
            return None
    return None


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600.0


def to_http_exception(error) -> HTTPException:
    """Map a service error onto the HTTP status it carries."""
    detail: Any = error.message
    if error.details:
        detail = {"message": error.message, **error.details}
    return HTTPException(status_code=error.status_code, detail=detail)
