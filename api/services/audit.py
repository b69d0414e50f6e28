import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models import AuditLog

logger = logging.getLogger(__name__)


def record_event(
    db: Session,
    event_name: str,
    subject_type: str,
    subject_id: Optional[int],
    before_state: Optional[str] = None,
    after_state: Optional[str] = None,
    actor_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Add an audit row to the caller's transaction; the caller commits."""
    entry = AuditLog(
        event_name=event_name,
        subject_type=subject_type,
        subject_id=subject_id,
        before_state=before_state,
        after_state=after_state,
        actor_id=actor_id,
        event_metadata=metadata or {},
    )
    db.add(entry)
    logger.info(
        f"[AUDIT] {event_name} {subject_type}#{subject_id} "
        f"{before_state or '-'} -> {after_state or '-'} by {actor_id}"
    )
    return entry


def list_events(
    db: Session,
    subject_type: Optional[str] = None,
    subject_id: Optional[int] = None,
    event_name: Optional[str] = None,
    limit: int = 100,
) -> List[AuditLog]:
    stmt = select(AuditLog)
    if subject_type:
        stmt = stmt.where(AuditLog.subject_type == subject_type)
    if subject_id is not None:
        stmt = stmt.where(AuditLog.subject_id == subject_id)
    if event_name:
        stmt = stmt.where(AuditLog.event_name == event_name)
    stmt = stmt.order_by(AuditLog.audit_id.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())
