import logging
import threading
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from db import repositories
from db.database import atomic
from db.models import Routine, WorkOrder
from api.services.exceptions import MaintenanceError
from api.services.routines import RoutineService, hours_until_due
from api.utils.util import utcnow

logger = logging.getLogger(__name__)

# One scan per process at a time
_scan_lock = threading.Lock()


class WorkOrderGenerationService:
    """Scans automatic routines and opens one work order per due routine."""

    def __init__(self, db: Session):
        self.db = db
        self.routines = RoutineService(db)

    def generate_due_work_orders(self, now: Optional[datetime] = None) -> List[WorkOrder]:
        if not _scan_lock.acquire(blocking=False):
            logger.warning("Work order generation already running; skipping this run")
            return []
        try:
            return self._scan(now or utcnow())
        finally:
            _scan_lock.release()

    def _scan(self, now: datetime) -> List[WorkOrder]:
        routines = repositories.automatic_routines(self.db)
        logger.info(f"Checking {len(routines)} automatic routines for work order generation")

        generated: List[WorkOrder] = []
        for routine in routines:
            try:
                work_order = self._process_routine(routine, now)
            except MaintenanceError as e:
                logger.error(
                    f"Failed to generate work order for routine {routine.routine_id} ({routine.name}): {e.message}",
                    exc_info=True,
                )
                continue
            if work_order is not None:
                generated.append(work_order)

        logger.info(f"Work order generation finished: {len(generated)} generated")
        return generated

    def _process_routine(self, routine: Routine, now: datetime) -> Optional[WorkOrder]:
        current = self.routines.current_runtime(routine)
        if not self.routines.should_generate_work_order(routine, now):
            self._log_skip(routine, current, now)
            return None

        # The open-order check and the insert share one transaction holding the routine row
        with atomic(self.db):
            repositories.lock_routine(self.db, routine.routine_id)
            open_order = repositories.open_work_order_for_routine(self.db, routine.routine_id)
            if open_order is not None:
                logger.info(
                    f"Routine {routine.routine_id} ({routine.name}) skipped: open work order "
                    f"{open_order.wo_number} in status {open_order.status}"
                )
                return None
            work_order = self.routines.generate_work_order(routine, now=now)
        self.db.refresh(work_order)
        logger.info(
            f"Generated work order {work_order.wo_number} for routine {routine.routine_id} "
            f"({routine.name}), status {work_order.status}"
        )
        return work_order

    def _log_skip(self, routine: Routine, current: Optional[float], now: datetime) -> None:
        hours = hours_until_due(routine, current, now)
        reasons = []
        if not routine.is_active:
            reasons.append("routine inactive")
        if hours is None:
            reasons.append("no trigger configured")
        elif hours > routine.advance_generation_hours:
            reasons.append(
                f"{hours:.1f}h until due exceeds advance window of {routine.advance_generation_hours}h"
            )
        logger.info(f"Routine {routine.routine_id} ({routine.name}) skipped: {', '.join(reasons) or 'not due'}")
