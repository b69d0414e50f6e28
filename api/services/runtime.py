import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from db import repositories
from db.database import atomic
from db.models import AssetRuntimeMeasurement
from api.services.audit import record_event
from api.services.exceptions import NotFoundError, ValidationError
from api.utils.config import DEFAULT_RUNTIME_HOURS_PER_DAY, RUNTIME_AVERAGE_WINDOW_DAYS
from api.utils.util import to_float, utcnow

logger = logging.getLogger(__name__)


class RuntimeService:
    """Append-only runtime readings per asset, and the derived runtime figures."""

    def __init__(self, db: Session):
        self.db = db

    def _require_asset(self, asset_id: int):
        asset = repositories.get_asset(self.db, asset_id)
        if asset is None:
            raise NotFoundError(f"Asset {asset_id} not found")
        return asset

    def record_measurement(
        self,
        asset_id: int,
        hours,
        measured_at: Optional[datetime] = None,
        source: str = "manual",
        user_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> AssetRuntimeMeasurement:
        value = to_float(hours)
        if value is None or math.isnan(value) or math.isinf(value):
            raise ValidationError("Runtime hours must be a number")
        if value < 0:
            raise ValidationError("Runtime hours cannot be negative")
        self._require_asset(asset_id)

        previous = self.current_runtime(asset_id)
        with atomic(self.db):
            measurement = AssetRuntimeMeasurement(
                asset_id=asset_id,
                reported_hours=value,
                measurement_datetime=measured_at or utcnow(),
                source=source,
                user_id=user_id,
                notes=notes,
            )
            self.db.add(measurement)
            self.db.flush()
            record_event(
                self.db, "runtime.recorded", "asset", asset_id,
                before_state=None if previous is None else str(previous),
                after_state=str(value),
                actor_id=user_id,
                metadata={"measurement_id": measurement.measurement_id, "source": source},
            )
        self.db.refresh(measurement)
        if previous is not None and value < previous:
            logger.warning(f"Asset {asset_id} runtime went backwards: {previous} -> {value}")
        logger.info(f"Recorded runtime {value}h for asset {asset_id} (source={source})")
        return measurement

    def current_runtime(self, asset_id: int) -> Optional[float]:
        latest = repositories.latest_measurement(self.db, asset_id)
        return None if latest is None else float(latest.reported_hours)

    def runtime_delta_since(self, asset_id: int, since: datetime) -> Optional[float]:
        current = self.current_runtime(asset_id)
        if current is None:
            return None
        baseline = repositories.latest_measurement(self.db, asset_id, at_or_before=since)
        base_hours = 0.0 if baseline is None else float(baseline.reported_hours)
        return current - base_hours

    def measurement_history(self, asset_id: int, limit: int = 50) -> List[AssetRuntimeMeasurement]:
        self._require_asset(asset_id)
        stmt = (
            select(AssetRuntimeMeasurement)
            .where(AssetRuntimeMeasurement.asset_id == asset_id)
            .order_by(AssetRuntimeMeasurement.measurement_datetime.desc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def average_runtime_per_day(self, asset_id: int, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        window_start = now - timedelta(days=RUNTIME_AVERAGE_WINDOW_DAYS)
        readings = repositories.measurements_since(self.db, asset_id, window_start)
        if len(readings) < 2:
            return DEFAULT_RUNTIME_HOURS_PER_DAY

        total_hours = 0.0
        total_days = 0.0
        for prev, curr in zip(readings, readings[1:]):
            hours = curr.reported_hours - prev.reported_hours
            days = (curr.measurement_datetime - prev.measurement_datetime).total_seconds() / 86400.0
            if hours > 0 and days > 0:
                total_hours += hours
                total_days += days

        if total_days <= 0:
            return DEFAULT_RUNTIME_HOURS_PER_DAY
        return total_hours / total_days
