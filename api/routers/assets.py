from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session
import logging

from db.database import atomic, get_db
from db.models import Area, Asset, Plant, Sector, User
from api.schemas import (
    AreaCreate, AssetCreate, AssetResponse, HierarchyResponse, PlantCreate,
    RuntimeMeasurementCreate, RuntimeMeasurementResponse, RuntimeSummaryResponse, SectorCreate,
)
from api.services.exceptions import MaintenanceError
from api.services.runtime import RuntimeService
from api.utils.util import to_http_exception
from auth.auth import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["assets"])


def _asset_response(asset: Asset, runtime: RuntimeService) -> AssetResponse:
    response = AssetResponse.model_validate(asset)
    response.current_runtime_hours = runtime.current_runtime(asset.asset_id)
    return response


@router.post("/plants", response_model=HierarchyResponse, status_code=status.HTTP_201_CREATED)
async def create_plant(
    payload: PlantCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with atomic(db):
        plant = Plant(name=payload.name)
        db.add(plant)
    return HierarchyResponse(id=plant.plant_id, name=plant.name)


@router.post("/areas", response_model=HierarchyResponse, status_code=status.HTTP_201_CREATED)
async def create_area(
    payload: AreaCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if db.get(Plant, payload.plant_id) is None:
        raise HTTPException(status_code=404, detail="Plant not found")
    with atomic(db):
        area = Area(plant_id=payload.plant_id, name=payload.name)
        db.add(area)
    return HierarchyResponse(id=area.area_id, name=area.name, parent_id=area.plant_id)


@router.post("/sectors", response_model=HierarchyResponse, status_code=status.HTTP_201_CREATED)
async def create_sector(
    payload: SectorCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if db.get(Area, payload.area_id) is None:
        raise HTTPException(status_code=404, detail="Area not found")
    with atomic(db):
        sector = Sector(area_id=payload.area_id, name=payload.name)
        db.add(sector)
    return HierarchyResponse(id=sector.sector_id, name=sector.name, parent_id=sector.area_id)


@router.post("/assets", response_model=AssetResponse, status_code=status.HTTP_201_CREATED)
async def create_asset(
    payload: AssetCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if db.execute(select(Asset).where(Asset.tag == payload.tag)).scalar_one_or_none():
        raise HTTPException(status_code=422, detail=f"Asset tag {payload.tag} already exists")
    sector = db.get(Sector, payload.sector_id) if payload.sector_id else None
    if payload.sector_id and sector is None:
        raise HTTPException(status_code=404, detail="Sector not found")
    with atomic(db):
        asset = Asset(**payload.model_dump())
        if sector is not None:
            # placement is derived from the most specific level given
            asset.area_id = sector.area_id
            asset.plant_id = sector.area.plant_id
        db.add(asset)
    db.refresh(asset)
    logger.info(f"Created asset {asset.tag} (id={asset.asset_id})")
    return _asset_response(asset, RuntimeService(db))


@router.get("/assets", response_model=List[AssetResponse])
async def list_assets(
    plant_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    stmt = select(Asset).where(Asset.active.is_(True))
    if plant_id is not None:
        stmt = stmt.where(Asset.plant_id == plant_id)
    runtime = RuntimeService(db)
    return [_asset_response(a, runtime) for a in db.execute(stmt.order_by(Asset.tag)).scalars().all()]


@router.get("/assets/{asset_id}", response_model=AssetResponse)
async def get_asset(
    asset_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    asset = db.get(Asset, asset_id)
    if asset is None:
        raise HTTPException(status_code=404, detail="Asset not found")
    return _asset_response(asset, RuntimeService(db))


@router.post(
    "/assets/{asset_id}/runtime",
    response_model=RuntimeMeasurementResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_runtime(
    asset_id: int,
    payload: RuntimeMeasurementCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Append a runtime reading. Readings are never edited or deleted."""
    try:
        return RuntimeService(db).record_measurement(
            asset_id,
            payload.reported_hours,
            measured_at=payload.measurement_datetime,
            source=payload.source,
            user_id=current_user.user_id,
            notes=payload.notes,
        )
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("/assets/{asset_id}/runtime", response_model=List[RuntimeMeasurementResponse])
async def runtime_history(
    asset_id: int,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return RuntimeService(db).measurement_history(asset_id, limit)
    except MaintenanceError as e:
        raise to_http_exception(e)


@router.get("/assets/{asset_id}/runtime/summary", response_model=RuntimeSummaryResponse)
async def runtime_summary(
    asset_id: int,
    since: Optional[datetime] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if db.get(Asset, asset_id) is None:
        raise HTTPException(status_code=404, detail="Asset not found")
    runtime = RuntimeService(db)
    return RuntimeSummaryResponse(
        asset_id=asset_id,
        current_runtime_hours=runtime.current_runtime(asset_id),
        runtime_since=runtime.runtime_delta_since(asset_id, since) if since else None,
        average_runtime_per_day=runtime.average_runtime_per_day(asset_id),
    )
