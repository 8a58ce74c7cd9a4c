from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from assetdb.database import get_read_db
from assetdb.security import get_current_active_user
from assetdb.apps.accounts import models as account_models

from . import models, schemas, services

router = APIRouter(prefix="/stock", tags=["stock"])


@router.get("/movement-logs", response_model=schemas.StockMovementLogPage)
def list_movement_logs(
    site_id: Optional[int] = None,
    asset_id: Optional[int] = None,
    asset_type: Optional[str] = None,
    movement_type: Optional[models.StockMovementTypeEnum] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_movement_logs(
        db,
        site_id=site_id,
        asset_id=asset_id,
        asset_type=asset_type,
        movement_type=movement_type,
        from_date=from_date,
        to_date=to_date,
        page=page,
        limit=limit,
    )


@router.get("/movement-stats", response_model=schemas.MovementStatsRead)
def movement_stats(
    site_id: Optional[int] = None,
    days: int = Query(30, ge=1, le=3650),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.movement_stats(db, site_id=site_id, days=days)


@router.get("/assets/{asset_id}/movements", response_model=List[schemas.StockMovementLogRead])
def list_asset_movements(
    asset_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_asset_movements(db, asset_id=asset_id)


@router.get(
    "/assets/{asset_id}/replacement-history",
    response_model=List[schemas.ReplacementHistoryItem],
)
def asset_replacement_history(
    asset_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.asset_replacement_history(db, asset_id=asset_id)
