from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from assetdb.apps.assets import models as asset_models
from assetdb.errors import NotFoundError

from . import models

logger = logging.getLogger(__name__)

StatusLike = Union[asset_models.AssetStatusEnum, str, None]

_UNSET = object()


def _status_value(value: StatusLike) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, asset_models.AssetStatusEnum):
        return value.value
    return str(value)


def asset_snapshot(asset: asset_models.Asset) -> Dict[str, Any]:
    return {
        "asset_code": asset.asset_code,
        "asset_type": asset.asset_type,
        "make": asset.make,
        "model": asset.model,
        "serial_number": asset.serial_number,
    }


def log_movement(
    db: Session,
    *,
    asset: asset_models.Asset,
    movement_type: models.StockMovementTypeEnum,
    from_site_id: Optional[int],
    to_site_id: Optional[int],
    from_status: StatusLike,
    to_status: StatusLike,
    performed_by_user_id: Optional[str],
    rma_id: Optional[int] = None,
    ticket_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> models.StockMovementLog:
    entry = models.StockMovementLog(
        asset_id=asset.id,
        movement_type=movement_type,
        from_site_id=from_site_id,
        to_site_id=to_site_id,
        from_status=_status_value(from_status),
        to_status=_status_value(to_status),
        rma_id=rma_id,
        ticket_id=ticket_id,
        performed_by_user_id=performed_by_user_id,
        notes=notes,
        asset_snapshot=asset_snapshot(asset),
        created_at=datetime.utcnow(),
    )
    db.add(entry)
    db.flush()
    logger.info(
        "Stock movement logged",
        extra={
            "asset_id": asset.id,
            "movement_type": movement_type.value,
            "rma_id": rma_id,
            "from_status": entry.from_status,
            "to_status": entry.to_status,
        },
    )
    return entry


def move_asset(
    db: Session,
    *,
    asset: asset_models.Asset,
    movement_type: models.StockMovementTypeEnum,
    performed_by_user_id: Optional[str],
    to_status: Optional[asset_models.AssetStatusEnum] = None,
    to_site_id: Optional[int] = None,
    reserved_by_rma_id: Any = _UNSET,
    location_description: Any = _UNSET,
    rma_id: Optional[int] = None,
    ticket_id: Optional[int] = None,
    notes: Optional[str] = None,
) -> models.StockMovementLog:
    """
    Apply a status and/or site change to ``asset`` and write its ledger row.

    Every asset mutation made by the RMA engine goes through here, so each
    change is paired with exactly one ledger entry.
    """
    from_status = asset.status
    from_site_id = asset.site_id

    if to_status is not None:
        asset.status = to_status
    if to_site_id is not None:
        asset.site_id = to_site_id
    if reserved_by_rma_id is not _UNSET:
        asset.reserved_by_rma_id = reserved_by_rma_id
    if location_description is not _UNSET:
        asset.location_description = location_description
    db.add(asset)

    return log_movement(
        db,
        asset=asset,
        movement_type=movement_type,
        from_site_id=from_site_id,
        to_site_id=asset.site_id,
        from_status=from_status,
        to_status=asset.status,
        performed_by_user_id=performed_by_user_id,
        rma_id=rma_id,
        ticket_id=ticket_id,
        notes=notes,
    )


def _filtered_query(
    db: Session,
    *,
    site_id: Optional[int] = None,
    asset_id: Optional[int] = None,
    asset_type: Optional[str] = None,
    movement_type: Optional[models.StockMovementTypeEnum] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
):
    Log = models.StockMovementLog
    query = db.query(Log)
    if site_id is not None:
        query = query.filter(or_(Log.from_site_id == site_id, Log.to_site_id == site_id))
    if asset_id is not None:
        query = query.filter(Log.asset_id == asset_id)
    if asset_type:
        query = query.join(asset_models.Asset, asset_models.Asset.id == Log.asset_id).filter(
            asset_models.Asset.asset_type == asset_type
        )
    if movement_type is not None:
        query = query.filter(Log.movement_type == movement_type)
    if from_date is not None:
        query = query.filter(Log.created_at >= from_date)
    if to_date is not None:
        query = query.filter(Log.created_at <= to_date)
    return query


def _count_by_type(query) -> Dict[str, int]:
    Log = models.StockMovementLog
    rows = query.with_entities(Log.movement_type, func.count(Log.id)).group_by(Log.movement_type).all()
    counts: Dict[str, int] = {}
    for movement_type, count in rows:
        key = movement_type.value if isinstance(movement_type, models.StockMovementTypeEnum) else str(movement_type)
        counts[key] = int(count)
    return counts


def list_movement_logs(
    db: Session,
    *,
    site_id: Optional[int] = None,
    asset_id: Optional[int] = None,
    asset_type: Optional[str] = None,
    movement_type: Optional[models.StockMovementTypeEnum] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 50,
) -> Dict[str, Any]:
    page = max(page, 1)
    limit = max(min(limit, 500), 1)
    query = _filtered_query(
        db,
        site_id=site_id,
        asset_id=asset_id,
        asset_type=asset_type,
        movement_type=movement_type,
        from_date=from_date,
        to_date=to_date,
    )
    total = query.count()
    data = (
        query.order_by(models.StockMovementLog.created_at.desc(), models.StockMovementLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": data,
        "type_counts": _count_by_type(query),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if total else 0,
        },
    }


def movement_stats(
    db: Session,
    *,
    site_id: Optional[int] = None,
    days: int = 30,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    start = (now or datetime.utcnow()) - timedelta(days=days)
    query = _filtered_query(db, site_id=site_id, from_date=start)
    recent = (
        query.order_by(models.StockMovementLog.created_at.desc(), models.StockMovementLog.id.desc())
        .limit(10)
        .all()
    )
    return {"stats": _count_by_type(query), "recent_movements": recent}


def list_asset_movements(db: Session, *, asset_id: int) -> List[models.StockMovementLog]:
    if not db.query(asset_models.Asset.id).filter(asset_models.Asset.id == asset_id).first():
        raise NotFoundError(f"Asset {asset_id} not found.")
    return (
        db.query(models.StockMovementLog)
        .filter(models.StockMovementLog.asset_id == asset_id)
        .order_by(models.StockMovementLog.created_at.asc(), models.StockMovementLog.id.asc())
        .all()
    )


def asset_replacement_history(db: Session, *, asset_id: int) -> List[Dict[str, Any]]:
    """Replacements installed on a slot, newest first."""
    from assetdb.apps.rma import models as rma_models

    if not db.query(asset_models.Asset.id).filter(asset_models.Asset.id == asset_id).first():
        raise NotFoundError(f"Asset {asset_id} not found.")

    RMA = rma_models.RMARequest
    cases = (
        db.query(RMA)
        .filter(
            RMA.original_asset_id == asset_id,
            RMA.replacement_track_status == rma_models.ReplacementTrackStatusEnum.INSTALLED,
        )
        .order_by(RMA.installed_at.desc(), RMA.id.desc())
        .all()
    )
    history: List[Dict[str, Any]] = []
    for case in cases:
        history.append(
            {
                "id": case.id,
                "type": "RMA",
                "case_number": case.rma_number,
                "ticket_id": case.ticket_id,
                "date": case.installed_at,
                "old_details": case.original_details_snapshot,
                "new_details": case.replacement_details,
                "performed_by": case.installed_by.full_name if case.installed_by else None,
                "remarks": case.request_reason,
            }
        )
    return history
