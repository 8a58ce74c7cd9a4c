from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from assetdb.database import get_db, get_read_db
from assetdb.security import get_current_active_user, require_roles
from assetdb.apps.accounts import models as account_models
from assetdb.apps.stock import schemas as stock_schemas

from . import models, schemas, services

router = APIRouter(prefix="/rma", tags=["rma"])

RMA_STATUS_ROLES = [
    account_models.AccountRole.ADMIN,
    account_models.AccountRole.SUPERVISOR,
    account_models.AccountRole.DISPATCHER,
    account_models.AccountRole.L1_ENGINEER,
    account_models.AccountRole.L2_ENGINEER,
]


@router.get("", response_model=schemas.RMAListResponse)
def list_rmas(
    status_filter: Optional[models.RMAStatusEnum] = Query(None, alias="status"),
    site_id: Optional[int] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_cases(db, status=status_filter, site_id=site_id, page=page, limit=limit)


@router.post("", response_model=schemas.RMARead, status_code=status.HTTP_201_CREATED)
def create_rma(
    payload: schemas.RMACreate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    case = services.create_case(db, payload=payload, actor=current_user)
    db.commit()
    db.refresh(case)
    return services.effective_case_view(case)


@router.get("/ticket/{ticket_id}", response_model=schemas.RMARead)
def get_rma_by_ticket(
    ticket_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.get_case_by_ticket(db, ticket_id=ticket_id)


@router.get("/asset/{asset_id}/history", response_model=List[schemas.RMARead])
def get_rma_history_by_asset(
    asset_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.get_case_history_by_asset(db, asset_id=asset_id)


@router.get("/{rma_id}", response_model=schemas.RMARead)
def get_rma(
    rma_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.get_case_view(db, rma_id=rma_id)


@router.get("/{rma_id}/movements", response_model=List[stock_schemas.StockMovementLogRead])
def list_rma_movements(
    rma_id: int,
    db: Session = Depends(get_read_db),
    current_user: account_models.User = Depends(get_current_active_user),
):
    return services.list_case_movements(db, rma_id=rma_id)


@router.patch("/{rma_id}/status", response_model=schemas.RMARead)
def update_rma_status(
    rma_id: int,
    payload: schemas.RMAStatusUpdate,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*RMA_STATUS_ROLES)),
):
    case = services.advance_status(db, rma_id=rma_id, payload=payload, actor=current_user)
    db.commit()
    db.refresh(case)
    return services.effective_case_view(case)


@router.post("/{rma_id}/confirm-installation", response_model=schemas.RMARead)
def confirm_installation(
    rma_id: int,
    payload: schemas.ConfirmInstallation,
    db: Session = Depends(get_db),
    current_user: account_models.User = Depends(require_roles(*RMA_STATUS_ROLES)),
):
    case = services.confirm_installation(db, rma_id=rma_id, payload=payload, actor=current_user)
    db.commit()
    db.refresh(case)
    return services.effective_case_view(case)
