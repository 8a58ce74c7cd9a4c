from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from .models import StockMovementTypeEnum


class StockMovementLogRead(BaseModel):
    id: int
    asset_id: int
    movement_type: StockMovementTypeEnum
    from_site_id: Optional[int] = None
    to_site_id: Optional[int] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    rma_id: Optional[int] = None
    ticket_id: Optional[int] = None
    performed_by_user_id: Optional[str] = None
    notes: Optional[str] = None
    asset_snapshot: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class StockMovementLogPage(BaseModel):
    data: List[StockMovementLogRead]
    type_counts: Dict[str, int]
    pagination: Pagination


class MovementStatsRead(BaseModel):
    stats: Dict[str, int]
    recent_movements: List[StockMovementLogRead]


class ReplacementHistoryItem(BaseModel):
    id: int
    type: str = "RMA"
    case_number: Optional[str] = None
    ticket_id: Optional[int] = None
    date: Optional[datetime] = None
    old_details: Optional[Dict[str, Any]] = None
    new_details: Optional[Dict[str, Any]] = None
    performed_by: Optional[str] = None
    remarks: Optional[str] = None
