from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from assetdb.apps.stock.schemas import Pagination

from .models import (
    InstallationStatusEnum,
    InstallTrackEnum,
    ItemSendRouteEnum,
    RepairedItemDestinationEnum,
    RepairTrackStatusEnum,
    ReplacementSourceEnum,
    ReplacementTrackStatusEnum,
    RMAStatusEnum,
    StockSourceEnum,
)


class LogisticsDetails(BaseModel):
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    shipped_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    remarks: Optional[str] = None


class ReplacementIdentity(BaseModel):
    serial_number: str = Field(..., min_length=1)
    mac: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None


class RMACreate(BaseModel):
    ticket_id: int
    site_id: Optional[int] = None
    request_reason: str = Field(..., min_length=1)
    replacement_source: ReplacementSourceEnum = ReplacementSourceEnum.REPAIR_ONLY
    reserved_asset_id: Optional[int] = None
    item_send_route: Optional[ItemSendRouteEnum] = None


class RMAStatusUpdate(BaseModel):
    """
    Advance a case. ``status`` is a case status or an action name
    (``AddToSiteStock``, ``ModifyToRepairAndReplace``); the other fields are
    read only by the targets that need them.
    """

    status: str = Field(..., min_length=1)
    remarks: Optional[str] = None
    expected_version: Optional[int] = None

    logistics: Optional[LogisticsDetails] = None
    vendor_details: Optional[Dict[str, Any]] = None
    item_send_route: Optional[ItemSendRouteEnum] = None
    repaired_item_destination: Optional[RepairedItemDestinationEnum] = None
    destination_site_id: Optional[int] = None

    stock_source: Optional[StockSourceEnum] = None
    source_site_id: Optional[int] = None
    replacement_asset_id: Optional[int] = None

    installed_track: Optional[InstallTrackEnum] = None
    installation_status: InstallationStatusEnum = InstallationStatusEnum.INSTALLED_AND_WORKING
    replacement_details: Optional[ReplacementIdentity] = None
    new_ip_address: Optional[str] = None
    new_user_name: Optional[str] = None
    new_password: Optional[str] = None


class ConfirmInstallation(BaseModel):
    installed_track: InstallTrackEnum
    installation_status: InstallationStatusEnum = InstallationStatusEnum.INSTALLED_AND_WORKING
    remarks: Optional[str] = None
    expected_version: Optional[int] = None
    replacement_details: Optional[ReplacementIdentity] = None
    new_ip_address: Optional[str] = None
    new_user_name: Optional[str] = None
    new_password: Optional[str] = None


class RMATimelineEntryRead(BaseModel):
    id: int
    status: str
    changed_by_user_id: Optional[str] = None
    remarks: Optional[str] = None
    changed_at: datetime

    class Config:
        from_attributes = True


class RMARead(BaseModel):
    id: int
    rma_number: str
    ticket_id: int
    site_id: int
    original_asset_id: int
    reserved_asset_id: Optional[int] = None

    status: RMAStatusEnum
    repair_track_status: Optional[RepairTrackStatusEnum] = None
    replacement_track_status: Optional[ReplacementTrackStatusEnum] = None
    replacement_source: ReplacementSourceEnum
    item_send_route: Optional[ItemSendRouteEnum] = None
    repaired_item_destination: Optional[RepairedItemDestinationEnum] = None
    replacement_stock_source: Optional[StockSourceEnum] = None
    replacement_source_site_id: Optional[int] = None

    original_details_snapshot: Optional[Dict[str, Any]] = None
    replacement_details: Optional[Dict[str, Any]] = None
    logistics_to_service_center: Optional[Dict[str, Any]] = None
    logistics_to_ho: Optional[Dict[str, Any]] = None
    logistics_return_to_site: Optional[Dict[str, Any]] = None
    logistics_replacement_to_site: Optional[Dict[str, Any]] = None
    vendor_details: Optional[Dict[str, Any]] = None

    request_reason: str
    installation_status: InstallationStatusEnum
    is_installation_confirmed: bool
    is_faulty_item_finalized: bool

    requested_by_user_id: Optional[str] = None
    approved_by_user_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    installed_by_user_id: Optional[str] = None
    installed_at: Optional[datetime] = None
    finalized_at: Optional[datetime] = None

    version_id: int
    created_at: datetime
    updated_at: datetime

    timeline: List[RMATimelineEntryRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class RMAListResponse(BaseModel):
    data: List[RMARead]
    ongoing: int
    completed: int
    pagination: Pagination
