from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from assetdb.database import Base
from assetdb.utils.append_only import protect_append_only


def _utcnow() -> datetime:
    return datetime.utcnow()


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class RMAStatusEnum(str, enum.Enum):
    REQUESTED = "Requested"
    APPROVED = "Approved"
    REJECTED = "Rejected"

    # legacy statuses, kept for old cases and old clients
    ORDERED = "Ordered"
    DISPATCHED = "Dispatched"
    RECEIVED = "Received"

    # repair track, direct to service center
    SENT_TO_SERVICE_CENTER = "SentToServiceCenter"
    REPAIRED_RECEIVED_AT_SITE = "RepairedReceivedAtSite"

    # repair track, via head office
    SENT_TO_HO = "SentToHO"
    RECEIVED_AT_HO = "ReceivedAtHO"
    SENT_FOR_REPAIR_FROM_HO = "SentForRepairFromHO"
    ITEM_REPAIRED_AT_HO = "ItemRepairedAtHO"
    RETURN_SHIPPED_TO_SITE = "ReturnShippedToSite"
    RECEIVED_AT_SITE = "ReceivedAtSite"

    # repair track endings
    ADDED_TO_SITE_STOCK = "AddedToSiteStock"
    COMPLETED_TO_HO_STOCK = "CompletedToHOStock"
    REPAIR_INSTALLED = "RepairInstalled"

    # replacement track
    REPLACEMENT_REQUISITION_RAISED = "ReplacementRequisitionRaised"
    REPLACEMENT_DISPATCHED = "ReplacementDispatched"
    REPLACEMENT_RECEIVED_AT_SITE = "ReplacementReceivedAtSite"
    REPLACEMENT_INSTALLED = "ReplacementInstalled"

    INSTALLED = "Installed"


class RMAActionEnum(str, enum.Enum):
    """Advance targets that are actions rather than statuses the case can hold."""

    ADD_TO_SITE_STOCK = "AddToSiteStock"
    MODIFY_TO_REPAIR_AND_REPLACE = "ModifyToRepairAndReplace"


class RepairTrackStatusEnum(str, enum.Enum):
    PENDING = "Pending"
    SENT_TO_SERVICE_CENTER = "SentToServiceCenter"
    SENT_TO_HO = "SentToHO"
    RECEIVED_AT_HO = "ReceivedAtHO"
    SENT_FOR_REPAIR = "SentForRepair"
    REPAIRED = "Repaired"
    RETURN_SHIPPED = "ReturnShipped"
    RECEIVED_AT_SITE = "ReceivedAtSite"
    INSTALLED = "Installed"
    COMPLETED_TO_HO_STOCK = "CompletedToHOStock"
    ADDED_TO_SITE_STOCK = "AddedToSiteStock"


class ReplacementTrackStatusEnum(str, enum.Enum):
    NOT_REQUIRED = "NotRequired"
    PENDING = "Pending"
    REQUISITION_RAISED = "RequisitionRaised"
    DISPATCHED = "Dispatched"
    RECEIVED = "Received"
    INSTALLED = "Installed"


class ReplacementSourceEnum(str, enum.Enum):
    REPAIR_ONLY = "RepairOnly"
    REPAIR_AND_REPLACE = "RepairAndReplace"


class ItemSendRouteEnum(str, enum.Enum):
    SERVICE_CENTER = "ServiceCenter"
    HEAD_OFFICE = "HeadOffice"


class RepairedItemDestinationEnum(str, enum.Enum):
    HO_STOCK = "HOStock"
    BACK_TO_SITE = "BackToSite"


class StockSourceEnum(str, enum.Enum):
    HO_STOCK = "HOStock"
    SITE_STOCK = "SiteStock"
    MARKET = "Market"


class InstallationStatusEnum(str, enum.Enum):
    PENDING = "Pending"
    INSTALLED_AND_WORKING = "Installed & Working"
    INSTALLED_NOT_WORKING = "Installed but Not Working"
    NOT_INSTALLED = "Not Installed"


class InstallTrackEnum(str, enum.Enum):
    REPAIR = "repair"
    REPLACEMENT = "replacement"


# ---------------------------------------------------------------------------
# CASE
# ---------------------------------------------------------------------------


class RMARequest(Base):
    """
    One RMA lifecycle for a faulty asset.

    ``original_asset_id`` is the slot at the site. ``reserved_asset_id`` is the
    spare; once the replacement is installed the two have exchanged identities
    and the spare row stands for the faulty unit.
    """

    __tablename__ = "rma_requests"
    __table_args__ = (
        UniqueConstraint("rma_number", name="uq_rma_requests_number"),
        Index("ix_rma_requests_ticket", "ticket_id", "created_at"),
        Index("ix_rma_requests_site_status", "site_id", "status"),
        Index("ix_rma_requests_original_asset", "original_asset_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    rma_number = Column(String(32), nullable=False, index=True)

    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="RESTRICT"), nullable=False, index=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False, index=True)
    original_asset_id = Column(Integer, ForeignKey("assets.id", ondelete="RESTRICT"), nullable=False)
    reserved_asset_id = Column(Integer, ForeignKey("assets.id", ondelete="SET NULL"), nullable=True, index=True)

    status = Column(
        SAEnum(RMAStatusEnum, name="rma_status_enum", native_enum=False),
        nullable=False,
        default=RMAStatusEnum.REQUESTED,
        index=True,
    )
    repair_track_status = Column(
        SAEnum(RepairTrackStatusEnum, name="rma_repair_track_enum", native_enum=False),
        nullable=True,
    )
    replacement_track_status = Column(
        SAEnum(ReplacementTrackStatusEnum, name="rma_replacement_track_enum", native_enum=False),
        nullable=True,
    )
    replacement_source = Column(
        SAEnum(ReplacementSourceEnum, name="rma_replacement_source_enum", native_enum=False),
        nullable=False,
        default=ReplacementSourceEnum.REPAIR_ONLY,
    )

    item_send_route = Column(
        SAEnum(ItemSendRouteEnum, name="rma_item_send_route_enum", native_enum=False),
        nullable=True,
    )
    repaired_item_destination = Column(
        SAEnum(RepairedItemDestinationEnum, name="rma_repaired_destination_enum", native_enum=False),
        nullable=True,
    )
    replacement_stock_source = Column(
        SAEnum(StockSourceEnum, name="rma_stock_source_enum", native_enum=False),
        nullable=True,
    )
    replacement_source_site_id = Column(Integer, ForeignKey("sites.id", ondelete="SET NULL"), nullable=True)

    original_details_snapshot = Column(JSON, nullable=True)
    replacement_details = Column(JSON, nullable=True)

    logistics_to_service_center = Column(JSON, nullable=True)
    logistics_to_ho = Column(JSON, nullable=True)
    logistics_return_to_site = Column(JSON, nullable=True)
    logistics_replacement_to_site = Column(JSON, nullable=True)
    vendor_details = Column(JSON, nullable=True)

    request_reason = Column(Text, nullable=False)

    installation_status = Column(
        SAEnum(InstallationStatusEnum, name="rma_installation_status_enum", native_enum=False),
        nullable=False,
        default=InstallationStatusEnum.PENDING,
    )
    is_installation_confirmed = Column(Boolean, nullable=False, default=False)
    is_faulty_item_finalized = Column(Boolean, nullable=False, default=False)

    requested_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    installed_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    installed_at = Column(DateTime(timezone=True), nullable=True)
    finalized_at = Column(DateTime(timezone=True), nullable=True)

    version_id = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    timeline = relationship(
        "RMATimelineEntry",
        back_populates="rma",
        order_by="RMATimelineEntry.id",
        lazy="selectin",
    )
    installed_by = relationship("User", foreign_keys=[installed_by_user_id], lazy="joined")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<RMARequest id={self.id} number={self.rma_number} status={self.status}>"


class RMATimelineEntry(Base):
    """Append-only history of a case. One row per accepted operation."""

    __tablename__ = "rma_timeline_entries"
    __table_args__ = (Index("ix_rma_timeline_rma_time", "rma_id", "changed_at"),)

    id = Column(Integer, primary_key=True, index=True)
    rma_id = Column(Integer, ForeignKey("rma_requests.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = Column(String(64), nullable=False)
    changed_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    remarks = Column(Text, nullable=True)
    changed_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    rma = relationship("RMARequest", back_populates="timeline")


protect_append_only(RMATimelineEntry, "RMA timeline entry")
