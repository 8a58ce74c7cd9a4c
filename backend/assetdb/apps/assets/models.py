from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
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
from assetdb.utils.field_cipher import EncryptedString


def _utcnow() -> datetime:
    return datetime.utcnow()


class AssetStatusEnum(str, enum.Enum):
    OPERATIONAL = "Operational"
    DEGRADED = "Degraded"
    OFFLINE = "Offline"
    MAINTENANCE = "Maintenance"
    IN_REPAIR = "In Repair"
    NOT_INSTALLED = "Not Installed"
    SPARE = "Spare"
    IN_TRANSIT = "InTransit"
    DAMAGED = "Damaged"
    RESERVED = "Reserved"
    ONLINE = "Online"
    PASSIVE_DEVICE = "Passive Device"


class AssetTypeEnum(str, enum.Enum):
    CAMERA = "Camera"
    NVR = "NVR"
    SWITCH = "Switch"
    ROUTER = "Router"
    SERVER = "Server"
    OTHER = "Other"


class Site(Base):
    __tablename__ = "sites"
    __table_args__ = (UniqueConstraint("site_code", name="uq_sites_code"),)

    id = Column(Integer, primary_key=True, index=True)
    site_code = Column(String(32), nullable=False, index=True)
    site_name = Column(String(150), nullable=False)
    is_head_office = Column(Boolean, nullable=False, default=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<Site id={self.id} code={self.site_code} ho={self.is_head_office}>"


class Asset(Base):
    """
    A location in the field (a "slot"), not a fixed physical device.

    The identity columns (serial, MAC, make, model) describe whichever unit
    currently occupies the slot; an RMA swap rewrites them in place.
    """

    __tablename__ = "assets"
    __table_args__ = (
        UniqueConstraint("asset_code", name="uq_assets_code"),
        Index("ix_assets_site_status", "site_id", "status"),
        Index("ix_assets_type", "asset_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    asset_code = Column(String(50), nullable=False, index=True)
    asset_type = Column(String(50), nullable=False)

    serial_number = Column(EncryptedString(512), nullable=True)
    mac = Column(EncryptedString(512), nullable=True)
    ip_address = Column(EncryptedString(512), nullable=True)
    make = Column(String(100), nullable=True)
    model = Column(String(150), nullable=True)
    device_type = Column(String(100), nullable=True)

    user_name = Column(EncryptedString(512), nullable=True)
    password = Column(EncryptedString(1024), nullable=True)

    site_id = Column(Integer, ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False, index=True)
    location_description = Column(String(200), nullable=True)
    stock_location = Column(String(100), nullable=True)

    status = Column(
        SAEnum(AssetStatusEnum, name="asset_status_enum", native_enum=False),
        nullable=False,
        default=AssetStatusEnum.OPERATIONAL,
        index=True,
    )
    # Case currently holding this spare. Not a foreign key.
    reserved_by_rma_id = Column(Integer, nullable=True, index=True)

    criticality = Column(Integer, nullable=False, default=2)
    remark = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    version_id = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    site = relationship("Site", lazy="joined")

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Asset id={self.id} code={self.asset_code} status={self.status}>"
