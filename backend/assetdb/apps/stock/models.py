from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from assetdb.database import Base
from assetdb.utils.append_only import protect_append_only


def _utcnow() -> datetime:
    return datetime.utcnow()


class StockMovementTypeEnum(str, enum.Enum):
    ADDED = "Added"
    RESERVED = "Reserved"
    RELEASED = "Released"
    STATUS_CHANGE = "StatusChange"
    TRANSFER = "Transfer"
    RMA_TRANSFER = "RMATransfer"
    REPLACED = "Replaced"
    REPAIRED_RETURN = "RepairedReturn"
    DISPOSED = "Disposed"


class StockMovementLog(Base):
    """
    One row per asset status or location transition. Never updated or deleted.

    ``asset_snapshot`` freezes code/type/make/model/serial at write time
    because the asset row itself is mutable (identity swaps).
    """

    __tablename__ = "stock_movement_logs"
    __table_args__ = (
        Index("ix_stock_movement_asset_time", "asset_id", "created_at"),
        Index("ix_stock_movement_from_site_time", "from_site_id", "created_at"),
        Index("ix_stock_movement_to_site_time", "to_site_id", "created_at"),
        Index("ix_stock_movement_type_time", "movement_type", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    asset_id = Column(Integer, ForeignKey("assets.id", ondelete="RESTRICT"), nullable=False, index=True)
    movement_type = Column(
        SAEnum(StockMovementTypeEnum, name="stock_movement_type_enum", native_enum=False),
        nullable=False,
        index=True,
    )

    from_site_id = Column(Integer, ForeignKey("sites.id", ondelete="SET NULL"), nullable=True)
    to_site_id = Column(Integer, ForeignKey("sites.id", ondelete="SET NULL"), nullable=True)
    from_status = Column(String(32), nullable=True)
    to_status = Column(String(32), nullable=True)

    rma_id = Column(Integer, ForeignKey("rma_requests.id", ondelete="SET NULL"), nullable=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True, index=True)
    performed_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    notes = Column(Text, nullable=True)
    asset_snapshot = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    from_site = relationship("Site", foreign_keys=[from_site_id], lazy="joined")
    to_site = relationship("Site", foreign_keys=[to_site_id], lazy="joined")

    def __repr__(self) -> str:
        return f"<StockMovementLog id={self.id} asset={self.asset_id} type={self.movement_type}>"


protect_append_only(StockMovementLog, "Stock movement log entry")
