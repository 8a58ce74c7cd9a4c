from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum as SAEnum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from assetdb.database import Base


def _utcnow() -> datetime:
    return datetime.utcnow()


class TicketStatusEnum(str, enum.Enum):
    OPEN = "Open"
    ASSIGNED = "Assigned"
    IN_PROGRESS = "InProgress"
    ON_HOLD = "OnHold"
    ESCALATED = "Escalated"
    RESOLVED = "Resolved"
    CLOSED = "Closed"
    CANCELLED = "Cancelled"


class TicketActivityTypeEnum(str, enum.Enum):
    COMMENT = "Comment"
    STATUS_CHANGE = "StatusChange"
    ASSIGNMENT = "Assignment"
    RMA = "RMA"


class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    ticket_number = Column(String(32), nullable=False, unique=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    site_id = Column(Integer, ForeignKey("sites.id", ondelete="SET NULL"), nullable=True, index=True)
    asset_id = Column(Integer, ForeignKey("assets.id", ondelete="SET NULL"), nullable=True, index=True)

    status = Column(
        SAEnum(TicketStatusEnum, name="ticket_status_enum", native_enum=False),
        nullable=False,
        default=TicketStatusEnum.OPEN,
        index=True,
    )

    rma_id = Column(Integer, nullable=True, index=True)
    rma_number = Column(String(32), nullable=True)
    rma_verified = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    activities = relationship(
        "TicketActivity",
        back_populates="ticket",
        order_by="TicketActivity.id",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} number={self.ticket_number} status={self.status}>"


class TicketActivity(Base):
    """Activity feed shown on the ticket page."""

    __tablename__ = "ticket_activities"
    __table_args__ = (Index("ix_ticket_activities_ticket_time", "ticket_id", "created_at"),)

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    activity_type = Column(
        SAEnum(TicketActivityTypeEnum, name="ticket_activity_type_enum", native_enum=False),
        nullable=False,
        default=TicketActivityTypeEnum.COMMENT,
    )
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    ticket = relationship("Ticket", back_populates="activities")
