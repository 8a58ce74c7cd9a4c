# backend/assetdb/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from assetdb.database import Base
from assetdb.utils.identifiers import generate_user_id


def _utcnow() -> datetime:
    return datetime.utcnow()


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class AccountRole(str, enum.Enum):
    """Roles used across the portal.

    Finer-grained capabilities (direct RMA, site stock management) are
    granted through UserRight rows, globally or per site.
    """

    ADMIN = "Admin"
    SUPERVISOR = "Supervisor"
    DISPATCHER = "Dispatcher"
    L1_ENGINEER = "L1Engineer"
    L2_ENGINEER = "L2Engineer"
    SITE_MANAGER = "SiteManager"
    VIEW_ONLY = "ViewOnly"


class RightCode(str, enum.Enum):
    DIRECT_RMA_GENERATE = "DIRECT_RMA_GENERATE"
    MANAGE_SITE_STOCK = "MANAGE_SITE_STOCK"


# ---------------------------------------------------------------------------
# USERS
# ---------------------------------------------------------------------------


class User(Base):
    """
    Portal user. Authentication lives outside this service; the row exists so
    cases, timeline entries and ledger rows can reference the acting user.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("email", name="uq_users_email"),
        Index("idx_users_role_active", "role", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_user_id)
    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)

    role = Column(
        Enum(AccountRole, name="account_role_enum", native_enum=False),
        nullable=False,
        default=AccountRole.L1_ENGINEER,
        index=True,
    )

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    is_superuser = Column(Boolean, nullable=False, default=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    rights = relationship("UserRight", back_populates="user", lazy="selectin", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email} role={self.role}>"


class UserRight(Base):
    """
    Explicit capability grant. ``site_id`` NULL means the grant is global.
    """

    __tablename__ = "user_rights"
    __table_args__ = (
        UniqueConstraint("user_id", "right_code", "site_id", name="uq_user_rights_scope"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    right_code = Column(
        Enum(RightCode, name="user_right_code_enum", native_enum=False),
        nullable=False,
        index=True,
    )
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=True, index=True)
    granted_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    user = relationship("User", back_populates="rights")
