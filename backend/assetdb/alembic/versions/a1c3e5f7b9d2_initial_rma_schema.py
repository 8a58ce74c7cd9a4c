"""Initial schema: users, sites, assets, tickets, RMA cases, stock ledger, audit.

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2025-03-03 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = "a1c3e5f7b9d2"
down_revision = None
branch_labels = None
depends_on = None

# Enum columns are stored as member names in VARCHAR (native_enum=False on the models).
ENUM_STR = sa.String(40)


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    return bool(inspect(bind).has_table(table_name))


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    if not _table_exists("users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("email", sa.String(255), nullable=False),
            sa.Column("full_name", sa.String(255), nullable=False),
            sa.Column("role", ENUM_STR, nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("is_superuser", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("created_at"),
            sa.UniqueConstraint("email", name="uq_users_email"),
        )
        op.create_index("ix_users_email", "users", ["email"])
        op.create_index("ix_users_role", "users", ["role"])
        op.create_index("ix_users_is_active", "users", ["is_active"])
        op.create_index("ix_users_is_superuser", "users", ["is_superuser"])
        op.create_index("idx_users_role_active", "users", ["role", "is_active"])

    if not _table_exists("sites"):
        op.create_table(
            "sites",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("site_code", sa.String(32), nullable=False),
            sa.Column("site_name", sa.String(150), nullable=False),
            sa.Column("is_head_office", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            _ts("created_at"),
            sa.UniqueConstraint("site_code", name="uq_sites_code"),
        )
        op.create_index("ix_sites_id", "sites", ["id"])
        op.create_index("ix_sites_site_code", "sites", ["site_code"])
        op.create_index("ix_sites_is_head_office", "sites", ["is_head_office"])

    if not _table_exists("user_rights"):
        op.create_table(
            "user_rights",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
            sa.Column("right_code", ENUM_STR, nullable=False),
            sa.Column("site_id", sa.Integer(), sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=True),
            _ts("granted_at"),
            sa.UniqueConstraint("user_id", "right_code", "site_id", name="uq_user_rights_scope"),
        )
        op.create_index("ix_user_rights_id", "user_rights", ["id"])
        op.create_index("ix_user_rights_user_id", "user_rights", ["user_id"])
        op.create_index("ix_user_rights_right_code", "user_rights", ["right_code"])
        op.create_index("ix_user_rights_site_id", "user_rights", ["site_id"])

    if not _table_exists("assets"):
        op.create_table(
            "assets",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("asset_code", sa.String(50), nullable=False),
            sa.Column("asset_type", sa.String(50), nullable=False),
            sa.Column("serial_number", sa.String(512), nullable=True),
            sa.Column("mac", sa.String(512), nullable=True),
            sa.Column("ip_address", sa.String(512), nullable=True),
            sa.Column("make", sa.String(100), nullable=True),
            sa.Column("model", sa.String(150), nullable=True),
            sa.Column("device_type", sa.String(100), nullable=True),
            sa.Column("user_name", sa.String(512), nullable=True),
            sa.Column("password", sa.String(1024), nullable=True),
            sa.Column("site_id", sa.Integer(), sa.ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("location_description", sa.String(200), nullable=True),
            sa.Column("stock_location", sa.String(100), nullable=True),
            sa.Column("status", ENUM_STR, nullable=False),
            sa.Column("reserved_by_rma_id", sa.Integer(), nullable=True),
            sa.Column("criticality", sa.Integer(), nullable=False, server_default="2"),
            sa.Column("remark", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.UniqueConstraint("asset_code", name="uq_assets_code"),
        )
        op.create_index("ix_assets_id", "assets", ["id"])
        op.create_index("ix_assets_asset_code", "assets", ["asset_code"])
        op.create_index("ix_assets_site_id", "assets", ["site_id"])
        op.create_index("ix_assets_status", "assets", ["status"])
        op.create_index("ix_assets_reserved_by_rma_id", "assets", ["reserved_by_rma_id"])
        op.create_index("ix_assets_is_active", "assets", ["is_active"])
        op.create_index("ix_assets_site_status", "assets", ["site_id", "status"])
        op.create_index("ix_assets_type", "assets", ["asset_type"])

    if not _table_exists("tickets"):
        op.create_table(
            "tickets",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("ticket_number", sa.String(32), nullable=False),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("site_id", sa.Integer(), sa.ForeignKey("sites.id", ondelete="SET NULL"), nullable=True),
            sa.Column("asset_id", sa.Integer(), sa.ForeignKey("assets.id", ondelete="SET NULL"), nullable=True),
            sa.Column("status", ENUM_STR, nullable=False),
            sa.Column("rma_id", sa.Integer(), nullable=True),
            sa.Column("rma_number", sa.String(32), nullable=True),
            sa.Column("rma_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
            _ts("created_at"),
            _ts("updated_at"),
        )
        op.create_index("ix_tickets_id", "tickets", ["id"])
        op.create_index("ix_tickets_ticket_number", "tickets", ["ticket_number"], unique=True)
        op.create_index("ix_tickets_site_id", "tickets", ["site_id"])
        op.create_index("ix_tickets_asset_id", "tickets", ["asset_id"])
        op.create_index("ix_tickets_status", "tickets", ["status"])
        op.create_index("ix_tickets_rma_id", "tickets", ["rma_id"])

    if not _table_exists("ticket_activities"):
        op.create_table(
            "ticket_activities",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False),
            sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("activity_type", ENUM_STR, nullable=False),
            sa.Column("content", sa.Text(), nullable=False),
            _ts("created_at"),
        )
        op.create_index("ix_ticket_activities_id", "ticket_activities", ["id"])
        op.create_index("ix_ticket_activities_ticket_id", "ticket_activities", ["ticket_id"])
        op.create_index("ix_ticket_activities_ticket_time", "ticket_activities", ["ticket_id", "created_at"])

    if not _table_exists("rma_requests"):
        op.create_table(
            "rma_requests",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("rma_number", sa.String(32), nullable=False),
            sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("site_id", sa.Integer(), sa.ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("original_asset_id", sa.Integer(), sa.ForeignKey("assets.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("reserved_asset_id", sa.Integer(), sa.ForeignKey("assets.id", ondelete="SET NULL"), nullable=True),
            sa.Column("status", ENUM_STR, nullable=False),
            sa.Column("repair_track_status", ENUM_STR, nullable=True),
            sa.Column("replacement_track_status", ENUM_STR, nullable=True),
            sa.Column("replacement_source", ENUM_STR, nullable=False),
            sa.Column("item_send_route", ENUM_STR, nullable=True),
            sa.Column("repaired_item_destination", ENUM_STR, nullable=True),
            sa.Column("replacement_stock_source", ENUM_STR, nullable=True),
            sa.Column(
                "replacement_source_site_id",
                sa.Integer(),
                sa.ForeignKey("sites.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("original_details_snapshot", sa.JSON(), nullable=True),
            sa.Column("replacement_details", sa.JSON(), nullable=True),
            sa.Column("logistics_to_service_center", sa.JSON(), nullable=True),
            sa.Column("logistics_to_ho", sa.JSON(), nullable=True),
            sa.Column("logistics_return_to_site", sa.JSON(), nullable=True),
            sa.Column("logistics_replacement_to_site", sa.JSON(), nullable=True),
            sa.Column("vendor_details", sa.JSON(), nullable=True),
            sa.Column("request_reason", sa.Text(), nullable=False),
            sa.Column("installation_status", ENUM_STR, nullable=False),
            sa.Column("is_installation_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("is_faulty_item_finalized", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("requested_by_user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("approved_by_user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("approved_at", nullable=True),
            sa.Column("installed_by_user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("installed_at", nullable=True),
            _ts("finalized_at", nullable=True),
            sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
            _ts("created_at"),
            _ts("updated_at"),
            sa.UniqueConstraint("rma_number", name="uq_rma_requests_number"),
        )
        op.create_index("ix_rma_requests_id", "rma_requests", ["id"])
        op.create_index("ix_rma_requests_rma_number", "rma_requests", ["rma_number"])
        op.create_index("ix_rma_requests_ticket_id", "rma_requests", ["ticket_id"])
        op.create_index("ix_rma_requests_site_id", "rma_requests", ["site_id"])
        op.create_index("ix_rma_requests_reserved_asset_id", "rma_requests", ["reserved_asset_id"])
        op.create_index("ix_rma_requests_status", "rma_requests", ["status"])
        op.create_index("ix_rma_requests_ticket", "rma_requests", ["ticket_id", "created_at"])
        op.create_index("ix_rma_requests_site_status", "rma_requests", ["site_id", "status"])
        op.create_index("ix_rma_requests_original_asset", "rma_requests", ["original_asset_id"])

    if not _table_exists("rma_timeline_entries"):
        op.create_table(
            "rma_timeline_entries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("rma_id", sa.Integer(), sa.ForeignKey("rma_requests.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("status", sa.String(64), nullable=False),
            sa.Column("changed_by_user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            sa.Column("remarks", sa.Text(), nullable=True),
            _ts("changed_at"),
        )
        op.create_index("ix_rma_timeline_entries_id", "rma_timeline_entries", ["id"])
        op.create_index("ix_rma_timeline_entries_rma_id", "rma_timeline_entries", ["rma_id"])
        op.create_index("ix_rma_timeline_rma_time", "rma_timeline_entries", ["rma_id", "changed_at"])

    if not _table_exists("stock_movement_logs"):
        op.create_table(
            "stock_movement_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("asset_id", sa.Integer(), sa.ForeignKey("assets.id", ondelete="RESTRICT"), nullable=False),
            sa.Column("movement_type", ENUM_STR, nullable=False),
            sa.Column("from_site_id", sa.Integer(), sa.ForeignKey("sites.id", ondelete="SET NULL"), nullable=True),
            sa.Column("to_site_id", sa.Integer(), sa.ForeignKey("sites.id", ondelete="SET NULL"), nullable=True),
            sa.Column("from_status", sa.String(32), nullable=True),
            sa.Column("to_status", sa.String(32), nullable=True),
            sa.Column("rma_id", sa.Integer(), sa.ForeignKey("rma_requests.id", ondelete="SET NULL"), nullable=True),
            sa.Column("ticket_id", sa.Integer(), sa.ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True),
            sa.Column(
                "performed_by_user_id",
                sa.String(36),
                sa.ForeignKey("users.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("asset_snapshot", sa.JSON(), nullable=True),
            _ts("created_at"),
        )
        op.create_index("ix_stock_movement_logs_id", "stock_movement_logs", ["id"])
        op.create_index("ix_stock_movement_logs_asset_id", "stock_movement_logs", ["asset_id"])
        op.create_index("ix_stock_movement_logs_movement_type", "stock_movement_logs", ["movement_type"])
        op.create_index("ix_stock_movement_logs_rma_id", "stock_movement_logs", ["rma_id"])
        op.create_index("ix_stock_movement_logs_ticket_id", "stock_movement_logs", ["ticket_id"])
        op.create_index("ix_stock_movement_logs_created_at", "stock_movement_logs", ["created_at"])
        op.create_index("ix_stock_movement_asset_time", "stock_movement_logs", ["asset_id", "created_at"])
        op.create_index("ix_stock_movement_from_site_time", "stock_movement_logs", ["from_site_id", "created_at"])
        op.create_index("ix_stock_movement_to_site_time", "stock_movement_logs", ["to_site_id", "created_at"])
        op.create_index("ix_stock_movement_type_time", "stock_movement_logs", ["movement_type", "created_at"])

    if not _table_exists("audit_events"):
        op.create_table(
            "audit_events",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("entity_type", sa.String(64), nullable=False),
            sa.Column("entity_id", sa.String(64), nullable=False),
            sa.Column("action", sa.String(64), nullable=False),
            sa.Column("actor_user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
            _ts("occurred_at"),
            sa.Column("before", sa.JSON(), nullable=True),
            sa.Column("after", sa.JSON(), nullable=True),
            sa.Column("correlation_id", sa.String(64), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            _ts("created_at"),
        )
        op.create_index("ix_audit_events_id", "audit_events", ["id"])
        op.create_index("ix_audit_events_entity_type", "audit_events", ["entity_type"])
        op.create_index("ix_audit_events_entity_id", "audit_events", ["entity_id"])
        op.create_index("ix_audit_events_action", "audit_events", ["action"])
        op.create_index("ix_audit_events_actor_user_id", "audit_events", ["actor_user_id"])
        op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"])
        op.create_index("ix_audit_events_correlation_id", "audit_events", ["correlation_id"])
        op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"])
        op.create_index("ix_audit_events_time_desc", "audit_events", [sa.text("occurred_at DESC")])


def downgrade() -> None:
    for table_name in (
        "audit_events",
        "stock_movement_logs",
        "rma_timeline_entries",
        "rma_requests",
        "ticket_activities",
        "tickets",
        "assets",
        "user_rights",
        "sites",
        "users",
    ):
        if _table_exists(table_name):
            op.drop_table(table_name)
