"""boundary versions, infrastructure history and notifications

Revision ID: 202610190002
Revises: 202610190001
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190002"
down_revision = "202610190001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "boundary_versions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("region_id", sa.Integer(), nullable=False),
        sa.Column("boundary_geojson", sa.JSON(), nullable=False),
        sa.Column("boundary_type", sa.String(), nullable=False),
        sa.Column("vertex_count", sa.Integer(), nullable=False),
        sa.Column("area_sqkm", sa.Float(), nullable=True),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("published_by", sa.Integer(), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("change_reason", sa.String(), nullable=True),
        sa.Column("source", sa.String(), nullable=True),
        sa.Column("impact_summary", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["region_id"], ["regions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("region_id", "version_number", name="uq_boundary_versions_region_version"),
    )
    op.create_index("ix_boundary_versions_region_id", "boundary_versions", ["region_id"])
    op.create_index("ix_boundary_versions_status", "boundary_versions", ["status"])
    op.create_index("ix_boundary_versions_created_by", "boundary_versions", ["created_by"])
    op.create_index("ix_boundary_versions_created_at", "boundary_versions", ["created_at"])
    op.create_index("ix_boundary_versions_published_at", "boundary_versions", ["published_at"])
    op.create_index("ix_boundary_versions_region_status", "boundary_versions", ["region_id", "status"])
    op.create_index(
        "uq_boundary_versions_one_draft",
        "boundary_versions",
        ["region_id"],
        unique=True,
        postgresql_where=sa.text("status = 'draft'"),
        sqlite_where=sa.text("status = 'draft'"),
    )
    op.create_index(
        "uq_boundary_versions_one_published",
        "boundary_versions",
        ["region_id"],
        unique=True,
        postgresql_where=sa.text("status = 'published'"),
        sqlite_where=sa.text("status = 'published'"),
    )

    op.create_table(
        "infrastructure_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("item_name", sa.String(), nullable=False),
        sa.Column("item_type", sa.String(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("region_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["region_id"], ["regions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_infrastructure_items_item_name", "infrastructure_items", ["item_name"])
    op.create_index("ix_infrastructure_items_item_type", "infrastructure_items", ["item_type"])
    op.create_index("ix_infrastructure_items_region_id", "infrastructure_items", ["region_id"])
    op.create_index("ix_infrastructure_items_created_at", "infrastructure_items", ["created_at"])

    op.create_table(
        "infrastructure_region_history",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("infrastructure_id", sa.Integer(), nullable=False),
        sa.Column("old_region_id", sa.Integer(), nullable=True),
        sa.Column("new_region_id", sa.Integer(), nullable=True),
        sa.Column("boundary_version_id", sa.Integer(), nullable=True),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("changed_by", sa.Integer(), nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("change_reason", sa.String(), nullable=True),
        sa.Column("is_invalid", sa.Boolean(), nullable=False),
        sa.Column("can_rollback", sa.Boolean(), nullable=False),
        sa.Column("rollback_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["infrastructure_id"], ["infrastructure_items.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_infrastructure_region_history_infrastructure_id",
        "infrastructure_region_history",
        ["infrastructure_id"],
    )
    op.create_index(
        "ix_infrastructure_region_history_old_region_id",
        "infrastructure_region_history",
        ["old_region_id"],
    )
    op.create_index(
        "ix_infrastructure_region_history_new_region_id",
        "infrastructure_region_history",
        ["new_region_id"],
    )
    op.create_index(
        "ix_infrastructure_region_history_boundary_version_id",
        "infrastructure_region_history",
        ["boundary_version_id"],
    )
    op.create_index(
        "ix_infrastructure_region_history_changed_at",
        "infrastructure_region_history",
        ["changed_at"],
    )
    op.create_index(
        "ix_infra_region_history_version_rollback",
        "infrastructure_region_history",
        ["boundary_version_id", "can_rollback"],
    )

    op.create_table(
        "region_boundaries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("region_id", sa.Integer(), nullable=False),
        sa.Column("boundary_geojson", sa.JSON(), nullable=False),
        sa.Column("boundary_type", sa.String(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("vertex_count", sa.Integer(), nullable=False),
        sa.Column("area_sqkm", sa.Float(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("source", sa.String(), nullable=True),
        sa.Column("notes", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["region_id"], ["regions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_region_boundaries_region_id", "region_boundaries", ["region_id"])
    op.create_index("ix_region_boundaries_is_active", "region_boundaries", ["is_active"])
    op.create_index("ix_region_boundaries_created_at", "region_boundaries", ["created_at"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("message", sa.String(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_type", "notifications", ["type"])
    op.create_index("ix_notifications_is_read", "notifications", ["is_read"])
    op.create_index("ix_notifications_created_at", "notifications", ["created_at"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("region_boundaries")
    op.drop_table("infrastructure_region_history")
    op.drop_table("infrastructure_items")
    op.drop_table("boundary_versions")
