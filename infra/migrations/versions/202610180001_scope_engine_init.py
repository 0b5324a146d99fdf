"""scope engine tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610180001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_tenant_id", "events", ["tenant_id"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_correlation_id", "events", ["correlation_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "tenants",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tenants_name", "tenants", ["name"], unique=True)
    op.create_index("ix_tenants_created_at", "tenants", ["created_at"])

    op.create_table(
        "entities",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("parent_entity_id", sa.String(), nullable=True),
        sa.Column("entity_level", sa.Integer(), nullable=False),
        sa.Column("path", sa.String(), nullable=False),
        sa.Column("full_hierarchy_path", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("organization_type", sa.String(), nullable=True),
        sa.Column("location_attributes", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(
            ["tenant_id", "parent_entity_id"],
            ["entities.tenant_id", "entities.id"],
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "id", name="uq_entities_tenant_id_id"),
        sa.UniqueConstraint("tenant_id", "code", name="uq_entities_tenant_code"),
    )
    op.create_index("ix_entities_tenant_id", "entities", ["tenant_id"])
    op.create_index("ix_entities_entity_type", "entities", ["entity_type"])
    op.create_index("ix_entities_parent_entity_id", "entities", ["parent_entity_id"])
    op.create_index("ix_entities_path", "entities", ["path"])
    op.create_index("ix_entities_name", "entities", ["name"])
    op.create_index("ix_entities_code", "entities", ["code"])
    op.create_index("ix_entities_is_active", "entities", ["is_active"])
    op.create_index("ix_entities_created_at", "entities", ["created_at"])
    op.create_index("ix_entities_updated_at", "entities", ["updated_at"])
    op.create_index("ix_entities_tenant_parent", "entities", ["tenant_id", "parent_entity_id"])
    op.create_index("ix_entities_tenant_path", "entities", ["tenant_id", "path"])
    op.create_index("ix_entities_tenant_level", "entities", ["tenant_id", "entity_level"])
    op.create_index(
        "uq_entities_tenant_root",
        "entities",
        ["tenant_id"],
        unique=True,
        postgresql_where=sa.text("parent_entity_id IS NULL"),
        sqlite_where=sa.text("parent_entity_id IS NULL"),
    )

    op.create_table(
        "assignments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("assignment_type", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("assigned_by", sa.String(), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_by", sa.String(), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("supersedes_id", sa.String(), nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.ForeignKeyConstraint(
            ["tenant_id", "entity_id"],
            ["entities.tenant_id", "entities.id"],
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_assignments_tenant_id", "assignments", ["tenant_id"])
    op.create_index("ix_assignments_user_id", "assignments", ["user_id"])
    op.create_index("ix_assignments_entity_id", "assignments", ["entity_id"])
    op.create_index("ix_assignments_assignment_type", "assignments", ["assignment_type"])
    op.create_index("ix_assignments_is_active", "assignments", ["is_active"])
    op.create_index("ix_assignments_assigned_at", "assignments", ["assigned_at"])
    op.create_index("ix_assignments_revoked_at", "assignments", ["revoked_at"])
    op.create_index("ix_assignments_supersedes_id", "assignments", ["supersedes_id"])
    op.create_index("ix_assignments_tenant_user_active", "assignments", ["tenant_id", "user_id", "is_active"])
    op.create_index("ix_assignments_tenant_entity", "assignments", ["tenant_id", "entity_id"])
    op.create_index(
        "uq_assignments_active",
        "assignments",
        ["tenant_id", "user_id", "entity_id", "assignment_type"],
        unique=True,
        postgresql_where=sa.text("is_active"),
        sqlite_where=sa.text("is_active"),
    )


def downgrade() -> None:
    op.drop_index("uq_assignments_active", table_name="assignments")
    op.drop_index("ix_assignments_tenant_entity", table_name="assignments")
    op.drop_index("ix_assignments_tenant_user_active", table_name="assignments")
    op.drop_index("ix_assignments_supersedes_id", table_name="assignments")
    op.drop_index("ix_assignments_revoked_at", table_name="assignments")
    op.drop_index("ix_assignments_assigned_at", table_name="assignments")
    op.drop_index("ix_assignments_is_active", table_name="assignments")
    op.drop_index("ix_assignments_assignment_type", table_name="assignments")
    op.drop_index("ix_assignments_entity_id", table_name="assignments")
    op.drop_index("ix_assignments_user_id", table_name="assignments")
    op.drop_index("ix_assignments_tenant_id", table_name="assignments")
    op.drop_table("assignments")

    op.drop_index("uq_entities_tenant_root", table_name="entities")
    op.drop_index("ix_entities_tenant_level", table_name="entities")
    op.drop_index("ix_entities_tenant_path", table_name="entities")
    op.drop_index("ix_entities_tenant_parent", table_name="entities")
    op.drop_index("ix_entities_updated_at", table_name="entities")
    op.drop_index("ix_entities_created_at", table_name="entities")
    op.drop_index("ix_entities_is_active", table_name="entities")
    op.drop_index("ix_entities_code", table_name="entities")
    op.drop_index("ix_entities_name", table_name="entities")
    op.drop_index("ix_entities_path", table_name="entities")
    op.drop_index("ix_entities_parent_entity_id", table_name="entities")
    op.drop_index("ix_entities_entity_type", table_name="entities")
    op.drop_index("ix_entities_tenant_id", table_name="entities")
    op.drop_table("entities")

    op.drop_index("ix_tenants_created_at", table_name="tenants")
    op.drop_index("ix_tenants_name", table_name="tenants")
    op.drop_table("tenants")

    op.drop_index("ix_audit_logs_ts", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_tenant_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_events_correlation_id", table_name="events")
    op.drop_index("ix_events_actor_id", table_name="events")
    op.drop_index("ix_events_ts", table_name="events")
    op.drop_index("ix_events_tenant_id", table_name="events")
    op.drop_index("ix_events_event_type", table_name="events")
    op.drop_table("events")
