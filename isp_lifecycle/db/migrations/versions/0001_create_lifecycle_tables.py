"""Create lifecycle tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18

Adds clients, assignments, completion_log and tenant_settings.
completion_log carries the (client_id, reviewer_id, plan_year_start) unique
constraint that makes archiving a cycle idempotent.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("name_key", sa.String(length=201), nullable=False),
        sa.Column(
            "service_type",
            sa.Enum(
                "residential", "attendant_care", "dsa", "foster_care", "other",
                name="client_service_type",
            ),
            nullable=False,
        ),
        sa.Column("anchor_date", sa.Date(), nullable=False),
        sa.Column("anchor_month", sa.Integer(), nullable=False),
        sa.Column("anchor_day", sa.Integer(), nullable=False),
        sa.Column("artifact_ref", sa.String(length=256), nullable=False),
        sa.Column(
            "status",
            sa.Enum("active", "archived", name="client_status"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_by", sa.String(length=64), nullable=True),
        sa.UniqueConstraint("tenant_id", "name_key", name="uq_clients_tenant_name"),
    )
    op.create_index("ix_clients_tenant_id", "clients", ["tenant_id"])
    op.create_index("ix_clients_due", "clients", ["status", "anchor_month", "anchor_day"])

    op.create_table(
        "assignments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("reviewer_id", sa.String(length=64), nullable=False),
        sa.Column("reviewer_name", sa.String(length=200), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("unassigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_by", sa.String(length=64), nullable=True),
        sa.Column("unassigned_by", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_assignments_client_id", "assignments", ["client_id"])
    op.create_index("ix_assignments_reviewer_id", "assignments", ["reviewer_id"])
    op.create_index(
        "uq_assignments_active",
        "assignments",
        ["client_id", "reviewer_id"],
        unique=True,
        sqlite_where=sa.text("unassigned_at IS NULL"),
        postgresql_where=sa.text("unassigned_at IS NULL"),
    )

    op.create_table(
        "completion_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("reviewer_id", sa.String(length=64), nullable=False),
        sa.Column("reviewer_name", sa.String(length=200), nullable=True),
        sa.Column("plan_year_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("plan_year_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.UniqueConstraint(
            "client_id", "reviewer_id", "plan_year_start",
            name="uq_completion_log_cycle",
        ),
    )
    op.create_index("ix_completion_log_reviewer_id", "completion_log", ["reviewer_id"])
    op.create_index(
        "ix_completion_log_client_year", "completion_log", ["client_id", "plan_year_start"]
    )

    op.create_table(
        "tenant_settings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(length=64), nullable=False, unique=True),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("enabled_by", sa.String(length=64), nullable=True),
        sa.Column("enabled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("tenant_settings")
    op.drop_index("ix_completion_log_client_year", table_name="completion_log")
    op.drop_index("ix_completion_log_reviewer_id", table_name="completion_log")
    op.drop_table("completion_log")
    op.drop_index("uq_assignments_active", table_name="assignments")
    op.drop_index("ix_assignments_reviewer_id", table_name="assignments")
    op.drop_index("ix_assignments_client_id", table_name="assignments")
    op.drop_table("assignments")
    op.drop_index("ix_clients_due", table_name="clients")
    op.drop_index("ix_clients_tenant_id", table_name="clients")
    op.drop_table("clients")
    sa.Enum(name="client_status").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="client_service_type").drop(op.get_bind(), checkfirst=True)
