"""Initial payroll, invoice, additional hours and audit tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _week_meta_columns() -> list[sa.Column]:
    return [
        sa.Column("week_start", sa.Date(), primary_key=True),
        sa.Column("week_end", sa.Date(), nullable=False),
        sa.Column("generated", sa.Boolean(), nullable=False),
        sa.Column("locked", sa.Boolean(), nullable=False),
        sa.Column("last_generated", sa.DateTime(timezone=True), nullable=True),
        sa.Column("generated_by", sa.String(length=128), nullable=True),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_export_errors", sa.Boolean(), nullable=False),
        sa.Column("last_export_attempt", sa.DateTime(timezone=True), nullable=True),
    ]


def _export_status_columns() -> list[sa.Column]:
    return [
        sa.Column("exported_to_xero", sa.Boolean(), nullable=False),
        sa.Column("xero_export_error", sa.String(), nullable=True),
        sa.Column("exported_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("export_attempted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table("payroll_week", *_week_meta_columns())
    op.create_table("invoice_week", *_week_meta_columns())

    op.create_table(
        "payroll_item",
        sa.Column(
            "week_start",
            sa.Date(),
            sa.ForeignKey("payroll_week.week_start", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("tutor_id", sa.String(length=128), nullable=False),
        sa.Column("tutor_name", sa.String(length=255), nullable=False),
        sa.Column("lesson_hours", sa.Float(), nullable=False),
        sa.Column("lesson_count", sa.Integer(), nullable=False),
        sa.Column("lessons", sa.JSON(), nullable=True),
        sa.Column("additional_hours", sa.Float(), nullable=False),
        sa.Column("additional_hours_details", sa.JSON(), nullable=True),
        sa.Column("total_hours", sa.Float(), nullable=False),
        sa.Column("xero_timesheet_id", sa.String(length=255), nullable=True),
        *_export_status_columns(),
        sa.PrimaryKeyConstraint("week_start", "tutor_id"),
    )
    op.create_index("ix_payroll_item_week_start", "payroll_item", ["week_start"])

    op.create_table(
        "invoice",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "week_start",
            sa.Date(),
            sa.ForeignKey("invoice_week.week_start", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("week_end", sa.Date(), nullable=False),
        sa.Column("family_id", sa.String(length=128), nullable=False),
        sa.Column("family_name", sa.String(length=255), nullable=False),
        sa.Column("parent_email", sa.String(length=255), nullable=True),
        sa.Column("total", sa.Float(), nullable=False),
        sa.Column("line_items", sa.JSON(), nullable=True),
        sa.Column("edited_since_generation", sa.Boolean(), nullable=False),
        sa.Column("xero_invoice_id", sa.String(length=255), nullable=True),
        sa.Column("xero_invoice_number", sa.String(length=255), nullable=True),
        *_export_status_columns(),
        sa.UniqueConstraint("week_start", "family_id", name="uq_invoice_week_family"),
    )
    op.create_index("ix_invoice_week_start", "invoice", ["week_start"])

    op.create_table(
        "additional_hours_request",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("tutor_id", sa.String(length=128), nullable=False),
        sa.Column("tutor_name", sa.String(length=255), nullable=True),
        sa.Column("week_start", sa.Date(), nullable=False),
        sa.Column("hours", sa.Float(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("notes", sa.String(), nullable=False),
        sa.Column("status", sa.String(length=50), server_default="pending", nullable=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(length=128), nullable=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=True),
        sa.UniqueConstraint("tutor_id", "idempotency_key", name="uq_additional_hours_idempotency"),
    )
    op.create_index("ix_additional_hours_request_tutor_id", "additional_hours_request", ["tutor_id"])
    op.create_index("ix_additional_hours_request_week_start", "additional_hours_request", ["week_start"])
    op.create_index("ix_additional_hours_request_status", "additional_hours_request", ["status"])
    op.create_index("ix_additional_hours_week_status", "additional_hours_request", ["week_start", "status"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("before_json", sa.JSON(), nullable=True),
        sa.Column("after_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("additional_hours_request")
    op.drop_table("invoice")
    op.drop_table("payroll_item")
    op.drop_table("invoice_week")
    op.drop_table("payroll_week")
