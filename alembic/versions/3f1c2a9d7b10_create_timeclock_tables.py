"""create_timeclock_tables

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-05 09:12:41.204117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("center_lat", sa.Float(), nullable=False),
        sa.Column("center_lng", sa.Float(), nullable=False),
        sa.Column("radius_m", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_jobs_id", "jobs", ["id"])
    op.create_index("ix_jobs_company_id", "jobs", ["company_id"])

    op.create_table(
        "job_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
        sa.Column("worker_id", sa.String(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("starts_at", sa.DateTime(), nullable=True),
        sa.Column("ends_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_job_assignments_id", "job_assignments", ["id"])
    op.create_index("ix_job_assignments_company_id", "job_assignments", ["company_id"])
    op.create_index("ix_job_assignments_job_id", "job_assignments", ["job_id"])
    op.create_index("ix_job_assignments_worker_id", "job_assignments", ["worker_id"])
    op.create_index("ix_job_assignments_lookup", "job_assignments", ["company_id", "job_id", "worker_id"])

    op.create_table(
        "time_entries",
        sa.Column("time_entry_id", sa.String(), primary_key=True),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("worker_id", sa.String(), nullable=False),
        sa.Column("job_id", sa.Integer(), nullable=False),
        sa.Column("clock_in_at", sa.DateTime(), nullable=False),
        sa.Column("clock_out_at", sa.DateTime(), nullable=True),
        sa.Column("geo_ok_in", sa.Boolean(), nullable=False),
        sa.Column("geo_ok_out", sa.Boolean(), nullable=True),
        sa.Column("exception_tags", sa.JSON(), nullable=False),
        sa.Column("approved", sa.Boolean(), nullable=False),
        sa.Column("approved_by", sa.String(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("invoice_id", sa.String(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("clock_in_event_id", sa.String(length=64), nullable=False),
        sa.Column("clock_out_event_id", sa.String(length=64), nullable=True),
        sa.Column("distance_in_m", sa.Float(), nullable=True),
        sa.Column("accuracy_in_m", sa.Float(), nullable=True),
        sa.Column("effective_radius_in_m", sa.Float(), nullable=True),
        sa.Column("distance_out_m", sa.Float(), nullable=True),
        sa.Column("accuracy_out_m", sa.Float(), nullable=True),
        sa.Column("effective_radius_out_m", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("worker_id", "clock_in_event_id", name="uq_time_entries_clock_in_event"),
        sa.UniqueConstraint("worker_id", "clock_out_event_id", name="uq_time_entries_clock_out_event"),
    )
    op.create_index("ix_time_entries_time_entry_id", "time_entries", ["time_entry_id"])
    op.create_index("ix_time_entries_company_id", "time_entries", ["company_id"])
    op.create_index("ix_time_entries_worker_id", "time_entries", ["worker_id"])
    op.create_index("ix_time_entries_job_id", "time_entries", ["job_id"])
    op.create_index("ix_time_entries_invoice_id", "time_entries", ["invoice_id"])
    op.create_index("ix_time_entries_worker_clock_in", "time_entries", ["worker_id", "clock_in_at"])
    op.create_index(
        "uq_time_entries_open",
        "time_entries",
        ["worker_id"],
        unique=True,
        postgresql_where=sa.text("clock_out_at IS NULL"),
        sqlite_where=sa.text("clock_out_at IS NULL"),
    )

    op.create_table(
        "clock_events",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("worker_id", sa.String(), nullable=False),
        sa.Column("job_id", sa.Integer(), nullable=True),
        sa.Column("kind", sa.String(length=3), nullable=False),
        sa.Column("client_event_id", sa.String(length=64), nullable=True),
        sa.Column("requested_at", sa.DateTime(), nullable=True),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),
        sa.Column("accuracy_m", sa.Float(), nullable=True),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("entry_id", sa.String(), nullable=True),
        sa.Column("distance_m", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_clock_events_company_id", "clock_events", ["company_id"])
    op.create_index("ix_clock_events_worker_id", "clock_events", ["worker_id"])
    op.create_index("ix_clock_events_job_id", "clock_events", ["job_id"])
    op.create_index("ix_clock_events_client_event_id", "clock_events", ["client_event_id"])
    op.create_index("ix_clock_events_outcome", "clock_events", ["outcome"])
    op.create_index("ix_clock_events_entry_id", "clock_events", ["entry_id"])
    op.create_index("ix_clock_events_worker_created", "clock_events", ["worker_id", "created_at"])

    op.create_table(
        "audit_records",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column(
            "entry_id",
            sa.String(),
            sa.ForeignKey("time_entries.time_entry_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("edited_by", sa.String(), nullable=False),
        sa.Column("edit_reason", sa.Text(), nullable=False),
        sa.Column("before", sa.JSON(), nullable=False),
        sa.Column("after", sa.JSON(), nullable=False),
        sa.Column("force_edit", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_audit_records_entry_id", "audit_records", ["entry_id"])
    op.create_index("ix_audit_records_company_id", "audit_records", ["company_id"])
    op.create_index("ix_audit_records_created_at", "audit_records", ["created_at"])

    op.create_table(
        "idempotency_records",
        sa.Column("worker_id", sa.String(), nullable=False),
        sa.Column("client_event_id", sa.String(length=64), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=3), nullable=False),
        sa.Column("result", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("worker_id", "client_event_id"),
    )
    op.create_index("ix_idempotency_records_company_id", "idempotency_records", ["company_id"])
    op.create_index("ix_idempotency_records_expires_at", "idempotency_records", ["expires_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("idempotency_records")
    op.drop_table("audit_records")
    op.drop_table("clock_events")
    op.drop_index("uq_time_entries_open", table_name="time_entries")
    op.drop_table("time_entries")
    op.drop_table("job_assignments")
    op.drop_table("jobs")
