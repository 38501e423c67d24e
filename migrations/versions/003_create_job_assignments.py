"""Create job_assignments with one live assignment per job.

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "job_assignments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("jobs.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("laborer_id", sa.Uuid(), sa.ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("profiles.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "application_id", sa.Uuid(),
            sa.ForeignKey("job_applications.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("final_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column(
            "status",
            sa.Enum("in_progress", "completed", "cancelled", name="assignmentstatus"),
            nullable=False,
            server_default="in_progress",
        ),
        sa.Column(
            "payment_status",
            sa.Enum("pending", "completed", name="paymentstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("client_rating", sa.Integer(), nullable=True),
        sa.Column("client_review", sa.Text(), nullable=True),
        sa.Column("laborer_rating", sa.Integer(), nullable=True),
        sa.Column("laborer_review", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("final_amount >= 0", name="ck_job_assignments_amount_non_negative"),
        sa.CheckConstraint(
            "client_rating IS NULL OR (client_rating >= 1 AND client_rating <= 5)",
            name="ck_job_assignments_client_rating",
        ),
        sa.CheckConstraint(
            "laborer_rating IS NULL OR (laborer_rating >= 1 AND laborer_rating <= 5)",
            name="ck_job_assignments_laborer_rating",
        ),
    )
    op.create_index("ix_job_assignments_job_id", "job_assignments", ["job_id"])
    op.create_index("ix_job_assignments_laborer_id", "job_assignments", ["laborer_id"])
    op.create_index("ix_job_assignments_client_id", "job_assignments", ["client_id"])
    op.create_index(
        "uq_job_assignments_active_job",
        "job_assignments",
        ["job_id"],
        unique=True,
        postgresql_where=sa.text("status != 'cancelled'"),
    )


def downgrade() -> None:
    op.drop_index("uq_job_assignments_active_job", table_name="job_assignments")
    op.drop_table("job_assignments")
    op.execute("DROP TYPE IF EXISTS paymentstatus")
    op.execute("DROP TYPE IF EXISTS assignmentstatus")
