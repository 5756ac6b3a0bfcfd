"""Plan engine schema: plans, generation jobs, check-ins and run history."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "202610011200"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "weekly_base_plans",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "days",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'generated'")),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("generation_job_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("generation_notes", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("redo_count_today", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_redo_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index(
        "ix_weekly_base_plans_user_created",
        "weekly_base_plans",
        ["user_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "plan_generation_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column(
            "profile_snapshot",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("result_plan_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("error_code", sa.String(length=50), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_retries", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("worker_id", sa.String(length=100), nullable=True),
        sa.Column("locked_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_redo", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("redo_reason", sa.Text(), nullable=True),
        sa.Column("redo_type", sa.String(length=20), nullable=True),
        sa.Column("source_plan_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.ForeignKeyConstraint(["result_plan_id"], ["weekly_base_plans.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_plan_jobs_status_created",
        "plan_generation_jobs",
        ["status", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_plan_jobs_status_locked",
        "plan_generation_jobs",
        ["status", "locked_until"],
        unique=False,
    )
    op.create_index("ix_plan_jobs_user_status", "plan_generation_jobs", ["user_id", "status"], unique=False)
    op.create_index(
        "uq_plan_jobs_user_active",
        "plan_generation_jobs",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )

    op.create_table(
        "checkins",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("energy", sa.Integer(), nullable=True),
        sa.Column("sleep_hrs", sa.Float(), nullable=True),
        sa.Column("stress", sa.Integer(), nullable=True),
        sa.Column("water_l", sa.Float(), nullable=True),
        sa.Column("soreness", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("digestion", sa.String(length=20), nullable=True),
        sa.Column("current_weight", sa.Float(), nullable=True),
        sa.Column("special_request", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("user_id", "date", name="uq_checkins_user_date"),
    )

    op.create_table(
        "generation_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("duration_seconds", sa.Float(), nullable=False),
        sa.Column("complexity_score", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )


def downgrade() -> None:
    op.drop_table("generation_runs")
    op.drop_table("checkins")
    op.drop_index("uq_plan_jobs_user_active", table_name="plan_generation_jobs")
    op.drop_index("ix_plan_jobs_user_status", table_name="plan_generation_jobs")
    op.drop_index("ix_plan_jobs_status_locked", table_name="plan_generation_jobs")
    op.drop_index("ix_plan_jobs_status_created", table_name="plan_generation_jobs")
    op.drop_table("plan_generation_jobs")
    op.drop_index("ix_weekly_base_plans_user_created", table_name="weekly_base_plans")
    op.drop_table("weekly_base_plans")
