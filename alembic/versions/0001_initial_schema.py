"""Initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("uid", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("display_name", sa.String(length=255), nullable=False, server_default="User"),
        sa.Column("provider", sa.String(length=40), nullable=False, server_default="password"),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
        sa.Column("account_status", sa.String(length=40), nullable=False, server_default="active"),
        sa.Column("token_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_tokens_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_tokens_purchased", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_uid", "users", ["uid"], unique=True)

    op.create_table(
        "user_analyses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("job_title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("company", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("action", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("job", sa.JSON(), nullable=False),
        sa.Column("resume", sa.JSON(), nullable=False),
        sa.Column("job_hash", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("resume_hash", sa.String(length=64), nullable=False, server_default=""),
        sa.Column("ats_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("match_analysis", sa.JSON(), nullable=False),
        sa.Column("optimized_resume", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("optimized_match_analysis", sa.JSON(), nullable=True),
        sa.Column("draft_optimized_resume", sa.JSON(), nullable=True),
        sa.Column("draft_changes", sa.JSON(), nullable=True),
        sa.Column("draft_ats_score", sa.Integer(), nullable=True),
        sa.Column("draft_match_analysis", sa.JSON(), nullable=True),
        sa.Column("analysis_status", sa.String(length=40), nullable=False, server_default="pending_resume_update"),
        sa.Column("application_status", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("application_id", sa.Integer(), nullable=True),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_user_analyses_user_id", "user_analyses", ["user_id"])
    op.create_index("ix_user_analyses_job_hash", "user_analyses", ["job_hash"])
    op.create_index("ix_user_analyses_resume_hash", "user_analyses", ["resume_hash"])

    op.create_table(
        "user_applications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column(
            "analysis_id",
            sa.Integer(),
            sa.ForeignKey("user_analyses.id", ondelete="SET NULL"),
            nullable=True,
            unique=True,
        ),
        sa.Column("job_title", sa.String(length=255), nullable=False, server_default="Untitled Position"),
        sa.Column("company", sa.String(length=255), nullable=False, server_default="Unknown Company"),
        sa.Column("job_description", sa.Text(), nullable=False, server_default=""),
        sa.Column("ats_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_stage", sa.String(length=40), nullable=False, server_default="not_applied"),
        sa.Column("custom_stage_name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("analysis_status", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_status_update", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_resume_update_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cover_letter", sa.Text(), nullable=False, server_default=""),
        sa.Column("cover_letter_generated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("prep_guide_json", sa.JSON(), nullable=False),
        sa.Column("prep_guide_status", sa.String(length=40), nullable=False, server_default=""),
        *_timestamps(),
    )
    op.create_index("ix_user_applications_user_id", "user_applications", ["user_id"])

    op.create_table(
        "application_timeline",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "application_id",
            sa.Integer(),
            sa.ForeignKey("user_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stage", sa.String(length=40), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("note", sa.Text(), nullable=False, server_default=""),
        sa.Column("custom_stage_name", sa.String(length=120), nullable=False, server_default=""),
        *_timestamps(),
    )
    op.create_index("ix_application_timeline_application_id", "application_timeline", ["application_id"])

    op.create_table(
        "user_learning",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column(
            "analysis_id",
            sa.Integer(),
            sa.ForeignKey("user_analyses.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("skill", sa.String(length=255), nullable=False),
        sa.Column("importance", sa.String(length=20), nullable=False, server_default="medium"),
        sa.Column("job_title", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=40), nullable=False, server_default="not_started"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("slides", sa.JSON(), nullable=True),
        sa.Column("generation_status", sa.String(length=20), nullable=False, server_default="idle"),
        *_timestamps(),
    )
    op.create_index("ix_user_learning_user_id", "user_learning", ["user_id"])
    op.create_index("ix_user_learning_analysis_id", "user_learning", ["analysis_id"])

    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("uid", sa.String(length=128), nullable=False),
        sa.Column("type", sa.String(length=80), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("resource_id", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("resource_name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("tokens_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("token_balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ai_provider", sa.String(length=80), nullable=False, server_default="none"),
        sa.Column("status", sa.String(length=40), nullable=False, server_default="completed"),
        sa.Column("platform", sa.String(length=20), nullable=False, server_default="web"),
        sa.Column("context_json", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_activities_uid", "activities", ["uid"])

    op.create_table(
        "analysis_tasks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("type", sa.String(length=40), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="queued"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stage", sa.String(length=255), nullable=False, server_default="Pending..."),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("target_id", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("result_id", sa.String(length=128), nullable=False, server_default=""),
        sa.Column("error", sa.Text(), nullable=False, server_default=""),
        sa.Column("failure_reason", sa.String(length=40), nullable=False, server_default=""),
        *_timestamps(),
    )
    op.create_index("ix_analysis_tasks_user_id", "analysis_tasks", ["user_id"])
    op.create_index("ix_analysis_tasks_status", "analysis_tasks", ["status"])
    op.create_index("ix_analysis_tasks_target_id", "analysis_tasks", ["target_id"])

    op.create_table(
        "deleted_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("uid", sa.String(length=128), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("reason", sa.Text(), nullable=False, server_default=""),
        sa.Column("profile_snapshot", sa.JSON(), nullable=False),
        sa.Column("restored", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_deleted_accounts_uid", "deleted_accounts", ["uid"])

    op.create_table(
        "audit_trail",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_uid", sa.String(length=128), nullable=False),
        sa.Column("target_uid", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("details_json", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_audit_trail_actor_uid", "audit_trail", ["actor_uid"])
    op.create_index("ix_audit_trail_target_uid", "audit_trail", ["target_uid"])

    op.create_table(
        "scheduled_notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("route", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("params_json", sa.JSON(), nullable=False),
        sa.Column("fire_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_scheduled_notifications_user_id", "scheduled_notifications", ["user_id"])


def downgrade() -> None:
    for table in (
        "scheduled_notifications",
        "audit_trail",
        "deleted_accounts",
        "analysis_tasks",
        "activities",
        "user_learning",
        "application_timeline",
        "user_applications",
        "user_analyses",
        "users",
    ):
        op.drop_table(table)
