from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from riresume.db.base import Base, TimestampMixin


class UserProfile(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uid: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    email: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), default="User", nullable=False)
    provider: Mapped[str] = mapped_column(String(40), default="password", nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="user", nullable=False)
    account_status: Mapped[str] = mapped_column(String(40), default="active", nullable=False)
    token_balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_tokens_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_tokens_purchased: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Analysis(TimestampMixin, Base):
    __tablename__ = "user_analyses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    job_title: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    company: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    action: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    job: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    resume: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    job_hash: Mapped[str] = mapped_column(String(64), default="", index=True, nullable=False)
    resume_hash: Mapped[str] = mapped_column(String(64), default="", index=True, nullable=False)
    ats_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    match_analysis: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    optimized_resume: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    changes: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    optimized_match_analysis: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    draft_optimized_resume: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    draft_changes: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    draft_ats_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    draft_match_analysis: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    analysis_status: Mapped[str] = mapped_column(String(40), default="pending_resume_update", nullable=False)
    application_status: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    application_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class Application(TimestampMixin, Base):
    __tablename__ = "user_applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    analysis_id: Mapped[int | None] = mapped_column(
        ForeignKey("user_analyses.id", ondelete="SET NULL"), unique=True, nullable=True
    )
    job_title: Mapped[str] = mapped_column(String(255), default="Untitled Position", nullable=False)
    company: Mapped[str] = mapped_column(String(255), default="Unknown Company", nullable=False)
    job_description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    ats_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_stage: Mapped[str] = mapped_column(String(40), default="not_applied", nullable=False)
    custom_stage_name: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    analysis_status: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_status_update: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_resume_update_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cover_letter: Mapped[str] = mapped_column(Text, default="", nullable=False)
    cover_letter_generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    prep_guide_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    prep_guide_status: Mapped[str] = mapped_column(String(40), default="", nullable=False)


class ApplicationTimelineEvent(TimestampMixin, Base):
    __tablename__ = "application_timeline"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    application_id: Mapped[int] = mapped_column(
        ForeignKey("user_applications.id", ondelete="CASCADE"), index=True
    )
    stage: Mapped[str] = mapped_column(String(40), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    note: Mapped[str] = mapped_column(Text, default="", nullable=False)
    custom_stage_name: Mapped[str] = mapped_column(String(120), default="", nullable=False)


class LearningEntry(TimestampMixin, Base):
    __tablename__ = "user_learning"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    analysis_id: Mapped[int | None] = mapped_column(
        ForeignKey("user_analyses.id", ondelete="SET NULL"), index=True, nullable=True
    )
    skill: Mapped[str] = mapped_column(String(255), nullable=False)
    importance: Mapped[str] = mapped_column(String(20), default="medium", nullable=False)
    job_title: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    status: Mapped[str] = mapped_column(String(40), default="not_started", nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    slides: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    generation_status: Mapped[str] = mapped_column(String(20), default="idle", nullable=False)


class Activity(TimestampMixin, Base):
    __tablename__ = "activities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uid: Mapped[str] = mapped_column(String(128), index=True)
    type: Mapped[str] = mapped_column(String(80), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    resource_id: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    resource_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    token_balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ai_provider: Mapped[str] = mapped_column(String(80), default="none", nullable=False)
    status: Mapped[str] = mapped_column(String(40), default="completed", nullable=False)
    platform: Mapped[str] = mapped_column(String(20), default="web", nullable=False)
    context_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


class AnalysisTask(TimestampMixin, Base):
    __tablename__ = "analysis_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="queued", index=True, nullable=False)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    stage: Mapped[str] = mapped_column(String(255), default="Pending...", nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    target_id: Mapped[str] = mapped_column(String(128), default="", index=True, nullable=False)
    result_id: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    error: Mapped[str] = mapped_column(Text, default="", nullable=False)
    failure_reason: Mapped[str] = mapped_column(String(40), default="", nullable=False)


class DeletedAccount(TimestampMixin, Base):
    __tablename__ = "deleted_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uid: Mapped[str] = mapped_column(String(128), index=True)
    email: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    reason: Mapped[str] = mapped_column(Text, default="", nullable=False)
    profile_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    restored: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class AuditTrail(TimestampMixin, Base):
    __tablename__ = "audit_trail"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor_uid: Mapped[str] = mapped_column(String(128), index=True)
    target_uid: Mapped[str] = mapped_column(String(128), index=True)
    action: Mapped[str] = mapped_column(String(80), nullable=False)
    details_json: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)


class ScheduledNotification(TimestampMixin, Base):
    __tablename__ = "scheduled_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, default="", nullable=False)
    route: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    params_json: Mapped[dict[str, str]] = mapped_column(JSON, default=dict, nullable=False)
    fire_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
