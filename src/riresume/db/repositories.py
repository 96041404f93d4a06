from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import and_, delete, func, select
from sqlalchemy.orm import Session

from riresume.db.base import utcnow
from riresume.db.models import (
    Activity,
    Analysis,
    AnalysisTask,
    Application,
    ApplicationTimelineEvent,
    AuditTrail,
    DeletedAccount,
    LearningEntry,
    ScheduledNotification,
    UserProfile,
)

ACTIVE_TASK_STATUSES = ("queued", "processing")


def hash_text(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_document(value: dict[str, Any]) -> str:
    return hash_text(json.dumps(value, sort_keys=True, default=str))


class Repository:
    def __init__(self, session: Session):
        self.session = session

    # users

    def get_user(self, uid: str, *, for_update: bool = False) -> UserProfile | None:
        statement = select(UserProfile).where(UserProfile.uid == uid)
        if for_update:
            statement = statement.with_for_update()
        statement = statement.execution_options(populate_existing=True)
        return self.session.scalar(statement)

    def get_user_by_email(self, email: str) -> UserProfile | None:
        return self.session.scalar(select(UserProfile).where(UserProfile.email == email))

    def create_user(
        self,
        *,
        uid: str,
        email: str = "",
        display_name: str = "User",
        provider: str = "password",
        role: str = "user",
        token_balance: int = 0,
    ) -> UserProfile:
        user = UserProfile(
            uid=uid,
            email=email,
            display_name=display_name,
            provider=provider,
            role=role,
            token_balance=token_balance,
            last_login_at=utcnow(),
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def update_user(self, uid: str, values: dict[str, Any]) -> UserProfile:
        user = self.get_user(uid)
        if not user:
            raise ValueError(f"user {uid} not found")
        for key, value in values.items():
            setattr(user, key, value)
        self.session.commit()
        self.session.refresh(user)
        return user

    def list_users(self, limit: int = 100) -> list[UserProfile]:
        statement = select(UserProfile).order_by(UserProfile.created_at.desc()).limit(limit)
        return list(self.session.scalars(statement).all())

    # analyses

    def create_analysis(self, *, user_id: str, values: dict[str, Any]) -> Analysis:
        analysis = Analysis(user_id=user_id, **values)
        self.session.add(analysis)
        self.session.commit()
        self.session.refresh(analysis)
        return analysis

    def get_analysis(self, analysis_id: int) -> Analysis | None:
        return self.session.get(Analysis, analysis_id, populate_existing=True)

    def update_analysis(self, analysis_id: int, values: dict[str, Any]) -> Analysis:
        analysis = self.get_analysis(analysis_id)
        if not analysis:
            raise ValueError(f"analysis {analysis_id} not found")
        for key, value in values.items():
            setattr(analysis, key, value)
        analysis.updated_at = utcnow()
        self.session.commit()
        self.session.refresh(analysis)
        return analysis

    def list_analyses(self, user_id: str, limit: int = 50) -> list[Analysis]:
        statement = (
            select(Analysis)
            .where(Analysis.user_id == user_id)
            .order_by(Analysis.created_at.desc(), Analysis.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(statement).all())

    def find_analysis_by_hashes(self, user_id: str, job_hash: str, resume_hash: str) -> Analysis | None:
        statement = (
            select(Analysis)
            .where(
                and_(
                    Analysis.user_id == user_id,
                    Analysis.job_hash == job_hash,
                    Analysis.resume_hash == resume_hash,
                )
            )
            .order_by(Analysis.id.desc())
        )
        return self.session.scalar(statement)

    def delete_analysis(self, analysis_id: int) -> None:
        self.session.execute(delete(Analysis).where(Analysis.id == analysis_id))
        self.session.commit()

    # applications

    def get_application(self, application_id: int) -> Application | None:
        return self.session.get(Application, application_id, populate_existing=True)

    def get_application_for_analysis(self, analysis_id: int) -> Application | None:
        statement = (
            select(Application)
            .where(Application.analysis_id == analysis_id)
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(statement)

    def create_application(self, *, user_id: str, values: dict[str, Any]) -> Application:
        application = Application(user_id=user_id, **values)
        self.session.add(application)
        self.session.commit()
        self.session.refresh(application)
        return application

    def update_application(self, application_id: int, values: dict[str, Any]) -> Application:
        application = self.get_application(application_id)
        if not application:
            raise ValueError(f"application {application_id} not found")
        for key, value in values.items():
            setattr(application, key, value)
        self.session.commit()
        self.session.refresh(application)
        return application

    def list_applications(self, user_id: str, *, include_archived: bool = True) -> list[Application]:
        statement = select(Application).where(Application.user_id == user_id)
        if not include_archived:
            statement = statement.where(Application.is_archived.is_(False))
        statement = statement.order_by(Application.updated_at.desc(), Application.id.desc())
        return list(self.session.scalars(statement).all())

    def delete_application(self, application_id: int) -> None:
        self.session.execute(
            delete(ApplicationTimelineEvent).where(ApplicationTimelineEvent.application_id == application_id)
        )
        self.session.execute(delete(Application).where(Application.id == application_id))
        self.session.commit()

    def append_timeline_event(
        self,
        *,
        application_id: int,
        stage: str,
        occurred_at: datetime | None = None,
        note: str = "",
        custom_stage_name: str = "",
    ) -> ApplicationTimelineEvent:
        event = ApplicationTimelineEvent(
            application_id=application_id,
            stage=stage,
            occurred_at=occurred_at or utcnow(),
            note=note,
            custom_stage_name=custom_stage_name,
        )
        self.session.add(event)
        self.session.commit()
        self.session.refresh(event)
        return event

    def list_timeline(self, application_id: int) -> list[ApplicationTimelineEvent]:
        statement = (
            select(ApplicationTimelineEvent)
            .where(ApplicationTimelineEvent.application_id == application_id)
            .order_by(ApplicationTimelineEvent.occurred_at.asc(), ApplicationTimelineEvent.id.asc())
        )
        return list(self.session.scalars(statement).all())

    # learning

    def add_learning_entry(self, *, user_id: str, values: dict[str, Any]) -> LearningEntry:
        entry = LearningEntry(user_id=user_id, **values)
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def get_learning_entry(self, entry_id: int) -> LearningEntry | None:
        return self.session.get(LearningEntry, entry_id, populate_existing=True)

    def find_learning_entry(self, user_id: str, skill: str) -> LearningEntry | None:
        statement = select(LearningEntry).where(
            and_(LearningEntry.user_id == user_id, LearningEntry.skill == skill)
        )
        return self.session.scalar(statement)

    def list_learning_entries(self, user_id: str) -> list[LearningEntry]:
        statement = (
            select(LearningEntry)
            .where(LearningEntry.user_id == user_id)
            .order_by(LearningEntry.created_at.desc(), LearningEntry.id.desc())
        )
        return list(self.session.scalars(statement).all())

    def update_learning_entry(self, entry_id: int, values: dict[str, Any]) -> LearningEntry:
        entry = self.get_learning_entry(entry_id)
        if not entry:
            raise ValueError(f"learning entry {entry_id} not found")
        for key, value in values.items():
            setattr(entry, key, value)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    # activities

    def list_activities(self, uid: str, *, types: Iterable[str] | None = None, limit: int = 50) -> list[Activity]:
        statement = select(Activity).where(Activity.uid == uid)
        if types is not None:
            statement = statement.where(Activity.type.in_(list(types)))
        statement = statement.order_by(Activity.created_at.desc(), Activity.id.desc()).limit(limit)
        return list(self.session.scalars(statement).all())

    def count_activities(self, uid: str) -> int:
        return int(self.session.scalar(select(func.count(Activity.id)).where(Activity.uid == uid)) or 0)

    # tasks

    def create_task(
        self,
        *,
        user_id: str,
        task_type: str,
        payload: dict[str, Any],
        target_id: str = "",
    ) -> AnalysisTask:
        task = AnalysisTask(
            user_id=user_id,
            type=task_type,
            status="queued",
            progress=0,
            stage="Pending...",
            payload=payload,
            target_id=target_id,
        )
        self.session.add(task)
        self.session.commit()
        self.session.refresh(task)
        return task

    def get_task(self, task_id: int) -> AnalysisTask | None:
        return self.session.get(AnalysisTask, task_id, populate_existing=True)

    def list_tasks(
        self,
        user_id: str,
        *,
        statuses: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[AnalysisTask]:
        statement = select(AnalysisTask).where(AnalysisTask.user_id == user_id)
        if statuses is not None:
            statement = statement.where(AnalysisTask.status.in_(list(statuses)))
        statement = statement.order_by(AnalysisTask.updated_at.desc(), AnalysisTask.id.desc())
        if limit is not None:
            statement = statement.limit(limit)
        statement = statement.execution_options(populate_existing=True)
        return list(self.session.scalars(statement).all())

    def next_queued_task(self) -> AnalysisTask | None:
        statement = (
            select(AnalysisTask)
            .where(AnalysisTask.status == "queued")
            .order_by(AnalysisTask.created_at.asc(), AnalysisTask.id.asc())
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(statement)

    def delete_task(self, task_id: int) -> None:
        self.session.execute(delete(AnalysisTask).where(AnalysisTask.id == task_id))
        self.session.commit()

    # accounts

    def create_deleted_account(
        self,
        *,
        uid: str,
        email: str,
        reason: str,
        profile_snapshot: dict[str, Any],
    ) -> DeletedAccount:
        item = DeletedAccount(uid=uid, email=email, reason=reason, profile_snapshot=profile_snapshot)
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    def get_deleted_account(self, uid: str) -> DeletedAccount | None:
        statement = (
            select(DeletedAccount)
            .where(and_(DeletedAccount.uid == uid, DeletedAccount.restored.is_(False)))
            .order_by(DeletedAccount.id.desc())
        )
        return self.session.scalar(statement)

    def find_deleted_account_by_email(self, email: str) -> DeletedAccount | None:
        statement = (
            select(DeletedAccount)
            .where(and_(DeletedAccount.email == email, DeletedAccount.restored.is_(False)))
            .order_by(DeletedAccount.id.desc())
        )
        return self.session.scalar(statement)

    def append_audit(
        self,
        *,
        actor_uid: str,
        target_uid: str,
        action: str,
        details_json: dict[str, Any] | None = None,
    ) -> AuditTrail:
        item = AuditTrail(
            actor_uid=actor_uid,
            target_uid=target_uid,
            action=action,
            details_json=details_json or {},
        )
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    def list_audit(self, target_uid: str) -> list[AuditTrail]:
        statement = select(AuditTrail).where(AuditTrail.target_uid == target_uid).order_by(AuditTrail.id.asc())
        return list(self.session.scalars(statement).all())

    # notifications

    def schedule_notification(
        self,
        *,
        user_id: str,
        title: str,
        body: str,
        route: str,
        params_json: dict[str, str],
        fire_at: datetime | None = None,
    ) -> ScheduledNotification:
        item = ScheduledNotification(
            user_id=user_id,
            title=title,
            body=body,
            route=route,
            params_json=params_json,
            fire_at=fire_at or utcnow(),
        )
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    def list_notifications(self, user_id: str, *, pending_only: bool = False) -> list[ScheduledNotification]:
        statement = select(ScheduledNotification).where(ScheduledNotification.user_id == user_id)
        if pending_only:
            statement = statement.where(ScheduledNotification.delivered.is_(False))
        statement = statement.order_by(ScheduledNotification.fire_at.asc(), ScheduledNotification.id.asc())
        return list(self.session.scalars(statement).all())

    def mark_notification_delivered(self, notification_id: int) -> ScheduledNotification:
        item = self.session.get(ScheduledNotification, notification_id)
        if not item:
            raise ValueError(f"notification {notification_id} not found")
        item.delivered = True
        self.session.commit()
        self.session.refresh(item)
        return item
