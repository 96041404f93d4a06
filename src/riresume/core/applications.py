from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from riresume.core.events import EventBus, publish_analysis
from riresume.core.runtime import get_event_bus
from riresume.db.base import utcnow
from riresume.db.models import Application
from riresume.db.repositories import Repository
from riresume.errors import AuthorizationError, NotFoundError
from riresume.types import AnalysisRecord, ApplicationRecord, TimelineEventRecord

logger = logging.getLogger(__name__)

ARCHIVE_STAGES = {"offer", "rejected", "withdrawn"}
LOCKING_STAGES = {"submitted", "phone_screen", "technical", "final_round", "offer", "rejected", "withdrawn"}
APPLICATION_STAGES = (
    "not_applied",
    "submitted",
    "phone_screen",
    "technical",
    "final_round",
    "offer",
    "rejected",
    "withdrawn",
    "other",
)


class ApplicationService:
    def __init__(self, session: Session, bus: EventBus | None = None):
        self.repo = Repository(session)
        self.bus = bus or get_event_bus()

    def get_application(self, application_id: int, *, user_id: str | None = None) -> ApplicationRecord:
        return self._record(self._load(application_id, user_id))

    def get_for_analysis(self, analysis_id: int) -> ApplicationRecord | None:
        application = self.repo.get_application_for_analysis(analysis_id)
        return self._record(application) if application else None

    def list_applications(self, user_id: str, *, include_archived: bool = True) -> list[ApplicationRecord]:
        return [
            self._record(item)
            for item in self.repo.list_applications(user_id, include_archived=include_archived)
        ]

    def upsert_from_analysis(self, analysis: AnalysisRecord) -> ApplicationRecord:
        """Create the application for ``analysis`` or refresh its score and labels.

        An existing application only takes the new score, title and company.
        """
        now = utcnow()
        existing = self.repo.get_application_for_analysis(analysis.id)
        if existing is not None:
            application = self.repo.update_application(
                existing.id,
                {
                    "ats_score": analysis.ats_score,
                    "job_title": analysis.job_title or existing.job_title,
                    "company": analysis.company or existing.company,
                },
            )
            logger.info("Refreshed application %s from analysis %s", application.id, analysis.id)
            return self._record(application)

        application = self.repo.create_application(
            user_id=analysis.user_id,
            values={
                "analysis_id": analysis.id,
                "job_title": analysis.job_title or "Untitled Position",
                "company": analysis.company or "Unknown Company",
                "job_description": str(analysis.job.get("description", "")),
                "ats_score": analysis.ats_score,
                "current_stage": "not_applied",
                "analysis_status": analysis.analysis_status,
                "last_status_update": now,
                "last_resume_update_at": now,
            },
        )
        self.repo.append_timeline_event(
            application_id=application.id,
            stage="not_applied",
            occurred_at=now,
            note="Moved to Applications from Analysis",
        )
        self.repo.update_analysis(analysis.id, {"application_id": application.id})
        logger.info("Created application %s for analysis %s", application.id, analysis.id)
        return self.get_application(application.id)

    def update_status(
        self,
        application_id: int,
        stage: str,
        *,
        user_id: str | None = None,
        note: str = "",
        custom_stage_name: str = "",
        occurred_at: datetime | None = None,
    ) -> ApplicationRecord:
        if stage not in APPLICATION_STAGES:
            raise ValueError(f"unsupported application stage '{stage}'")

        application = self._load(application_id, user_id)
        when = occurred_at or utcnow()
        self.repo.append_timeline_event(
            application_id=application_id,
            stage=stage,
            occurred_at=when,
            note=note,
            custom_stage_name=custom_stage_name,
        )
        values: dict[str, Any] = {
            "current_stage": stage,
            "custom_stage_name": custom_stage_name,
            "last_status_update": when,
        }
        if stage in ARCHIVE_STAGES:
            values["is_archived"] = True
        application = self.repo.update_application(application_id, values)
        logger.info("Application %s moved to %s", application_id, stage)

        if application.analysis_id is not None:
            self._sync_analysis(application.analysis_id, stage)
        return self.get_application(application_id)

    def set_archived(self, application_id: int, archived: bool, *, user_id: str | None = None) -> ApplicationRecord:
        self._load(application_id, user_id)
        return self._record(self.repo.update_application(application_id, {"is_archived": archived}))

    def save_cover_letter(self, application_id: int, content: str, *, user_id: str | None = None) -> ApplicationRecord:
        self._load(application_id, user_id)
        application = self.repo.update_application(
            application_id,
            {"cover_letter": content, "cover_letter_generated_at": utcnow()},
        )
        return self._record(application)

    def update_prep_guide(
        self,
        application_id: int,
        *,
        status: str,
        guide: dict[str, Any] | None = None,
    ) -> ApplicationRecord:
        values: dict[str, Any] = {"prep_guide_status": status}
        if guide is not None:
            values["prep_guide_json"] = guide
        self._load(application_id, None)
        return self._record(self.repo.update_application(application_id, values))

    def sync_analysis_status(self, analysis_id: int, analysis_status: str) -> None:
        """Copy the analysis status onto its application, if any. Best-effort."""
        try:
            application = self.repo.get_application_for_analysis(analysis_id)
            if application is not None:
                self.repo.update_application(application.id, {"analysis_status": analysis_status})
        except Exception:
            self.repo.session.rollback()
            logger.exception("Failed to sync status of analysis %s to its application", analysis_id)

    def delete_for_analysis(self, analysis_id: int) -> bool:
        application = self.repo.get_application_for_analysis(analysis_id)
        if application is None:
            return False
        self.repo.delete_application(application.id)
        logger.info("Deleted application %s with analysis %s", application.id, analysis_id)
        return True

    def _sync_analysis(self, analysis_id: int, stage: str) -> None:
        try:
            analysis = self.repo.update_analysis(
                analysis_id,
                {"application_status": stage, "is_locked": stage in LOCKING_STAGES},
            )
            publish_analysis(self.bus, AnalysisRecord.model_validate(analysis))
        except Exception:
            self.repo.session.rollback()
            logger.exception("Failed to sync stage of application to analysis %s", analysis_id)

    def _load(self, application_id: int, user_id: str | None) -> Application:
        application = self.repo.get_application(application_id)
        if application is None:
            raise NotFoundError(f"application {application_id} not found")
        if user_id is not None and application.user_id != user_id:
            raise AuthorizationError("application belongs to another user")
        return application

    def _record(self, application: Application) -> ApplicationRecord:
        record = ApplicationRecord.model_validate(application)
        record.timeline = [
            TimelineEventRecord.model_validate(event) for event in self.repo.list_timeline(application.id)
        ]
        return record
