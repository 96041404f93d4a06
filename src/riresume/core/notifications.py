from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from riresume.db.repositories import Repository
from riresume.types import NotificationPayload

logger = logging.getLogger(__name__)

ANALYSIS_ROUTE = "/analysis-result"
APPLICATIONS_ROUTE = "/(tabs)/applications"
LEARNING_ROUTE = "/(tabs)/learning"


class NotificationService:
    """Schedules local notifications. Every send is best-effort."""

    def __init__(self, session: Session):
        self.repo = Repository(session)

    def schedule(self, user_id: str, title: str, body: str, payload: NotificationPayload | None = None) -> int | None:
        try:
            user = self.repo.get_user(user_id)
            if user is not None and not user.notifications_enabled:
                logger.debug("Notifications disabled for %s", user_id)
                return None
            payload = payload or NotificationPayload(route="")
            item = self.repo.schedule_notification(
                user_id=user_id,
                title=title,
                body=body,
                route=payload.route,
                params_json=payload.params,
            )
            return item.id
        except Exception:
            self.repo.session.rollback()
            logger.warning("Failed to schedule notification %r for %s", title, user_id, exc_info=True)
            return None

    def notify_analysis_complete(self, user_id: str, job_title: str, company: str, score: int, analysis_id: int) -> int | None:
        return self.schedule(
            user_id,
            "Analysis Complete",
            f"Your resume for {job_title} at {company} scored {score}%",
            NotificationPayload(route=ANALYSIS_ROUTE, params={"id": str(analysis_id)}),
        )

    def notify_optimization_complete(
        self,
        user_id: str,
        job_title: str,
        company: str,
        analysis_id: int,
        score: int | None = None,
    ) -> int | None:
        if score:
            body = f"Your resume for {job_title} at {company} scored {score}% after optimization"
        else:
            body = f"Your resume for {job_title} at {company} has been optimized"
        return self.schedule(
            user_id,
            "Resume Optimized",
            body,
            NotificationPayload(route=ANALYSIS_ROUTE, params={"id": str(analysis_id)}),
        )

    def notify_skill_addition_complete(self, user_id: str, analysis_id: int) -> int | None:
        return self.schedule(
            user_id,
            "Optimization Complete",
            "Your resume has been rewritten and optimized",
            NotificationPayload(route=ANALYSIS_ROUTE, params={"id": str(analysis_id)}),
        )

    def notify_validation_complete(self, user_id: str, job_title: str, analysis_id: int) -> int | None:
        return self.schedule(
            user_id,
            "Resume Saved",
            f"Your optimized resume for {job_title} has been validated and saved",
            NotificationPayload(route=ANALYSIS_ROUTE, params={"id": str(analysis_id)}),
        )

    def notify_prep_guide_complete(self, user_id: str, job_title: str, company: str, application_id: int) -> int | None:
        return self.schedule(
            user_id,
            "Prep Guide Ready",
            f"Your interview prep guide for {job_title} at {company} is ready",
            NotificationPayload(
                route=APPLICATIONS_ROUTE,
                params={"appId": str(application_id), "action": "viewPrep"},
            ),
        )

    def notify_cover_letter_complete(self, user_id: str, job_title: str, company: str, application_id: int) -> int | None:
        return self.schedule(
            user_id,
            "Cover Letter Ready",
            f"Your cover letter for {job_title} at {company} is ready",
            NotificationPayload(
                route=APPLICATIONS_ROUTE,
                params={"appId": str(application_id), "action": "viewCoverLetter"},
            ),
        )

    def notify_learning_complete(self, user_id: str, skill: str) -> int | None:
        return self.schedule(
            user_id,
            "Training Complete",
            f"You've completed the {skill} training module",
            NotificationPayload(route=LEARNING_ROUTE),
        )

    def pending(self, user_id: str) -> list[dict[str, object]]:
        return [
            {
                "id": item.id,
                "title": item.title,
                "body": item.body,
                "data": {"route": item.route, "params": item.params_json},
                "fire_at": item.fire_at,
            }
            for item in self.repo.list_notifications(user_id, pending_only=True)
        ]

    def mark_delivered(self, notification_id: int) -> None:
        self.repo.mark_notification_delivered(notification_id)
