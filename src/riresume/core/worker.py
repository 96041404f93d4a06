from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.orm import Session

from riresume.config import Settings, get_settings
from riresume.core.applications import ApplicationService
from riresume.core.drafts import ResultData
from riresume.core.events import EventBus
from riresume.core.history import HistoryManager
from riresume.core.ledger import TokenLedger
from riresume.core.notifications import NotificationService
from riresume.core.runtime import get_event_bus
from riresume.core.scoring import calculate_ats_score
from riresume.core.tasks import FailureReason, TaskQueueClient
from riresume.db.models import Activity
from riresume.db.repositories import Repository
from riresume.errors import (
    AnalysisLockedError,
    AuthorizationError,
    InsufficientBalanceError,
    InvalidTaskTransition,
    NotFoundError,
    TaskGoneError,
)
from riresume.llm.router import LLMRouter
from riresume.types import AnalysisRecord, ApplicationRecord, JobPosting, MatchAnalysis, ParsedResume, TaskRecord

logger = logging.getLogger(__name__)

# Ledger activity charged for each task type.
TASK_ACTIVITIES = {
    "optimize_resume": "resume_optimized",
    "add_skill": "skill_incorporation",
    "cover_letter": "cover_letter_generation",
    "prep_guide": "interview_prep_generation",
}
ANALYSIS_TARGET_TYPES = {"optimize_resume", "add_skill"}


class TaskWorker:
    """Processes queued tasks one at a time.

    Tokens are debited after the last cancellation check and before results
    are written. A failed debit leaves the analysis untouched, and a failed
    write refunds the debit. A task deleted mid-flight stops the work silently.
    """

    def __init__(
        self,
        session: Session,
        *,
        bus: EventBus | None = None,
        router: LLMRouter | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.bus = bus or get_event_bus()
        self.repo = Repository(session)
        self.router = router or LLMRouter(self.settings)
        self.tasks = TaskQueueClient(session, self.bus, self.settings)
        self.history = HistoryManager(session, self.bus)
        self.applications = ApplicationService(session, self.bus)
        self.ledger = TokenLedger(session)
        self.notifications = NotificationService(session)
        self._handlers: dict[str, Callable[[TaskRecord], str]] = {
            "optimize_resume": self._optimize_resume,
            "add_skill": self._add_skill,
            "cover_letter": self._cover_letter,
            "prep_guide": self._prep_guide,
        }

    def run_once(self) -> int | None:
        task = self.repo.next_queued_task()
        if task is None:
            return None
        self.process(task.id)
        return task.id

    def run_forever(self, *, poll_interval: float = 2.0, stop: threading.Event | None = None) -> None:
        stop = stop or threading.Event()
        logger.info("Task worker started")
        while not stop.is_set():
            if self.run_once() is None:
                stop.wait(poll_interval)
        logger.info("Task worker stopped")

    def process(self, task_id: int) -> TaskRecord | None:
        task = self.tasks.get_task(task_id)
        if task is None:
            logger.info("Task %s vanished before processing", task_id)
            return None

        handler = self._handlers.get(task.type)
        if handler is None:
            return self._fail(task_id, f"Unsupported task type '{task.type}'")

        try:
            result_id = handler(task)
        except TaskGoneError:
            logger.info("Task %s was deleted mid-flight; stopping", task_id)
            return None
        except NotFoundError as exc:
            return self._fail(task_id, f"NOT_FOUND: {exc}", FailureReason.NOT_FOUND)
        except (InsufficientBalanceError, AnalysisLockedError, AuthorizationError) as exc:
            return self._fail(task_id, str(exc))
        except Exception as exc:
            self.session.rollback()
            logger.exception("Task %s crashed", task_id)
            return self._fail(task_id, str(exc) or exc.__class__.__name__)

        try:
            return self.tasks.complete_task(task_id, result_id)
        except InvalidTaskTransition:
            logger.warning("Task %s finished after it was already terminal", task_id)
            return None

    def _fail(self, task_id: int, error: str, reason: FailureReason = FailureReason.ERROR) -> TaskRecord | None:
        try:
            return self.tasks.fail_task(task_id, error, reason)
        except InvalidTaskTransition:
            logger.warning("Task %s already terminal; dropping error %r", task_id, error)
            return None

    def _optimize_resume(self, task: TaskRecord) -> str:
        analysis = self._analysis(task)
        self.tasks.update_progress(task.id, 10, "Reading analysis...")

        job = JobPosting.model_validate(analysis.job)
        resume = ParsedResume.model_validate(analysis.optimized_resume or analysis.resume)
        match = MatchAnalysis.model_validate(analysis.match_analysis or {})
        reoptimizing = analysis.optimized_resume is not None

        self.tasks.update_progress(task.id, 30, "Optimizing resume...")
        result = self.router.optimize_resume(job=job, resume=resume, match=match)
        provider = self.router.last_provider

        self.tasks.update_progress(task.id, 70, "Scoring optimized resume...")
        new_match = result.match_analysis
        if new_match is None:
            new_match, _ = self.router.analyze_match(job=job, resume=result.optimized_resume)
        score = calculate_ats_score(new_match)

        self.tasks.update_progress(task.id, 90, "Saving draft...")
        charge = self.ledger.log_activity(
            "resume_reoptimization" if reoptimizing else TASK_ACTIVITIES[task.type],
            user_id=task.user_id,
            description=f"Optimized resume for {analysis.job_title or 'untitled job'}",
            resource_id=analysis.id,
            resource_name=analysis.job_title,
            ai_provider=provider,
            context={"task_id": task.id, "draft_ats_score": score},
        )

        with self._refund_on_error(charge, task):
            self.history.write_draft(
                analysis.id,
                ResultData(
                    optimized_resume=result.optimized_resume.model_dump(),
                    changes=[change.model_dump() for change in result.changes],
                    ats_score=score,
                    match_analysis=new_match.model_dump(),
                ),
            )
        self.notifications.notify_optimization_complete(
            task.user_id, analysis.job_title, analysis.company, analysis.id, score
        )
        return str(analysis.id)

    def _add_skill(self, task: TaskRecord) -> str:
        analysis = self._analysis(task)
        skills = [str(skill).strip() for skill in task.payload.get("skills", []) if str(skill).strip()]
        if not skills:
            raise ValueError("add_skill task needs at least one skill")
        self.tasks.update_progress(task.id, 20, "Adding skills...")

        job = JobPosting.model_validate(analysis.job)
        resume = ParsedResume.model_validate(analysis.optimized_resume or analysis.resume)
        result = self.router.add_skills(job=job, resume=resume, skills=skills)
        provider = self.router.last_provider

        self.tasks.update_progress(task.id, 60, "Rescoring resume...")
        new_match = result.match_analysis
        if new_match is None:
            new_match, _ = self.router.analyze_match(job=job, resume=result.optimized_resume)
        score = calculate_ats_score(new_match)

        self.tasks.update_progress(task.id, 90, "Saving draft...")
        charge = self.ledger.log_activity(
            TASK_ACTIVITIES[task.type],
            user_id=task.user_id,
            description=f"Added {', '.join(skills)} to resume",
            resource_id=analysis.id,
            resource_name=analysis.job_title,
            ai_provider=provider,
            context={"task_id": task.id, "skills": skills},
        )

        with self._refund_on_error(charge, task):
            self.history.write_draft(
                analysis.id,
                ResultData(
                    optimized_resume=result.optimized_resume.model_dump(),
                    changes=[change.model_dump() for change in result.changes],
                    ats_score=score,
                    match_analysis=new_match.model_dump(),
                ),
            )
        self.notifications.notify_skill_addition_complete(task.user_id, analysis.id)
        return str(analysis.id)

    def _cover_letter(self, task: TaskRecord) -> str:
        application, analysis = self._application(task)
        self.tasks.update_progress(task.id, 30, "Writing cover letter...")

        letter = self.router.cover_letter(job=self._job_for(application, analysis), resume=self._resume_for(analysis))
        charge = self.ledger.log_activity(
            TASK_ACTIVITIES[task.type],
            user_id=task.user_id,
            description=f"Cover letter for {application.job_title} at {application.company}",
            resource_id=application.id,
            resource_name=application.job_title,
            ai_provider=self.router.last_provider,
            context={"task_id": task.id},
        )
        with self._refund_on_error(charge, task):
            self.applications.save_cover_letter(application.id, letter)
        self.notifications.notify_cover_letter_complete(
            task.user_id, application.job_title, application.company, application.id
        )
        return str(application.id)

    def _prep_guide(self, task: TaskRecord) -> str:
        application, analysis = self._application(task)
        self.applications.update_prep_guide(application.id, status="generating")
        self.tasks.update_progress(task.id, 30, "Researching company...")

        try:
            guide = self.router.prep_guide(job=self._job_for(application, analysis), resume=self._resume_for(analysis))
            self.tasks.update_progress(task.id, 90, "Saving guide...")
            charge = self.ledger.log_activity(
                TASK_ACTIVITIES[task.type],
                user_id=task.user_id,
                description=f"Interview prep for {application.job_title} at {application.company}",
                resource_id=application.id,
                resource_name=application.job_title,
                ai_provider=self.router.last_provider,
                context={"task_id": task.id},
            )
        except Exception:
            self.applications.update_prep_guide(application.id, status="failed")
            raise

        with self._refund_on_error(charge, task):
            self.applications.update_prep_guide(application.id, status="completed", guide=guide.model_dump())
        self.notifications.notify_prep_guide_complete(
            task.user_id, application.job_title, application.company, application.id
        )
        return str(application.id)

    @contextmanager
    def _refund_on_error(self, charge: Activity, task: TaskRecord) -> Iterator[None]:
        try:
            yield
        except Exception:
            self.session.rollback()
            self.ledger.refund(charge, reason=f"Task {task.id} could not store its result")
            raise

    def _analysis(self, task: TaskRecord) -> AnalysisRecord:
        analysis_id = _target(task, "analysis_id")
        analysis = self.history.get_analysis(analysis_id, user_id=task.user_id)
        if analysis.is_locked:
            raise AnalysisLockedError(analysis.id)
        return analysis

    def _application(self, task: TaskRecord) -> tuple[ApplicationRecord, AnalysisRecord | None]:
        application = self.applications.get_application(_target(task, "application_id"), user_id=task.user_id)
        analysis = None
        if application.analysis_id is not None:
            try:
                analysis = self.history.get_analysis(application.analysis_id)
            except NotFoundError:
                logger.info("Application %s lost its analysis", application.id)
        return application, analysis

    @staticmethod
    def _job_for(application: ApplicationRecord, analysis: AnalysisRecord | None) -> JobPosting:
        if analysis is not None and analysis.job:
            return JobPosting.model_validate(analysis.job)
        return JobPosting(
            title=application.job_title,
            company=application.company,
            description=application.job_description,
        )

    @staticmethod
    def _resume_for(analysis: AnalysisRecord | None) -> ParsedResume:
        if analysis is None:
            return ParsedResume()
        return ParsedResume.model_validate(analysis.optimized_resume or analysis.resume)


def _target(task: TaskRecord, key: str) -> int:
    value: Any = task.payload.get(key) or task.target_id
    try:
        return int(value)
    except (TypeError, ValueError):
        raise NotFoundError(f"task {task.id} has no {key}") from None
