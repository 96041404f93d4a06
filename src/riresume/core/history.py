from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from riresume.core.applications import ApplicationService
from riresume.core.drafts import ResultData, discard, promote, propose, state_from_record, state_to_columns
from riresume.core.events import EventBus, publish_analysis
from riresume.core.ledger import TokenLedger
from riresume.core.runtime import get_event_bus
from riresume.core.scoring import calculate_ats_score
from riresume.db.models import Analysis
from riresume.db.repositories import Repository, hash_document
from riresume.errors import AnalysisLockedError, AuthorizationError, NotFoundError, NothingToPromoteError
from riresume.types import AnalysisRecord, JobPosting, MatchAnalysis

logger = logging.getLogger(__name__)


def job_hash(job: JobPosting | dict[str, Any]) -> str:
    data = job.model_dump() if isinstance(job, JobPosting) else job
    return hash_document(data)


def resume_hash(resume: dict[str, Any]) -> str:
    return hash_document(resume)


class HistoryManager:
    """Saved analyses and their draft/final lifecycle."""

    def __init__(self, session: Session, bus: EventBus | None = None):
        self.session = session
        self.repo = Repository(session)
        self.bus = bus or get_event_bus()
        self.applications = ApplicationService(session, self.bus)

    def save_analysis(
        self,
        *,
        user_id: str,
        job: JobPosting | dict[str, Any],
        resume: dict[str, Any],
        match_analysis: MatchAnalysis,
        ats_score: int | None = None,
        action: str = "",
    ) -> AnalysisRecord:
        posting = job if isinstance(job, JobPosting) else JobPosting.model_validate(job)
        score = calculate_ats_score(match_analysis) if ats_score is None else ats_score
        analysis = self.repo.create_analysis(
            user_id=user_id,
            values={
                "job_title": posting.title,
                "company": posting.company,
                "action": action,
                "job": posting.model_dump(),
                "resume": resume,
                "job_hash": job_hash(posting),
                "resume_hash": resume_hash(resume),
                "ats_score": score,
                "match_analysis": match_analysis.model_dump(),
                "analysis_status": "pending_resume_update",
            },
        )
        logger.info("Saved analysis %s for %s (score %s)", analysis.id, user_id, score)
        return self._publish(analysis)

    def find_existing_analysis(self, user_id: str, job_hash: str, resume_hash: str) -> AnalysisRecord | None:
        analysis = self.repo.find_analysis_by_hashes(user_id, job_hash, resume_hash)
        return AnalysisRecord.model_validate(analysis) if analysis else None

    def get_analysis(self, analysis_id: int, *, user_id: str | None = None) -> AnalysisRecord:
        return AnalysisRecord.model_validate(self._load(analysis_id, user_id))

    def list_history(self, user_id: str, limit: int = 50) -> list[AnalysisRecord]:
        return [AnalysisRecord.model_validate(item) for item in self.repo.list_analyses(user_id, limit=limit)]

    def write_draft(self, analysis_id: int, proposed: ResultData) -> AnalysisRecord:
        analysis = self._load(analysis_id, None)
        if analysis.is_locked:
            raise AnalysisLockedError(analysis_id)

        state = propose(state_from_record(AnalysisRecord.model_validate(analysis)), proposed)
        values = state_to_columns(state)
        values["analysis_status"] = "draft_ready"
        analysis = self.repo.update_analysis(analysis_id, values)
        logger.info("Wrote draft for analysis %s", analysis_id)
        record = self._publish(analysis)
        self.applications.sync_analysis_status(analysis_id, record.analysis_status)
        return record

    def promote_draft_to_final(self, analysis_id: int, *, user_id: str | None = None) -> AnalysisRecord:
        analysis = self._load(analysis_id, user_id)
        try:
            state = promote(state_from_record(AnalysisRecord.model_validate(analysis)))
        except NothingToPromoteError:
            raise NothingToPromoteError(analysis_id) from None

        values = state_to_columns(state)
        values["analysis_status"] = "optimized"
        analysis = self.repo.update_analysis(analysis_id, values)
        logger.info("Promoted draft of analysis %s (score %s)", analysis_id, analysis.ats_score)
        record = self._publish(analysis)

        try:
            self.applications.upsert_from_analysis(record)
            self.applications.sync_analysis_status(analysis_id, record.analysis_status)
        except Exception:
            self.session.rollback()
            logger.exception("Failed to sync application for analysis %s", analysis_id)
        return self.get_analysis(analysis_id)

    def discard_draft(self, analysis_id: int, *, user_id: str | None = None) -> AnalysisRecord:
        analysis = self._load(analysis_id, user_id)
        state = discard(state_from_record(AnalysisRecord.model_validate(analysis)))
        values = {key: value for key, value in state_to_columns(state).items() if key.startswith("draft_")}
        values["analysis_status"] = "optimized" if analysis.optimized_resume is not None else "pending_resume_update"
        analysis = self.repo.update_analysis(analysis_id, values)
        logger.info("Discarded draft of analysis %s", analysis_id)
        record = self._publish(analysis)
        self.applications.sync_analysis_status(analysis_id, record.analysis_status)
        return record

    def delete_analysis(self, analysis_id: int, *, user_id: str) -> None:
        analysis = self._load(analysis_id, user_id)
        record = AnalysisRecord.model_validate(analysis)

        self.applications.delete_for_analysis(analysis_id)
        self.repo.delete_analysis(analysis_id)
        logger.info("Deleted analysis %s", analysis_id)
        publish_analysis(self.bus, record, deleted=True)

        try:
            TokenLedger(self.session).log_activity(
                "analysis_deleted",
                user_id=user_id,
                description=f"Deleted analysis for {record.job_title or 'untitled job'}",
                resource_id=analysis_id,
                resource_name=record.job_title,
                skip_token_deduction=True,
            )
        except Exception:
            logger.exception("Failed to log deletion of analysis %s", analysis_id)

    def _load(self, analysis_id: int, user_id: str | None) -> Analysis:
        analysis = self.repo.get_analysis(analysis_id)
        if analysis is None:
            raise NotFoundError(f"analysis {analysis_id} not found")
        if user_id is not None and analysis.user_id != user_id:
            raise AuthorizationError("analysis belongs to another user")
        return analysis

    def _publish(self, analysis: Analysis) -> AnalysisRecord:
        record = AnalysisRecord.model_validate(analysis)
        publish_analysis(self.bus, record)
        return record
