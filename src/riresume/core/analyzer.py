from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from riresume.core.events import EventBus
from riresume.core.history import HistoryManager, job_hash, resume_hash
from riresume.core.ledger import TokenLedger
from riresume.core.notifications import NotificationService
from riresume.core.scoring import Recommendation, calculate_ats_score, recommend_action
from riresume.llm.router import LLMRouter
from riresume.types import AnalysisRecord, GapAnalysis, JobPosting, ParsedResume

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AnalysisOutcome:
    analysis: AnalysisRecord
    gaps: GapAnalysis
    recommendation: Recommendation
    reused: bool = False


class ResumeAnalyzer:
    """Scores a resume against a posting and saves the result to history."""

    def __init__(self, session: Session, *, bus: EventBus | None = None, router: LLMRouter | None = None):
        self.session = session
        self.history = HistoryManager(session, bus)
        self.ledger = TokenLedger(session)
        self.notifications = NotificationService(session)
        self.router = router or LLMRouter()

    def analyze(
        self,
        *,
        user_id: str,
        job: JobPosting,
        resume: dict[str, Any],
        platform: str = "web",
    ) -> AnalysisOutcome:
        existing = self.history.find_existing_analysis(user_id, job_hash(job), resume_hash(resume))
        if existing is not None:
            logger.info("Reusing analysis %s for %s", existing.id, user_id)
            return self._outcome(existing, reused=True)

        self.ledger.check_activity(user_id, "gap_analysis")
        match, gaps = self.router.analyze_match(job=job, resume=ParsedResume.model_validate(resume))
        score = calculate_ats_score(match)
        recommendation = recommend_action(score, gaps)

        charge = self.ledger.log_activity(
            "gap_analysis",
            user_id=user_id,
            description=f"Analyzed resume for {job.title or 'untitled job'}",
            resource_name=job.title,
            ai_provider=self.router.last_provider,
            platform=platform,
            context={"ats_score": score, "gaps": gaps.model_dump()},
        )
        try:
            analysis = self.history.save_analysis(
                user_id=user_id,
                job=job,
                resume=resume,
                match_analysis=match,
                ats_score=score,
                action=recommendation.action,
            )
        except Exception:
            self.session.rollback()
            self.ledger.refund(charge, reason=f"Analysis for {job.title or 'untitled job'} was not saved")
            raise
        self.notifications.notify_analysis_complete(user_id, job.title, job.company, score, analysis.id)
        return AnalysisOutcome(analysis=analysis, gaps=gaps, recommendation=recommendation)

    def _outcome(self, analysis: AnalysisRecord, *, reused: bool) -> AnalysisOutcome:
        gaps = GapAnalysis()
        match = analysis.match_analysis
        if match:
            # Gaps are not stored; rebuild them from the saved missing skills.
            gaps = self._gaps_from_missing(match)
        return AnalysisOutcome(
            analysis=analysis,
            gaps=gaps,
            recommendation=recommend_action(analysis.ats_score, gaps),
            reused=reused,
        )

    @staticmethod
    def _gaps_from_missing(match: dict[str, Any]) -> GapAnalysis:
        missing = match.get("missing_skills") or []
        total = len(missing) + len(match.get("matched_skills") or []) + len(match.get("partial_matches") or [])
        critical = [
            {"skill": item.get("skill", ""), "importance": item.get("importance", "medium")}
            for item in missing
            if item.get("importance") in ("critical", "high")
        ]
        minor = [
            {"skill": item.get("skill", ""), "importance": item.get("importance", "medium")}
            for item in missing
            if item.get("importance") not in ("critical", "high")
        ]
        gap_score = (len(missing) / total) * 100 if total else 0.0
        return GapAnalysis.model_validate(
            {"critical_gaps": critical, "minor_gaps": minor, "total_gap_score": round(gap_score, 1)}
        )
