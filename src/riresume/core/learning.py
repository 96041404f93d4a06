from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from riresume.core.functions import FunctionsClient
from riresume.core.ledger import TokenLedger
from riresume.core.notifications import NotificationService
from riresume.db.base import utcnow
from riresume.db.models import LearningEntry
from riresume.db.repositories import Repository
from riresume.errors import AuthorizationError, CallableFunctionError, NotFoundError
from riresume.types import AnalysisRecord, LearningEntryRecord, LearningStatus, MatchAnalysis

logger = logging.getLogger(__name__)

LEARNING_STATUSES: tuple[LearningStatus, ...] = ("not_started", "in_progress", "completed")


class LearningService:
    def __init__(self, session: Session, functions: FunctionsClient | None = None):
        self.session = session
        self.repo = Repository(session)
        self.functions = functions

    def add_entry(
        self,
        *,
        user_id: str,
        skill: str,
        importance: str = "medium",
        job_title: str = "",
        analysis_id: int | None = None,
    ) -> LearningEntryRecord:
        existing = self.repo.find_learning_entry(user_id, skill)
        if existing is not None:
            return LearningEntryRecord.model_validate(existing)
        entry = self.repo.add_learning_entry(
            user_id=user_id,
            values={
                "skill": skill,
                "importance": importance,
                "job_title": job_title,
                "analysis_id": analysis_id,
            },
        )
        return LearningEntryRecord.model_validate(entry)

    def add_from_analysis(self, analysis: AnalysisRecord) -> list[LearningEntryRecord]:
        match = MatchAnalysis.model_validate(analysis.match_analysis or {})
        entries = [
            self.add_entry(
                user_id=analysis.user_id,
                skill=gap.skill,
                importance=gap.importance,
                job_title=analysis.job_title,
                analysis_id=analysis.id,
            )
            for gap in match.missing_skills
        ]
        logger.info("Added %s skills from analysis %s to learning list", len(entries), analysis.id)
        return entries

    def list_entries(self, user_id: str) -> list[LearningEntryRecord]:
        return [LearningEntryRecord.model_validate(item) for item in self.repo.list_learning_entries(user_id)]

    def update_status(self, entry_id: int, status: str, *, user_id: str) -> LearningEntryRecord:
        if status not in LEARNING_STATUSES:
            raise ValueError(f"unsupported learning status '{status}'")
        self._load(entry_id, user_id)
        values: dict[str, object] = {"status": status}
        values["completed_at"] = utcnow() if status == "completed" else None
        return LearningEntryRecord.model_validate(self.repo.update_learning_entry(entry_id, values))

    def mark_learned(self, entry_id: int, *, user_id: str) -> LearningEntryRecord:
        record = self.update_status(entry_id, "completed", user_id=user_id)
        try:
            TokenLedger(self.session).log_activity(
                "skill_marked_learned",
                user_id=user_id,
                description=f"Marked {record.skill} as learned",
                resource_id=entry_id,
                resource_name=record.skill,
            )
        except Exception:
            logger.exception("Failed to log learned skill %s", entry_id)
        NotificationService(self.session).notify_learning_complete(user_id, record.skill)
        return record

    def generate_slideshow(
        self,
        entry_id: int,
        *,
        user_id: str,
        position: str = "",
        company: str = "",
    ) -> LearningEntryRecord:
        """Build a training slideshow for a learning entry through the remote callable.

        Entries that already have slides are returned unchanged and uncharged.
        Tokens are debited only once the callable returns usable slides.
        """
        entry = self._load(entry_id, user_id)
        if entry.slides:
            return LearningEntryRecord.model_validate(entry)

        skill = entry.skill
        position = position or entry.job_title
        company = company or self._company_for(entry)
        if not position or not company:
            raise ValueError("position and company are required for a training slideshow")

        ledger = TokenLedger(self.session)
        ledger.check_activity(user_id, "training_slideshow_generation")
        self.repo.update_learning_entry(entry_id, {"generation_status": "generating"})

        functions = self.functions or FunctionsClient()
        try:
            result = functions.call(
                "generateTrainingSlideshow",
                {"entryId": str(entry_id), "skill": skill, "position": position, "company": company},
            )
            if not isinstance(result, dict) or not result.get("success") or not result.get("slides"):
                raise CallableFunctionError("internal", "Failed to generate training content from server")
        except CallableFunctionError:
            self.repo.update_learning_entry(entry_id, {"generation_status": "failed"})
            raise

        slides = list(result["slides"])
        charge = ledger.log_activity(
            "training_slideshow_generation",
            user_id=user_id,
            description=f'Generated AI Training for "{skill}"',
            resource_id=entry_id,
            resource_name=skill,
            ai_provider="openai",
            context={"slides": len(slides)},
        )
        try:
            entry = self.repo.update_learning_entry(entry_id, {"slides": slides, "generation_status": "completed"})
        except Exception:
            self.session.rollback()
            ledger.refund(charge, reason=f'Training for "{skill}" was not saved')
            raise
        logger.info("Stored %s training slides for learning entry %s", len(slides), entry_id)
        return LearningEntryRecord.model_validate(entry)

    def _company_for(self, entry: LearningEntry) -> str:
        if entry.analysis_id is None:
            return ""
        analysis = self.repo.get_analysis(entry.analysis_id)
        return analysis.company if analysis is not None else ""

    def _load(self, entry_id: int, user_id: str) -> LearningEntry:
        entry = self.repo.get_learning_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"learning entry {entry_id} not found")
        if entry.user_id != user_id:
            raise AuthorizationError("learning entry belongs to another user")
        return entry
