from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Importance = Literal["critical", "high", "medium", "low"]
TaskType = Literal["optimize_resume", "add_skill", "prep_guide", "cover_letter"]
TaskStatus = Literal["queued", "processing", "completed", "failed"]
AnalysisStatus = Literal["pending_resume_update", "draft_ready", "optimized", "pending_skill_update"]
ApplicationStage = Literal[
    "not_applied",
    "submitted",
    "phone_screen",
    "technical",
    "final_round",
    "offer",
    "rejected",
    "withdrawn",
    "other",
]
RecommendedAction = Literal["optimize", "upskill", "apply_junior", "not_suitable"]
LearningStatus = Literal["not_started", "in_progress", "completed"]
Platform = Literal["ios", "android", "web", "cli"]


class SkillMatch(BaseModel):
    skill: str
    importance: Importance = "medium"
    user_has: bool = False
    transferable_from: str = ""
    confidence: float = 0.0


class ExperienceMatch(BaseModel):
    required: str = ""
    user: str = ""
    match: float = 0.0


class MatchAnalysis(BaseModel):
    matched_skills: list[SkillMatch] = Field(default_factory=list)
    partial_matches: list[SkillMatch] = Field(default_factory=list)
    missing_skills: list[SkillMatch] = Field(default_factory=list)
    keyword_density: float = 0.0
    experience_match: ExperienceMatch = Field(default_factory=ExperienceMatch)


class Gap(BaseModel):
    skill: str
    importance: Importance = "medium"
    has_transferable: bool = False
    transferable_skill: str = ""
    estimated_learning_time: str = ""


class GapAnalysis(BaseModel):
    critical_gaps: list[Gap] = Field(default_factory=list)
    minor_gaps: list[Gap] = Field(default_factory=list)
    total_gap_score: float = 0.0


class JobPosting(BaseModel):
    title: str = ""
    company: str = ""
    location: str = ""
    url: str = ""
    description: str = ""
    requirements: list[str] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)


class ParsedResume(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    email: str = ""
    summary: str = ""
    skills: list[str] = Field(default_factory=list)
    experience: list[dict[str, Any]] = Field(default_factory=list)
    education: list[dict[str, Any]] = Field(default_factory=list)


class ResumeChange(BaseModel):
    section: str
    before: str = ""
    after: str = ""
    reason: str = ""


class OptimizationResult(BaseModel):
    optimized_resume: ParsedResume
    changes: list[ResumeChange] = Field(default_factory=list)
    match_analysis: MatchAnalysis | None = None


class PrepGuide(BaseModel):
    company_intelligence: str = ""
    role_analysis: str = ""
    technical_prep: str = ""
    behavioral_framework: str = ""
    questions_to_ask: list[str] = Field(default_factory=list)


class AnalysisRecord(BaseModel):
    """Full snapshot of a saved analysis, as carried on change events."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    job_title: str = ""
    company: str = ""
    action: str = ""
    job: dict[str, Any] = Field(default_factory=dict)
    resume: dict[str, Any] = Field(default_factory=dict)
    ats_score: int = 0
    match_analysis: dict[str, Any] = Field(default_factory=dict)
    optimized_resume: dict[str, Any] | None = None
    changes: list[dict[str, Any]] | None = None
    optimized_match_analysis: dict[str, Any] | None = None
    draft_optimized_resume: dict[str, Any] | None = None
    draft_changes: list[dict[str, Any]] | None = None
    draft_ats_score: int | None = None
    draft_match_analysis: dict[str, Any] | None = None
    analysis_status: str = "pending_resume_update"
    application_status: str = ""
    application_id: int | None = None
    is_locked: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def has_draft(self) -> bool:
        return any(
            value is not None
            for value in (
                self.draft_optimized_resume,
                self.draft_changes,
                self.draft_ats_score,
                self.draft_match_analysis,
            )
        )


class TaskRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    type: str
    status: str
    progress: int = 0
    stage: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
    target_id: str = ""
    result_id: str = ""
    error: str = ""
    failure_reason: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("progress")
    @classmethod
    def validate_progress(cls, value: int) -> int:
        if value < 0 or value > 100:
            raise ValueError("progress must be between 0 and 100")
        return value


class NotificationPayload(BaseModel):
    route: str
    params: dict[str, str] = Field(default_factory=dict)


class ModelResponse(BaseModel):
    content: str
    raw: dict[str, Any] = Field(default_factory=dict)


class TimelineEventRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    stage: str
    occurred_at: datetime
    note: str = ""
    custom_stage_name: str = ""


class ApplicationRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    analysis_id: int | None = None
    job_title: str = ""
    company: str = ""
    job_description: str = ""
    ats_score: int = 0
    current_stage: str = "not_applied"
    custom_stage_name: str = ""
    analysis_status: str = ""
    is_archived: bool = False
    last_status_update: datetime | None = None
    last_resume_update_at: datetime | None = None
    cover_letter: str = ""
    cover_letter_generated_at: datetime | None = None
    prep_guide_json: dict[str, Any] = Field(default_factory=dict)
    prep_guide_status: str = ""
    timeline: list[TimelineEventRecord] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class LearningEntryRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    analysis_id: int | None = None
    skill: str
    importance: str = "medium"
    job_title: str = ""
    status: str = "not_started"
    completed_at: datetime | None = None
    slides: list[dict[str, Any]] | None = None
    generation_status: str = "idle"
    created_at: datetime | None = None


class ActivityRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    uid: str
    type: str
    description: str = ""
    resource_id: str = ""
    resource_name: str = ""
    tokens_used: int = 0
    token_balance: int = 0
    ai_provider: str = "none"
    status: str = "completed"
    platform: str = "web"
    context_json: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None


class UserRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    uid: str
    email: str = ""
    display_name: str = "User"
    provider: str = "password"
    role: str = "user"
    account_status: str = "active"
    token_balance: int = 0
    total_tokens_used: int = 0
    total_tokens_purchased: int = 0
    notifications_enabled: bool = True
    last_login_at: datetime | None = None
    created_at: datetime | None = None
