from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from riresume.types import ApplicationStage, JobPosting, LearningStatus, TaskType


class UserSyncRequest(BaseModel):
    uid: str
    email: str = ""
    display_name: str = ""
    provider: str = "password"


class UserUpdateRequest(BaseModel):
    display_name: str | None = None
    notifications_enabled: bool | None = None


class EmailCheckRequest(BaseModel):
    email: str


class AnalyzeRequest(BaseModel):
    job: JobPosting | None = None
    job_url: str = ""
    resume: dict[str, Any]
    platform: str = "web"


class AnalyzeResponse(BaseModel):
    analysis_id: int
    ats_score: int
    reused: bool = False
    ready: bool
    action: str
    confidence: float
    reasoning: str
    gaps: dict[str, Any] = Field(default_factory=dict)


class TaskCreateRequest(BaseModel):
    type: TaskType
    target_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class TaskCreateResponse(BaseModel):
    task_id: int


class CleanupResponse(BaseModel):
    failed: int


class BalanceResponse(BaseModel):
    uid: str
    token_balance: int


class CreditRequest(BaseModel):
    target_uid: str
    amount: int = Field(gt=0)
    reason: str = ""


class ApplicationStatusRequest(BaseModel):
    stage: ApplicationStage
    note: str = ""
    custom_stage_name: str = ""
    occurred_at: datetime | None = None


class ArchiveRequest(BaseModel):
    archived: bool = True


class LearningStatusRequest(BaseModel):
    status: LearningStatus


class SlideshowRequest(BaseModel):
    position: str = ""
    company: str = ""


class PaymentIntentRequest(BaseModel):
    amount: float = Field(gt=0)


class PaymentIntentResponse(BaseModel):
    client_secret: str
    amount_minor: int
    currency: str


class PurchaseConfirmRequest(BaseModel):
    tokens: int = Field(gt=0)
    package_id: str
    amount: float = Field(gt=0)


class ExportRequest(BaseModel):
    format: Literal["pdf", "docx"] = "pdf"
    source: Literal["final", "draft", "original"] = "final"
