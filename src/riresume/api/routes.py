from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from riresume.api.deps import get_current_user, get_db, get_stream_user
from riresume.api.schemas import (
    AnalyzeRequest,
    AnalyzeResponse,
    ApplicationStatusRequest,
    ArchiveRequest,
    BalanceResponse,
    CleanupResponse,
    CreditRequest,
    EmailCheckRequest,
    ExportRequest,
    LearningStatusRequest,
    PaymentIntentRequest,
    PaymentIntentResponse,
    PurchaseConfirmRequest,
    SlideshowRequest,
    TaskCreateRequest,
    TaskCreateResponse,
    UserSyncRequest,
    UserUpdateRequest,
)
from riresume.core.accounts import AccountService
from riresume.core.analyzer import ResumeAnalyzer
from riresume.core.applications import ApplicationService
from riresume.core.events import analysis_topic, task_topic, user_tasks_topic
from riresume.core.export import export_docx, export_pdf
from riresume.core.functions import FunctionsClient
from riresume.core.history import HistoryManager
from riresume.core.job_fetcher import fetch_job_posting
from riresume.core.learning import LearningService
from riresume.core.ledger import TokenLedger
from riresume.core.payments import PaymentService
from riresume.core.runtime import get_event_bus
from riresume.core.tasks import TaskQueueClient
from riresume.core.worker import ANALYSIS_TARGET_TYPES, TASK_ACTIVITIES
from riresume.db.repositories import Repository
from riresume.errors import AnalysisLockedError
from riresume.types import (
    ActivityRecord,
    AnalysisRecord,
    ApplicationRecord,
    LearningEntryRecord,
    ParsedResume,
    TaskRecord,
    UserRecord,
)

router = APIRouter(prefix="/api", tags=["api"])


@router.post("/users/sync", response_model=UserRecord)
def sync_user(payload: UserSyncRequest, db: Session = Depends(get_db)) -> UserRecord:
    return AccountService(db).sync_user_profile(
        uid=payload.uid,
        email=payload.email,
        display_name=payload.display_name,
        provider=payload.provider,
    )


@router.post("/users/check-email")
def check_email(payload: EmailCheckRequest, db: Session = Depends(get_db)) -> dict[str, Any]:
    return AccountService(db).check_email(payload.email)


@router.get("/users/me", response_model=UserRecord)
def get_me(uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> UserRecord:
    return AccountService(db).get_profile(uid)


@router.patch("/users/me", response_model=UserRecord)
def update_me(
    payload: UserUpdateRequest,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> UserRecord:
    return AccountService(db).update_profile(
        uid,
        display_name=payload.display_name,
        notifications_enabled=payload.notifications_enabled,
    )


@router.delete("/users/me")
def delete_me(
    reason: str = "",
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, bool]:
    AccountService(db, functions=FunctionsClient()).archive_and_delete(uid, reason=reason)
    return {"deleted": True}


@router.post("/admin/users/{target_uid}/restore", response_model=UserRecord)
def restore_user(target_uid: str, uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> UserRecord:
    return AccountService(db, functions=FunctionsClient()).restore_account(target_uid, actor_uid=uid)


@router.post("/admin/tokens/credit", response_model=ActivityRecord)
def credit_tokens(
    payload: CreditRequest,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActivityRecord:
    return AccountService(db).admin_credit(
        actor_uid=uid,
        target_uid=payload.target_uid,
        amount=payload.amount,
        reason=payload.reason,
    )


@router.post("/analyses", response_model=AnalyzeResponse)
def analyze(payload: AnalyzeRequest, uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> AnalyzeResponse:
    job = payload.job
    if job is None:
        if not payload.job_url:
            raise HTTPException(status_code=400, detail="Provide a job or a job_url")
        job = fetch_job_posting(payload.job_url)
        if job is None:
            raise HTTPException(status_code=502, detail="Could not fetch the job posting")

    outcome = ResumeAnalyzer(db).analyze(user_id=uid, job=job, resume=payload.resume, platform=payload.platform)
    return AnalyzeResponse(
        analysis_id=outcome.analysis.id,
        ats_score=outcome.analysis.ats_score,
        reused=outcome.reused,
        ready=outcome.recommendation.action == "optimize",
        action=outcome.recommendation.action,
        confidence=outcome.recommendation.confidence,
        reasoning=outcome.recommendation.reasoning,
        gaps=outcome.gaps.model_dump(),
    )


@router.get("/analyses", response_model=list[AnalysisRecord])
def list_analyses(
    limit: int = 50,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[AnalysisRecord]:
    return HistoryManager(db).list_history(uid, limit=limit)


@router.get("/analyses/{analysis_id}", response_model=AnalysisRecord)
def get_analysis(analysis_id: int, uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> AnalysisRecord:
    return HistoryManager(db).get_analysis(analysis_id, user_id=uid)


@router.post("/analyses/{analysis_id}/promote", response_model=AnalysisRecord)
def promote_draft(analysis_id: int, uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> AnalysisRecord:
    return HistoryManager(db).promote_draft_to_final(analysis_id, user_id=uid)


@router.post("/analyses/{analysis_id}/discard", response_model=AnalysisRecord)
def discard_draft(analysis_id: int, uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> AnalysisRecord:
    return HistoryManager(db).discard_draft(analysis_id, user_id=uid)


@router.delete("/analyses/{analysis_id}")
def delete_analysis(analysis_id: int, uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> dict[str, bool]:
    HistoryManager(db).delete_analysis(analysis_id, user_id=uid)
    return {"deleted": True}


@router.post("/analyses/{analysis_id}/learning", response_model=list[LearningEntryRecord])
def add_missing_skills_to_learning(
    analysis_id: int,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[LearningEntryRecord]:
    analysis = HistoryManager(db).get_analysis(analysis_id, user_id=uid)
    return LearningService(db).add_from_analysis(analysis)


@router.post("/analyses/{analysis_id}/export")
def export_resume(
    analysis_id: int,
    payload: ExportRequest,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> FileResponse:
    analysis = HistoryManager(db).get_analysis(analysis_id, user_id=uid)
    source = {
        "final": analysis.optimized_resume,
        "draft": analysis.draft_optimized_resume,
        "original": analysis.resume,
    }[payload.source]
    if source is None:
        raise HTTPException(status_code=409, detail=f"Analysis has no {payload.source} resume")

    resume = ParsedResume.model_validate(source)
    path = export_pdf(resume) if payload.format == "pdf" else export_docx(resume)
    TokenLedger(db).log_activity(
        "pdf_export",
        user_id=uid,
        description=f"Exported {payload.source} resume as {payload.format}",
        resource_id=analysis_id,
        resource_name=analysis.job_title,
    )
    return FileResponse(str(path), filename=path.name)


@router.post("/tasks", response_model=TaskCreateResponse)
def create_task(payload: TaskCreateRequest, uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> TaskCreateResponse:
    key = "analysis_id" if payload.type in ANALYSIS_TARGET_TYPES else "application_id"
    target = payload.target_id or payload.payload.get(key)
    if target is None or not str(target).isdigit():
        raise HTTPException(status_code=400, detail=f"{payload.type} needs a numeric {key}")

    if payload.type in ANALYSIS_TARGET_TYPES:
        analysis = HistoryManager(db).get_analysis(int(target), user_id=uid)
        if analysis.is_locked:
            raise AnalysisLockedError(analysis.id)
    else:
        ApplicationService(db).get_application(int(target), user_id=uid)

    TokenLedger(db).check_activity(uid, TASK_ACTIVITIES[payload.type])
    client = TaskQueueClient(db)
    task_id = client.create_task(
        payload.type,
        {**payload.payload, key: int(target)},
        user_id=uid,
        target_id=str(target),
    )
    return TaskCreateResponse(task_id=task_id)


@router.get("/tasks", response_model=list[TaskRecord])
def list_tasks(uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> list[TaskRecord]:
    return TaskQueueClient(db).list_active_tasks(uid)


@router.get("/tasks/{task_id}", response_model=TaskRecord)
def get_task(task_id: int, uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> TaskRecord:
    task = TaskQueueClient(db).get_task(task_id)
    if task is None or task.user_id != uid:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@router.delete("/tasks/{task_id}")
def cancel_task(task_id: int, uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> dict[str, bool]:
    TaskQueueClient(db).cancel_task(task_id, uid)
    return {"cancelled": True}


@router.post("/tasks/cleanup", response_model=CleanupResponse)
def cleanup_tasks(uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> CleanupResponse:
    return CleanupResponse(failed=TaskQueueClient(db).cleanup_stale_tasks(uid))


@router.get("/tokens/balance", response_model=BalanceResponse)
def get_balance(uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> BalanceResponse:
    return BalanceResponse(uid=uid, token_balance=TokenLedger(db).get_balance(uid))


@router.get("/tokens/activity", response_model=list[ActivityRecord])
def get_activity(
    limit: int = 20,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ActivityRecord]:
    return [ActivityRecord.model_validate(row) for row in TokenLedger(db).recent_activity(uid, limit=limit)]


@router.get("/tokens/purchases", response_model=list[ActivityRecord])
def get_purchases(uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> list[ActivityRecord]:
    return [ActivityRecord.model_validate(row) for row in TokenLedger(db).purchase_history(uid)]


@router.post("/payments/intent", response_model=PaymentIntentResponse)
def create_payment_intent(
    payload: PaymentIntentRequest,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> PaymentIntentResponse:
    return PaymentIntentResponse.model_validate(PaymentService(db).create_intent(uid, payload.amount))


@router.post("/payments/confirm", response_model=ActivityRecord)
def confirm_purchase(
    payload: PurchaseConfirmRequest,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ActivityRecord:
    return PaymentService(db).confirm_purchase(uid, payload.tokens, payload.package_id, payload.amount)


@router.get("/applications", response_model=list[ApplicationRecord])
def list_applications(
    include_archived: bool = True,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> list[ApplicationRecord]:
    return ApplicationService(db).list_applications(uid, include_archived=include_archived)


@router.get("/applications/{application_id}", response_model=ApplicationRecord)
def get_application(
    application_id: int,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApplicationRecord:
    return ApplicationService(db).get_application(application_id, user_id=uid)


@router.post("/applications/{application_id}/status", response_model=ApplicationRecord)
def update_application_status(
    application_id: int,
    payload: ApplicationStatusRequest,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApplicationRecord:
    record = ApplicationService(db).update_status(
        application_id,
        payload.stage,
        user_id=uid,
        note=payload.note,
        custom_stage_name=payload.custom_stage_name,
        occurred_at=payload.occurred_at,
    )
    TokenLedger(db).log_activity(
        "application_status_update",
        user_id=uid,
        description=f"{record.job_title} moved to {payload.stage}",
        resource_id=application_id,
        resource_name=record.job_title,
    )
    return record


@router.post("/applications/{application_id}/archive", response_model=ApplicationRecord)
def archive_application(
    application_id: int,
    payload: ArchiveRequest,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> ApplicationRecord:
    return ApplicationService(db).set_archived(application_id, payload.archived, user_id=uid)


@router.get("/learning", response_model=list[LearningEntryRecord])
def list_learning(uid: str = Depends(get_current_user), db: Session = Depends(get_db)) -> list[LearningEntryRecord]:
    return LearningService(db).list_entries(uid)


@router.post("/learning/{entry_id}/status", response_model=LearningEntryRecord)
def update_learning(
    entry_id: int,
    payload: LearningStatusRequest,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> LearningEntryRecord:
    service = LearningService(db)
    if payload.status == "completed":
        return service.mark_learned(entry_id, user_id=uid)
    return service.update_status(entry_id, payload.status, user_id=uid)


@router.post("/learning/{entry_id}/slideshow", response_model=LearningEntryRecord)
def generate_learning_slideshow(
    entry_id: int,
    payload: SlideshowRequest | None = None,
    uid: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> LearningEntryRecord:
    payload = payload or SlideshowRequest()
    return LearningService(db, functions=FunctionsClient()).generate_slideshow(
        entry_id, user_id=uid, position=payload.position, company=payload.company
    )


async def _stream(websocket: WebSocket, topic: str, *, allowed: bool) -> None:
    if not allowed:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    await websocket.accept()
    event_bus = get_event_bus()
    try:
        async for event in event_bus.subscribe(topic):
            await websocket.send_json(event)
    except WebSocketDisconnect:
        return


@router.websocket("/tasks/{task_id}/stream")
async def stream_task(
    websocket: WebSocket,
    task_id: int,
    uid: str | None = Depends(get_stream_user),
    db: Session = Depends(get_db),
) -> None:
    task = Repository(db).get_task(task_id)
    await _stream(websocket, task_topic(task_id), allowed=task is not None and task.user_id == uid)


@router.websocket("/analyses/{analysis_id}/stream")
async def stream_analysis(
    websocket: WebSocket,
    analysis_id: int,
    uid: str | None = Depends(get_stream_user),
    db: Session = Depends(get_db),
) -> None:
    analysis = Repository(db).get_analysis(analysis_id)
    await _stream(websocket, analysis_topic(analysis_id), allowed=analysis is not None and analysis.user_id == uid)


@router.websocket("/users/{user_id}/tasks/stream")
async def stream_user_tasks(websocket: WebSocket, user_id: str, uid: str | None = Depends(get_stream_user)) -> None:
    await _stream(websocket, user_tasks_topic(user_id), allowed=uid is not None and uid == user_id)
