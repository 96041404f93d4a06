from __future__ import annotations

import json
from pathlib import Path
from typing import Any, NoReturn

import typer
import uvicorn

from riresume.api.app import create_app
from riresume.config import get_settings
from riresume.core.accounts import AccountService
from riresume.core.analyzer import ResumeAnalyzer
from riresume.core.applications import ApplicationService
from riresume.core.export import export_docx, export_pdf
from riresume.core.functions import FunctionsClient
from riresume.core.history import HistoryManager
from riresume.core.job_fetcher import fetch_job_posting
from riresume.core.learning import LearningService
from riresume.core.ledger import TokenLedger
from riresume.core.tasks import TaskQueueClient
from riresume.core.worker import ANALYSIS_TARGET_TYPES, TASK_ACTIVITIES, TaskWorker
from riresume.db.init import init_database
from riresume.db.session import SessionLocal
from riresume.errors import RiResumeError
from riresume.logging_config import configure_logging
from riresume.types import ActivityRecord, JobPosting, ParsedResume

app = typer.Typer(help="RiResume CLI")
users_app = typer.Typer(help="User profiles and accounts")
analyses_app = typer.Typer(help="Saved analyses and drafts")
tasks_app = typer.Typer(help="Background task queue")
tokens_app = typer.Typer(help="Token balance and activity")
applications_app = typer.Typer(help="Application tracking")
learning_app = typer.Typer(help="Learning list and training")

app.add_typer(users_app, name="users")
app.add_typer(analyses_app, name="analyses")
app.add_typer(tasks_app, name="tasks")
app.add_typer(tokens_app, name="tokens")
app.add_typer(applications_app, name="applications")
app.add_typer(learning_app, name="learning")

_INITIALIZED = False


def ensure_initialized() -> None:
    global _INITIALIZED
    if _INITIALIZED:
        return
    init_database()
    _INITIALIZED = True


def _echo(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def _fail(exc: RiResumeError | ValueError) -> NoReturn:
    typer.echo(json.dumps({"ok": False, "error": str(exc)}, indent=2), err=True)
    raise typer.Exit(code=1)


@app.command("init")
def init_cmd() -> None:
    """Initialize database and data directories."""
    configure_logging()
    result = init_database()
    _echo({"ok": True, **result})


@users_app.command("sync")
def users_sync(
    uid: str = typer.Option(..., "--uid"),
    email: str = typer.Option("", "--email"),
    display_name: str = typer.Option("", "--display-name"),
    provider: str = typer.Option("password", "--provider"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            user = AccountService(db).sync_user_profile(
                uid=uid, email=email, display_name=display_name, provider=provider
            )
        except RiResumeError as exc:
            _fail(exc)
        _echo(user.model_dump(mode="json"))


@users_app.command("show")
def users_show(uid: str = typer.Option(..., "--uid")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            _echo(AccountService(db).get_profile(uid).model_dump(mode="json"))
        except RiResumeError as exc:
            _fail(exc)


@users_app.command("delete")
def users_delete(
    uid: str = typer.Option(..., "--uid"),
    reason: str = typer.Option("", "--reason"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            AccountService(db).archive_and_delete(uid, reason=reason)
        except RiResumeError as exc:
            _fail(exc)
        _echo({"uid": uid, "deleted": True})


@users_app.command("restore")
def users_restore(
    uid: str = typer.Option(..., "--uid"),
    admin: str = typer.Option(..., "--admin"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            user = AccountService(db).restore_account(uid, actor_uid=admin)
        except RiResumeError as exc:
            _fail(exc)
        _echo(user.model_dump(mode="json"))


@analyses_app.command("analyze")
def analyses_analyze(
    uid: str = typer.Option(..., "--uid"),
    resume_file: Path = typer.Option(..., "--resume", exists=True, readable=True),
    job_file: Path | None = typer.Option(None, "--job", exists=True, readable=True),
    job_url: str = typer.Option("", "--job-url"),
) -> None:
    """Score a resume (JSON) against a job posting (JSON file or URL)."""
    configure_logging()
    ensure_initialized()
    resume = json.loads(resume_file.read_text(encoding="utf-8"))
    if job_file is not None:
        job = JobPosting.model_validate(json.loads(job_file.read_text(encoding="utf-8")))
    elif job_url:
        job = fetch_job_posting(job_url)
        if job is None:
            raise typer.BadParameter(f"could not fetch {job_url}")
    else:
        raise typer.BadParameter("pass --job or --job-url")

    with SessionLocal() as db:
        try:
            outcome = ResumeAnalyzer(db).analyze(user_id=uid, job=job, resume=resume, platform="cli")
        except RiResumeError as exc:
            _fail(exc)
        _echo(
            {
                "analysis_id": outcome.analysis.id,
                "ats_score": outcome.analysis.ats_score,
                "reused": outcome.reused,
                "recommendation": outcome.recommendation.model_dump(),
            }
        )


@analyses_app.command("list")
def analyses_list(
    uid: str = typer.Option(..., "--uid"),
    limit: int = typer.Option(20, "--limit"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        rows = HistoryManager(db).list_history(uid, limit=limit)
        _echo(
            [
                {
                    "id": row.id,
                    "job_title": row.job_title,
                    "company": row.company,
                    "ats_score": row.ats_score,
                    "draft_ats_score": row.draft_ats_score,
                    "analysis_status": row.analysis_status,
                    "created_at": row.created_at,
                }
                for row in rows
            ]
        )


@analyses_app.command("show")
def analyses_show(analysis_id: int = typer.Option(..., "--id")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            _echo(HistoryManager(db).get_analysis(analysis_id).model_dump(mode="json"))
        except RiResumeError as exc:
            _fail(exc)


@analyses_app.command("promote")
def analyses_promote(
    analysis_id: int = typer.Option(..., "--id"),
    uid: str = typer.Option(..., "--uid"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            record = HistoryManager(db).promote_draft_to_final(analysis_id, user_id=uid)
        except RiResumeError as exc:
            _fail(exc)
        _echo({"id": record.id, "ats_score": record.ats_score, "analysis_status": record.analysis_status})


@analyses_app.command("discard")
def analyses_discard(
    analysis_id: int = typer.Option(..., "--id"),
    uid: str = typer.Option(..., "--uid"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            record = HistoryManager(db).discard_draft(analysis_id, user_id=uid)
        except RiResumeError as exc:
            _fail(exc)
        _echo({"id": record.id, "ats_score": record.ats_score, "analysis_status": record.analysis_status})


@analyses_app.command("export")
def analyses_export(
    analysis_id: int = typer.Option(..., "--id"),
    format: str = typer.Option("pdf", "--format"),
    output_dir: Path | None = typer.Option(None, "--output-dir"),
) -> None:
    configure_logging()
    ensure_initialized()
    if format not in ("pdf", "docx"):
        raise typer.BadParameter("format must be pdf or docx")
    with SessionLocal() as db:
        try:
            analysis = HistoryManager(db).get_analysis(analysis_id)
        except RiResumeError as exc:
            _fail(exc)
        resume = ParsedResume.model_validate(analysis.optimized_resume or analysis.resume)
        path = export_pdf(resume, output_dir) if format == "pdf" else export_docx(resume, output_dir)
        _echo({"path": str(path)})


@tasks_app.command("create")
def tasks_create(
    uid: str = typer.Option(..., "--uid"),
    task_type: str = typer.Option(..., "--type"),
    target_id: int = typer.Option(..., "--target-id"),
    skills: list[str] = typer.Option([], "--skill"),
) -> None:
    configure_logging()
    ensure_initialized()
    if task_type not in TASK_ACTIVITIES:
        raise typer.BadParameter(f"unknown task type '{task_type}'")
    key = "analysis_id" if task_type in ANALYSIS_TARGET_TYPES else "application_id"
    payload: dict[str, Any] = {key: target_id}
    if skills:
        payload["skills"] = skills

    with SessionLocal() as db:
        try:
            TokenLedger(db).check_activity(uid, TASK_ACTIVITIES[task_type])
            task_id = TaskQueueClient(db).create_task(task_type, payload, user_id=uid, target_id=target_id)
        except RiResumeError as exc:
            _fail(exc)
        _echo({"task_id": task_id})


@tasks_app.command("list")
def tasks_list(uid: str = typer.Option(..., "--uid")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        tasks = TaskQueueClient(db).list_active_tasks(uid)
        _echo([task.model_dump(mode="json") for task in tasks])


@tasks_app.command("cancel")
def tasks_cancel(
    task_id: int = typer.Option(..., "--id"),
    uid: str = typer.Option(..., "--uid"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            TaskQueueClient(db).cancel_task(task_id, uid)
        except RiResumeError as exc:
            _fail(exc)
        _echo({"task_id": task_id, "cancelled": True})


@tasks_app.command("cleanup")
def tasks_cleanup(uid: str = typer.Option(..., "--uid")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        _echo({"failed": TaskQueueClient(db).cleanup_stale_tasks(uid)})


@tokens_app.command("balance")
def tokens_balance(uid: str = typer.Option(..., "--uid")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            _echo({"uid": uid, "token_balance": TokenLedger(db).get_balance(uid)})
        except RiResumeError as exc:
            _fail(exc)


@tokens_app.command("history")
def tokens_history(
    uid: str = typer.Option(..., "--uid"),
    limit: int = typer.Option(20, "--limit"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        rows = TokenLedger(db).recent_activity(uid, limit=limit)
        _echo([ActivityRecord.model_validate(row).model_dump(mode="json") for row in rows])


@tokens_app.command("credit")
def tokens_credit(
    uid: str = typer.Option(..., "--uid"),
    amount: int = typer.Option(..., "--amount"),
    admin: str = typer.Option(..., "--admin"),
    reason: str = typer.Option("", "--reason"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            activity = AccountService(db).admin_credit(actor_uid=admin, target_uid=uid, amount=amount, reason=reason)
        except (RiResumeError, ValueError) as exc:
            _fail(exc)
        _echo(activity.model_dump(mode="json"))


@applications_app.command("list")
def applications_list(
    uid: str = typer.Option(..., "--uid"),
    include_archived: bool = typer.Option(True, "--include-archived/--active-only"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        rows = ApplicationService(db).list_applications(uid, include_archived=include_archived)
        _echo(
            [
                {
                    "id": row.id,
                    "job_title": row.job_title,
                    "company": row.company,
                    "current_stage": row.current_stage,
                    "ats_score": row.ats_score,
                    "is_archived": row.is_archived,
                }
                for row in rows
            ]
        )


@applications_app.command("status")
def applications_status(
    application_id: int = typer.Option(..., "--id"),
    stage: str = typer.Option(..., "--stage"),
    uid: str = typer.Option(..., "--uid"),
    note: str = typer.Option("", "--note"),
) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            record = ApplicationService(db).update_status(application_id, stage, user_id=uid, note=note)
        except (RiResumeError, ValueError) as exc:
            _fail(exc)
        _echo(record.model_dump(mode="json"))


@learning_app.command("list")
def learning_list(uid: str = typer.Option(..., "--uid")) -> None:
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        rows = LearningService(db).list_entries(uid)
        _echo(
            [
                {
                    "id": row.id,
                    "skill": row.skill,
                    "status": row.status,
                    "generation_status": row.generation_status,
                    "slides": len(row.slides or []),
                }
                for row in rows
            ]
        )


@learning_app.command("slideshow")
def learning_slideshow(
    entry_id: int = typer.Option(..., "--id"),
    uid: str = typer.Option(..., "--uid"),
    position: str = typer.Option("", "--position"),
    company: str = typer.Option("", "--company"),
) -> None:
    """Generate training slides for a learning entry."""
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        try:
            record = LearningService(db, functions=FunctionsClient()).generate_slideshow(
                entry_id, user_id=uid, position=position, company=company
            )
        except (RiResumeError, ValueError) as exc:
            _fail(exc)
        _echo(record.model_dump(mode="json"))


@app.command("worker")
def worker(
    once: bool = typer.Option(False, "--once"),
    poll_interval: float = typer.Option(2.0, "--poll-interval"),
) -> None:
    """Process queued tasks."""
    configure_logging()
    ensure_initialized()
    with SessionLocal() as db:
        task_worker = TaskWorker(db)
        if once:
            _echo({"processed": task_worker.run_once()})
            return
        try:
            task_worker.run_forever(poll_interval=poll_interval)
        except KeyboardInterrupt:
            typer.echo("Worker interrupted")


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
) -> None:
    configure_logging()
    ensure_initialized()
    settings = get_settings()
    app_instance = create_app()
    uvicorn.run(app_instance, host=host or settings.app_host, port=port or settings.app_port)
