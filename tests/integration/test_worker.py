import pytest

from riresume.config import Settings
from riresume.core.applications import ApplicationService
from riresume.core.drafts import ResultData
from riresume.core.history import HistoryManager
from riresume.core.ledger import TokenLedger
from riresume.core.tasks import FailureReason, TaskQueueClient, is_cancellation
from riresume.core.worker import TaskWorker
from riresume.llm.router import LLMRouter


@pytest.fixture
def worker(db, bus, offline_router) -> TaskWorker:
    return TaskWorker(db, bus=bus, router=offline_router)


def _queue(db, bus, task_type: str, uid: str, target: int, **payload) -> int:
    key = "application_id" if task_type in ("cover_letter", "prep_guide") else "analysis_id"
    return TaskQueueClient(db, bus).create_task(task_type, {key: target, **payload}, user_id=uid, target_id=target)


def _promoted(db, bus, make_analysis, uid: str):
    analysis = make_analysis(uid)
    history = HistoryManager(db, bus)
    history.write_draft(analysis.id, ResultData(optimized_resume={"name": "Jane Doe", "skills": ["Python"]}, ats_score=70))
    return history.promote_draft_to_final(analysis.id)


def test_optimize_writes_draft_and_charges(db, bus, worker, make_user, make_analysis) -> None:
    uid = make_user(balance=100)
    analysis = make_analysis(uid)
    task_id = _queue(db, bus, "optimize_resume", uid, analysis.id)

    task = worker.process(task_id)

    assert task.status == "completed"
    assert task.result_id == str(analysis.id)
    record = HistoryManager(db, bus).get_analysis(analysis.id)
    assert record.has_draft
    assert record.analysis_status == "draft_ready"
    assert record.ats_score == 65
    assert record.draft_optimized_resume["skills"][0] == "Python"
    assert TokenLedger(db).get_balance(uid) == 85
    assert [item.type for item in TokenLedger(db).recent_activity(uid)] == ["resume_optimized"]


def test_reoptimizing_a_final_charges_reoptimization(db, bus, worker, make_user, make_analysis) -> None:
    uid = make_user(balance=100)
    promoted = _promoted(db, bus, make_analysis, uid)
    task_id = _queue(db, bus, "optimize_resume", uid, promoted.id)

    worker.process(task_id)

    assert TokenLedger(db).recent_activity(uid)[0].type == "resume_reoptimization"


def test_insufficient_balance_fails_without_draft(db, bus, worker, make_user, make_analysis) -> None:
    uid = make_user(balance=5)
    analysis = make_analysis(uid)
    task_id = _queue(db, bus, "optimize_resume", uid, analysis.id)

    task = worker.process(task_id)

    assert task.status == "failed"
    assert task.failure_reason == FailureReason.ERROR.value
    assert "Insufficient" in task.error
    assert not HistoryManager(db, bus).get_analysis(analysis.id).has_draft
    assert TokenLedger(db).get_balance(uid) == 5


def test_missing_target_fails_as_not_found(db, bus, worker, make_user) -> None:
    uid = make_user()
    task_id = _queue(db, bus, "optimize_resume", uid, 999)

    task = worker.process(task_id)

    assert task.status == "failed"
    assert task.failure_reason == FailureReason.NOT_FOUND.value
    assert task.error.startswith("NOT_FOUND:")
    assert is_cancellation(task)


def test_locked_analysis_fails_task(db, bus, worker, make_user, make_analysis) -> None:
    uid = make_user()
    promoted = _promoted(db, bus, make_analysis, uid)
    ApplicationService(db, bus).update_status(promoted.application_id, "submitted")
    task_id = _queue(db, bus, "optimize_resume", uid, promoted.id)

    task = worker.process(task_id)

    assert task.status == "failed"
    assert "locked" in task.error
    assert TokenLedger(db).get_balance(uid) == 100


def test_add_skill_appends_skills(db, bus, worker, make_user, make_analysis) -> None:
    uid = make_user()
    analysis = make_analysis(uid)
    task_id = _queue(db, bus, "add_skill", uid, analysis.id, skills=["Docker"])

    assert worker.process(task_id).status == "completed"

    record = HistoryManager(db, bus).get_analysis(analysis.id)
    assert record.draft_optimized_resume["skills"] == ["Python", "Git", "Docker"]
    assert record.draft_changes[0]["reason"] == "Added Docker"
    assert TokenLedger(db).get_balance(uid) == 85


def test_add_skill_without_skills_fails(db, bus, worker, make_user, make_analysis) -> None:
    uid = make_user()
    analysis = make_analysis(uid)
    task_id = _queue(db, bus, "add_skill", uid, analysis.id, skills=[" "])

    task = worker.process(task_id)

    assert task.status == "failed"
    assert "at least one skill" in task.error


def test_cover_letter_is_saved_on_application(db, bus, worker, make_user, make_analysis) -> None:
    uid = make_user(balance=100)
    promoted = _promoted(db, bus, make_analysis, uid)
    task_id = _queue(db, bus, "cover_letter", uid, promoted.application_id)

    assert worker.process(task_id).status == "completed"

    application = ApplicationService(db, bus).get_application(promoted.application_id)
    assert "Acme" in application.cover_letter
    assert application.cover_letter_generated_at is not None
    assert TokenLedger(db).get_balance(uid) == 85


def test_prep_guide_completes(db, bus, worker, make_user, make_analysis) -> None:
    uid = make_user(balance=100)
    promoted = _promoted(db, bus, make_analysis, uid)
    task_id = _queue(db, bus, "prep_guide", uid, promoted.application_id)

    worker.process(task_id)

    application = ApplicationService(db, bus).get_application(promoted.application_id)
    assert application.prep_guide_status == "completed"
    assert application.prep_guide_json["questions_to_ask"]
    assert TokenLedger(db).get_balance(uid) == 60


def test_prep_guide_failure_marks_guide_failed(db, bus, worker, make_user, make_analysis) -> None:
    uid = make_user(balance=100)
    promoted = _promoted(db, bus, make_analysis, uid)
    TokenLedger(db).repo.update_user(uid, {"token_balance": 20})
    task_id = _queue(db, bus, "prep_guide", uid, promoted.application_id)

    task = worker.process(task_id)

    assert task.status == "failed"
    assert ApplicationService(db, bus).get_application(promoted.application_id).prep_guide_status == "failed"


def test_run_once_takes_oldest_queued_task(db, bus, worker, make_user, make_analysis) -> None:
    assert worker.run_once() is None

    uid = make_user()
    first = _queue(db, bus, "optimize_resume", uid, make_analysis(uid).id)
    _queue(db, bus, "optimize_resume", uid, make_analysis(uid, title="Data Engineer").id)

    assert worker.run_once() == first
    assert TaskQueueClient(db, bus).get_task(first).status == "completed"


class CancellingRouter(LLMRouter):
    def __init__(self, db, bus, user_id: str):
        super().__init__(Settings(openai_api_key="", local_llm_enabled=False))
        self.client = TaskQueueClient(db, bus)
        self.user_id = user_id
        self.task_id: int | None = None

    def optimize_resume(self, **kwargs):
        self.client.cancel_task(self.task_id, self.user_id)
        return super().optimize_resume(**kwargs)


def test_task_deleted_mid_flight_stops_silently(db, bus, make_user, make_analysis) -> None:
    uid = make_user(balance=100)
    analysis = make_analysis(uid)
    router = CancellingRouter(db, bus, uid)
    task_id = _queue(db, bus, "optimize_resume", uid, analysis.id)
    router.task_id = task_id

    assert TaskWorker(db, bus=bus, router=router).process(task_id) is None

    assert TaskQueueClient(db, bus).get_task(task_id) is None
    assert not HistoryManager(db, bus).get_analysis(analysis.id).has_draft
    assert TokenLedger(db).get_balance(uid) == 100


def test_cancel_after_debit_still_delivers_the_draft(db, bus, worker, make_user, make_analysis) -> None:
    uid = make_user(balance=100)
    analysis = make_analysis(uid)
    task_id = _queue(db, bus, "optimize_resume", uid, analysis.id)
    client = TaskQueueClient(db, bus)
    debit = worker.ledger.log_activity

    def debit_then_cancel(*args, **kwargs):
        activity = debit(*args, **kwargs)
        client.cancel_task(task_id, uid)
        return activity

    worker.ledger.log_activity = debit_then_cancel

    assert worker.process(task_id) is None

    assert client.get_task(task_id) is None
    assert HistoryManager(db, bus).get_analysis(analysis.id).has_draft
    assert TokenLedger(db).get_balance(uid) == 85


def test_failed_draft_write_refunds_the_debit(db, bus, worker, make_user, make_analysis, monkeypatch) -> None:
    uid = make_user(balance=100)
    analysis = make_analysis(uid)
    task_id = _queue(db, bus, "optimize_resume", uid, analysis.id)

    def broken_write(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(worker.history, "write_draft", broken_write)

    task = worker.process(task_id)

    assert task.status == "failed"
    assert task.error == "disk full"
    assert not HistoryManager(db, bus).get_analysis(analysis.id).has_draft
    ledger = TokenLedger(db)
    assert ledger.get_balance(uid) == 100
    assert [item.type for item in ledger.recent_activity(uid)][:2] == ["token_refund", "resume_optimized"]
