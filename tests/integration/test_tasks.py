from datetime import timedelta

import pytest

from riresume.core.drafts import ResultData
from riresume.core.events import task_topic, user_tasks_topic
from riresume.core.history import HistoryManager
from riresume.core.tasks import FailureReason, TaskQueueClient, is_cancellation
from riresume.db.base import utcnow
from riresume.db.repositories import Repository
from riresume.errors import AuthorizationError, InvalidTaskTransition, NotFoundError, TaskGoneError


def test_create_task_publishes_queued_state(db, bus, make_user) -> None:
    uid = make_user()
    events: list[dict] = []
    bus.listen(user_tasks_topic(uid), events.append)

    task_id = TaskQueueClient(db, bus).create_task("cover_letter", {"application_id": 4}, user_id=uid, target_id=4)

    task = TaskQueueClient(db, bus).get_task(task_id)
    assert task.status == "queued"
    assert task.progress == 0
    assert task.target_id == "4"
    assert events[0]["type"] == "task_changed"
    assert events[0]["task"]["id"] == task_id


def test_active_task_for_same_target_is_reused(db, bus, make_user) -> None:
    uid = make_user()
    client = TaskQueueClient(db, bus)

    first = client.create_task("optimize_resume", {"analysis_id": 1}, user_id=uid, target_id=1)
    second = client.create_task("optimize_resume", {"analysis_id": 1}, user_id=uid, target_id=1)
    other_target = client.create_task("optimize_resume", {"analysis_id": 2}, user_id=uid, target_id=2)
    other_type = client.create_task("add_skill", {"analysis_id": 1}, user_id=uid, target_id=1)

    assert first == second
    assert len({first, other_target, other_type}) == 3


def test_finished_task_is_not_reused(db, bus, make_user) -> None:
    uid = make_user()
    client = TaskQueueClient(db, bus)
    first = client.create_task("optimize_resume", {}, user_id=uid, target_id=1)
    client.complete_task(first)

    assert client.create_task("optimize_resume", {}, user_id=uid, target_id=1) != first


def test_progress_moves_task_to_processing(db, bus, make_user) -> None:
    uid = make_user()
    client = TaskQueueClient(db, bus)
    task_id = client.create_task("prep_guide", {}, user_id=uid, target_id=3)

    record = client.update_progress(task_id, 30, "Analyzing...")

    assert (record.status, record.progress, record.stage) == ("processing", 30, "Analyzing...")
    with pytest.raises(ValueError):
        client.update_progress(task_id, 101, "too far")


def test_terminal_tasks_reject_further_transitions(db, bus, make_user) -> None:
    uid = make_user()
    client = TaskQueueClient(db, bus)
    task_id = client.create_task("prep_guide", {}, user_id=uid)
    done = client.complete_task(task_id, result_id=9)

    assert (done.status, done.progress, done.result_id) == ("completed", 100, "9")
    with pytest.raises(InvalidTaskTransition):
        client.fail_task(task_id, "late failure")
    with pytest.raises(InvalidTaskTransition):
        client.update_progress(task_id, 50, "again")


def test_cancel_deletes_task_for_owner_only(db, bus, make_user) -> None:
    uid = make_user()
    make_user("intruder")
    client = TaskQueueClient(db, bus)
    task_id = client.create_task("optimize_resume", {}, user_id=uid, target_id=1)
    events: list[dict] = []
    bus.listen(task_topic(task_id), events.append)

    with pytest.raises(AuthorizationError):
        client.cancel_task(task_id, "intruder")
    client.cancel_task(task_id, uid)

    assert client.get_task(task_id) is None
    assert events[-1]["type"] == "task_deleted"
    assert events[-1]["task"]["failure_reason"] == "cancelled"
    with pytest.raises(NotFoundError):
        client.cancel_task(task_id, uid)


def test_processor_sees_deleted_task_as_gone(db, bus, make_user) -> None:
    uid = make_user()
    client = TaskQueueClient(db, bus)
    task_id = client.create_task("optimize_resume", {}, user_id=uid, target_id=1)
    client.cancel_task(task_id, uid)

    with pytest.raises(TaskGoneError):
        client.update_progress(task_id, 10, "Starting...")
    assert client.complete_task(task_id) is None
    assert client.fail_task(task_id, "boom") is None


def test_stale_tasks_fail_with_timeout(db, bus, make_user) -> None:
    uid = make_user()
    client = TaskQueueClient(db, bus)
    stale_id = client.create_task("optimize_resume", {}, user_id=uid, target_id=1)
    fresh_id = client.create_task("optimize_resume", {}, user_id=uid, target_id=2)
    row = Repository(db).get_task(stale_id)
    row.created_at = utcnow() - timedelta(minutes=30)
    db.commit()

    assert client.cleanup_stale_tasks(uid) == 1

    stale = client.get_task(stale_id)
    assert stale.status == "failed"
    assert stale.failure_reason == FailureReason.TIMEOUT.value
    assert not is_cancellation(stale)
    assert client.get_task(fresh_id).status == "queued"


def test_watcher_fires_complete_once_with_analysis(db, bus, make_user, make_analysis) -> None:
    uid = make_user()
    analysis = make_analysis(uid)
    client = TaskQueueClient(db, bus)
    completed: list[tuple] = []

    task_id = client.create_task(
        "optimize_resume",
        {"analysis_id": analysis.id},
        user_id=uid,
        target_id=analysis.id,
        on_complete=lambda task, record: completed.append((task.id, record)),
    )
    HistoryManager(db, bus).write_draft(analysis.id, ResultData(optimized_resume={"name": "Jane"}, ats_score=81))
    client.complete_task(task_id)

    assert len(completed) == 1
    finished_id, record = completed[0]
    assert finished_id == task_id
    assert record is not None and record.draft_ats_score == 81
    assert bus.listener_count(task_topic(task_id)) == 0


def test_watcher_reports_cancellation_flag(db, bus, make_user) -> None:
    uid = make_user()
    client = TaskQueueClient(db, bus)
    errors: list[tuple[str, bool]] = []

    def on_error(task, cancelled):
        errors.append((task.error, cancelled))

    missing = client.create_task("cover_letter", {}, user_id=uid, target_id=8, on_error=on_error)
    broken = client.create_task("cover_letter", {}, user_id=uid, target_id=9, on_error=on_error)
    client.fail_task(missing, "NOT_FOUND: application 8", FailureReason.NOT_FOUND)
    client.fail_task(broken, "model timed out")

    assert errors == [("NOT_FOUND: application 8", True), ("model timed out", False)]


def test_active_tasks_view_tracks_lifecycle(db, bus, make_user) -> None:
    uid = make_user()
    client = TaskQueueClient(db, bus)
    existing = client.create_task("prep_guide", {}, user_id=uid, target_id=1)
    view = client.watch_active_tasks(uid)

    added = client.create_task("cover_letter", {}, user_id=uid, target_id=2)
    assert [task.id for task in view.tasks] == [added, existing]

    client.update_progress(added, 40, "Writing...")
    assert view.tasks[0].progress == 40

    client.complete_task(existing)
    client.cancel_task(added, uid)
    assert view.tasks == []
    view.close()
