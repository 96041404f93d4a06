from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import timedelta
from enum import Enum
from typing import Any

from sqlalchemy.orm import Session

from riresume.config import Settings, get_settings
from riresume.core.events import EventBus, task_event, task_topic, user_tasks_topic
from riresume.core.runtime import get_event_bus
from riresume.db.base import as_utc, utcnow
from riresume.db.models import AnalysisTask
from riresume.db.repositories import ACTIVE_TASK_STATUSES, Repository
from riresume.errors import AuthorizationError, InvalidTaskTransition, NotFoundError, TaskGoneError
from riresume.types import AnalysisRecord, TaskRecord

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "failed")
ANALYSIS_TASK_TYPES = {"optimize_resume", "add_skill"}

# Markers written by processors that predate structured failure reasons.
LEGACY_CANCELLATION_MARKERS = ("NOT_FOUND", "no longer exists", "cancelled by user", "Task cancelled")

CompleteCallback = Callable[[TaskRecord, AnalysisRecord | None], None]
ErrorCallback = Callable[[TaskRecord, bool], None]


class FailureReason(str, Enum):
    ERROR = "error"
    CANCELLED = "cancelled"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"


def is_cancellation(task: Any) -> bool:
    reason = getattr(task, "failure_reason", "") or ""
    if reason:
        return reason in (FailureReason.CANCELLED.value, FailureReason.NOT_FOUND.value)
    error = getattr(task, "error", "") or ""
    return any(marker in error for marker in LEGACY_CANCELLATION_MARKERS)


class TaskWatcher:
    """Dispatches ``on_complete``/``on_error`` once when a task turns terminal."""

    def __init__(
        self,
        bus: EventBus,
        task_id: int,
        *,
        on_complete: CompleteCallback | None = None,
        on_error: ErrorCallback | None = None,
    ):
        self.task_id = task_id
        self.on_complete = on_complete
        self.on_error = on_error
        self.done = False
        self._unsubscribe = bus.listen(task_topic(task_id), self.handle)

    def handle(self, event: dict[str, Any]) -> None:
        if self.done:
            return
        task = TaskRecord.model_validate(event["task"])
        if task.status == "completed":
            self._finish()
            analysis = event.get("analysis")
            if self.on_complete is not None:
                self.on_complete(task, AnalysisRecord.model_validate(analysis) if analysis else None)
        elif task.status == "failed":
            self._finish()
            cancelled = is_cancellation(task)
            if cancelled:
                logger.info("Task %s was cancelled", task.id)
            if self.on_error is not None:
                self.on_error(task, cancelled)

    def close(self) -> None:
        self._unsubscribe()

    def _finish(self) -> None:
        self.done = True
        self._unsubscribe()


class ActiveTasksView:
    """Live list of a user's non-terminal tasks built from change events."""

    def __init__(self, bus: EventBus, user_id: str, initial: list[TaskRecord] | None = None):
        self.user_id = user_id
        self._tasks: dict[int, TaskRecord] = {task.id: task for task in initial or []}
        self._unsubscribe = bus.listen(user_tasks_topic(user_id), self.handle)

    @property
    def tasks(self) -> list[TaskRecord]:
        return sorted(self._tasks.values(), key=lambda task: task.id, reverse=True)

    def handle(self, event: dict[str, Any]) -> None:
        task = TaskRecord.model_validate(event["task"])
        if event.get("type") == "task_deleted" or task.status in TERMINAL_STATUSES:
            self._tasks.pop(task.id, None)
        else:
            self._tasks[task.id] = task

    def close(self) -> None:
        self._unsubscribe()


class TaskQueueClient:
    def __init__(self, session: Session, bus: EventBus | None = None, settings: Settings | None = None):
        self.repo = Repository(session)
        self.bus = bus or get_event_bus()
        self.settings = settings or get_settings()
        self._watchers: dict[int, TaskWatcher] = {}

    def create_task(
        self,
        task_type: str,
        payload: dict[str, Any],
        *,
        user_id: str,
        target_id: str | int | None = None,
        on_complete: CompleteCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> int:
        target = "" if target_id is None else str(target_id)

        # Best-effort: check and insert are not atomic.
        existing = self.find_active_task(user_id, task_type, target) if target else None
        if existing is not None:
            logger.info("Reusing active %s task %s for target %s", task_type, existing.id, target)
            task_id = existing.id
        else:
            task = self.repo.create_task(user_id=user_id, task_type=task_type, payload=payload, target_id=target)
            task_id = task.id
            logger.info("Created %s task %s for user %s", task_type, task_id, user_id)
            self._publish(task)

        if on_complete is not None or on_error is not None:
            self._watchers[task_id] = TaskWatcher(
                self.bus, task_id, on_complete=on_complete, on_error=on_error
            )
        return task_id

    def get_task(self, task_id: int) -> TaskRecord | None:
        task = self.repo.get_task(task_id)
        return TaskRecord.model_validate(task) if task else None

    def find_active_task(self, user_id: str, task_type: str, target_id: str | int) -> TaskRecord | None:
        target = str(target_id)
        for task in self.repo.list_tasks(user_id, statuses=ACTIVE_TASK_STATUSES):
            if task.type == task_type and task.target_id == target:
                return TaskRecord.model_validate(task)
        return None

    def list_active_tasks(self, user_id: str) -> list[TaskRecord]:
        tasks = self.repo.list_tasks(
            user_id,
            statuses=ACTIVE_TASK_STATUSES,
            limit=self.settings.active_task_limit,
        )
        return [TaskRecord.model_validate(task) for task in tasks]

    def watch_active_tasks(self, user_id: str) -> ActiveTasksView:
        return ActiveTasksView(self.bus, user_id, initial=self.list_active_tasks(user_id))

    def update_progress(self, task_id: int, progress: int, stage: str) -> TaskRecord:
        if progress < 0 or progress > 100:
            raise ValueError("progress must be between 0 and 100")
        task = self.repo.get_task(task_id)
        if task is None:
            raise TaskGoneError(task_id)
        if task.status in TERMINAL_STATUSES:
            raise InvalidTaskTransition(f"task {task_id} is already {task.status}")

        task.status = "processing"
        task.progress = progress
        task.stage = stage
        self.repo.session.commit()
        self.repo.session.refresh(task)
        return self._publish(task)

    def complete_task(self, task_id: int, result_id: str | int = "") -> TaskRecord | None:
        task = self.repo.get_task(task_id)
        if task is None:
            logger.warning("Cannot complete task %s: it no longer exists", task_id)
            return None
        if task.status in TERMINAL_STATUSES:
            raise InvalidTaskTransition(f"task {task_id} is already {task.status}")

        task.status = "completed"
        task.progress = 100
        task.stage = "Completed"
        task.result_id = str(result_id)
        self.repo.session.commit()
        self.repo.session.refresh(task)
        logger.info("Task %s completed", task_id)

        analysis = None
        if task.type in ANALYSIS_TASK_TYPES and task.target_id.isdigit():
            row = self.repo.get_analysis(int(task.target_id))
            if row is not None:
                analysis = AnalysisRecord.model_validate(row)
        return self._publish(task, analysis)

    def fail_task(
        self,
        task_id: int,
        error: str,
        reason: FailureReason = FailureReason.ERROR,
    ) -> TaskRecord | None:
        task = self.repo.get_task(task_id)
        if task is None:
            logger.warning("Cannot fail task %s: it no longer exists", task_id)
            return None
        if task.status in TERMINAL_STATUSES:
            raise InvalidTaskTransition(f"task {task_id} is already {task.status}")

        task.status = "failed"
        task.error = error
        task.failure_reason = FailureReason(reason).value
        self.repo.session.commit()
        self.repo.session.refresh(task)
        if is_cancellation(task):
            logger.info("Task %s stopped: %s", task_id, error)
        else:
            logger.warning("Task %s failed: %s", task_id, error)
        return self._publish(task)

    def cancel_task(self, task_id: int, user_id: str) -> None:
        task = self.repo.get_task(task_id)
        if task is None:
            raise NotFoundError(f"task {task_id} not found")
        if task.user_id != user_id:
            raise AuthorizationError("only the task owner can cancel it")

        record = TaskRecord.model_validate(task).model_copy(
            update={
                "status": "failed",
                "error": "Task cancelled by user",
                "failure_reason": FailureReason.CANCELLED.value,
            }
        )
        self.repo.delete_task(task_id)
        logger.info("Task %s cancelled by %s", task_id, user_id)
        self._emit(record, event_type="task_deleted")

    def cleanup_stale_tasks(self, user_id: str) -> int:
        cutoff = utcnow() - timedelta(minutes=self.settings.stale_task_minutes)
        count = 0
        for task in self.repo.list_tasks(user_id, statuses=ACTIVE_TASK_STATUSES):
            created_at = as_utc(task.created_at)
            if created_at is not None and created_at < cutoff:
                logger.warning("Marking stale task %s as failed", task.id)
                self.fail_task(task.id, "Task timed out (stale)", FailureReason.TIMEOUT)
                count += 1
        return count

    def close(self) -> None:
        for watcher in self._watchers.values():
            watcher.close()
        self._watchers.clear()

    def _publish(self, task: AnalysisTask, analysis: AnalysisRecord | None = None) -> TaskRecord:
        record = TaskRecord.model_validate(task)
        self._emit(record, analysis=analysis)
        return record

    def _emit(
        self,
        record: TaskRecord,
        *,
        analysis: AnalysisRecord | None = None,
        event_type: str = "task_changed",
    ) -> None:
        event = task_event(
            record.model_dump(mode="json"),
            analysis.model_dump(mode="json") if analysis else None,
        )
        event["type"] = event_type
        self.bus.publish(task_topic(record.id), event)
        self.bus.publish(user_tasks_topic(record.user_id), event)
