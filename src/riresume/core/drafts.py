"""Draft versus final state of a saved analysis.

An analysis is either ``Published`` (only final data) or ``PendingReview``
(final data plus a proposed replacement produced by an optimization task).
A proposal fully shadows the final data; promoting replaces it wholesale.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from riresume.core.events import EventBus, analysis_topic, task_topic
from riresume.core.tasks import is_cancellation
from riresume.db.base import as_utc
from riresume.errors import NothingToPromoteError
from riresume.types import AnalysisRecord, TaskRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ResultData:
    optimized_resume: dict[str, Any] | None = None
    changes: list[dict[str, Any]] | None = None
    ats_score: int | None = None
    match_analysis: dict[str, Any] | None = None

    @property
    def is_empty(self) -> bool:
        return (
            self.optimized_resume is None
            and self.changes is None
            and self.ats_score is None
            and self.match_analysis is None
        )


@dataclass(frozen=True, slots=True)
class Published:
    final: ResultData


@dataclass(frozen=True, slots=True)
class PendingReview:
    final: ResultData
    proposed: ResultData


DraftState = Published | PendingReview


def propose(state: DraftState, proposed: ResultData) -> PendingReview:
    return PendingReview(final=state.final, proposed=proposed)


def promote(state: DraftState) -> Published:
    if isinstance(state, Published):
        raise NothingToPromoteError()

    proposed = state.proposed
    ats_score = proposed.ats_score if proposed.ats_score is not None else state.final.ats_score
    return Published(
        final=ResultData(
            optimized_resume=proposed.optimized_resume,
            changes=proposed.changes,
            ats_score=ats_score,
            match_analysis=proposed.match_analysis,
        )
    )


def discard(state: DraftState) -> Published:
    return Published(final=state.final)


def state_from_record(record: AnalysisRecord) -> DraftState:
    final = ResultData(
        optimized_resume=record.optimized_resume,
        changes=record.changes,
        ats_score=record.ats_score,
        match_analysis=record.optimized_match_analysis,
    )
    if not record.has_draft:
        return Published(final=final)
    return PendingReview(
        final=final,
        proposed=ResultData(
            optimized_resume=record.draft_optimized_resume,
            changes=record.draft_changes,
            ats_score=record.draft_ats_score,
            match_analysis=record.draft_match_analysis,
        ),
    )


def state_to_columns(state: DraftState) -> dict[str, Any]:
    """Column values that persist ``state`` onto an analysis row."""
    values: dict[str, Any] = {
        "optimized_resume": state.final.optimized_resume,
        "changes": state.final.changes,
        "optimized_match_analysis": state.final.match_analysis,
    }
    if state.final.ats_score is not None:
        values["ats_score"] = state.final.ats_score

    proposed = state.proposed if isinstance(state, PendingReview) else ResultData()
    values.update(
        {
            "draft_optimized_resume": proposed.optimized_resume,
            "draft_changes": proposed.changes,
            "draft_ats_score": proposed.ats_score,
            "draft_match_analysis": proposed.match_analysis,
        }
    )
    return values


def baseline_score(record: AnalysisRecord) -> int | None:
    """Score to diff a pending draft against; ``None`` when nothing is pending."""
    if not record.has_draft:
        return None
    return record.ats_score


class DraftSession:
    """Live view of one analysis, fed by change events."""

    def __init__(self, analysis: AnalysisRecord, bus: EventBus | None = None):
        self.analysis = analysis
        self.is_unsaved = analysis.has_draft
        self.optimizing = False
        self.current_task_id: int | None = None
        self.last_error: str | None = None
        self._bus = bus
        self._unsubscribers: list[Callable[[], None]] = []
        if bus is not None:
            self._unsubscribers.append(bus.listen(analysis_topic(analysis.id), self._on_analysis_event))

    @property
    def state(self) -> DraftState:
        return state_from_record(self.analysis)

    @property
    def baseline_score(self) -> int | None:
        return baseline_score(self.analysis)

    def start_optimizing(self, task_id: int) -> None:
        self.optimizing = True
        self.current_task_id = task_id
        self.last_error = None
        if self._bus is not None:
            self._unsubscribers.append(self._bus.listen(task_topic(task_id), self._on_task_event))

    def apply_change(self, snapshot: AnalysisRecord) -> bool:
        """Adopt ``snapshot`` unless it is older than the held one."""
        held = self.analysis
        held_at = as_utc(held.updated_at)
        new_at = as_utc(snapshot.updated_at)
        if held_at is not None and new_at is not None and new_at < held_at:
            logger.debug("Ignoring stale snapshot for analysis %s", snapshot.id)
            return False

        has_new_draft = snapshot.draft_optimized_resume is not None and held.draft_optimized_resume is None
        has_new_final = snapshot.optimized_resume is not None and held.optimized_resume is None
        is_newer = held_at is not None and new_at is not None and new_at > held_at
        if has_new_draft or has_new_final or is_newer:
            self.optimizing = False
            self.current_task_id = None

        self.analysis = snapshot
        self.is_unsaved = snapshot.has_draft
        return True

    def mark_saved(self, snapshot: AnalysisRecord) -> None:
        self.analysis = snapshot
        self.is_unsaved = snapshot.has_draft

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    def _on_analysis_event(self, event: dict[str, Any]) -> None:
        if event.get("type") != "analysis_changed":
            return
        self.apply_change(AnalysisRecord.model_validate(event["analysis"]))

    def _on_task_event(self, event: dict[str, Any]) -> None:
        task = TaskRecord.model_validate(event["task"])
        if task.id != self.current_task_id:
            return
        if event.get("analysis") is not None:
            self.apply_change(AnalysisRecord.model_validate(event["analysis"]))
        if task.status in ("completed", "failed"):
            self.optimizing = False
            self.current_task_id = None
        if task.status == "failed" and not is_cancellation(task):
            self.last_error = task.error
