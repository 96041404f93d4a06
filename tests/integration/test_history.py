import pytest

from riresume.core.applications import ApplicationService
from riresume.core.drafts import ResultData
from riresume.core.events import analysis_topic
from riresume.core.history import HistoryManager, job_hash, resume_hash
from riresume.core.ledger import TokenLedger
from riresume.errors import AnalysisLockedError, AuthorizationError, NotFoundError, NothingToPromoteError
from riresume.types import JobPosting

OPTIMIZED = {"name": "Jane Doe", "skills": ["Python", "Docker"], "summary": "Backend engineer."}


def _draft(score: int | None = 80, resume: dict | None = None) -> ResultData:
    return ResultData(
        optimized_resume=resume or OPTIMIZED,
        changes=[{"section": "skills", "before": "Python", "after": "Python, Docker", "reason": "Added Docker"}],
        ats_score=score,
        match_analysis={"keyword_density": 75.0},
    )


def test_save_analysis_stores_hashes_and_publishes(db, bus, make_user, make_analysis, job_posting, resume_doc) -> None:
    uid = make_user()
    history = HistoryManager(db, bus)

    analysis = make_analysis(uid)

    assert analysis.ats_score == 65
    assert analysis.analysis_status == "pending_resume_update"
    assert not analysis.has_draft
    found = history.find_existing_analysis(uid, job_hash(JobPosting(**job_posting)), resume_hash(resume_doc))
    assert found is not None and found.id == analysis.id
    assert history.find_existing_analysis("someone-else", job_hash(JobPosting(**job_posting)), resume_hash(resume_doc)) is None


def test_write_draft_keeps_final_score(db, bus, make_user, make_analysis) -> None:
    uid = make_user()
    analysis = make_analysis(uid)
    events: list[dict] = []
    bus.listen(analysis_topic(analysis.id), events.append)

    record = HistoryManager(db, bus).write_draft(analysis.id, _draft())

    assert record.has_draft
    assert record.ats_score == 65
    assert record.draft_ats_score == 80
    assert record.optimized_resume is None
    assert record.analysis_status == "draft_ready"
    assert events[-1]["type"] == "analysis_changed"
    assert events[-1]["analysis"]["draft_ats_score"] == 80


def test_promote_replaces_final_and_creates_application(db, bus, make_user, make_analysis) -> None:
    uid = make_user()
    analysis = make_analysis(uid)
    history = HistoryManager(db, bus)
    history.write_draft(analysis.id, _draft())

    record = history.promote_draft_to_final(analysis.id, user_id=uid)

    assert record.ats_score == 80
    assert record.optimized_resume == OPTIMIZED
    assert record.changes[0]["reason"] == "Added Docker"
    assert record.optimized_match_analysis == {"keyword_density": 75.0}
    assert not record.has_draft
    assert record.analysis_status == "optimized"

    application = ApplicationService(db, bus).get_for_analysis(analysis.id)
    assert application is not None
    assert record.application_id == application.id
    assert application.ats_score == 80
    assert application.current_stage == "not_applied"
    assert [event.stage for event in application.timeline] == ["not_applied"]


def test_promote_without_draft_score_keeps_final_score(db, bus, make_user, make_analysis) -> None:
    uid = make_user()
    analysis = make_analysis(uid)
    history = HistoryManager(db, bus)
    history.write_draft(analysis.id, _draft(score=None))

    assert history.promote_draft_to_final(analysis.id).ats_score == 65


def test_promote_without_draft_fails_and_changes_nothing(db, bus, make_user, make_analysis) -> None:
    uid = make_user()
    analysis = make_analysis(uid)
    history = HistoryManager(db, bus)

    with pytest.raises(NothingToPromoteError):
        history.promote_draft_to_final(analysis.id, user_id=uid)

    after = history.get_analysis(analysis.id)
    assert after.ats_score == 65
    assert after.optimized_resume is None
    assert ApplicationService(db, bus).get_for_analysis(analysis.id) is None


def test_second_promote_refreshes_existing_application(db, bus, make_user, make_analysis) -> None:
    uid = make_user()
    analysis = make_analysis(uid)
    history = HistoryManager(db, bus)
    history.write_draft(analysis.id, _draft(score=72))
    first = history.promote_draft_to_final(analysis.id)
    history.write_draft(analysis.id, _draft(score=88))
    second = history.promote_draft_to_final(analysis.id)

    application = ApplicationService(db, bus).get_for_analysis(analysis.id)
    assert second.application_id == first.application_id == application.id
    assert application.ats_score == 88
    assert len(application.timeline) == 1


def test_discard_keeps_previous_final(db, bus, make_user, make_analysis) -> None:
    uid = make_user()
    analysis = make_analysis(uid)
    history = HistoryManager(db, bus)
    history.write_draft(analysis.id, _draft(score=75))
    history.promote_draft_to_final(analysis.id)
    history.write_draft(analysis.id, _draft(score=90, resume={"name": "Jane", "skills": ["Go"]}))

    record = history.discard_draft(analysis.id, user_id=uid)

    assert not record.has_draft
    assert record.optimized_resume == OPTIMIZED
    assert record.ats_score == 75
    assert record.analysis_status == "optimized"


def test_discard_without_final_returns_to_pending(db, bus, make_user, make_analysis) -> None:
    uid = make_user()
    analysis = make_analysis(uid)
    history = HistoryManager(db, bus)
    history.write_draft(analysis.id, _draft())

    record = history.discard_draft(analysis.id)

    assert record.analysis_status == "pending_resume_update"
    assert record.optimized_resume is None


def test_locked_analysis_rejects_new_drafts(db, bus, make_user, make_analysis) -> None:
    uid = make_user()
    analysis = make_analysis(uid)
    history = HistoryManager(db, bus)
    history.write_draft(analysis.id, _draft())
    promoted = history.promote_draft_to_final(analysis.id)
    ApplicationService(db, bus).update_status(promoted.application_id, "submitted")

    with pytest.raises(AnalysisLockedError):
        history.write_draft(analysis.id, _draft(score=95))
    assert history.get_analysis(analysis.id).draft_ats_score is None


def test_other_users_cannot_read_or_promote(db, bus, make_user, make_analysis) -> None:
    uid = make_user()
    make_user("intruder")
    analysis = make_analysis(uid)
    history = HistoryManager(db, bus)

    with pytest.raises(AuthorizationError):
        history.get_analysis(analysis.id, user_id="intruder")
    with pytest.raises(AuthorizationError):
        history.promote_draft_to_final(analysis.id, user_id="intruder")
    with pytest.raises(NotFoundError):
        history.get_analysis(9999)


def test_delete_removes_application_and_logs_activity(db, bus, make_user, make_analysis) -> None:
    uid = make_user()
    analysis = make_analysis(uid)
    history = HistoryManager(db, bus)
    history.write_draft(analysis.id, _draft())
    history.promote_draft_to_final(analysis.id)
    events: list[dict] = []
    bus.listen(analysis_topic(analysis.id), events.append)

    history.delete_analysis(analysis.id, user_id=uid)

    assert history.list_history(uid) == []
    assert ApplicationService(db, bus).list_applications(uid) == []
    assert events[-1]["type"] == "analysis_deleted"
    assert [item.type for item in TokenLedger(db).recent_activity(uid)] == ["analysis_deleted"]
