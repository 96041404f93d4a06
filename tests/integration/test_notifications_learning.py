import pytest

from riresume.core.learning import LearningService
from riresume.core.ledger import TokenLedger
from riresume.core.notifications import APPLICATIONS_ROUTE, NotificationService
from riresume.db.repositories import Repository
from riresume.errors import AuthorizationError


def test_notifications_are_scheduled_with_routes(db, make_user) -> None:
    uid = make_user()
    service = NotificationService(db)

    service.notify_cover_letter_complete(uid, "Backend Engineer", "Acme", 12)

    [pending] = service.pending(uid)
    assert pending["title"] == "Cover Letter Ready"
    assert pending["data"] == {"route": APPLICATIONS_ROUTE, "params": {"appId": "12", "action": "viewCoverLetter"}}
    service.mark_delivered(pending["id"])
    assert service.pending(uid) == []


def test_disabled_notifications_are_skipped(db, make_user) -> None:
    uid = make_user()
    Repository(db).update_user(uid, {"notifications_enabled": False})

    assert NotificationService(db).notify_learning_complete(uid, "Docker") is None
    assert NotificationService(db).pending(uid) == []


def test_optimization_body_mentions_score_when_known(db, make_user) -> None:
    uid = make_user()
    service = NotificationService(db)

    service.notify_optimization_complete(uid, "Backend Engineer", "Acme", 3, 84)
    service.notify_optimization_complete(uid, "Backend Engineer", "Acme", 3)

    bodies = [item["body"] for item in service.pending(uid)]
    assert bodies == [
        "Your resume for Backend Engineer at Acme scored 84% after optimization",
        "Your resume for Backend Engineer at Acme has been optimized",
    ]


def test_learning_entries_deduplicate_by_skill(db, make_user, make_analysis) -> None:
    uid = make_user()
    analysis = make_analysis(uid)
    service = LearningService(db)

    first = service.add_from_analysis(analysis)
    second = service.add_from_analysis(analysis)

    assert [entry.skill for entry in first] == ["Docker"]
    assert [entry.id for entry in second] == [first[0].id]
    assert first[0].importance == "critical"


def test_mark_learned_completes_and_logs(db, make_user) -> None:
    uid = make_user()
    service = LearningService(db)
    entry = service.add_entry(user_id=uid, skill="Kubernetes")

    assert service.update_status(entry.id, "in_progress", user_id=uid).completed_at is None
    learned = service.mark_learned(entry.id, user_id=uid)

    assert learned.status == "completed"
    assert learned.completed_at is not None
    assert TokenLedger(db).recent_activity(uid)[0].type == "skill_marked_learned"
    assert NotificationService(db).pending(uid)[0]["title"] == "Training Complete"


def test_learning_status_is_validated_and_owned(db, make_user) -> None:
    uid = make_user()
    make_user("intruder")
    service = LearningService(db)
    entry = service.add_entry(user_id=uid, skill="Go")

    with pytest.raises(ValueError):
        service.update_status(entry.id, "paused", user_id=uid)
    with pytest.raises(AuthorizationError):
        service.update_status(entry.id, "completed", user_id="intruder")
