import pytest

from riresume.config import Settings
from riresume.core.accounts import AccountService
from riresume.core.ledger import TokenLedger
from riresume.db.repositories import Repository
from riresume.errors import AuthorizationError, CallableFunctionError, NotFoundError


class RecordingFunctions:
    def __init__(self, fail: bool = False):
        self.calls: list[tuple[str, dict]] = []
        self.fail = fail

    def call(self, name, data=None, **kwargs):
        self.calls.append((name, data or {}))
        if self.fail:
            raise CallableFunctionError("unavailable", "offline")
        return {"ok": True}


def _service(db, functions=None, admin_email: str = "boss@example.com") -> AccountService:
    return AccountService(db, settings=Settings(admin_email=admin_email), functions=functions)


def test_first_sign_in_grants_welcome_bonus(db) -> None:
    user = _service(db).sync_user_profile(uid="u1", email="Jane@Example.com", display_name="Jane")

    assert user.token_balance == 110
    assert user.role == "user"
    assert user.email == "jane@example.com"


def test_primary_admin_email_gets_admin_role(db) -> None:
    user = _service(db).sync_user_profile(uid="boss", email="boss@example.com")

    assert user.role == "admin"


def test_repeat_sign_in_stamps_login_and_demotes_stray_admin(db, make_user) -> None:
    make_user("rogue", role="admin", email="rogue@example.com")

    user = _service(db).sync_user_profile(uid="rogue", email="rogue@example.com")

    assert user.role == "user"
    assert Repository(db).get_user("rogue").last_login_at is not None


def test_check_email_reports_existing_and_unknown(db, make_user) -> None:
    make_user("u1", email="jane@example.com")
    service = _service(db)

    assert service.check_email("JANE@example.com")["exists"] is True
    assert service.check_email("nobody@example.com") == {"exists": False}


def test_delete_archives_snapshot_and_blocks_sign_in(db, make_user) -> None:
    uid = make_user("u1", balance=42, email="jane@example.com")
    functions = RecordingFunctions()
    service = _service(db, functions)

    service.archive_and_delete(uid, reason="moving on")

    archived = Repository(db).get_deleted_account(uid)
    assert archived.reason == "moving on"
    assert archived.profile_snapshot["token_balance_at_deletion"] == 42
    assert Repository(db).get_user(uid).account_status == "deleted"
    assert [name for name, _ in functions.calls] == ["deleteUserAuth", "sendAccountStatusEmail"]
    assert service.check_email("jane@example.com")["status"] == "deleted"
    with pytest.raises(AuthorizationError):
        service.sync_user_profile(uid=uid, email="jane@example.com")


def test_callable_failures_do_not_block_deletion(db, make_user) -> None:
    uid = make_user("u1")

    _service(db, RecordingFunctions(fail=True)).archive_and_delete(uid)

    assert Repository(db).get_user(uid).account_status == "deleted"


def test_admin_restores_account_with_balance(db, make_user) -> None:
    make_user("boss", role="admin", email="boss@example.com")
    uid = make_user("u1", balance=42)
    functions = RecordingFunctions()
    service = _service(db, functions)
    service.archive_and_delete(uid)
    Repository(db).update_user(uid, {"token_balance": 0})

    restored = service.restore_account(uid, actor_uid="boss")

    assert restored.account_status == "active"
    assert restored.token_balance == 42
    assert Repository(db).get_deleted_account(uid) is None
    assert [audit.action for audit in Repository(db).list_audit(uid)] == ["account_deleted", "account_restored"]
    with pytest.raises(NotFoundError):
        service.restore_account(uid, actor_uid="boss")


def test_non_admin_cannot_restore_or_credit(db, make_user) -> None:
    make_user("u1")
    make_user("u2")
    service = _service(db)

    with pytest.raises(AuthorizationError):
        service.restore_account("u2", actor_uid="u1")
    with pytest.raises(AuthorizationError):
        service.admin_credit(actor_uid="u1", target_uid="u2", amount=10, reason="gift")


def test_admin_credit_adds_tokens_and_audit(db, make_user) -> None:
    make_user("boss", role="admin")
    uid = make_user("u1", balance=5)

    activity = _service(db).admin_credit(actor_uid="boss", target_uid=uid, amount=20, reason="")

    assert activity.type == "admin_adjustment"
    assert activity.token_balance == 25
    assert TokenLedger(db).get_balance(uid) == 25
    assert Repository(db).list_audit(uid)[0].action == "tokens_credited"
