import pytest
from sqlalchemy import select

from riresume.core.ledger import TokenLedger, activity_cost
from riresume.db.models import Activity
from riresume.db.repositories import Repository
from riresume.errors import InsufficientBalanceError, NotFoundError


def _activities(db) -> list[Activity]:
    return list(db.scalars(select(Activity)).all())


def test_debit_writes_activity_with_resulting_balance(db, make_user) -> None:
    uid = make_user(balance=100)

    activity = TokenLedger(db).log_activity(
        "gap_analysis",
        user_id=uid,
        description="Analyzed resume",
        resource_id=7,
        ai_provider="openai",
    )

    assert activity.tokens_used == 10
    assert activity.token_balance == 90
    assert activity.resource_id == "7"
    user = Repository(db).get_user(uid)
    assert user.token_balance == 90
    assert user.total_tokens_used == 10


def test_insufficient_balance_writes_nothing(db, make_user) -> None:
    uid = make_user(balance=10)

    with pytest.raises(InsufficientBalanceError) as excinfo:
        TokenLedger(db).log_activity("skill_incorporation", user_id=uid, description="Add skills")

    assert (excinfo.value.balance, excinfo.value.cost) == (10, 15)
    assert _activities(db) == []
    assert TokenLedger(db).get_balance(uid) == 10


def test_skip_deduction_logs_zero_cost(db, make_user) -> None:
    uid = make_user(balance=50)

    activity = TokenLedger(db).log_activity(
        "interview_prep_generation",
        user_id=uid,
        description="Prep guide",
        skip_token_deduction=True,
    )

    assert activity.tokens_used == 0
    assert activity.token_balance == 50
    assert TokenLedger(db).get_balance(uid) == 50


def test_free_activity_succeeds_on_empty_balance(db, make_user) -> None:
    uid = make_user(balance=0)

    activity = TokenLedger(db).log_activity("pdf_export", user_id=uid, description="Exported PDF")

    assert activity.tokens_used == 0
    assert activity_cost("pdf_export") == 0
    assert activity_cost("unknown_activity") == 0


def test_target_user_is_charged_instead_of_caller(db, make_user) -> None:
    make_user("admin-1", balance=5, role="admin")
    target = make_user("user-2", balance=40)

    TokenLedger(db).log_activity(
        "gap_analysis",
        user_id="admin-1",
        description="Analysis on behalf of user",
        target_user_id=target,
    )

    assert TokenLedger(db).get_balance("admin-1") == 5
    assert TokenLedger(db).get_balance(target) == 30


def test_balance_never_goes_negative_across_debits(db, make_user) -> None:
    uid = make_user(balance=25)
    ledger = TokenLedger(db)

    ledger.log_activity("resume_optimized", user_id=uid, description="first")
    with pytest.raises(InsufficientBalanceError):
        ledger.log_activity("resume_optimized", user_id=uid, description="second")

    assert ledger.get_balance(uid) == 10
    assert [item.token_balance for item in ledger.recent_activity(uid)] == [10]


def test_credit_records_balance_after_credit(db, make_user) -> None:
    uid = make_user(balance=100)

    activity = TokenLedger(db).credit_tokens(
        uid,
        25,
        reason="Purchased 25 tokens",
        activity_type="token_purchase",
        context={"amount": 4.99},
    )

    assert activity.token_balance == 125
    assert activity.tokens_used == 0
    assert activity.context_json["tokens_credited"] == 25
    assert activity.context_json["amount"] == 4.99
    assert Repository(db).get_user(uid).total_tokens_purchased == 25
    assert [item.id for item in TokenLedger(db).purchase_history(uid)] == [activity.id]


def test_credit_rejects_non_positive_amount(db, make_user) -> None:
    uid = make_user()

    with pytest.raises(ValueError):
        TokenLedger(db).credit_tokens(uid, 0, reason="nothing")


def test_check_activity_reports_balance_and_cost(db, make_user) -> None:
    uid = make_user(balance=30)
    ledger = TokenLedger(db)

    assert ledger.check_activity(uid, "resume_optimized") == 30
    with pytest.raises(InsufficientBalanceError) as excinfo:
        ledger.check_activity(uid, "interview_prep_generation")
    assert excinfo.value.cost == 40


def test_unknown_user_is_not_found(db) -> None:
    with pytest.raises(NotFoundError):
        TokenLedger(db).log_activity("gap_analysis", user_id="ghost", description="x")
