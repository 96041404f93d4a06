from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from riresume.db.models import Activity, UserProfile
from riresume.db.repositories import Repository
from riresume.errors import InsufficientBalanceError, NotFoundError

logger = logging.getLogger(__name__)

ACTIVITY_COSTS: dict[str, int] = {
    "resume_parsing": 5,
    "job_extraction": 3,
    "gap_analysis": 10,
    "ats_score_calculation": 8,
    "bullet_enhancement": 15,
    "skill_incorporation": 15,
    "resume_optimized": 15,
    "resume_reoptimization": 15,
    "draft_score_prediction": 5,
    "cover_letter_generation": 15,
    "company_research": 15,
    "interview_prep_generation": 40,
    "training_slideshow_generation": 30,
    "concept_explanation": 8,
    "skill_marked_learned": 0,
    "token_purchase": 0,
    "pdf_export": 0,
    "application_status_update": 0,
    "analysis_deleted": 0,
    "learning_completion": 0,
    "admin_adjustment": 0,
    "token_refund": 0,
}


def activity_cost(activity_type: str) -> int:
    return ACTIVITY_COSTS.get(activity_type, 0)


class TokenLedger:
    def __init__(self, session: Session):
        self.session = session
        self.repo = Repository(session)

    def log_activity(
        self,
        activity_type: str,
        *,
        user_id: str,
        description: str,
        resource_id: str | int | None = None,
        resource_name: str = "",
        ai_provider: str = "none",
        platform: str = "web",
        context: dict[str, Any] | None = None,
        skip_token_deduction: bool = False,
        target_user_id: str | None = None,
    ) -> Activity:
        """Record one activity and debit its cost in a single transaction.

        Raises ``InsufficientBalanceError`` without writing anything when the
        balance cannot cover the cost.
        """
        uid = target_user_id or user_id
        cost = 0 if skip_token_deduction else activity_cost(activity_type)

        try:
            user = self._lock_user(uid)
            if user.token_balance < cost:
                raise InsufficientBalanceError(user.token_balance, cost)

            new_balance = user.token_balance - cost
            activity = Activity(
                uid=uid,
                type=activity_type,
                description=description,
                resource_id="" if resource_id is None else str(resource_id),
                resource_name=resource_name,
                tokens_used=cost,
                token_balance=new_balance,
                ai_provider=ai_provider,
                status="completed",
                platform=platform,
                context_json=context or {},
            )
            self.session.add(activity)
            user.token_balance = new_balance
            user.total_tokens_used = user.total_tokens_used + cost
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(activity)
        if cost:
            logger.info("Debited %s tokens from %s for %s (balance %s)", cost, uid, activity_type, new_balance)
        return activity

    def credit_tokens(
        self,
        user_id: str,
        amount: int,
        *,
        reason: str,
        activity_type: str = "admin_adjustment",
        actor_uid: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> Activity:
        if amount <= 0:
            raise ValueError("credit amount must be positive")

        try:
            user = self._lock_user(user_id)
            new_balance = user.token_balance + amount
            activity = Activity(
                uid=user_id,
                type=activity_type,
                description=reason,
                tokens_used=0,
                token_balance=new_balance,
                status="completed",
                context_json={"tokens_credited": amount, "actor_uid": actor_uid or user_id} | (context or {}),
            )
            self.session.add(activity)
            user.token_balance = new_balance
            user.total_tokens_purchased = user.total_tokens_purchased + amount
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(activity)
        logger.info("Credited %s tokens to %s (balance %s)", amount, user_id, new_balance)
        return activity

    def refund(self, charge: Activity, *, reason: str) -> Activity | None:
        """Return the tokens debited by ``charge`` when its work was never stored."""
        amount, uid = charge.tokens_used, charge.uid
        if amount <= 0:
            return None

        try:
            user = self._lock_user(uid)
            new_balance = user.token_balance + amount
            activity = Activity(
                uid=uid,
                type="token_refund",
                description=reason,
                resource_id=charge.resource_id,
                resource_name=charge.resource_name,
                tokens_used=0,
                token_balance=new_balance,
                status="completed",
                context_json={"tokens_refunded": amount, "refunded_activity_id": charge.id},
            )
            self.session.add(activity)
            user.token_balance = new_balance
            user.total_tokens_used = max(0, user.total_tokens_used - amount)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        self.session.refresh(activity)
        logger.info("Refunded %s tokens to %s (balance %s)", amount, uid, new_balance)
        return activity

    def get_balance(self, user_id: str) -> int:
        user = self.repo.get_user(user_id)
        if user is None:
            raise NotFoundError(f"user {user_id} not found")
        return user.token_balance

    def check_tokens(self, user_id: str, required: int) -> int:
        balance = self.get_balance(user_id)
        if balance < required:
            raise InsufficientBalanceError(balance, required)
        return balance

    def check_activity(self, user_id: str, activity_type: str) -> int:
        return self.check_tokens(user_id, activity_cost(activity_type))

    def recent_activity(self, user_id: str, limit: int = 20) -> list[Activity]:
        return self.repo.list_activities(user_id, limit=limit)

    def purchase_history(self, user_id: str, limit: int = 50) -> list[Activity]:
        return self.repo.list_activities(user_id, types=["token_purchase"], limit=limit)

    def _lock_user(self, uid: str) -> UserProfile:
        user = self.repo.get_user(uid, for_update=True)
        if user is None:
            raise NotFoundError(f"user {uid} not found")
        return user
