from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from riresume.config import Settings, get_settings
from riresume.core.functions import FunctionsClient
from riresume.core.ledger import TokenLedger
from riresume.db.base import utcnow
from riresume.db.models import UserProfile
from riresume.db.repositories import Repository
from riresume.errors import AuthorizationError, NotFoundError
from riresume.types import ActivityRecord, UserRecord

logger = logging.getLogger(__name__)


class AccountService:
    def __init__(
        self,
        session: Session,
        settings: Settings | None = None,
        functions: FunctionsClient | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.repo = Repository(session)
        self.functions = functions

    def sync_user_profile(
        self,
        *,
        uid: str,
        email: str = "",
        display_name: str = "",
        provider: str = "password",
    ) -> UserRecord:
        """Create the profile on first sign-in, otherwise stamp the login."""
        email = email.strip().lower()
        is_primary_admin = bool(self.settings.admin_email) and email == self.settings.admin_email.lower()

        user = self.repo.get_user(uid)
        if user is None:
            user = self.repo.create_user(
                uid=uid,
                email=email,
                display_name=display_name or "User",
                provider=provider,
                role="admin" if is_primary_admin else "user",
                token_balance=self.settings.welcome_bonus_tokens,
            )
            logger.info("Registered user %s with %s welcome tokens", uid, self.settings.welcome_bonus_tokens)
            return UserRecord.model_validate(user)

        if user.account_status == "deleted":
            raise AuthorizationError("account has been deleted")

        values: dict[str, Any] = {"last_login_at": utcnow()}
        if is_primary_admin and user.role != "admin":
            values["role"] = "admin"
        elif not is_primary_admin and user.role == "admin" and self.settings.admin_email:
            logger.warning("Demoting unauthorized admin account %s", uid)
            values["role"] = "user"
        return UserRecord.model_validate(self.repo.update_user(uid, values))

    def get_profile(self, uid: str) -> UserRecord:
        return UserRecord.model_validate(self._load(uid))

    def update_profile(self, uid: str, *, display_name: str | None = None, notifications_enabled: bool | None = None) -> UserRecord:
        self._load(uid)
        values: dict[str, Any] = {}
        if display_name is not None:
            values["display_name"] = display_name
        if notifications_enabled is not None:
            values["notifications_enabled"] = notifications_enabled
        return UserRecord.model_validate(self.repo.update_user(uid, values))

    def require_admin(self, uid: str) -> UserRecord:
        user = self.repo.get_user(uid)
        if user is None or user.role != "admin" or user.account_status != "active":
            raise AuthorizationError("admin role required")
        return UserRecord.model_validate(user)

    def check_email(self, email: str) -> dict[str, Any]:
        email = email.strip().lower()
        user = self.repo.get_user_by_email(email)
        if user is not None:
            return {"exists": True, "status": user.account_status, "provider": user.provider, "uid": user.uid}
        archived = self.repo.find_deleted_account_by_email(email)
        if archived is not None:
            provider = str((archived.profile_snapshot or {}).get("provider", "unknown"))
            return {"exists": True, "status": "deleted", "provider": provider, "uid": archived.uid}
        return {"exists": False}

    def archive_and_delete(self, uid: str, *, reason: str = "", actor_uid: str | None = None) -> None:
        user = self._load(uid)
        snapshot = UserRecord.model_validate(user).model_dump(mode="json")
        purchases = self.repo.list_activities(uid, types=["token_purchase"], limit=1000)
        total_spent = sum(float(item.context_json.get("amount", 0) or 0) for item in purchases)
        snapshot |= {
            "total_spent": total_spent,
            "history_count": len(self.repo.list_analyses(uid, limit=10_000)),
            "token_balance_at_deletion": user.token_balance,
        }

        self.repo.create_deleted_account(uid=uid, email=user.email, reason=reason, profile_snapshot=snapshot)
        self.repo.update_user(uid, {"account_status": "deleted"})
        self.repo.append_audit(
            actor_uid=actor_uid or uid,
            target_uid=uid,
            action="account_deleted",
            details_json={"reason": reason},
        )
        logger.info("Archived and soft-deleted user %s", uid)

        self._call_best_effort("deleteUserAuth", {"uid": uid})
        self._call_best_effort("sendAccountStatusEmail", {"email": user.email, "status": "deleted"})

    def restore_account(self, uid: str, *, actor_uid: str) -> UserRecord:
        self.require_admin(actor_uid)
        archived = self.repo.get_deleted_account(uid)
        if archived is None:
            raise NotFoundError("Archived account not found.")

        snapshot = archived.profile_snapshot or {}
        balance = int(snapshot.get("token_balance_at_deletion", snapshot.get("token_balance", 0)) or 0)
        user = self.repo.get_user(uid)
        if user is None:
            self.repo.create_user(
                uid=uid,
                email=str(snapshot.get("email", archived.email)),
                display_name=str(snapshot.get("display_name", "User")),
                provider=str(snapshot.get("provider", "password")),
                token_balance=balance,
            )
        else:
            self.repo.update_user(uid, {"account_status": "active", "token_balance": balance})

        archived.restored = True
        self.session.commit()
        self.repo.append_audit(actor_uid=actor_uid, target_uid=uid, action="account_restored")
        logger.info("Restored user %s", uid)

        self._call_best_effort("restoreUserAuth", {"uid": uid})
        self._call_best_effort("sendAccountStatusEmail", {"email": archived.email, "status": "restored"})
        return self.get_profile(uid)

    def admin_credit(self, *, actor_uid: str, target_uid: str, amount: int, reason: str) -> ActivityRecord:
        self.require_admin(actor_uid)
        self._load(target_uid)
        activity = TokenLedger(self.session).credit_tokens(
            target_uid,
            amount,
            reason=reason or f"Admin credited {amount} tokens",
            activity_type="admin_adjustment",
            actor_uid=actor_uid,
        )
        self.repo.append_audit(
            actor_uid=actor_uid,
            target_uid=target_uid,
            action="tokens_credited",
            details_json={"amount": amount, "reason": reason},
        )
        return ActivityRecord.model_validate(activity)

    def _load(self, uid: str) -> UserProfile:
        user = self.repo.get_user(uid)
        if user is None:
            raise NotFoundError(f"user {uid} not found")
        return user

    def _call_best_effort(self, name: str, data: dict[str, Any]) -> None:
        if self.functions is None:
            return
        try:
            self.functions.call(name, data)
        except Exception:
            logger.warning("Callable %s failed", name, exc_info=True)
