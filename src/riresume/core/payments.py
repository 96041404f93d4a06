from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session

from riresume.config import Settings, get_settings
from riresume.core.functions import FunctionsClient
from riresume.core.ledger import TokenLedger
from riresume.errors import CallableFunctionError, PaymentError
from riresume.types import ActivityRecord

logger = logging.getLogger(__name__)


def to_minor_units(amount: float | int | str | Decimal) -> int:
    """Whole currency units to integer cents, e.g. ``4.99 -> 499``."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise PaymentError(f"invalid amount {amount!r}") from exc
    if not value.is_finite() or value <= 0:
        raise PaymentError("amount must be a positive number")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentService:
    def __init__(
        self,
        session: Session,
        functions: FunctionsClient | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.functions = functions or FunctionsClient(self.settings)
        self.ledger = TokenLedger(session)

    def create_intent(self, uid: str, amount: float | int) -> dict[str, Any]:
        minor = to_minor_units(amount)
        try:
            result = self.functions.call(
                "createStripePaymentIntent",
                {"amount": amount, "amount_minor": minor, "currency": self.settings.payment_currency, "uid": uid},
            )
        except CallableFunctionError as exc:
            raise PaymentError(f"could not start payment: {exc.message}") from exc

        client_secret = (result or {}).get("clientSecret")
        if not client_secret:
            raise PaymentError("Failed to receive client secret from backend.")
        logger.info("Created payment intent for %s (%s minor units)", uid, minor)
        return {"client_secret": client_secret, "amount_minor": minor, "currency": self.settings.payment_currency}

    def confirm_purchase(self, uid: str, tokens: int, package_id: str, amount: float | int) -> ActivityRecord:
        """Credit ``tokens`` after the client observed a successful payment."""
        if tokens <= 0:
            raise PaymentError("token count must be positive")
        activity = self.ledger.credit_tokens(
            uid,
            tokens,
            reason=f"Purchased {tokens} tokens",
            activity_type="token_purchase",
            context={"package_id": package_id, "amount": float(amount), "tokens": tokens},
        )
        return ActivityRecord.model_validate(activity)
