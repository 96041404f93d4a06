from __future__ import annotations

import logging
from typing import Any

import requests

from riresume.config import Settings, get_settings
from riresume.errors import CallableFunctionError

logger = logging.getLogger(__name__)

KNOWN_FUNCTIONS = {
    "checkUserProvider",
    "restoreUserAuth",
    "deleteUserAuth",
    "sendAccountStatusEmail",
    "generateTrainingSlideshow",
    "createStripePaymentIntent",
}


def _error_code(status: str) -> str:
    # Callable errors arrive as e.g. "INVALID_ARGUMENT"; callers match on "invalid-argument".
    return status.strip().lower().replace("_", "-") or "internal"


class FunctionsClient:
    """Invokes serverless callables by name over HTTPS."""

    def __init__(self, settings: Settings | None = None, session: requests.Session | None = None):
        self.settings = settings or get_settings()
        self.http = session or requests.Session()

    def call(self, name: str, data: dict[str, Any] | None = None, *, id_token: str | None = None) -> Any:
        if name not in KNOWN_FUNCTIONS:
            logger.warning("Calling unregistered callable %s", name)
        url = f"{self.settings.functions_base_url.rstrip('/')}/{name}"
        headers = {"Content-Type": "application/json"}
        token = id_token or self.settings.functions_auth_token
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = self.http.post(
                url,
                json={"data": data or {}},
                headers=headers,
                timeout=self.settings.functions_timeout_sec,
            )
        except requests.RequestException as exc:
            logger.warning("Callable %s unreachable: %s", name, exc)
            raise CallableFunctionError("unavailable", str(exc)) from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        error = body.get("error") if isinstance(body, dict) else None
        if response.status_code >= 400 or error:
            error = error or {}
            status = str(error.get("status", "")) or ("internal" if response.status_code >= 500 else "unknown")
            code = _error_code(status)
            message = str(error.get("message") or response.reason or "callable failed")
            logger.warning("Callable %s failed with %s: %s", name, code, message)
            raise CallableFunctionError(code, message, details=error.get("details"))

        if not isinstance(body, dict) or "result" not in body:
            raise CallableFunctionError("internal", f"callable {name} returned no result")
        return body["result"]
