from __future__ import annotations

import pytest
import requests

from riresume.config import Settings
from riresume.core.functions import FunctionsClient
from riresume.errors import CallableFunctionError


class FakeResponse:
    def __init__(self, status_code: int, body, reason: str = ""):
        self.status_code = status_code
        self._body = body
        self.reason = reason

    def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakeSession:
    def __init__(self, response: FakeResponse | Exception):
        self.response = response
        self.calls: list[dict] = []

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _client(response) -> tuple[FunctionsClient, FakeSession]:
    session = FakeSession(response)
    settings = Settings(functions_base_url="https://functions.test/app/", functions_auth_token="tok")
    return FunctionsClient(settings, session=session), session


def test_call_posts_data_envelope_and_returns_result() -> None:
    client, session = _client(FakeResponse(200, {"result": {"clientSecret": "pi_123"}}))

    result = client.call("createStripePaymentIntent", {"amount": 499})

    assert result == {"clientSecret": "pi_123"}
    call = session.calls[0]
    assert call["url"] == "https://functions.test/app/createStripePaymentIntent"
    assert call["json"] == {"data": {"amount": 499}}
    assert call["headers"]["Authorization"] == "Bearer tok"


def test_callable_error_body_maps_to_code_and_message() -> None:
    body = {"error": {"status": "INVALID_ARGUMENT", "message": "amount too small", "details": {"min": 50}}}
    client, _ = _client(FakeResponse(400, body))

    with pytest.raises(CallableFunctionError) as excinfo:
        client.call("createStripePaymentIntent", {"amount": 1})

    assert excinfo.value.code == "invalid-argument"
    assert excinfo.value.message == "amount too small"
    assert excinfo.value.details == {"min": 50}


def test_server_error_without_body_is_internal() -> None:
    client, _ = _client(FakeResponse(503, ValueError("no json"), reason="Service Unavailable"))

    with pytest.raises(CallableFunctionError) as excinfo:
        client.call("deleteUserAuth", {"uid": "u1"})

    assert excinfo.value.code == "internal"


def test_network_error_is_unavailable() -> None:
    client, _ = _client(requests.ConnectionError("refused"))

    with pytest.raises(CallableFunctionError) as excinfo:
        client.call("restoreUserAuth", {"uid": "u1"})

    assert excinfo.value.code == "unavailable"


def test_missing_result_is_internal() -> None:
    client, _ = _client(FakeResponse(200, {"data": {}}))

    with pytest.raises(CallableFunctionError, match="returned no result"):
        client.call("checkUserProvider", {"email": "a@b.c"})
