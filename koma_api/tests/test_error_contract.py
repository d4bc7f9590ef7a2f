"""
Error envelope contract.

Every failure response carries {"error": {code, message, request_id, hint?}, "detail"}
plus an x-request-id header that matches error.request_id.
"""
import pytest
from redis import ConnectionError as RedisConnectionError

from koma_api.core.errors import DemoLimitExceededError
from koma_api.tests.mocks import FailingCounterStore


def _assert_envelope(response, code):
    body = response.json()
    assert body["error"]["code"] == code
    assert body["error"]["message"]
    assert body["detail"] == body["error"]["message"]
    assert body["error"]["request_id"] == response.headers["x-request-id"]
    return body["error"]


def test_validation_error_envelope(client):
    response = client.get("/api/demo-status", params={"feature": "podcast"})

    assert response.status_code == 400
    _assert_envelope(response, "VALIDATION_ERROR")


def test_incoming_request_id_is_echoed(client):
    response = client.post("/api/checkout", json={}, headers={"x-request-id": "req-abc-123"})

    assert response.status_code == 401
    error = _assert_envelope(response, "AUTH_REQUIRED")
    assert error["request_id"] == "req-abc-123"
    assert error["hint"]


def test_not_found_envelope(client):
    response = client.get("/api/does-not-exist")

    assert response.status_code == 404
    _assert_envelope(response, "NOT_FOUND")


def test_unhandled_error_is_generic(client, auth_headers, context, monkeypatch):
    def boom(user_id):
        raise RuntimeError("connection string postgres://secret@db")

    monkeypatch.setattr(context.ledger, "get_usage", boom)

    response = client.get("/api/subscription", headers=auth_headers)

    assert response.status_code == 500
    error = _assert_envelope(response, "INTERNAL_ERROR")
    assert "secret" not in error["message"]


def test_success_responses_carry_request_id(client):
    response = client.get("/api/config")

    assert response.status_code == 200
    assert response.headers["x-request-id"]


def test_demo_limit_error_has_hint(context):
    for _ in range(3):
        context.access.admit("demo", "blog", None, "1.2.3.4")
    with pytest.raises(DemoLimitExceededError) as exc_info:
        context.access.admit("demo", "blog", None, "1.2.3.4")

    assert exc_info.value.code == "DEMO_LIMIT_EXCEEDED"
    assert "BYOK" in exc_info.value.hint


def test_store_failure_in_demo_gate_is_internal(context):
    context.demo_limiter.store = FailingCounterStore(RedisConnectionError("down"))

    with pytest.raises(RedisConnectionError):
        context.access.admit("demo", "blog", None, "1.2.3.4")
