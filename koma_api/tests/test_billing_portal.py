import pytest

from koma_api.features.billing.redirects import sanitize_return_url
from koma_api.tests.mocks import PORTAL_URL

BASE = "https://blog4koma.com"
ALLOWED = ["https://blog4koma.com", "https://www.blog4koma.com"]


@pytest.mark.parametrize("return_url,expected", [
    (None, "https://blog4koma.com/pricing"),
    ("", "https://blog4koma.com/pricing"),
    ("/account", "https://blog4koma.com/account"),
    ("https://www.blog4koma.com/account?tab=plan", "https://www.blog4koma.com/account?tab=plan"),
    ("https://evil.example/phish", "https://blog4koma.com/pricing"),
    ("//evil.example/phish", "https://blog4koma.com/pricing"),
    ("/\\evil.example", "https://blog4koma.com/pricing"),
    ("https://blog4koma.com@evil.example/", "https://blog4koma.com/pricing"),
    ("https://user:pw@blog4koma.com/", "https://blog4koma.com/pricing"),
    ("javascript:alert(1)", "https://blog4koma.com/pricing"),
    ("https://blog4koma.com.evil.example/", "https://blog4koma.com/pricing"),
])
def test_sanitize_return_url(return_url, expected):
    assert sanitize_return_url(return_url, BASE, ALLOWED) == expected


def test_portal_success(client, auth_headers, provider, make_user):
    make_user("alice@example.com", plan="lite", customer_id="cus_alice")

    response = client.post("/api/portal", json={"returnUrl": "/account"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"url": PORTAL_URL}
    provider.create_portal_session.assert_called_once_with(
        customer_id="cus_alice",
        return_url="https://blog4koma.com/account",
    )


def test_portal_rejects_foreign_return_url(client, auth_headers, provider, make_user):
    make_user("alice@example.com", plan="lite", customer_id="cus_alice")

    client.post("/api/portal", json={"returnUrl": "https://evil.example/phish"}, headers=auth_headers)

    assert provider.create_portal_session.call_args.kwargs["return_url"] == "https://blog4koma.com/pricing"


def test_portal_without_body_uses_default_return(client, auth_headers, provider, make_user):
    make_user("alice@example.com", plan="pro", customer_id="cus_alice")

    response = client.post("/api/portal", headers=auth_headers)

    assert response.status_code == 200
    assert provider.create_portal_session.call_args.kwargs["return_url"] == "https://blog4koma.com/pricing"


def test_portal_requires_customer(client, auth_headers, provider, make_user):
    make_user("alice@example.com")

    response = client.post("/api/portal", json={}, headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "NO_SUBSCRIPTION"
    provider.create_portal_session.assert_not_called()


def test_portal_requires_identity(client, provider):
    response = client.post("/api/portal", json={})

    assert response.status_code == 401
    provider.create_portal_session.assert_not_called()


def test_portal_disabled(client, auth_headers, settings):
    settings.BILLING_ENABLED = False

    response = client.post("/api/portal", json={}, headers=auth_headers)

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "BILLING_DISABLED"


def test_portal_disabled_wins_over_malformed_body(client, auth_headers, settings, provider):
    settings.BILLING_ENABLED = False
    headers = dict(auth_headers, **{"Content-Type": "application/json"})

    response = client.post("/api/portal", content=b"{not json", headers=headers)

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "BILLING_DISABLED"
    provider.create_portal_session.assert_not_called()


def test_portal_malformed_body_without_identity_is_unauthorized(client, provider):
    response = client.post(
        "/api/portal",
        content=b'{"returnUrl": 42',
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 401
    provider.create_portal_session.assert_not_called()
