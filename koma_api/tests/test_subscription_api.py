from unittest.mock import Mock

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from koma_api.core import database
from koma_api.core.context import build_context
from koma_api.main import create_app


def test_subscription_anonymous_is_free_shape(client):
    response = client.get("/api/subscription")

    assert response.status_code == 200
    assert response.json() == {
        "plan": "free",
        "limits": {"blog": 0, "movie": 0, "monthly": 0},
        "usage": {"blog": 0, "movie": 0, "total": 0},
        "remaining": {"blog": 0, "movie": 0, "total": 0},
        "user": None,
    }


def test_subscription_first_visit_creates_free_user(client, auth_headers, context):
    response = client.get("/api/subscription", headers=auth_headers)

    body = response.json()
    assert body["plan"] == "free"
    assert body["user"] == {"email": "alice@example.com", "hasStripeCustomer": False}
    assert context.directory.get_user("alice@example.com") is not None


def test_subscription_reports_pooled_monthly_usage(client, auth_headers, make_user, seed_usage):
    user_id = make_user("alice@example.com", plan="lite", customer_id="cus_alice")
    seed_usage(user_id, 4, kind="blog")
    seed_usage(user_id, 2, kind="movie")

    body = client.get("/api/subscription", headers=auth_headers).json()

    assert body["plan"] == "lite"
    assert body["limits"] == {"blog": 30, "movie": 30, "monthly": 30}
    assert body["usage"] == {"blog": 4, "movie": 2, "total": 6}
    assert body["remaining"] == {"blog": 24, "movie": 24, "total": 24}
    assert body["user"]["hasStripeCustomer"] is True


def test_subscription_ignores_user_query_parameter(client, make_user):
    make_user("victim@example.com", plan="pro", customer_id="cus_victim")

    body = client.get("/api/subscription", params={"userId": "victim@example.com"}).json()

    assert body["plan"] == "free"
    assert body["user"] is None


def test_config_exposes_billing_flag(client, settings):
    assert client.get("/api/config").json() == {"billingEnabled": True, "consentVersion": "2025-01"}

    settings.BILLING_ENABLED = False

    assert client.get("/api/config").json()["billingEnabled"] is False


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_readyz(client):
    response = client.get("/readyz")

    assert response.status_code == 200
    assert response.json()["db"] is True


def test_readyz_uses_the_wired_session_factory(tmp_path, monkeypatch, settings, counter_store, provider, clock):
    engine = database.build_engine(f"sqlite:///{tmp_path / 'other.db'}")
    factory = sessionmaker(bind=engine)
    context = build_context(settings, factory, counter_store, provider=provider, clock=clock)
    monkeypatch.setattr(database, "_engine", None)
    monkeypatch.setattr(database, "_SessionLocal", None)

    response = TestClient(create_app(context=context)).get("/readyz")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "db": True}
    engine.dispose()


def test_readyz_reports_unreachable_database(context, monkeypatch):
    failing = Mock(side_effect=OperationalError("SELECT 1", {}, Exception("connection refused")))
    monkeypatch.setattr(context, "session_factory", failing)

    response = TestClient(create_app(context=context), raise_server_exceptions=False).get("/readyz")

    assert response.status_code == 503
    assert response.json() == {"status": "unavailable", "db": False}
