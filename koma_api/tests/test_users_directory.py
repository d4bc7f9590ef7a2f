from starlette.datastructures import Headers

from koma_api.core.auth import Identity, identity_from_headers


def test_get_or_create_is_idempotent(context):
    first = context.directory.get_or_create_user("Alice@Example.com")
    second = context.directory.get_or_create_user("alice@example.com ")

    assert first.id == second.id == "alice@example.com"
    assert second.plan == "free"


def test_attach_customer_id(context):
    context.directory.attach_customer_id("alice@example.com", "alice@example.com", "cus_1")

    assert context.directory.get_user("alice@example.com").billing_customer_id == "cus_1"
    assert context.directory.find_by_customer_id("cus_1").id == "alice@example.com"


def test_unknown_customer(context):
    assert context.directory.find_by_customer_id("cus_missing") is None


def test_identity_from_headers():
    headers = Headers({"cf-access-authenticated-user-email": "  Bob@Example.com "})

    identity = identity_from_headers(headers, "CF-Access-Authenticated-User-Email")

    assert identity.email == "Bob@Example.com"
    assert identity.user_id == "bob@example.com"


def test_blank_identity_header_is_anonymous():
    assert identity_from_headers(Headers({"cf-access-authenticated-user-email": "  "}), "CF-Access-Authenticated-User-Email") is None
    assert identity_from_headers(Headers({}), "CF-Access-Authenticated-User-Email") is None


def test_identity_matches_ignores_case_and_whitespace():
    identity = Identity(email="alice@example.com")

    assert identity.matches(" ALICE@example.com")
    assert not identity.matches("alice@example.org")
    assert not identity.matches(None)
