from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD, bearer, build_app
from identity_service.api import routes
from identity_service.domain.errors import StorageUnavailable


def _register(client, email, role="user", password="Abcdef1", name="Someone"):
    return client.post(
        "/auth/register",
        json={"name": name, "email": email, "password": password, "requestedRole": role},
    )


def _login(client, email, password="Abcdef1", role="user"):
    return client.post("/auth/login", json={"email": email, "password": password, "role": role})


def _super_admin_token(client) -> str:
    response = _login(client, SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD, role="super_admin")
    assert response.status_code == 200
    return response.json()["token"]


def test_admin_elevation_end_to_end(api_client, super_admin):
    client, _ = api_client

    registered = _register(client, "a@x.com", role="admin")
    assert registered.status_code == 201
    body = registered.json()
    assert body["requiresApproval"] is True
    assert body["token"] is None
    assert body["user"]["role"] == "user"
    assert body["user"]["requestedRole"] == "admin"
    assert body["user"]["isApproved"] is False

    pending_login = _login(client, "a@x.com", role="admin")
    assert pending_login.status_code == 403
    assert pending_login.json()["requiresApproval"] is True
    assert "pending approval" in pending_login.json()["message"]

    approval = client.put(
        f"/auth/approve-user/{body['user']['id']}",
        json={"approve": True},
        headers=bearer(_super_admin_token(client)),
    )
    assert approval.status_code == 200
    assert approval.json()["user"]["role"] == "admin"
    assert approval.json()["user"]["approvedBy"] == super_admin.account_id

    admin_login = _login(client, "a@x.com", role="admin")
    assert admin_login.status_code == 200
    assert admin_login.json()["token"]
    assert admin_login.json()["user"]["role"] == "admin"


def test_user_registration_returns_token_and_hides_secret(api_client):
    client, _ = api_client

    response = _register(client, "user@example.com")

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["token"]
    assert body["expiresIn"] > 0
    assert body["requiresApproval"] is False
    assert body["user"]["isApproved"] is True
    assert "password" not in response.text
    assert "passwordHash" not in body["user"]

    me = client.get("/auth/me", headers=bearer(body["token"]))
    assert me.status_code == 200
    assert me.json()["user"]["email"] == "user@example.com"


def test_snake_case_payload_is_accepted(api_client):
    client, _ = api_client
    response = client.post(
        "/auth/register",
        json={"name": "Snake", "email": "snake@example.com", "password": "Abcdef1", "requested_role": "admin"},
    )
    assert response.status_code == 201
    assert response.json()["requiresApproval"] is True


@pytest.mark.parametrize("second_role", ["user", "admin"])
def test_duplicate_registration_is_rejected(api_client, second_role):
    client, _ = api_client
    assert _register(client, "dup@example.com").status_code == 201

    response = _register(client, "Dup@Example.com", role=second_role)

    assert response.status_code == 400
    assert response.json() == {"message": "User already exists"}


def test_invalid_requested_role(api_client):
    client, _ = api_client
    response = _register(client, "role@example.com", role="super_admin")
    assert response.status_code == 400
    assert response.json()["message"] == "Invalid role specified"


def test_request_validation_errors_are_400(api_client):
    client, _ = api_client
    response = client.post("/auth/register", json={"name": "x", "email": "not-an-email", "password": "Abcdef1"})
    assert response.status_code == 400
    assert response.json()["message"] == "Validation failed"
    assert response.json()["errors"]


def test_short_password_is_rejected(api_client):
    client, _ = api_client
    response = _register(client, "short@example.com", password="abc")
    assert response.status_code == 400
    assert "at least 6 characters" in response.json()["message"]


def test_wrong_password_and_unknown_email_are_indistinguishable(api_client):
    client, _ = api_client
    _register(client, "known@example.com")

    wrong_password = _login(client, "known@example.com", password="wrong-pass")
    unknown_email = _login(client, "ghost@example.com")

    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.content == unknown_email.content


def test_login_role_mismatch_is_forbidden(api_client, super_admin):
    client, _ = api_client
    _register(client, "user@example.com")

    as_admin = _login(client, "user@example.com", role="admin")
    as_user = _login(client, SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD, role="user")

    assert as_admin.status_code == 403
    assert "requiresApproval" not in as_admin.json()
    assert as_user.status_code == 403


def test_rejected_request_cannot_log_in(api_client, super_admin):
    client, _ = api_client
    pending = _register(client, "a@x.com", role="admin").json()["user"]

    rejection = client.put(
        f"/auth/approve-user/{pending['id']}",
        json={"approve": False},
        headers=bearer(_super_admin_token(client)),
    )

    assert rejection.status_code == 200
    assert rejection.json()["message"] == "Admin request rejected and account removed."
    assert rejection.json()["user"] is None
    response = _login(client, "a@x.com", role="admin")
    assert response.status_code == 401
    assert response.json() == {"message": "Invalid credentials"}


def test_me_requires_a_valid_token(api_client):
    client, _ = api_client

    missing = client.get("/auth/me")
    garbage = client.get("/auth/me", headers=bearer("not-a-token"))

    assert missing.status_code == 401
    assert missing.json() == {"message": "Not authorized, no token"}
    assert garbage.status_code == 401
    assert missing.headers["WWW-Authenticate"] == "Bearer"


def test_deactivated_account_is_refused_on_next_request(api_client, repository):
    client, _ = api_client
    body = _register(client, "off@example.com").json()
    repository.set_active(body["user"]["id"], False)

    response = client.get("/auth/me", headers=bearer(body["token"]))

    assert response.status_code == 403
    assert response.json()["message"] == "Your account has been deactivated."


def test_admin_routes_require_admin_role(api_client):
    client, _ = api_client
    user_token = _register(client, "user@example.com").json()["token"]
    _register(client, "a@x.com", role="admin")
    pending_token = _login(client, "a@x.com").json()["token"]

    for path in ("/auth/pending-users", "/auth/users"):
        as_user = client.get(path, headers=bearer(user_token))
        as_pending = client.get(path, headers=bearer(pending_token))
        assert as_user.status_code == 403
        assert as_pending.status_code == 403
        assert as_pending.json()["requiresApproval"] is True

    approve = client.put("/auth/approve-user/whatever", json={"approve": True}, headers=bearer(user_token))
    assert approve.status_code == 403


def test_approval_takes_effect_without_new_token(api_client, super_admin):
    client, _ = api_client
    pending = _register(client, "a@x.com", role="admin").json()["user"]
    token = _login(client, "a@x.com").json()["token"]
    assert client.get("/auth/pending-users", headers=bearer(token)).status_code == 403

    client.put(
        f"/auth/approve-user/{pending['id']}",
        json={"approve": True},
        headers=bearer(_super_admin_token(client)),
    )

    assert client.get("/auth/pending-users", headers=bearer(token)).status_code == 200


def test_pending_users_listed_newest_first(api_client, super_admin):
    client, _ = api_client
    _register(client, "first@example.com", role="admin")
    _register(client, "plain@example.com")
    _register(client, "second@example.com", role="admin")

    response = client.get("/auth/pending-users", headers=bearer(_super_admin_token(client)))

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert [user["email"] for user in body["users"]] == ["second@example.com", "first@example.com"]


def test_users_listing_resolves_approver(api_client, super_admin):
    client, _ = api_client
    token = _super_admin_token(client)
    pending = _register(client, "a@x.com", role="admin").json()["user"]
    _register(client, "waiting@example.com", role="admin")
    client.put(f"/auth/approve-user/{pending['id']}", json={"approve": True}, headers=bearer(token))

    response = client.get("/auth/users", headers=bearer(token))

    assert response.status_code == 200
    users = {user["email"]: user for user in response.json()["users"]}
    assert "waiting@example.com" not in users
    assert users["a@x.com"]["approvedBy"] == {
        "id": super_admin.account_id,
        "name": "Super Admin",
        "email": SUPER_ADMIN_EMAIL,
    }
    assert all("passwordHash" not in user for user in users.values())


def test_approving_unknown_or_non_pending_account(api_client, super_admin):
    client, _ = api_client
    token = _super_admin_token(client)
    user = _register(client, "user@example.com").json()["user"]

    missing = client.put("/auth/approve-user/missing", json={"approve": True}, headers=bearer(token))
    not_pending = client.put(f"/auth/approve-user/{user['id']}", json={"approve": True}, headers=bearer(token))

    assert missing.status_code == 404
    assert missing.json() == {"message": "User not found"}
    assert not_pending.status_code == 400
    assert not_pending.json() == {"message": "This user did not request admin access"}


def test_login_is_rate_limited_per_email(api_client):
    client, _ = api_client
    routes.rate_limiter = routes.SlidingWindowRateLimiter(max_requests=2, window_seconds=60)
    _register(client, "limit@example.com")

    assert _login(client, "limit@example.com", password="wrong-pass").status_code == 401
    assert _login(client, "limit@example.com", password="wrong-pass").status_code == 401
    third = _login(client, "limit@example.com")

    assert third.status_code == 429
    assert third.json()["message"] == "rate limited"
    assert int(third.headers["Retry-After"]) >= 1


def test_successful_login_resets_rate_limit(api_client):
    client, _ = api_client
    routes.rate_limiter = routes.SlidingWindowRateLimiter(max_requests=2, window_seconds=60)
    _register(client, "limit@example.com")

    assert _login(client, "limit@example.com", password="wrong-pass").status_code == 401
    assert _login(client, "limit@example.com").status_code == 200
    assert _login(client, "limit@example.com", password="wrong-pass").status_code == 401
    assert _login(client, "limit@example.com").status_code == 200


def test_unknown_route_returns_message(api_client):
    client, _ = api_client
    response = client.get("/auth/nothing-here")
    assert response.status_code == 404
    assert response.json() == {"message": "Route not found"}


@pytest.fixture
def failing_client(service, monkeypatch):
    """Client that turns unhandled server errors into responses instead of raising."""
    monkeypatch.setattr(
        routes, "rate_limiter", routes.SlidingWindowRateLimiter(max_requests=100, window_seconds=60)
    )
    with TestClient(build_app(service), raise_server_exceptions=False) as client:
        yield client


def test_storage_outage_is_reported_as_503(failing_client, repository, monkeypatch):
    def unavailable(email):
        raise StorageUnavailable()

    monkeypatch.setattr(repository, "get_account_by_email", unavailable)

    response = _login(failing_client, "user@example.com")

    assert response.status_code == 503
    assert response.json() == {"message": "Account storage is temporarily unavailable"}


def test_unexpected_error_is_a_generic_500(failing_client, repository, monkeypatch):
    def broken(email):
        raise RuntimeError("connection string postgres://secret@db")

    monkeypatch.setattr(repository, "get_account_by_email", broken)

    response = _login(failing_client, "user@example.com")

    assert response.status_code == 500
    assert response.json() == {"message": "Internal server error"}
    assert "secret" not in response.text


def test_registration_succeeds_when_audit_write_fails(failing_client, repository, monkeypatch):
    def unavailable(**kwargs):
        raise StorageUnavailable()

    monkeypatch.setattr(repository, "write_audit_event", unavailable)

    response = _register(failing_client, "user@example.com")

    assert response.status_code == 201
    assert response.json()["token"]
    assert _login(failing_client, "user@example.com").status_code == 200
