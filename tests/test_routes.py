import pyotp
import pytest
from fastapi.testclient import TestClient

from bridgekeeper.main import create_app


@pytest.fixture()
def client(project_dir):
    return TestClient(create_app(str(project_dir)))


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _run_setup_wizard(client, username="admin", password="admin-pass") -> None:
    token = client.get("/api/setup-wizard/get-setup-wizard-token").json()["access_token"]
    response = client.post(
        "/api/setup-wizard/create-first-user",
        json={"name": "Administrator", "username": username, "password": password},
        headers=_bearer(token),
    )
    assert response.status_code == 200


def _login(client, username="admin", password="admin-pass", otp=None) -> str:
    body = {"username": username, "password": password}
    if otp:
        body["otp"] = otp
    response = client.post("/api/auth/login", json=body)
    assert response.status_code == 200, response.text
    return response.json()["access_token"]


@pytest.fixture()
def admin_token(client) -> str:
    _run_setup_wizard(client)
    return _login(client)


def test_status_reports_open_wizard_on_empty_install(client):
    response = client.get("/api/auth/status")
    assert response.status_code == 200
    assert response.json() == {"setupWizardComplete": False, "authMode": "form"}


def test_setup_wizard_creates_admin_and_closes(client):
    token = client.get("/api/setup-wizard/get-setup-wizard-token").json()["access_token"]
    response = client.post(
        "/api/setup-wizard/create-first-user",
        json={"name": "Administrator", "username": "admin", "password": "admin-pass", "admin": False},
        headers=_bearer(token),
    )
    assert response.status_code == 200
    assert response.json()["admin"] is True

    assert client.get("/api/auth/status").json()["setupWizardComplete"] is True
    assert client.get("/api/setup-wizard/get-setup-wizard-token").status_code == 403
    again = client.post(
        "/api/setup-wizard/create-first-user",
        json={"name": "Second", "username": "second", "password": "pw"},
        headers=_bearer(token),
    )
    assert again.status_code == 403


def test_setup_token_cannot_refresh(client):
    token = client.get("/api/setup-wizard/get-setup-wizard-token").json()["access_token"]
    assert client.post("/api/auth/refresh", headers=_bearer(token)).status_code == 401


def test_create_first_user_requires_setup_token(client):
    response = client.post(
        "/api/setup-wizard/create-first-user",
        json={"name": "A", "username": "a", "password": "pw"},
    )
    assert response.status_code == 401


def test_login_failures_map_to_status_codes(client, admin_token):
    wrong = client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
    unknown = client.post("/api/auth/login", json={"username": "ghost", "password": "nope"})
    assert wrong.status_code == unknown.status_code == 403
    assert wrong.json() == unknown.json()


def test_protected_routes_need_a_valid_token(client, admin_token):
    assert client.get("/api/auth/check").status_code == 401
    assert client.get("/api/auth/check", headers=_bearer("garbage")).status_code == 401
    assert client.get("/api/auth/check", headers=_bearer(admin_token)).json() == {"status": "OK"}


def test_refresh_issues_new_token(client, admin_token):
    response = client.post("/api/auth/refresh", headers=_bearer(admin_token))
    assert response.status_code == 200
    assert response.json()["token_type"] == "Bearer"


def test_user_administration(client, admin_token):
    headers = _bearer(admin_token)
    created = client.post(
        "/api/users",
        json={"name": "Bob", "username": "bob", "admin": False, "password": "bob-pass"},
        headers=headers,
    )
    assert created.status_code == 200
    assert created.json()["id"] == 2

    duplicate = client.post(
        "/api/users",
        json={"name": "Bob", "username": "BOB", "password": "x"},
        headers=headers,
    )
    assert duplicate.status_code == 409

    no_password = client.post("/api/users", json={"name": "Eve", "username": "eve"}, headers=headers)
    assert no_password.status_code == 400

    renamed = client.patch("/api/users/2", json={"name": "Robert"}, headers=headers)
    assert renamed.json()["name"] == "Robert"
    assert client.patch("/api/users/99", json={"name": "x"}, headers=headers).status_code == 404

    users = client.get("/api/users", headers=headers).json()
    assert [u["username"] for u in users] == ["admin", "bob"]
    assert all("hashedPassword" not in u and "salt" not in u for u in users)

    assert client.delete("/api/users/1", headers=headers).status_code == 400
    assert client.delete("/api/users/2", headers=headers).status_code == 200
    assert client.delete("/api/users/2", headers=headers).status_code == 404


def test_non_admin_cannot_manage_users(client, admin_token):
    client.post(
        "/api/users",
        json={"name": "Bob", "username": "bob", "password": "bob-pass"},
        headers=_bearer(admin_token),
    )
    bob_token = _login(client, "bob", "bob-pass")
    assert client.get("/api/users", headers=_bearer(bob_token)).status_code == 403


def test_change_own_password(client, admin_token):
    headers = _bearer(admin_token)
    bad = client.post(
        "/api/users/change-password",
        json={"currentPassword": "wrong", "newPassword": "better-pass"},
        headers=headers,
    )
    assert bad.status_code == 403

    ok = client.post(
        "/api/users/change-password",
        json={"currentPassword": "admin-pass", "newPassword": "better-pass"},
        headers=headers,
    )
    assert ok.status_code == 200
    _login(client, password="better-pass")


def test_two_factor_enrollment_and_login(client, admin_token):
    headers = _bearer(admin_token)
    setup = client.post("/api/users/otp/setup", headers=headers)
    assert setup.status_code == 200
    totp = pyotp.parse_uri(setup.json()["otpauth"])

    assert client.post("/api/users/otp/activate", json={"code": "abcdef"}, headers=headers).status_code == 400
    code = totp.now()
    activated = client.post("/api/users/otp/activate", json={"code": code}, headers=headers)
    assert activated.status_code == 200
    assert activated.json()["otpActive"] is True
    assert client.post("/api/users/otp/setup", headers=headers).status_code == 403

    missing = client.post("/api/auth/login", json={"username": "admin", "password": "admin-pass"})
    assert missing.status_code == 412

    token = _login(client, otp=code)
    replay = client.post("/api/auth/login", json={"username": "admin", "password": "admin-pass", "otp": code})
    assert replay.status_code == 412

    deactivated = client.post(
        "/api/users/otp/deactivate",
        json={"password": "admin-pass"},
        headers=_bearer(token),
    )
    assert deactivated.status_code == 200
    assert deactivated.json()["otpActive"] is False
    _login(client)


def test_no_auth_mode(project_dir):
    (project_dir / "config.yaml").write_text("ui:\n  auth: none\n", encoding="utf-8")
    client = TestClient(create_app(str(project_dir)))
    assert client.get("/api/auth/status").json()["authMode"] == "none"

    # no admin yet
    assert client.post("/api/auth/noauth").status_code == 401

    _run_setup_wizard(client)
    response = client.post("/api/auth/noauth")
    assert response.status_code == 200
    token = response.json()["access_token"]
    assert client.get("/api/users", headers=_bearer(token)).status_code == 200


def test_no_auth_refused_in_form_mode(client, admin_token):
    assert client.post("/api/auth/noauth").status_code == 401
