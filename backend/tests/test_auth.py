"""
Registration, login and token resolution.
"""

from datetime import timedelta

from sqlalchemy import delete

from auth import create_access_token
from database import async_session_maker
from models import Branch, UserRole
from conftest import run, login_headers


def _register(client, **overrides):
    payload = {
        "name": "Test User",
        "email": "new@nexile.com",
        "password": "secret",
        "role": "OWNER",
    }
    payload.update(overrides)
    return client.post("/auth/register", json=payload)


def test_register_owner_returns_token_and_user(client):
    response = _register(client)

    assert response.status_code == 200
    body = response.json()
    assert body["token"]
    assert body["user"]["email"] == "new@nexile.com"
    assert body["user"]["role"] == "OWNER"
    assert "hashed_password" not in body["user"]
    assert body["user"]["trial_expired"] is False


def test_register_same_email_any_case_is_rejected(client):
    assert _register(client, email="dup@nexile.com").status_code == 200

    response = _register(client, email="DUP@Nexile.com")

    assert response.status_code == 400
    assert response.json()["detail"] == "Email already registered. Please log in."


def test_register_pharmacist_requires_branch_name(client):
    response = _register(client, role="PHARMACIST", branch_name="   ")

    assert response.status_code == 400
    assert "Branch name required" in response.json()["detail"]


def test_register_pharmacist_joins_existing_branch_ignoring_case(client, demo_data):
    response = _register(client, role="PHARMACIST", branch_name="nexile main st.")

    assert response.status_code == 200
    assert response.json()["user"]["assigned_branch_id"] == "b1"


def test_register_pharmacist_creates_missing_branch(client, owner_headers):
    response = _register(client, role="PHARMACIST", branch_name="Harbor View")
    assert response.status_code == 200
    branch_id = response.json()["user"]["assigned_branch_id"]

    branches = client.get("/branches", headers=owner_headers).json()
    created = [b for b in branches if b["id"] == branch_id]
    assert created and created[0]["name"] == "Harbor View"
    assert created[0]["location"] == "New Location"


def test_register_manager_with_wrong_code_is_forbidden(client):
    response = _register(client, role="MANAGER", access_code="000000")

    assert response.status_code == 403
    assert response.json()["detail"] == "Invalid Manager Access Code"


def test_register_manager_with_code_has_no_branches(client):
    response = _register(client, role="MANAGER", access_code="123456")

    assert response.status_code == 200
    user = response.json()["user"]
    assert user["managed_branch_ids"] == []
    assert user["assigned_branch_id"] is None


def test_login_unknown_email(client, demo_data):
    response = client.post("/auth/login", json={
        "email": "nobody@nexile.com", "password": "password", "role": "OWNER",
    })

    assert response.status_code == 404
    assert response.json()["detail"] == "User not found. Please register first."


def test_login_role_mismatch(client, demo_data):
    response = client.post("/auth/login", json={
        "email": "john@nexile.com", "password": "password", "role": "OWNER",
    })

    assert response.status_code == 403
    assert "registered as PHARMACIST" in response.json()["detail"]


def test_login_wrong_password(client, demo_data):
    response = client.post("/auth/login", json={
        "email": "owner@nexile.com", "password": "wrong", "role": "OWNER",
    })

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid password"


def test_registered_password_logs_in_verbatim(client):
    assert _register(client, email="space@nexile.com", password=" secret ").status_code == 200

    ok = client.post("/auth/login", json={"email": "space@nexile.com", "password": " secret ", "role": "OWNER"})
    trimmed = client.post("/auth/login", json={"email": "space@nexile.com", "password": "secret", "role": "OWNER"})

    assert ok.status_code == 200
    assert trimmed.status_code == 401


def test_login_email_is_case_insensitive(client, demo_data):
    headers = login_headers(client, "Owner@Nexile.COM", "OWNER")

    assert client.get("/auth/me", headers=headers).json()["email"] == "owner@nexile.com"


def test_manager_wrong_code_is_forbidden_regardless_of_password(client, demo_data):
    for password in ("password", "wrong"):
        response = client.post("/auth/login", json={
            "email": "sarah@nexile.com", "password": password, "role": "MANAGER", "access_code": "999999",
        })
        assert response.status_code == 403
        assert response.json()["detail"] == "Invalid Access Code"


def test_pharmacist_with_vanished_branch_fails_distinctly(client, demo_data):
    async def drop_branch():
        async with async_session_maker() as db:
            await db.execute(delete(Branch).where(Branch.id == "b1"))
            await db.commit()

    run(drop_branch())

    response = client.post("/auth/login", json={
        "email": "john@nexile.com", "password": "password", "role": "PHARMACIST",
    })
    wrong_password = client.post("/auth/login", json={
        "email": "john@nexile.com", "password": "nope", "role": "PHARMACIST",
    })

    assert response.status_code == 409
    assert "branch" in response.json()["detail"].lower()
    assert wrong_password.status_code == 401


def test_me_requires_valid_token(client, demo_data):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_me_rejects_expired_token(client, demo_data):
    token = create_access_token("u1", UserRole.OWNER, expires_delta=timedelta(seconds=-1))

    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_me_rejects_token_for_deleted_user(client):
    token = create_access_token("missing-user", UserRole.OWNER)

    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_me_returns_current_user(client, manager_headers):
    body = client.get("/auth/me", headers=manager_headers).json()

    assert body["email"] == "sarah@nexile.com"
    assert sorted(body["managed_branch_ids"]) == ["b1", "b2"]
