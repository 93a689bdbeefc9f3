from werkzeug.security import generate_password_hash

from app.bizadmin.db import session_scope
from app.bizadmin.models import User
from conftest import ADMIN_EMAIL, login


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["statusCode"] == 200

    r = client.get("/healthz")
    assert r.status_code == 200


def test_login_rejects_bad_credentials(client):
    r = client.post("/auth/login", json={"email": ADMIN_EMAIL, "password": "nope"})
    assert r.status_code == 401
    assert r.json == {"statusCode": 401, "message": "Invalid credentials"}

    r = client.post("/auth/login", json={})
    assert r.status_code == 400


def test_login_and_me(client):
    headers = login(client)

    r = client.get("/auth/me", headers=headers)
    assert r.status_code == 200
    data = r.json["data"]
    assert data["email"] == ADMIN_EMAIL
    assert data["isSuperAdmin"] is True
    assert [r["name"] for r in data["roles"]] == ["SUPER_ADMIN"]
    assert "USR.CREATE" in data["permissions"]


def test_login_records_last_login(app, client):
    login(client)
    with session_scope(app) as s:
        user = s.query(User).filter(User.email == ADMIN_EMAIL).one()
        assert user.last_login is not None


def test_cookie_token_is_accepted(client):
    login(client)
    # the test client keeps the access_token cookie set by /auth/login
    r = client.get("/auth/me")
    assert r.status_code == 200

    client.post("/auth/logout")
    r = client.get("/auth/me")
    assert r.status_code == 401


def test_api_requires_token(client):
    r = client.get("/api/v1/users")
    assert r.status_code == 401
    assert r.json["statusCode"] == 401

    r = client.get("/api/v1/users", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_user_without_grant_is_forbidden(app, client):
    with session_scope(app) as s:
        s.add(
            User(
                name="Nobody",
                email="nobody@example.com",
                password_hash=generate_password_hash("pw"),
                must_change_password=False,
            )
        )

    headers = login(client, "nobody@example.com", "pw")
    r = client.get("/api/v1/clients", headers=headers)
    assert r.status_code == 403
    assert r.json["message"] == "You do not have permission to access this resource"


def test_update_password_clears_flag(app, client):
    with session_scope(app) as s:
        s.add(User(name="Temp", email="temp@example.com", password_hash=generate_password_hash("temp-pw")))

    r = client.post("/auth/login", json={"email": "temp@example.com", "password": "temp-pw"})
    assert r.json["data"]["mustChangePassword"] is True
    headers = {"Authorization": f"Bearer {r.json['data']['token']}"}

    r = client.post("/auth/update-password", headers=headers, json={"password": "wrong", "newPassword": "new-pw-1"})
    assert r.status_code == 400

    r = client.post("/auth/update-password", headers=headers, json={"password": "temp-pw", "newPassword": "new-pw-1"})
    assert r.status_code == 200

    r = client.post("/auth/login", json={"email": "temp@example.com", "password": "new-pw-1"})
    assert r.status_code == 200
    assert r.json["data"]["mustChangePassword"] is False


def test_unknown_route_uses_envelope(client):
    r = client.get("/api/v1/does-not-exist")
    assert r.status_code == 404
    assert r.json["statusCode"] == 404
