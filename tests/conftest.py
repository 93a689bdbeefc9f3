import pytest

from app.bizadmin import create_app
from app.bizadmin.db import db_session, session_scope
from app.bizadmin.models import Base, Module, ModulePermission, Permission, User
from app.bizadmin.modules.catalog.service import seed_super_admin, sync_catalog
from app.bizadmin.modules.roles.service import create_role
from app.bizadmin.modules.users.service import create_user
from app.bizadmin.notifications import user_new_password, user_welcome

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "pw-admin"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("JWT_SECRET", "test-jwt-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("WEB_URL", "http://admin.test")
    for k in ("SMTP_SERVER", "SMTP_USERNAME", "SMTP_PASSWORD", "EMAIL_FROM"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    app.config["TESTING"] = True

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        sync_catalog(s)
        seed_super_admin(s, email=ADMIN_EMAIL, password=ADMIN_PASSWORD)

    return app


@pytest.fixture()
def s(app):
    """Request-less session bound to an app context (services read g/current_app)."""
    with app.app_context():
        yield db_session()


@pytest.fixture()
def admin(s):
    return s.query(User).filter(User.email == ADMIN_EMAIL).one()


@pytest.fixture()
def mailbox():
    """Fake notification receiver: records every dispatch and reports success."""
    sent = []

    def _receiver(sender, **payload):
        sent.append((sender, payload))
        return True

    with user_welcome.connected_to(_receiver), user_new_password.connected_to(_receiver):
        yield sent


@pytest.fixture()
def client(app):
    return app.test_client()


def grant_id(s, module_cod: str, permission_cod: str) -> int:
    mp = (
        s.query(ModulePermission)
        .join(Module, Module.id == ModulePermission.module_id)
        .join(Permission, Permission.id == ModulePermission.permission_id)
        .filter(Module.cod == module_cod, Permission.cod == permission_cod)
        .one()
    )
    return mp.id


def make_role(s, actor, name: str, grants: list[tuple[str, str]]) -> int:
    res = create_role(
        s,
        {"name": name, "description": f"{name} role", "rolePermissions": [grant_id(s, m, p) for m, p in grants]},
        actor,
    )
    return res["data"]["id"]


def make_user(s, actor, role_ids: list[int], email: str, password: str = "pw-user") -> int:
    res = create_user(
        s,
        {"name": "Jane Doe", "email": email, "phone": "999888777", "password": password, "roles": role_ids},
        actor,
    )
    return res["data"]["id"]


def login(client, email: str = ADMIN_EMAIL, password: str = ADMIN_PASSWORD) -> dict:
    r = client.post("/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    return {"Authorization": f"Bearer {r.json['data']['token']}"}
