from types import SimpleNamespace

import pytest

from app.bizadmin.errors import NotFound
from app.bizadmin.models import Module, ModulePermission, Permission, Role, RoleModulePermission, User
from app.bizadmin.modules.catalog.service import (
    get_module,
    get_permission,
    list_modules,
    list_permissions,
    seed_super_admin,
    sync_catalog,
)
from app.bizadmin.modules.roles.utils import group_permissions_by_module
from conftest import ADMIN_EMAIL, login


def test_sync_catalog_is_idempotent(s):
    total = s.query(ModulePermission).count()
    assert total == 29
    assert sync_catalog(s) == 0
    assert s.query(ModulePermission).count() == total


def test_module_specific_permission_pairs_with_its_module_only(s):
    export = s.query(Permission).filter(Permission.cod == "RPT_EXPORT").one()
    modules = {
        mp.module.cod for mp in s.query(ModulePermission).filter(ModulePermission.permission_id == export.id)
    }
    assert modules == {"RPT"}


def test_seed_super_admin_grants_everything_once(s):
    user = seed_super_admin(s, email=ADMIN_EMAIL, password="ignored")
    s.commit()
    assert s.query(User).filter(User.email == ADMIN_EMAIL).count() == 1
    assert user.is_super_admin is True

    role = s.query(Role).filter(Role.name == "SUPER_ADMIN").one()
    granted = s.query(RoleModulePermission).filter(RoleModulePermission.role_id == role.id).count()
    assert granted == s.query(ModulePermission).count()


def test_catalog_getters(s):
    modules = list_modules(s)
    assert {m["cod"] for m in modules} == {"USR", "ROL", "CLT", "BNSS", "PRJ", "QUO", "RPT"}

    clt = s.query(Module).filter(Module.cod == "CLT").one()
    assert get_module(s, clt.id)["name"] == "Clients"
    with pytest.raises(NotFound):
        get_module(s, 10_000)

    perms = list_permissions(s)
    read = next(p for p in perms if p["cod"] == "READ")
    assert get_permission(s, read["id"])["cod"] == "READ"
    with pytest.raises(NotFound):
        get_permission(s, 10_000)


def test_group_permissions_by_module_keeps_first_seen_order():
    usr = SimpleNamespace(id=1, cod="USR", name="Users", description=None)
    clt = SimpleNamespace(id=3, cod="CLT", name="Clients", description="Client registry")
    read = SimpleNamespace(id=2, cod="READ", name="read", description="Read")
    create = SimpleNamespace(id=1, cod="CREATE", name="create", description="Create")

    grouped = group_permissions_by_module([(clt, read, 11), (usr, create, 4), (clt, create, 10)])

    assert [g["module"]["cod"] for g in grouped] == ["CLT", "USR"]
    assert grouped[0]["module"] == {"id": 3, "cod": "CLT", "name": "Clients", "description": "Client registry"}
    assert [(p["cod"], p["idModulePermission"]) for p in grouped[0]["permissions"]] == [("READ", 11), ("CREATE", 10)]
    assert group_permissions_by_module([]) == []


def test_catalog_api(client):
    headers = login(client)
    r = client.get("/api/v1/modules", headers=headers)
    assert r.status_code == 200
    assert len(r.json["data"]) == 7

    r = client.get("/api/v1/permissions/10000", headers=headers)
    assert r.status_code == 404
