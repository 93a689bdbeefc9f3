from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from werkzeug.security import generate_password_hash

from app.bizadmin.errors import NotFound
from app.bizadmin.models import (
    Module,
    ModulePermission,
    Permission,
    Role,
    RoleModulePermission,
    User,
    UserRole,
)
from app.bizadmin.modules.catalog.seeds import MODULES, PERMISSIONS, SUPER_ADMIN_ROLE_SEED

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def serialize_module(m: Module) -> dict:
    return {"id": m.id, "cod": m.cod, "name": m.name, "description": m.description}


def serialize_permission(p: Permission) -> dict:
    return {"id": p.id, "cod": p.cod, "name": p.name, "description": p.description}


def sync_catalog(s: "Session") -> int:
    """
    Insert missing modules/permissions and their pairings. Idempotent.
    Returns the number of new ModulePermission grants.
    """
    modules_by_cod = {m.cod: m for m in s.query(Module).all()}
    for row in MODULES:
        if row["cod"] not in modules_by_cod:
            m = Module(**row)
            s.add(m)
            modules_by_cod[m.cod] = m

    perms_by_cod = {p.cod: p for p in s.query(Permission).all()}
    for row in PERMISSIONS:
        if row["cod"] not in perms_by_cod:
            p = Permission(**row)
            s.add(p)
            perms_by_cod[p.cod] = p
    s.flush()

    pairs: set[tuple[int, int]] = set()
    modules = list(modules_by_cod.values())
    for perm in perms_by_cod.values():
        specific = [m for m in modules if m.cod in perm.cod]
        for m in specific or modules:
            pairs.add((m.id, perm.id))

    existing = {(mp.module_id, mp.permission_id) for mp in s.query(ModulePermission).all()}
    created = 0
    for module_id, permission_id in sorted(pairs - existing):
        s.add(ModulePermission(module_id=module_id, permission_id=permission_id))
        created += 1
    s.flush()
    if created:
        logger.info("Catalog sync created %d module permission grants", created)
    return created


def seed_super_admin(
    s: "Session",
    *,
    email: str,
    password: str,
    name: str = "Super Admin",
    phone: str | None = None,
) -> User:
    """
    Upsert the SUPER_ADMIN role (granted every ModulePermission) and the superadmin user.
    Does NOT overwrite an existing superadmin's password.
    """
    role = (
        s.query(Role)
        .filter(Role.name == SUPER_ADMIN_ROLE_SEED["name"], Role.is_active.is_(True))
        .one_or_none()
    )
    if not role:
        role = Role(**SUPER_ADMIN_ROLE_SEED)
        s.add(role)
        s.flush()

    granted = {link.module_permission_id for link in role.permission_links}
    for mp in s.query(ModulePermission).order_by(ModulePermission.id).all():
        if mp.id not in granted:
            role.permission_links.append(RoleModulePermission(module_permission_id=mp.id))

    email = email.strip().lower()
    user = s.query(User).filter(User.email == email, User.is_active.is_(True)).one_or_none()
    if not user:
        user = User(
            name=name,
            email=email,
            phone=phone,
            password_hash=generate_password_hash(password),
            is_super_admin=True,
            must_change_password=False,
        )
        s.add(user)
        s.flush()
    if not any(link.role_id == role.id for link in user.role_links):
        user.role_links.append(UserRole(role=role))
    s.flush()
    return user


def list_modules(s: "Session") -> list[dict]:
    return [serialize_module(m) for m in s.query(Module).order_by(Module.name.asc()).all()]


def get_module(s: "Session", module_id: int) -> dict:
    m = s.get(Module, module_id)
    if not m:
        raise NotFound(f"Module with id: {module_id} not found")
    return serialize_module(m)


def list_permissions(s: "Session") -> list[dict]:
    return [serialize_permission(p) for p in s.query(Permission).order_by(Permission.name.asc()).all()]


def get_permission(s: "Session", permission_id: int) -> dict:
    p = s.get(Permission, permission_id)
    if not p:
        raise NotFound(f"Permission with id: {permission_id} not found")
    return serialize_permission(p)
