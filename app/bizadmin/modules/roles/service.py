"""
Role Manager.

A role owns a set of ModulePermission grants. The SUPER_ADMIN role is seeded once and is
never touched by this API: it cannot be updated, removed, deactivated or reactivated, and it
is hidden from listings.

Removal policy (single and bulk):
- in use by an active user (active link + active user)  -> rejected
- referenced only by inactive users                      -> soft-deactivated
- otherwise                                              -> hard-deleted (links cascade)
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.bizadmin.audit import record_event
from app.bizadmin.db import atomic
from app.bizadmin.errors import BadRequest, Conflict, NotFound, handle_exception
from app.bizadmin.models import (
    SUPER_ADMIN_ROLE,
    AuditAction,
    ModulePermission,
    Role,
    RoleModulePermission,
    User,
    UserRole,
)
from app.bizadmin.modules.roles.utils import grant_rows, group_permissions_by_module, role_grant_rows
from app.bizadmin.rbac import caller_is_super_admin, is_super_admin_name, role_is_protected
from app.bizadmin.utils import clean_str, envelope, parse_ids

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

ENTITY_TYPE = "role"


def serialize_role(role: Role) -> dict[str, Any]:
    return {
        "id": role.id,
        "name": role.name,
        "description": role.description,
        "isActive": role.is_active,
        "rolePermissions": group_permissions_by_module(role_grant_rows(role.permission_links)),
    }


# ---------- Helpers exposed to collaborators ----------

def get_role(s: "Session", role_id: int) -> Role | None:
    return s.get(Role, role_id)


def find_by_name(s: "Session", name: str) -> Role | None:
    """Active role with this exact name, if any."""
    return s.query(Role).filter(Role.name == name, Role.is_active.is_(True)).one_or_none()


def is_super_admin_role(s: "Session", role_id: int) -> bool:
    return role_is_protected(get_role(s, role_id))


def is_in_use_by_active_user(s: "Session", role_id: int) -> bool:
    q = (
        s.query(UserRole.id)
        .join(User, User.id == UserRole.user_id)
        .filter(UserRole.role_id == role_id, UserRole.is_active.is_(True), User.is_active.is_(True))
    )
    return q.first() is not None


def is_in_use_only_by_inactive_users(s: "Session", role_id: int) -> bool:
    q = (
        s.query(UserRole.id)
        .join(User, User.id == UserRole.user_id)
        .filter(UserRole.role_id == role_id, User.is_active.is_(False))
    )
    return q.first() is not None


def _resolve_grants(s: "Session", raw_ids: Any) -> list[ModulePermission]:
    if not isinstance(raw_ids, (list, tuple)):
        raise BadRequest("rolePermissions must be a list of ids")
    grants: list[ModulePermission] = []
    seen: set[int] = set()
    for raw in raw_ids:
        try:
            mp_id = int(raw)
        except (TypeError, ValueError):
            raise BadRequest(f"ModulePermission with ID {raw} does not exist.")
        if mp_id in seen:
            continue
        mp = s.get(ModulePermission, mp_id)
        if not mp:
            raise BadRequest(f"ModulePermission with ID {mp_id} does not exist.")
        seen.add(mp_id)
        grants.append(mp)
    return grants


def _retire_role(s: "Session", role: Role) -> str:
    if is_in_use_only_by_inactive_users(s, role.id):
        role.is_active = False
        return "deactivated"
    s.delete(role)
    return "deleted"


# ---------- Operations ----------

def create_role(s: "Session", payload: dict, actor: User) -> dict:
    name = clean_str(payload.get("name"))
    description = clean_str(payload.get("description"))
    try:
        with atomic(s):
            if not name:
                raise BadRequest("Role name is required")
            if is_super_admin_name(name):
                raise BadRequest(f"Role name cannot be {SUPER_ADMIN_ROLE}")
            if find_by_name(s, name):
                raise Conflict("Role already exists")

            grants = _resolve_grants(s, payload.get("rolePermissions") or [])
            if not grants:
                raise BadRequest("Role permissions are required")

            role = Role(name=name, description=description, is_active=True)
            for mp in grants:
                role.permission_links.append(RoleModulePermission(module_permission=mp))
            s.add(role)
            s.flush()

            record_event(
                s,
                actor=actor,
                action=AuditAction.CREATE,
                entity_type=ENTITY_TYPE,
                entity_id=role.id,
                metadata={"name": role.name, "grants": [mp.id for mp in grants]},
            )
            data = serialize_role(role)
        return envelope(201, "Role created successfully", data)
    except Exception as e:
        handle_exception(e, f"Error creating role name={name}")


def _is_empty_patch(patch: dict) -> bool:
    return (
        not clean_str(patch.get("name"))
        and not clean_str(patch.get("description"))
        and not patch.get("rolePermissions")
    )


def update_role(s: "Session", role_id: int, patch: dict, actor: User) -> dict:
    """
    Update name/description and, when rolePermissions is a non-empty list, replace the whole
    grant set (delete-all then insert-new, not diffed).
    """
    name = clean_str(patch.get("name"))
    try:
        with atomic(s):
            role = get_role(s, role_id)
            if role_is_protected(role):
                raise BadRequest("Cannot update the role because it is super admin")
            if _is_empty_patch(patch):
                raise BadRequest("No data to update")
            if name and is_super_admin_name(name):
                raise BadRequest(f"Role name cannot be {SUPER_ADMIN_ROLE}")
            if not role:
                raise NotFound("Role not found")
            if name:
                existing = find_by_name(s, name)
                if existing and existing.id != role.id:
                    raise Conflict("Role already exists with this name")
                role.name = name

            description = clean_str(patch.get("description"))
            if description:
                role.description = description

            # an empty list keeps the current grants
            if patch.get("rolePermissions"):
                grants = _resolve_grants(s, patch["rolePermissions"])
                role.permission_links.clear()
                # old links must be gone before re-inserting the same (role, grant) pairs
                s.flush()
                for mp in grants:
                    role.permission_links.append(RoleModulePermission(module_permission=mp))
            s.flush()

            record_event(
                s,
                actor=actor,
                action=AuditAction.UPDATE,
                entity_type=ENTITY_TYPE,
                entity_id=role.id,
                metadata={"name": role.name, "grants": [link.module_permission_id for link in role.permission_links]},
            )
            data = serialize_role(role)
        return envelope(200, "Role updated successfully", data)
    except Exception as e:
        handle_exception(e, f"Error updating role id={role_id}")


def remove_role(s: "Session", role_id: int, actor: User) -> dict:
    try:
        with atomic(s):
            role = get_role(s, role_id)
            if not role:
                raise NotFound("Role not found")
            if role_is_protected(role):
                raise BadRequest("It is not possible to delete the role because it is super admin")
            if is_in_use_by_active_user(s, role.id):
                raise BadRequest("It is not possible to delete the role because it is in use")

            data = {"id": role.id, "name": role.name, "description": role.description}
            outcome = _retire_role(s, role)
            record_event(
                s,
                actor=actor,
                action=AuditAction.DELETE,
                entity_type=ENTITY_TYPE,
                entity_id=data["id"],
                metadata={"name": data["name"], "outcome": outcome},
            )
        return envelope(200, "Role deleted", data)
    except Exception as e:
        handle_exception(e, f"Error deleting role id={role_id}")


def _roles_in(s: "Session", ids: Any) -> list[Role]:
    role_ids = parse_ids(ids)
    if not role_ids:
        return []
    return s.query(Role).filter(Role.id.in_(role_ids)).order_by(Role.id).all()


def remove_roles(s: "Session", ids: Any, actor: User) -> dict:
    try:
        with atomic(s):
            roles = _roles_in(s, ids)
            if not roles:
                raise NotFound("Roles not found")
            # validate every target before touching any of them
            if any(role_is_protected(r) for r in roles):
                raise BadRequest("You cannot deactivate a superadmin role")
            if any(is_in_use_by_active_user(s, r.id) for r in roles):
                raise BadRequest("You cannot deactivate a role in use")

            for role in roles:
                role_id = role.id
                outcome = _retire_role(s, role)
                record_event(
                    s,
                    actor=actor,
                    action=AuditAction.DELETE,
                    entity_type=ENTITY_TYPE,
                    entity_id=role_id,
                    metadata={"outcome": outcome},
                )
        return envelope(200, "Roles deactivated successfully", include_data=False)
    except Exception as e:
        handle_exception(e, "Error deactivating roles")


def reactivate_roles(s: "Session", ids: Any, actor: User) -> dict:
    try:
        with atomic(s):
            roles = _roles_in(s, ids)
            if not roles:
                raise NotFound("Roles not found")
            if any(role_is_protected(r) for r in roles):
                raise BadRequest("You cannot reactivate a superadmin role")

            names: set[str] = set()
            for role in roles:
                if role.is_active:
                    continue
                holder = find_by_name(s, role.name)
                if (holder and holder.id != role.id) or role.name in names:
                    raise Conflict(f"An active role named '{role.name}' already exists")
                names.add(role.name)

            for role in roles:
                role.is_active = True
                record_event(
                    s,
                    actor=actor,
                    action=AuditAction.UPDATE,
                    entity_type=ENTITY_TYPE,
                    entity_id=role.id,
                    metadata={"reactivated": True},
                )
        return envelope(200, "Roles reactivated successfully", include_data=False)
    except Exception as e:
        handle_exception(e, "Error reactivating roles")


def find_all_roles(s: "Session", caller: User | None) -> dict:
    try:
        q = s.query(Role).filter(func.upper(Role.name) != SUPER_ADMIN_ROLE)
        if not caller_is_super_admin(caller):
            q = q.filter(Role.is_active.is_(True))
        roles = q.order_by(Role.created_at.asc(), Role.id.asc()).all()
        return envelope(200, "Roles found", [serialize_role(r) for r in roles])
    except Exception as e:
        handle_exception(e, "Error getting roles with modules and permissions")


def find_role(s: "Session", role_id: int) -> dict:
    try:
        role = get_role(s, role_id)
        if not role:
            raise NotFound("Role not found")
        return envelope(200, "Role found", serialize_role(role))
    except Exception as e:
        handle_exception(e, f"Error finding role id={role_id}")


def list_module_permissions(s: "Session") -> dict:
    try:
        grants = s.query(ModulePermission).order_by(ModulePermission.module_id, ModulePermission.id).all()
        return envelope(200, "Module permissions found", group_permissions_by_module(grant_rows(grants)))
    except Exception as e:
        handle_exception(e, "Error getting modules with permissions")
