from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from app.bizadmin.models import Module, ModulePermission, Permission, RoleModulePermission

GrantRow = tuple[Module, Permission, int]


def group_permissions_by_module(rows: Iterable[GrantRow]) -> list[dict[str, Any]]:
    """
    Fold flat (module, permission, module_permission_id) rows into
    [{"module": {...}, "permissions": [{..., "idModulePermission": id}]}].

    Modules keep first-seen order; permissions keep row order within a module.
    """
    grouped: dict[int, dict[str, Any]] = {}
    for module, permission, link_id in rows:
        entry = grouped.get(module.id)
        if entry is None:
            entry = {
                "module": {
                    "id": module.id,
                    "cod": module.cod,
                    "name": module.name,
                    "description": module.description,
                },
                "permissions": [],
            }
            grouped[module.id] = entry
        entry["permissions"].append(
            {
                "id": permission.id,
                "cod": permission.cod,
                "name": permission.name,
                "description": permission.description,
                "idModulePermission": link_id,
            }
        )
    return list(grouped.values())


def grant_rows(grants: Iterable[ModulePermission]) -> list[GrantRow]:
    return [(mp.module, mp.permission, mp.id) for mp in grants]


def role_grant_rows(links: Iterable[RoleModulePermission]) -> list[GrantRow]:
    return grant_rows(link.module_permission for link in links)
