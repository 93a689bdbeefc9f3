"""
Static catalog data: application modules and the permissions that can be granted on them.
"""
from __future__ import annotations

MODULES: list[dict[str, str]] = [
    {"cod": "USR", "name": "Users", "description": "User accounts"},
    {"cod": "ROL", "name": "Roles", "description": "Roles and their permissions"},
    {"cod": "CLT", "name": "Clients", "description": "Client registry"},
    {"cod": "BNSS", "name": "Business", "description": "Business profile"},
    {"cod": "PRJ", "name": "Design projects", "description": "Design projects"},
    {"cod": "QUO", "name": "Quotations", "description": "Quotations"},
    {"cod": "RPT", "name": "Reports", "description": "Reports"},
]

# Generic CRUD permissions apply to every module. A permission whose cod contains a
# module cod (e.g. "RPT_EXPORT") is paired with that module only.
PERMISSIONS: list[dict[str, str]] = [
    {"cod": "CREATE", "name": "create", "description": "Create"},
    {"cod": "READ", "name": "read", "description": "Read"},
    {"cod": "UPDATE", "name": "update", "description": "Update"},
    {"cod": "DELETE", "name": "delete", "description": "Delete"},
    {"cod": "RPT_EXPORT", "name": "export", "description": "Export reports"},
]

SUPER_ADMIN_ROLE_SEED = {"name": "SUPER_ADMIN", "description": "Super administrator"}
