from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.bizadmin.errors import Forbidden, Unauthorized
from app.bizadmin.models import SUPER_ADMIN_ROLE, Role, User


def is_super_admin_name(name: str | None) -> bool:
    return (name or "").strip().upper() == SUPER_ADMIN_ROLE


def role_is_protected(role: Role | None) -> bool:
    """The superadmin role is immutable through the mutation API."""
    return role is not None and is_super_admin_name(role.name)


def user_holds_super_admin_role(user: User, *, active_only: bool = True) -> bool:
    for link in user.role_links:
        if active_only and not link.is_active:
            continue
        if role_is_protected(link.role):
            return True
    return False


def caller_is_super_admin(user: User | None) -> bool:
    if not user:
        return False
    return bool(user.is_super_admin) or user_holds_super_admin_role(user)


def user_has_permission(user: User | None, module_cod: str, permission_cod: str) -> bool:
    if not user or not user.is_active:
        return False
    if caller_is_super_admin(user):
        return True
    for link in user.role_links:
        if not link.is_active or not link.role.is_active:
            continue
        for grant in link.role.permission_links:
            mp = grant.module_permission
            if mp.module.cod == module_cod and mp.permission.cod == permission_cod:
                return True
    return False


def permission_keys(user: User) -> list[str]:
    """Flat "MODULE.PERMISSION" view of a user's grants (for /auth/me)."""
    keys: set[str] = set()
    for link in user.role_links:
        if not link.is_active or not link.role.is_active:
            continue
        for grant in link.role.permission_links:
            mp = grant.module_permission
            keys.add(f"{mp.module.cod}.{mp.permission.cod}")
    return sorted(keys)


def require_user(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: User | None = getattr(g, "current_user", None)
        if not user or not user.is_active:
            raise Unauthorized("Missing or invalid bearer token.")
        return fn(*args, **kwargs)

    return wrapped


def require_permission(module_cod: str, permission_cod: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # No identity → 401; identity without the grant → 403
            if not user or not user.is_active:
                raise Unauthorized("Missing or invalid bearer token.")
            if not user_has_permission(user, module_cod, permission_cod):
                g.missing_permission = f"{module_cod}.{permission_cod}"
                raise Forbidden("You do not have permission to access this resource")
            return fn(*args, **kwargs)

        return wrapped

    return decorator
