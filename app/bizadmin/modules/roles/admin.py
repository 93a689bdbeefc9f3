from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.bizadmin.db import db_session
from app.bizadmin.models import User
from app.bizadmin.modules.roles.service import (
    create_role,
    find_all_roles,
    find_role,
    list_module_permissions,
    reactivate_roles,
    remove_role,
    remove_roles,
    update_role,
)
from app.bizadmin.rbac import require_permission

bp = Blueprint("roles", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _reply(result: dict):
    return jsonify(result), result["statusCode"]


def _body() -> dict:
    return request.get_json(silent=True) or {}


# ---------- Mutations ----------
@bp.post("/rol")
@require_permission("ROL", "CREATE")
def roles_create():
    return _reply(create_role(db_session(), _body(), _current_user()))


@bp.patch("/rol/<int:role_id>")
@require_permission("ROL", "UPDATE")
def roles_update(role_id: int):
    return _reply(update_role(db_session(), role_id, _body(), _current_user()))


@bp.delete("/rol/<int:role_id>")
@require_permission("ROL", "DELETE")
def roles_delete(role_id: int):
    return _reply(remove_role(db_session(), role_id, _current_user()))


@bp.delete("/rol/remove/all")
@require_permission("ROL", "DELETE")
def roles_delete_all():
    return _reply(remove_roles(db_session(), _body().get("ids"), _current_user()))


@bp.patch("/rol/reactivate/all")
@require_permission("ROL", "UPDATE")
def roles_reactivate_all():
    return _reply(reactivate_roles(db_session(), _body().get("ids"), _current_user()))


# ---------- Reads ----------
@bp.get("/rol")
@require_permission("ROL", "READ")
def roles_list():
    return _reply(find_all_roles(db_session(), _current_user()))


@bp.get("/rol/<int:role_id>")
@require_permission("ROL", "READ")
def roles_detail(role_id: int):
    return _reply(find_role(db_session(), role_id))


@bp.get("/rol/modules-permissions/all")
@require_permission("ROL", "READ")
def roles_module_permissions():
    return _reply(list_module_permissions(db_session()))
