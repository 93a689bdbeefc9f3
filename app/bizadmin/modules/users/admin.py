from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.bizadmin.db import db_session
from app.bizadmin.models import User
from app.bizadmin.modules.users.service import (
    create_user,
    deactivate_users,
    find_all_users,
    find_user,
    generate_password,
    reactivate_user,
    reactivate_users,
    remove_user,
    send_new_password,
    update_user,
)
from app.bizadmin.rbac import require_permission
from app.bizadmin.utils import envelope

bp = Blueprint("users", __name__)


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
@bp.post("/users")
@require_permission("USR", "CREATE")
def users_create():
    return _reply(create_user(db_session(), _body(), _current_user()))


@bp.patch("/users/<int:user_id>")
@require_permission("USR", "UPDATE")
def users_update(user_id: int):
    return _reply(update_user(db_session(), user_id, _body(), _current_user()))


@bp.delete("/users/<int:user_id>")
@require_permission("USR", "DELETE")
def users_delete(user_id: int):
    return _reply(remove_user(db_session(), user_id, _current_user()))


@bp.delete("/users/deactivate/all")
@require_permission("USR", "DELETE")
def users_deactivate_all():
    return _reply(deactivate_users(db_session(), _body().get("ids"), _current_user()))


@bp.patch("/users/reactivate/<int:user_id>")
@require_permission("USR", "UPDATE")
def users_reactivate(user_id: int):
    return _reply(reactivate_user(db_session(), user_id, _current_user()))


@bp.patch("/users/reactivate/all")
@require_permission("USR", "UPDATE")
def users_reactivate_all():
    return _reply(reactivate_users(db_session(), _body().get("ids"), _current_user()))


# ---------- Credentials ----------
@bp.post("/users/send-new-password")
@require_permission("USR", "UPDATE")
def users_send_new_password():
    body = _body()
    return _reply(send_new_password(db_session(), body.get("email"), body.get("password"), _current_user()))


@bp.get("/users/generate-password")
@require_permission("USR", "CREATE")
def users_generate_password():
    return jsonify(envelope(200, "Password generated", {"password": generate_password()}))


# ---------- Reads ----------
@bp.get("/users")
@require_permission("USR", "READ")
def users_list():
    return _reply(find_all_users(db_session(), _current_user()))


@bp.get("/users/<int:user_id>")
@require_permission("USR", "READ")
def users_detail(user_id: int):
    return _reply(find_user(db_session(), user_id))
