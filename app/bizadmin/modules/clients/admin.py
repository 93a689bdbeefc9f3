from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.bizadmin.db import db_session
from app.bizadmin.models import User
from app.bizadmin.modules.clients.service import (
    create_client,
    find_all_clients,
    find_client,
    reactivate_clients,
    remove_clients,
    update_client,
)
from app.bizadmin.rbac import require_permission

bp = Blueprint("clients", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _reply(result: dict):
    return jsonify(result), result["statusCode"]


def _body() -> dict:
    return request.get_json(silent=True) or {}


@bp.post("/clients")
@require_permission("CLT", "CREATE")
def clients_create():
    return _reply(create_client(db_session(), _body(), _current_user()))


@bp.get("/clients")
@require_permission("CLT", "READ")
def clients_list():
    return _reply(find_all_clients(db_session(), _current_user()))


@bp.get("/clients/<int:client_id>")
@require_permission("CLT", "READ")
def clients_detail(client_id: int):
    return _reply(find_client(db_session(), client_id))


@bp.patch("/clients/<int:client_id>")
@require_permission("CLT", "UPDATE")
def clients_update(client_id: int):
    return _reply(update_client(db_session(), client_id, _body(), _current_user()))


@bp.delete("/clients/remove/all")
@require_permission("CLT", "DELETE")
def clients_remove_all():
    return _reply(remove_clients(db_session(), _body().get("ids"), _current_user()))


@bp.patch("/clients/reactivate/all")
@require_permission("CLT", "UPDATE")
def clients_reactivate_all():
    return _reply(reactivate_clients(db_session(), _body().get("ids"), _current_user()))
