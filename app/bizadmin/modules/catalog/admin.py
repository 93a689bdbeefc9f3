from flask import Blueprint, jsonify

from app.bizadmin.db import db_session
from app.bizadmin.modules.catalog.service import get_module, get_permission, list_modules, list_permissions
from app.bizadmin.rbac import require_permission
from app.bizadmin.utils import envelope

bp = Blueprint("catalog", __name__)


@bp.get("/modules")
@require_permission("ROL", "READ")
def modules_list():
    return jsonify(envelope(200, "Modules found", list_modules(db_session())))


@bp.get("/modules/<int:module_id>")
@require_permission("ROL", "READ")
def module_detail(module_id: int):
    return jsonify(envelope(200, "Module found", get_module(db_session(), module_id)))


@bp.get("/permissions")
@require_permission("ROL", "READ")
def permissions_list():
    return jsonify(envelope(200, "Permissions found", list_permissions(db_session())))


@bp.get("/permissions/<int:permission_id>")
@require_permission("ROL", "READ")
def permission_detail(permission_id: int):
    return jsonify(envelope(200, "Permission found", get_permission(db_session(), permission_id)))
