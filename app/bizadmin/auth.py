from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import Blueprint, current_app, g, jsonify, make_response, request
from werkzeug.security import check_password_hash

from app.bizadmin.db import db_session
from app.bizadmin.errors import BadRequest, Unauthorized
from app.bizadmin.models import User
from app.bizadmin.rbac import caller_is_super_admin, permission_keys, require_user
from app.bizadmin.utils import envelope

logger = logging.getLogger(__name__)

bp = Blueprint("auth", __name__)

JWT_ALGORITHM = "HS256"
ACCESS_TOKEN_COOKIE = "access_token"


def create_access_token(user: User) -> tuple[str, int]:
    now = datetime.now(timezone.utc)
    expires_in = int(current_app.config.get("JWT_ACCESS_TTL_MINUTES") or 480) * 60
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "isSuperAdmin": caller_is_super_admin(user),
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
    }
    token = jwt.encode(payload, current_app.config["JWT_SECRET"], algorithm=JWT_ALGORITHM)
    return token, expires_in


def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, current_app.config["JWT_SECRET"], algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise Unauthorized("Token expired.") from exc
    except jwt.InvalidTokenError as exc:
        raise Unauthorized("Invalid token.") from exc
    if not payload.get("sub"):
        raise Unauthorized("Invalid token.")
    return payload


def _extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def extract_access_token() -> str | None:
    token = _extract_bearer_token(request.headers.get("Authorization"))
    if token:
        return token
    return request.cookies.get(ACCESS_TOKEN_COOKIE)


def load_current_user() -> None:
    """
    Loads g.current_user from the bearer token (header or cookie).
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    g.current_user = None
    if request.path.startswith(("/health", "/healthz")):
        return

    token = extract_access_token()
    if not token:
        return
    try:
        payload = decode_access_token(token)
        user = db_session().get(User, int(payload["sub"]))
    except Unauthorized as e:
        logger.info("Rejected bearer token (request_id=%s): %s", g.request_id, e.message)
        return
    except ValueError:
        return
    if not user or not user.is_active:
        return
    g.current_user = user


@bp.post("/login")
def login():
    from app.bizadmin.modules.users.service import update_last_login

    body = request.get_json(silent=True) or {}
    email = (body.get("email") or "").strip().lower()
    password = body.get("password") or ""
    if not email or not password:
        raise BadRequest("Email and password are required")

    s = db_session()
    user = s.query(User).filter(User.email == email, User.is_active.is_(True)).one_or_none()
    if not user or not check_password_hash(user.password_hash, password):
        logger.warning("Login failed email=%s request_id=%s", email, g.request_id)
        raise Unauthorized("Invalid credentials")

    update_last_login(s, user.id)
    token, expires_in = create_access_token(user)
    resp = make_response(
        jsonify(
            envelope(
                200,
                "Login successful",
                {
                    "id": user.id,
                    "name": user.name,
                    "email": user.email,
                    "phone": user.phone,
                    "roles": [{"id": r.id, "name": r.name} for r in user.roles],
                    "mustChangePassword": user.must_change_password,
                    "token": token,
                    "expiresIn": expires_in,
                },
            )
        )
    )
    resp.set_cookie(
        ACCESS_TOKEN_COOKIE,
        token,
        max_age=expires_in,
        httponly=True,
        samesite="Lax",
        secure=bool(current_app.config.get("SESSION_COOKIE_SECURE")),
    )
    return resp


@bp.post("/logout")
def logout():
    resp = make_response(jsonify(envelope(200, "Logout successful", include_data=False)))
    resp.delete_cookie(ACCESS_TOKEN_COOKIE)
    return resp


@bp.post("/update-password")
@require_user
def update_password():
    from app.bizadmin.modules.users.service import update_password_temp

    body = request.get_json(silent=True) or {}
    current = body.get("password") or ""
    new_password = body.get("newPassword") or ""
    user: User = g.current_user
    if not check_password_hash(user.password_hash, current):
        raise BadRequest("Current password is incorrect")
    if len(new_password) < 6:
        raise BadRequest("New password must be at least 6 characters")
    if new_password == current:
        raise BadRequest("New password must be different from the current one")
    update_password_temp(db_session(), user.id, new_password)
    return jsonify(envelope(200, "Password updated successfully", include_data=False))


@bp.get("/me")
@require_user
def me():
    user: User = g.current_user
    return jsonify(
        envelope(
            200,
            "Current user",
            {
                "id": user.id,
                "name": user.name,
                "email": user.email,
                "isSuperAdmin": caller_is_super_admin(user),
                "roles": [{"id": r.id, "name": r.name} for r in user.roles],
                "permissions": permission_keys(user),
            },
        )
    )
