"""
User Manager.

Accounts hold one or more roles through UserRole links. Email is unique among active accounts
only, so a deactivated account keeps its email and can be reactivated later.

Welcome and new-password notifications are dispatched inside the operation's transaction;
a failed delivery rolls the whole operation back.
"""
from __future__ import annotations

import logging
import secrets
import string
from typing import TYPE_CHECKING, Any

from flask import current_app
from werkzeug.security import generate_password_hash

from app.bizadmin.audit import has_performed_actions, record_event
from app.bizadmin.db import atomic
from app.bizadmin.errors import BadRequest, Conflict, NotFound, handle_exception
from app.bizadmin.models import SUPER_ADMIN_ROLE, AuditAction, Role, User, UserRole
from app.bizadmin.notifications import USER_NEW_PASSWORD, USER_WELCOME, delivered, dispatch
from app.bizadmin.rbac import caller_is_super_admin, role_is_protected, user_holds_super_admin_role
from app.bizadmin.utils import clean_str, envelope, isoformat, parse_ids, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

ENTITY_TYPE = "user"
PASSWORD_ALPHABET = string.ascii_letters + string.digits


def serialize_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "isActive": user.is_active,
        "mustChangePassword": user.must_change_password,
        "lastLogin": isoformat(user.last_login),
        "roles": [{"id": r.id, "name": r.name} for r in user.roles],
    }


def generate_password(length: int = 10) -> str:
    """Random temporary password with at least one upper, one lower and one digit."""
    length = max(length, 3)
    while True:
        pwd = "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
        if any(c.isupper() for c in pwd) and any(c.islower() for c in pwd) and any(c.isdigit() for c in pwd):
            return pwd


def _normalize_email(value: Any) -> str | None:
    v = clean_str(value)
    return v.lower() if v else None


def _active_by_email(s: "Session", email: str) -> User | None:
    return s.query(User).filter(User.email == email, User.is_active.is_(True)).one_or_none()


def _inactive_by_email(s: "Session", email: str) -> User | None:
    return (
        s.query(User)
        .filter(User.email == email, User.is_active.is_(False))
        .order_by(User.id.desc())
        .first()
    )


def _assignable_role(s: "Session", role_id: int) -> Role:
    role = s.get(Role, role_id)
    if not role or not role.is_active:
        raise BadRequest(f"Role with ID {role_id} not found or inactive")
    if role_is_protected(role):
        raise BadRequest("You cannot assign the superadmin role to a user")
    return role


def _web_admin() -> str | None:
    return current_app.config.get("WEB_URL")


def _set_links_active(user: User, active: bool) -> None:
    for link in user.role_links:
        link.is_active = active


# ---------- Operations ----------

def create_user(s: "Session", payload: dict, actor: User) -> dict:
    email = _normalize_email(payload.get("email"))
    try:
        with atomic(s):
            role_ids = parse_ids(payload.get("roles"))
            if not role_ids:
                raise BadRequest("Roles is required")
            roles = [_assignable_role(s, rid) for rid in dict.fromkeys(role_ids)]

            name = clean_str(payload.get("name"))
            if not name or not email:
                raise BadRequest("Name and email are required")
            if _active_by_email(s, email):
                raise BadRequest("Email already exists")
            inactive = _inactive_by_email(s, email)
            if inactive:
                raise Conflict(
                    "Email already exists but inactive, contact the administrator to reactivate the account",
                    data={"id": inactive.id},
                )

            password = payload.get("password") or generate_password()
            user = User(
                name=name,
                email=email,
                phone=clean_str(payload.get("phone")),
                password_hash=generate_password_hash(password),
                must_change_password=True,
            )
            s.add(user)
            s.flush()

            for role in roles:
                user.role_links.append(UserRole(role=role))
                record_event(
                    s,
                    actor=actor,
                    action=AuditAction.CREATE,
                    entity_type=ENTITY_TYPE,
                    entity_id=user.id,
                    metadata={"roleId": role.id},
                )
            s.flush()

            # the account exists in full before the password goes out
            results = dispatch(
                USER_WELCOME,
                name=user.name.upper(),
                email=email,
                password=password,
                web_admin=_web_admin(),
            )
            if not delivered(results):
                raise BadRequest("Failed to send email")
            data = serialize_user(user)
        logger.info("User created id=%s by actor=%s", data["id"], actor.id)
        return envelope(201, "User created successfully", data)
    except Exception as e:
        handle_exception(e, f"Error creating user email={email}")


def update_user(s: "Session", user_id: int, payload: dict, actor: User) -> dict:
    try:
        with atomic(s):
            user = s.get(User, user_id)
            if not user:
                raise NotFound("User not found")

            # an empty roles list leaves the links as they are
            wanted = list(dict.fromkeys(parse_ids(payload.get("roles"))))
            if wanted:
                current = {link.role_id: link for link in user.role_links}
                dropped = [link for role_id, link in current.items() if role_id not in wanted]
                if any(role_is_protected(link.role) for link in dropped):
                    raise BadRequest(f"Cannot remove the {SUPER_ADMIN_ROLE} role from a user")

                for link in dropped:
                    user.role_links.remove(link)
                    s.delete(link)
                for role_id in wanted:
                    if role_id in current:
                        continue
                    role = _assignable_role(s, role_id)
                    user.role_links.append(UserRole(role=role, is_active=user.is_active))

            name = clean_str(payload.get("name"))
            if name:
                user.name = name
            if "phone" in payload:
                user.phone = clean_str(payload.get("phone"))
            s.flush()

            record_event(
                s,
                actor=actor,
                action=AuditAction.UPDATE,
                entity_type=ENTITY_TYPE,
                entity_id=user.id,
                metadata={"roles": [link.role_id for link in user.role_links]},
            )
            data = serialize_user(user)
        return envelope(200, "User updated successfully", data)
    except Exception as e:
        handle_exception(e, f"Error updating user id={user_id}")


def remove_user(s: "Session", user_id: int, actor: User) -> dict:
    try:
        with atomic(s):
            user = s.get(User, user_id)
            if not user or not user.is_active:
                raise NotFound("User not found or inactive")
            if user.id == actor.id:
                raise BadRequest("You cannot delete yourself")
            if user_holds_super_admin_role(user):
                raise BadRequest("You cannot delete a superadmin user")

            user.is_active = False
            _set_links_active(user, False)
            record_event(
                s,
                actor=actor,
                action=AuditAction.DELETE,
                entity_type=ENTITY_TYPE,
                entity_id=user.id,
            )
            data = serialize_user(user)
        return envelope(200, "User deleted successfully", data)
    except Exception as e:
        handle_exception(e, f"Error deleting user id={user_id}")


def _users_in(s: "Session", ids: Any) -> list[User]:
    user_ids = parse_ids(ids)
    if not user_ids:
        return []
    return s.query(User).filter(User.id.in_(user_ids)).order_by(User.id).all()


def _check_bulk_targets(users: list[User], actor: User, verb: str) -> None:
    if any(u.id == actor.id for u in users):
        raise BadRequest(f"You cannot {verb} yourself")
    if any(u.is_super_admin or user_holds_super_admin_role(u, active_only=False) for u in users):
        raise BadRequest(f"You cannot {verb} a superadmin user")


def deactivate_users(s: "Session", ids: Any, actor: User) -> dict:
    """
    Users that ever performed an audited action are soft-deactivated so their audit trail keeps
    its author; users with no history are hard-deleted together with their role links.
    """
    try:
        with atomic(s):
            users = [u for u in _users_in(s, ids) if u.is_active]
            if not users:
                raise NotFound("Users not found or inactive")
            _check_bulk_targets(users, actor, "deactivate")

            for user in users:
                user_id = user.id
                if has_performed_actions(s, user_id):
                    user.is_active = False
                    _set_links_active(user, False)
                    outcome = "deactivated"
                else:
                    for link in list(user.role_links):
                        user.role_links.remove(link)
                        s.delete(link)
                    s.delete(user)
                    outcome = "deleted"
                record_event(
                    s,
                    actor=actor,
                    action=AuditAction.DELETE,
                    entity_type=ENTITY_TYPE,
                    entity_id=user_id,
                    metadata={"outcome": outcome},
                )
        return envelope(200, "Users deactivated successfully", include_data=False)
    except Exception as e:
        handle_exception(e, "Error deactivating users")


def _reactivate(s: "Session", user: User, actor: User) -> None:
    holder = _active_by_email(s, user.email)
    if holder and holder.id != user.id:
        raise Conflict(f"Another active user already uses the email {user.email}")
    user.is_active = True
    _set_links_active(user, True)
    record_event(
        s,
        actor=actor,
        action=AuditAction.UPDATE,
        entity_type=ENTITY_TYPE,
        entity_id=user.id,
        metadata={"reactivated": True},
    )


def reactivate_user(s: "Session", user_id: int, actor: User) -> dict:
    try:
        with atomic(s):
            user = s.get(User, user_id)
            if not user:
                raise NotFound("User not found")
            if user.is_active:
                raise BadRequest("User is already active")
            _reactivate(s, user, actor)
            data = serialize_user(user)
        return envelope(200, "User reactivated successfully", data)
    except Exception as e:
        handle_exception(e, f"Error reactivating user id={user_id}")


def reactivate_users(s: "Session", ids: Any, actor: User) -> dict:
    try:
        with atomic(s):
            users = _users_in(s, ids)
            if not users:
                raise NotFound("Users not found or inactive")
            _check_bulk_targets(users, actor, "reactivate")

            emails: set[str] = set()
            for user in users:
                if user.is_active:
                    continue
                if user.email in emails:
                    raise Conflict(f"Another active user already uses the email {user.email}")
                emails.add(user.email)

            for user in users:
                if not user.is_active:
                    _reactivate(s, user, actor)
        return envelope(200, "Users reactivated successfully", include_data=False)
    except Exception as e:
        handle_exception(e, "Error reactivating users")


def find_all_users(s: "Session", caller: User | None) -> dict:
    try:
        q = s.query(User)
        if not caller_is_super_admin(caller):
            q = q.filter(User.is_active.is_(True))
        users = q.order_by(User.created_at.desc(), User.id.desc()).all()
        return envelope(200, "Users found", [serialize_user(u) for u in users])
    except Exception as e:
        handle_exception(e, "Error getting users")


def find_user(s: "Session", user_id: int) -> dict:
    """Active and soft-deactivated accounts are both returned; isActive tells them apart."""
    try:
        user = s.get(User, user_id)
        if not user:
            raise NotFound("User not found")
        return envelope(200, "User found", serialize_user(user))
    except Exception as e:
        handle_exception(e, f"Error finding user id={user_id}")


def send_new_password(s: "Session", email: Any, password: Any, actor: User) -> dict:
    email = _normalize_email(email)
    try:
        with atomic(s):
            if not email:
                raise BadRequest("Email is required")
            user = _active_by_email(s, email)
            if not user:
                if _inactive_by_email(s, email):
                    raise BadRequest(
                        "Email already exists but inactive, contact the administrator to reactivate the account"
                    )
                raise BadRequest("Email not found")
            if user.id == actor.id:
                raise BadRequest("You cannot update your own password")

            plain = clean_str(password) or generate_password()
            user.password_hash = generate_password_hash(plain)
            user.must_change_password = True
            s.flush()

            results = dispatch(
                USER_NEW_PASSWORD,
                name=user.name.upper(),
                email=email,
                password=plain,
                web_admin=_web_admin(),
            )
            if not delivered(results):
                raise BadRequest("Failed to send email")
            record_event(
                s,
                actor=actor,
                action=AuditAction.UPDATE,
                entity_type=ENTITY_TYPE,
                entity_id=user.id,
                metadata={"passwordReset": True},
            )
        return envelope(200, "Email sent successfully", email)
    except Exception as e:
        handle_exception(e, f"Error sending email to {email}")


def update_password_temp(s: "Session", user_id: int, new_password: str) -> dict:
    try:
        with atomic(s):
            user = s.get(User, user_id)
            if not user:
                raise NotFound("User not found")
            user.password_hash = generate_password_hash(new_password)
            user.must_change_password = False
        return envelope(200, "Password updated successfully", include_data=False)
    except Exception as e:
        handle_exception(e, f"Error updating password for user id={user_id}")


def update_last_login(s: "Session", user_id: int) -> None:
    try:
        with atomic(s):
            user = s.get(User, user_id)
            if not user:
                raise NotFound("User not found")
            user.last_login = utcnow()
    except Exception as e:
        handle_exception(e, f"Error updating last login for user id={user_id}")
