"""
Client Registry.

Clients are keyed by a tax id: an 8-character DNI (person) or an 11-character RUC (company).
Only one *active* client may hold a given tax id; deactivated rows do not block re-creation.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from app.bizadmin.audit import record_event
from app.bizadmin.db import atomic
from app.bizadmin.errors import BadRequest, NotFound, handle_exception
from app.bizadmin.models import AuditAction, User
from app.bizadmin.modules.clients.models import Client
from app.bizadmin.rbac import caller_is_super_admin
from app.bizadmin.utils import clean_str, envelope, parse_ids, utcnow

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

ENTITY_TYPE = "client"
DNI_LENGTH = 8
RUC_LENGTH = 11
REQUIRED_ON_CREATE = ("address", "province", "department")

# wire key -> column attribute
EDITABLE_FIELDS = {
    "name": "name",
    "rucDni": "ruc_dni",
    "address": "address",
    "phone": "phone",
    "province": "province",
    "department": "department",
}


def serialize_client(c: Client) -> dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "rucDni": c.ruc_dni,
        "phone": c.phone,
        "address": c.address,
        "province": c.province,
        "department": c.department,
        "isActive": c.is_active,
    }


def validate_ruc_dni(ruc_dni: str | None) -> str:
    if not ruc_dni or len(ruc_dni) not in (DNI_LENGTH, RUC_LENGTH):
        raise BadRequest("The length of the RUC or DNI is incorrect")
    return ruc_dni


def _in_use_message(ruc_dni: str) -> str:
    kind = "DNI" if len(ruc_dni) == DNI_LENGTH else "RUC"
    return f"This {kind} is already in use"


def _active_holder(s: "Session", ruc_dni: str, *, exclude_id: int | None = None) -> Client | None:
    q = s.query(Client).filter(Client.ruc_dni == ruc_dni, Client.is_active.is_(True))
    if exclude_id is not None:
        q = q.filter(Client.id != exclude_id)
    return q.first()


def _get_active_client(s: "Session", client_id: int) -> Client:
    client = s.get(Client, client_id)
    if not client:
        raise BadRequest("This client doesn't exist")
    if not client.is_active:
        raise BadRequest("This client exists but is inactive, contact the superadmin to reactivate it")
    return client


def _compensate_create(s: "Session", client_id: int) -> None:
    """Best-effort removal of a client row whose creation failed after commit."""
    try:
        with atomic(s):
            client = s.get(Client, client_id)
            if client is not None:
                s.delete(client)
        logger.error("Client id=%s has been deleted due to an error in creation", client_id)
    except Exception:
        logger.exception("Compensating delete failed for client id=%s", client_id)


# ---------- Operations ----------

def create_client(s: "Session", payload: dict, actor: User) -> dict:
    ruc_dni = clean_str(payload.get("rucDni"))
    created_id: int | None = None
    try:
        with atomic(s):
            validate_ruc_dni(ruc_dni)
            name = clean_str(payload.get("name"))
            if not name:
                raise BadRequest("Client name is required")
            missing = [key for key in REQUIRED_ON_CREATE if not clean_str(payload.get(key))]
            if missing:
                raise BadRequest(f"Missing required fields: {', '.join(missing)}")
            if _active_holder(s, ruc_dni):
                raise BadRequest(_in_use_message(ruc_dni))

            client = Client(
                name=name,
                ruc_dni=ruc_dni,
                address=clean_str(payload.get("address")),
                phone=clean_str(payload.get("phone")),
                province=clean_str(payload.get("province")),
                department=clean_str(payload.get("department")),
                is_active=True,
            )
            s.add(client)
            s.flush()
            record_event(
                s,
                actor=actor,
                action=AuditAction.CREATE,
                entity_type=ENTITY_TYPE,
                entity_id=client.id,
            )
        created_id = client.id

        # the response is built from the committed row
        s.expire(client)
        data = serialize_client(s.get(Client, created_id))
        return envelope(201, "Client created successfully", data)
    except Exception as e:
        if created_id is not None:
            _compensate_create(s, created_id)
        handle_exception(e, "Error creating a client")


def find_all_clients(s: "Session", caller: User | None) -> dict:
    try:
        q = s.query(Client)
        if not caller_is_super_admin(caller):
            q = q.filter(Client.is_active.is_(True))
        clients = q.order_by(Client.created_at.asc(), Client.id.asc()).all()
        return envelope(200, "Clients found", [serialize_client(c) for c in clients])
    except Exception as e:
        handle_exception(e, "Error getting all clients")


def find_client(s: "Session", client_id: int) -> dict:
    try:
        return envelope(200, "Client found", serialize_client(_get_active_client(s, client_id)))
    except Exception as e:
        handle_exception(e, f"Error finding client id={client_id}")


def _diff_client(client: Client, payload: dict) -> dict[str, Any]:
    """Field-by-field comparison; only supplied values that differ end up in the patch."""
    changes: dict[str, Any] = {}
    for key, attr in EDITABLE_FIELDS.items():
        if key not in payload:
            continue
        value = clean_str(payload[key])
        if value is None and attr in ("name", "ruc_dni"):
            continue
        if value != getattr(client, attr):
            changes[attr] = value
    return changes


def update_client(s: "Session", client_id: int, payload: dict, actor: User) -> dict:
    try:
        with atomic(s):
            client = _get_active_client(s, client_id)

            ruc_dni = clean_str(payload.get("rucDni"))
            if ruc_dni:
                validate_ruc_dni(ruc_dni)
                if _active_holder(s, ruc_dni, exclude_id=client.id):
                    raise BadRequest(_in_use_message(ruc_dni))

            changes = _diff_client(client, payload)
            if not changes:
                return envelope(200, "Client updated successfully", serialize_client(client))

            for attr, value in changes.items():
                setattr(client, attr, value)
            client.updated_at = utcnow()
            record_event(
                s,
                actor=actor,
                action=AuditAction.UPDATE,
                entity_type=ENTITY_TYPE,
                entity_id=client.id,
                metadata={"fields": sorted(changes)},
            )
            data = serialize_client(client)
        return envelope(200, "Client updated successfully", data)
    except Exception as e:
        handle_exception(e, f"Error updating client id={client_id}")


def _clients_in(s: "Session", ids: Any) -> list[Client]:
    client_ids = parse_ids(ids)
    if not client_ids:
        return []
    return s.query(Client).filter(Client.id.in_(client_ids)).order_by(Client.id).all()


def remove_clients(s: "Session", ids: Any, actor: User) -> dict:
    try:
        with atomic(s):
            clients = _clients_in(s, ids)
            if not clients:
                raise NotFound("Clients not found")
            for client in clients:
                client.is_active = False
                client.updated_at = utcnow()
                record_event(
                    s,
                    actor=actor,
                    action=AuditAction.DELETE,
                    entity_type=ENTITY_TYPE,
                    entity_id=client.id,
                )
        return envelope(200, "Clients deactivated successfully", include_data=False)
    except Exception as e:
        handle_exception(e, "Error deactivating clients")


def reactivate_clients(s: "Session", ids: Any, actor: User) -> dict:
    try:
        with atomic(s):
            clients = _clients_in(s, ids)
            if not clients:
                raise NotFound("Clients not found")

            claimed: set[str] = set()
            for client in clients:
                if client.is_active:
                    continue
                if client.ruc_dni in claimed or _active_holder(s, client.ruc_dni, exclude_id=client.id):
                    raise BadRequest(_in_use_message(client.ruc_dni))
                claimed.add(client.ruc_dni)

            for client in clients:
                client.is_active = True
                client.updated_at = utcnow()
                record_event(
                    s,
                    actor=actor,
                    action=AuditAction.UPDATE,
                    entity_type=ENTITY_TYPE,
                    entity_id=client.id,
                    metadata={"reactivated": True},
                )
        return envelope(200, "Clients reactivated successfully", include_data=False)
    except Exception as e:
        handle_exception(e, "Error reactivating clients")
