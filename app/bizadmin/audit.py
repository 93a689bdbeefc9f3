from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from flask import g, has_app_context
from sqlalchemy.orm import Session

from app.bizadmin.models import Audit, AuditAction, User
from app.bizadmin.utils import utcnow


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: AuditAction,
    entity_type: str,
    entity_id: int | str,
    created_at: datetime | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> Audit:
    """
    Append-only audit record helper.

    Runs inside the caller's transaction and never commits: a failed write rolls back
    together with the mutation that triggered it.
    """
    rid = request_id
    if rid is None and has_app_context():
        rid = getattr(g, "request_id", None)
    ev = Audit(
        entity_id=str(entity_id),
        entity_type=entity_type,
        action=action,
        performed_by_id=actor.id if actor else None,
        created_at=created_at or utcnow(),
        request_id=rid,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(ev)
    return ev


def has_performed_actions(s: Session, user_id: int) -> bool:
    return s.query(Audit.id).filter(Audit.performed_by_id == user_id).first() is not None
