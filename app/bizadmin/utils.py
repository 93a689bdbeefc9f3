from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    """Naive UTC wall clock; every stored timestamp goes through here."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def envelope(status_code: int, message: str, data: Any = None, *, include_data: bool = True) -> dict[str, Any]:
    out: dict[str, Any] = {"statusCode": status_code, "message": message}
    if include_data:
        out["data"] = data
    return out


def clean_str(value: Any) -> str | None:
    """Strip strings; blank becomes None. Non-strings pass through str()."""
    if value is None:
        return None
    v = str(value).strip()
    return v or None


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def parse_ids(raw: Any) -> list[int]:
    """Coerce a list of ids from a JSON body; silently drops entries that are not integers."""
    if not isinstance(raw, (list, tuple)):
        return []
    ids: list[int] = []
    for item in raw:
        try:
            ids.append(int(item))
        except (TypeError, ValueError):
            continue
    return ids
