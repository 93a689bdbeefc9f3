"""
Error kinds raised by the service layer.

Known business-rule violations (BadRequest / NotFound / Conflict) pass through to the caller
unchanged. Anything else is logged with full detail and replaced by a generic Internal error
so store-level detail never reaches the client.
"""
from __future__ import annotations

import logging
from typing import Any, NoReturn

from werkzeug.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ServiceError(HTTPException):
    code = 500

    def __init__(self, message: str, data: Any = None) -> None:
        super().__init__(description=message)
        self.data = data

    @property
    def message(self) -> str:
        return self.description or ""

    def to_envelope(self) -> dict[str, Any]:
        body: dict[str, Any] = {"statusCode": self.code, "message": self.message}
        if self.data is not None:
            body["data"] = self.data
        return body


class BadRequest(ServiceError):
    code = 400


class Unauthorized(ServiceError):
    code = 401


class Forbidden(ServiceError):
    code = 403


class NotFound(ServiceError):
    code = 404


class Conflict(ServiceError):
    code = 409


class Internal(ServiceError):
    code = 500


def handle_exception(exc: BaseException, message: str) -> NoReturn:
    if isinstance(exc, ServiceError):
        logger.warning("%s: %s", message, exc.message)
        raise exc
    logger.exception("%s: %s", message, exc)
    raise Internal(message) from exc
