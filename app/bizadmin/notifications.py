"""
Named notification events.

Receivers connect to a signal and return True when they delivered the notification.
`dispatch()` reports one boolean per receiver; callers treat anything short of
"at least one receiver, all of them True" as a failed delivery.
"""
from __future__ import annotations

import logging
from typing import Any

from blinker import Namespace

logger = logging.getLogger(__name__)

events = Namespace()

USER_WELCOME = "user.welcome-admin-first"
USER_NEW_PASSWORD = "user.new-password"

user_welcome = events.signal(USER_WELCOME)
user_new_password = events.signal(USER_NEW_PASSWORD)


def dispatch(event: str, **payload: Any) -> list[bool]:
    signal = events.signal(event)
    results = []
    for receiver, value in signal.send(event, **payload):
        ok = value is True
        if not ok:
            logger.warning("Notification receiver %r did not deliver event=%s", receiver, event)
        results.append(ok)
    return results


def delivered(results: list[bool]) -> bool:
    return bool(results) and all(results)
