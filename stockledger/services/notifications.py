"""
Fire-and-forget notifications.

Delivery of notifications happens after the ledger commit. A failing
notifier is logged and never rolls back or fails the triggering
operation.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from stockledger.app.core.errors import NotificationFailure

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, event: str, payload: dict[str, Any]) -> None: ...


class LoggingNotifier:
    """Default sender: writes the event to the log."""

    def send(self, event: str, payload: dict[str, Any]) -> None:
        logger.info("notification %s %s", event, payload)


_default_notifier: Notifier = LoggingNotifier()


def get_notifier() -> Notifier:
    return _default_notifier


def dispatch(notifier: Notifier | None, event: str, **payload: Any) -> bool:
    notifier = notifier or _default_notifier
    try:
        notifier.send(event, payload)
    except NotificationFailure as exc:
        logger.warning("notification %s failed: %s", event, exc)
        return False
    except Exception:
        # notifier bugs must not leak into the ledger either
        logger.exception("notification %s failed unexpectedly", event)
        return False
    return True
