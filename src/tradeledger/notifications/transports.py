# src/tradeledger/notifications/transports.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

logger = logging.getLogger(__name__)


class PushTransport(ABC):
    """
    Delivery to live sessions. Socket handling, reconnection and auth belong to
    the implementation; the dispatcher only hands over (event_type, payload).
    """

    @abstractmethod
    def push_to_user(self, user_id: int, event_type: str, payload: dict[str, Any]) -> None: ...

    @abstractmethod
    def push_to_admins(self, event_type: str, payload: dict[str, Any]) -> None: ...

    def broadcast(self, event_type: str, payload: dict[str, Any]) -> None:
        """Public updates (price). Transports without a broadcast channel ignore them."""
        return None


class LoggingTransport(PushTransport):
    """Writes every push to the log. Default when no session layer is attached."""

    def push_to_user(self, user_id: int, event_type: str, payload: dict[str, Any]) -> None:
        logger.info("[NOTIFY][USER] user=%s type=%s action=%s", user_id, event_type, payload.get("action"))

    def push_to_admins(self, event_type: str, payload: dict[str, Any]) -> None:
        logger.info("[NOTIFY][ADMIN] type=%s action=%s", event_type, payload.get("action"))

    def broadcast(self, event_type: str, payload: dict[str, Any]) -> None:
        logger.debug("[NOTIFY][ALL] type=%s", event_type)


class FanoutTransport(PushTransport):
    """Sends each push to several transports. One failing transport does not stop the others."""

    def __init__(self, *transports: PushTransport):
        self.transports = list(transports)

    def _each(self, method: str, *args: Any) -> None:
        for t in self.transports:
            try:
                getattr(t, method)(*args)
            except Exception:
                logger.exception("[NOTIFY] %s.%s failed", type(t).__name__, method)

    def push_to_user(self, user_id: int, event_type: str, payload: dict[str, Any]) -> None:
        self._each("push_to_user", user_id, event_type, payload)

    def push_to_admins(self, event_type: str, payload: dict[str, Any]) -> None:
        self._each("push_to_admins", event_type, payload)

    def broadcast(self, event_type: str, payload: dict[str, Any]) -> None:
        self._each("broadcast", event_type, payload)
