# src/tradeledger/notifications/events.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol


class EventKind(str, Enum):
    BALANCE = "balance"
    ORDERS = "orders"
    PLANS = "plans"
    PRICE = "price"


# ------------------------------------------------------------
# LedgerEvent
# ------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LedgerEvent:
    """
    Something committed that clients may want to re-render.

    The payload describes what happened (action, ids, amounts); the dispatcher
    reads fresh snapshots itself, so a late or duplicated event is harmless.
    """

    kind: EventKind
    user_id: Optional[int] = None
    payload: dict[str, Any] = field(default_factory=dict)
    # one commit may emit several events; only the primary one is reported as admin activity
    primary: bool = True

    @property
    def action(self) -> str:
        return str(self.payload.get("action") or self.kind.value)


class EventSink(Protocol):
    def emit(self, event: LedgerEvent) -> None: ...


class NullSink:
    """Drops every event. Used by CLI tools that run services without a dispatcher."""

    def emit(self, event: LedgerEvent) -> None:
        return None


def emit_user_change(
    sink: EventSink,
    user_id: int,
    *,
    action: str,
    balance: bool = True,
    orders: bool = False,
    plans: bool = False,
    **details: Any,
) -> None:
    """Emit the events one committed change implies, in balance / orders / plans order."""
    payload = {"action": action, "user_id": int(user_id), **details}
    kinds = [k for k, on in ((EventKind.BALANCE, balance), (EventKind.ORDERS, orders), (EventKind.PLANS, plans)) if on]
    for i, kind in enumerate(kinds):
        sink.emit(LedgerEvent(kind, int(user_id), payload, primary=(i == 0)))
