# src/tradeledger/core/models/state_machine.py
from __future__ import annotations

from dataclasses import dataclass

from tradeledger.core.models.enums import OrderStatus, PlanStatus


ORDER_TERMINAL: set[OrderStatus] = {OrderStatus.EXECUTED, OrderStatus.CANCELLED}

_PLAN_TRANSITIONS: dict[PlanStatus, set[PlanStatus]] = {
    PlanStatus.ACTIVE: {PlanStatus.PAUSED, PlanStatus.COMPLETED},
    PlanStatus.PAUSED: {PlanStatus.ACTIVE},
    PlanStatus.COMPLETED: set(),
}


@dataclass(frozen=True)
class Decision:
    allow: bool
    reason: str = ""


def order_transition(current: OrderStatus, incoming: OrderStatus) -> Decision:
    """
    Orders move PENDING -> EXECUTED | CANCELLED exactly once.
    - terminal status never changes
    """
    if current in ORDER_TERMINAL:
        return Decision(False, f"terminal order: {current.value} -> {incoming.value}")
    if incoming is OrderStatus.PENDING:
        return Decision(False, "order already pending")
    return Decision(True, "ok")


def plan_transition(current: PlanStatus, incoming: PlanStatus) -> Decision:
    """COMPLETED is final; PAUSED can only go back to ACTIVE."""
    if incoming in _PLAN_TRANSITIONS.get(current, set()):
        return Decision(True, "ok")
    return Decision(False, f"plan transition blocked: {current.value} -> {incoming.value}")
