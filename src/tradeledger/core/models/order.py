# src/tradeledger/core/models/order.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from tradeledger.core.models.enums import OrderKind, OrderStatus, Side


@dataclass(slots=True)
class Order:
    """
    Durable order row.

    Amounts are integers in the smallest unit of each currency:
      • quantity_a : currency A leg (e.g. satoshi)
      • quantity_b : currency B leg
      • price      : B per whole unit of A (limit price for LIMIT_*, quote otherwise)
    """

    order_id: int
    user_id: int
    kind: OrderKind
    status: OrderStatus

    quantity_a: int
    quantity_b: int
    price: int

    plan_id: Optional[int] = None
    created_ms: int = 0
    executed_ms: Optional[int] = None

    # ------------------------------------------------------------------
    @property
    def side(self) -> Optional[Side]:
        if self.kind in (OrderKind.MARKET_BUY, OrderKind.LIMIT_BUY, OrderKind.RECURRING_BUY):
            return Side.BUY
        if self.kind in (OrderKind.MARKET_SELL, OrderKind.LIMIT_SELL, OrderKind.RECURRING_SELL):
            return Side.SELL
        return None

    @property
    def is_pending_limit(self) -> bool:
        return self.kind.is_limit and self.status is OrderStatus.PENDING

    # ------------------------------------------------------------------
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Order":
        return cls(
            order_id=int(row["order_id"]),
            user_id=int(row["user_id"]),
            kind=OrderKind(row["kind"]),
            status=OrderStatus(row["status"]),
            quantity_a=int(row["quantity_a"]),
            quantity_b=int(row["quantity_b"]),
            price=int(row["price"]),
            plan_id=int(row["plan_id"]) if row.get("plan_id") is not None else None,
            created_ms=int(row["created_ms"]),
            executed_ms=int(row["executed_ms"]) if row.get("executed_ms") is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "order_id": self.order_id,
            "user_id": self.user_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "quantity_a": self.quantity_a,
            "quantity_b": self.quantity_b,
            "price": self.price,
            "plan_id": self.plan_id,
            "created_ms": self.created_ms,
            "executed_ms": self.executed_ms,
        }

    def __repr__(self) -> str:
        return (
            f"Order(id={self.order_id} user={self.user_id} "
            f"{self.kind.value}/{self.status.value} "
            f"a={self.quantity_a} b={self.quantity_b} price={self.price})"
        )
