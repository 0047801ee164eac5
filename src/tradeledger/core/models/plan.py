from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from tradeledger.core.models.enums import Currency, Frequency, PlanStatus, Side


@dataclass(slots=True)
class RecurringPlan:
    plan_id: int
    user_id: int
    side: Side
    frequency: Frequency

    # exactly one of the two is set
    amount_a: Optional[int]
    amount_b: Optional[int]

    next_due_ms: int
    status: PlanStatus = PlanStatus.ACTIVE

    min_price: Optional[int] = None
    max_price: Optional[int] = None
    remaining_executions: Optional[int] = None  # None = unbounded

    created_ms: int = 0
    completed_ms: Optional[int] = None

    @property
    def fixed_currency(self) -> Currency:
        return Currency.A if self.amount_a is not None else Currency.B

    @property
    def fixed_amount(self) -> int:
        return int(self.amount_a if self.amount_a is not None else self.amount_b or 0)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RecurringPlan":
        def opt(key: str) -> Optional[int]:
            v = row.get(key)
            return int(v) if v is not None else None

        return cls(
            plan_id=int(row["plan_id"]),
            user_id=int(row["user_id"]),
            side=Side(row["side"]),
            frequency=Frequency(row["frequency"]),
            amount_a=opt("amount_a"),
            amount_b=opt("amount_b"),
            next_due_ms=int(row["next_due_ms"]),
            status=PlanStatus(row["status"]),
            min_price=opt("min_price"),
            max_price=opt("max_price"),
            remaining_executions=opt("remaining_executions"),
            created_ms=int(row.get("created_ms") or 0),
            completed_ms=opt("completed_ms"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "user_id": self.user_id,
            "side": self.side.value,
            "frequency": self.frequency.value,
            "amount_a": self.amount_a,
            "amount_b": self.amount_b,
            "next_due_ms": self.next_due_ms,
            "status": self.status.value,
            "min_price": self.min_price,
            "max_price": self.max_price,
            "remaining_executions": self.remaining_executions,
            "created_ms": self.created_ms,
            "completed_ms": self.completed_ms,
        }
