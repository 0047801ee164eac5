# src/tradeledger/core/plans/service.py
from __future__ import annotations

import logging
from typing import Callable, Optional

from tradeledger.cache.mirror import CacheMirror
from tradeledger.core.errors import NotFoundError, ValidationError
from tradeledger.core.ledger.ledger import BalanceLedger
from tradeledger.core.models.enums import Frequency, PlanStatus, Side
from tradeledger.core.models.plan import RecurringPlan
from tradeledger.core.models.state_machine import plan_transition
from tradeledger.core.read_model import ReadModel
from tradeledger.core.utils.amounts import require_positive_int
from tradeledger.core.utils.timeutil import Clock, add_frequency, now_ms
from tradeledger.data.plans_repository import PlansRepository
from tradeledger.data.storage.base import Database
from tradeledger.notifications.events import EventSink, NullSink, emit_user_change

logger = logging.getLogger(__name__)


def _optional_positive(value: Optional[int], name: str) -> Optional[int]:
    return None if value is None else require_positive_int(value, name)


class PlanService:
    """
    Plan management: create / pause / resume / delete / list.

    Only status and schedule are touched here; trades belong to the scheduler.
    """

    def __init__(
        self,
        *,
        db: Database,
        ledger: BalanceLedger,
        cache: CacheMirror,
        reads: ReadModel,
        events: Optional[EventSink] = None,
        plans: Optional[PlansRepository] = None,
        clock: Clock = now_ms,
        wake_scheduler: Optional[Callable[[], None]] = None,
    ):
        self.db = db
        self.ledger = ledger
        self.cache = cache
        self.reads = reads
        self.events = events or NullSink()
        self.plans = plans or PlansRepository()
        self.clock = clock
        self.wake_scheduler = wake_scheduler or (lambda: None)

    def list(self, user_id: int, *, authoritative: Optional[bool] = None) -> list[RecurringPlan]:
        return self.reads.user_plans(user_id, authoritative=authoritative)

    def create(
        self,
        user_id: int,
        side: Side,
        frequency: Frequency,
        *,
        amount_a: Optional[int] = None,
        amount_b: Optional[int] = None,
        min_price: Optional[int] = None,
        max_price: Optional[int] = None,
        remaining_executions: Optional[int] = None,
    ) -> RecurringPlan:
        side, frequency = Side(side), Frequency(frequency)
        if (amount_a is None) == (amount_b is None):
            raise ValidationError("exactly one of amount_a / amount_b must be given")
        amount_a = _optional_positive(amount_a, "amount_a")
        amount_b = _optional_positive(amount_b, "amount_b")
        min_price = _optional_positive(min_price, "min_price")
        max_price = _optional_positive(max_price, "max_price")
        remaining_executions = _optional_positive(remaining_executions, "remaining_executions")
        if min_price is not None and max_price is not None and min_price > max_price:
            raise ValidationError(f"min_price {min_price} > max_price {max_price}")

        now = self.clock()
        with self.db.transaction() as tx:
            self.ledger.get(user_id, tx=tx)  # account must exist
            plan = self.plans.insert(
                tx,
                user_id=user_id,
                side=side,
                frequency=frequency,
                amount_a=amount_a,
                amount_b=amount_b,
                min_price=min_price,
                max_price=max_price,
                remaining_executions=remaining_executions,
                next_due_ms=add_frequency(now, frequency),
                created_ms=now,
            )

        logger.info("[PLANS] created plan=%s user=%s %s %s", plan.plan_id, user_id, side.value, frequency.value)
        self._changed(plan, "plan_created")
        self.wake_scheduler()
        return plan

    def pause(self, user_id: int, plan_id: int) -> RecurringPlan:
        return self._move(user_id, plan_id, PlanStatus.PAUSED, action="plan_paused")

    def resume(self, user_id: int, plan_id: int) -> RecurringPlan:
        plan = self._move(user_id, plan_id, PlanStatus.ACTIVE, action="plan_resumed")
        self.wake_scheduler()
        return plan

    def delete(self, user_id: int, plan_id: int) -> None:
        with self.db.transaction() as tx:
            plan = self._owned(tx, user_id, plan_id)
            self.plans.delete(tx, plan_id, user_id=user_id)
        logger.info("[PLANS] deleted plan=%s user=%s", plan_id, user_id)
        self._changed(plan, "plan_deleted")

    # ------------------------------------------------------------------
    def _owned(self, tx, user_id: int, plan_id: int) -> RecurringPlan:
        plan = self.plans.get(tx, plan_id)
        if plan is None or plan.user_id != int(user_id):
            raise NotFoundError(f"plan {plan_id} not found", context={"plan_id": plan_id})
        return plan

    def _move(self, user_id: int, plan_id: int, new: PlanStatus, *, action: str) -> RecurringPlan:
        now = self.clock()
        with self.db.transaction() as tx:
            plan = self._owned(tx, user_id, plan_id)
            decision = plan_transition(plan.status, new)
            if not decision.allow:
                raise ValidationError(decision.reason, context={"plan_id": plan_id, "status": plan.status.value})

            next_due = add_frequency(now, plan.frequency) if new is PlanStatus.ACTIVE else None
            if not self.plans.set_status(
                tx, plan_id, user_id=user_id, expected=plan.status, new=new, next_due_ms=next_due,
            ):
                raise ValidationError(f"plan {plan_id} changed concurrently", context={"plan_id": plan_id})
            plan.status = new
            if next_due is not None:
                plan.next_due_ms = next_due

        logger.info("[PLANS] plan=%s user=%s -> %s", plan_id, user_id, new.value)
        self._changed(plan, action)
        return plan

    def _changed(self, plan: RecurringPlan, action: str) -> None:
        self.cache.invalidate_user(plan.user_id, balance=False, plans=True)
        emit_user_change(self.events, plan.user_id, action=action, balance=False, plans=True, plan_id=plan.plan_id)
