# src/tradeledger/core/scheduler/executor.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tradeledger.core.errors import (
    BusinessRejection,
    ClaimLost,
    InfrastructureError,
    InvariantViolation,
    LedgerError,
    PriceBoundBreach,
)
from tradeledger.core.ledger.ledger import BalanceLedger
from tradeledger.core.models.enums import Bucket, OrderKind, OrderStatus, PlanStatus
from tradeledger.core.models.order import Order
from tradeledger.core.models.plan import RecurringPlan
from tradeledger.core.orders.service import legs
from tradeledger.core.rates.calculator import RateCalculator
from tradeledger.core.read_model import ReadModel
from tradeledger.core.utils.amounts import UNITS_PER_ASSET, counter_amount
from tradeledger.core.utils.timeutil import Clock, add_frequency, now_ms
from tradeledger.data.orders_repository import OrdersRepository
from tradeledger.data.plans_repository import PlansRepository
from tradeledger.data.storage.base import Database

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    EXECUTED = "EXECUTED"          # traded, plan advanced
    COMPLETED = "COMPLETED"        # traded, last execution
    NOT_CLAIMED = "NOT_CLAIMED"    # another worker holds it (or it is no longer due)
    HELD = "HELD"                  # price bound breached, claim lock kept
    REVERTED = "REVERTED"          # rejected or failed, due again now
    CLAIM_LOST = "CLAIM_LOST"      # plan changed under us, nothing written

    @property
    def traded(self) -> bool:
        return self in (Outcome.EXECUTED, Outcome.COMPLETED)


@dataclass
class AttemptResult:
    plan_id: int
    user_id: int
    outcome: Outcome
    order: Optional[Order] = None
    reason: str = ""


class PlanExecutor:
    """
    claim -> attempt -> finalize | revert for one due plan.

    The claim is a conditional UPDATE that moves next_due_ms to now + lock;
    the value written is the claim token. Trade and finalize commit together
    and finalize only matches while the token is still in place, so a plan
    whose lock lapsed and was re-claimed elsewhere can never trade twice.
    No in-process lock is involved.
    """

    def __init__(
        self,
        *,
        db: Database,
        ledger: BalanceLedger,
        calculator: RateCalculator,
        reads: ReadModel,
        orders: Optional[OrdersRepository] = None,
        plans: Optional[PlansRepository] = None,
        clock: Clock = now_ms,
        claim_lock_sec: float = 60.0,
        units_per_asset: int = UNITS_PER_ASSET,
    ):
        self.db = db
        self.ledger = ledger
        self.calculator = calculator
        self.reads = reads
        self.orders = orders or OrdersRepository()
        self.plans = plans or PlansRepository()
        self.clock = clock
        self.claim_lock_ms = int(float(claim_lock_sec) * 1000)
        self.units_per_asset = int(units_per_asset)

    # ------------------------------------------------------------------
    # phase 1: claim
    # ------------------------------------------------------------------
    def claim(self, plan_id: int, *, now: int) -> Optional[int]:
        """Claim token (the locked next_due_ms) or None when someone else owns the plan."""
        token = int(now) + self.claim_lock_ms
        with self.db.transaction() as tx:
            ok = self.plans.claim(tx, plan_id, now_ms=now, lock_until_ms=token)
        if not ok:
            logger.debug("[SCHED][CLAIM] plan=%s not claimed", plan_id)
            return None
        logger.debug("[SCHED][CLAIM] plan=%s locked until %s", plan_id, token)
        return token

    # ------------------------------------------------------------------
    # phase 2: attempt (+ finalize in the same transaction)
    # ------------------------------------------------------------------
    def attempt(self, plan: RecurringPlan, *, token: int, now: int) -> AttemptResult:
        # price read happens before the write transaction is opened
        quote = self.calculator.quote(self.reads.require_reference_price())
        price = quote.for_side(plan.side)

        below = plan.min_price is not None and price < plan.min_price
        above = plan.max_price is not None and price > plan.max_price
        if below or above:
            raise PriceBoundBreach(
                f"plan {plan.plan_id}: quote {price} outside [{plan.min_price}, {plan.max_price}]",
                quote=price,
                min_price=plan.min_price,
                max_price=plan.max_price,
            )

        qty_a, qty_b = counter_amount(
            side=plan.side,
            fixed=plan.fixed_currency,
            amount=plan.fixed_amount,
            price=price,
            units_per_asset=self.units_per_asset,
        )
        pay_cur, pay_amt, recv_cur, recv_amt = legs(plan.side, qty_a, qty_b)

        with self.db.transaction() as tx:
            current = self.plans.get(tx, plan.plan_id)
            if current is None or current.status is not PlanStatus.ACTIVE or current.next_due_ms != token:
                raise ClaimLost(f"plan {plan.plan_id} changed after claim", context={"plan_id": plan.plan_id})

            self.ledger.settle(plan.user_id, pay_cur, pay_amt, recv_cur, recv_amt, Bucket.AVAILABLE, tx=tx)
            order = self.orders.insert(
                tx,
                user_id=plan.user_id,
                kind=OrderKind.recurring(plan.side),
                status=OrderStatus.EXECUTED,
                quantity_a=qty_a,
                quantity_b=qty_b,
                price=price,
                plan_id=plan.plan_id,
                created_ms=now,
                executed_ms=now,
            )

            if not self.plans.finalize(
                tx,
                current,
                claim_token_ms=token,
                now_ms=now,
                next_due_ms=add_frequency(now, current.frequency),
            ):
                raise ClaimLost(f"plan {plan.plan_id} finalize matched no row", context={"plan_id": plan.plan_id})

        completed = current.remaining_executions == 1
        logger.info(
            "[SCHED][EXEC] plan=%s user=%s %r%s",
            plan.plan_id, plan.user_id, order, " (completed)" if completed else "",
        )
        return AttemptResult(
            plan_id=plan.plan_id,
            user_id=plan.user_id,
            outcome=Outcome.COMPLETED if completed else Outcome.EXECUTED,
            order=order,
        )

    # ------------------------------------------------------------------
    # phase 3b: revert
    # ------------------------------------------------------------------
    def revert(self, plan_id: int, *, token: int) -> bool:
        now = self.clock()
        with self.db.transaction() as tx:
            ok = self.plans.revert(tx, plan_id, claim_token_ms=token, now_ms=now)
        if ok:
            logger.debug("[SCHED][REVERT] plan=%s due again at %s", plan_id, now)
        else:
            logger.warning("[SCHED][REVERT] plan=%s claim no longer held, nothing reverted", plan_id)
        return ok

    # ------------------------------------------------------------------
    def run(self, plan: RecurringPlan) -> AttemptResult:
        """Full protocol for one plan. Never raises; anything short of a trade or a HELD bound reverts the claim."""
        now = self.clock()
        token = self.claim(plan.plan_id, now=now)
        if token is None:
            return AttemptResult(plan.plan_id, plan.user_id, Outcome.NOT_CLAIMED)

        try:
            return self.attempt(plan, token=token, now=now)
        except PriceBoundBreach as e:
            logger.info("[SCHED][SKIP] %s (lock kept)", e)
            return AttemptResult(plan.plan_id, plan.user_id, Outcome.HELD, reason=str(e))
        except ClaimLost as e:
            logger.warning("[SCHED][CLAIM] %s, rolled back", e)
            return AttemptResult(plan.plan_id, plan.user_id, Outcome.CLAIM_LOST, reason=str(e))
        except BusinessRejection as e:
            logger.info("[SCHED][SKIP] plan=%s user=%s: %s", plan.plan_id, plan.user_id, e)
            reason = str(e)
        except (InfrastructureError, InvariantViolation) as e:
            logger.error("[SCHED][FAIL] plan=%s: %s", plan.plan_id, e)
            reason = str(e)
        except LedgerError as e:
            # e.g. a quote that rounds to zero, or the account was removed
            logger.error("[SCHED][FAIL] plan=%s user=%s: %s", plan.plan_id, plan.user_id, e)
            reason = str(e)
        except Exception as e:
            logger.exception("[SCHED][FAIL] plan=%s unexpected error", plan.plan_id)
            reason = f"{type(e).__name__}: {e}"

        try:
            self.revert(plan.plan_id, token=token)
        except InfrastructureError:
            # lock lapses on its own after claim_lock_sec
            logger.exception("[SCHED][REVERT] plan=%s revert failed", plan.plan_id)
        return AttemptResult(plan.plan_id, plan.user_id, Outcome.REVERTED, reason=reason)
