# src/tradeledger/core/matching/matcher.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from tradeledger.cache.mirror import CacheMirror
from tradeledger.core.errors import LedgerError
from tradeledger.core.ledger.ledger import BalanceLedger
from tradeledger.core.models.enums import Bucket, OrderKind, OrderStatus
from tradeledger.core.models.order import Order
from tradeledger.core.orders.service import legs
from tradeledger.core.rates.calculator import Quote, RateCalculator
from tradeledger.core.read_model import ReadModel
from tradeledger.core.utils.timeutil import Clock, now_ms
from tradeledger.data.orders_repository import OrdersRepository
from tradeledger.data.storage.base import Database
from tradeledger.notifications.events import EventSink, NullSink, emit_user_change

logger = logging.getLogger(__name__)


@dataclass
class MatchReport:
    quote: Quote
    checked: int = 0
    executed: list[Order] = field(default_factory=list)
    stale: list[int] = field(default_factory=list)    # no longer PENDING in the store
    failed: list[int] = field(default_factory=list)   # rolled back, retried next tick


def is_eligible(order: Order, quote: Quote) -> bool:
    """LIMIT_BUY fills when buy quote <= limit, LIMIT_SELL when sell quote >= limit."""
    if order.kind is OrderKind.LIMIT_BUY:
        return quote.buy <= order.price
    if order.kind is OrderKind.LIMIT_SELL:
        return quote.sell >= order.price
    return False


class LimitOrderMatcher:
    """
    Settles pending limit orders against each new reference price.

    Per order, one transaction:
      • PENDING -> EXECUTED (conditional, so a concurrent cancel or a second
        matcher makes this a no-op)
      • reserved funds -> counter currency at the order's own limit price
    A failed order stays PENDING and is looked at again on the next tick.
    """

    def __init__(
        self,
        *,
        db: Database,
        ledger: BalanceLedger,
        calculator: RateCalculator,
        cache: CacheMirror,
        reads: ReadModel,
        events: Optional[EventSink] = None,
        orders: Optional[OrdersRepository] = None,
        clock: Clock = now_ms,
    ):
        self.db = db
        self.ledger = ledger
        self.calculator = calculator
        self.cache = cache
        self.reads = reads
        self.events = events or NullSink()
        self.orders = orders or OrdersRepository()
        self.clock = clock

    def on_tick(self, reference_price: int) -> MatchReport:
        quote = self.calculator.quote(reference_price)
        report = MatchReport(quote=quote)

        working_set = self.reads.pending_limit_orders()
        report.checked = len(working_set)

        for order in working_set:
            if not is_eligible(order, quote):
                continue
            try:
                if self._settle(order):
                    report.executed.append(order)
                else:
                    report.stale.append(order.order_id)
            except LedgerError as e:
                report.failed.append(order.order_id)
                logger.error("[MATCH] order=%s settlement rolled back: %s", order.order_id, e)

        if report.executed or report.stale:
            self.cache.invalidate_pending_limit()

        for order in report.executed:
            self.cache.invalidate_user(order.user_id, balance=True, orders=True)
            emit_user_change(
                self.events,
                order.user_id,
                action="limit_executed",
                orders=True,
                order_id=order.order_id,
                kind=order.kind.value,
                quantity_a=order.quantity_a,
                quantity_b=order.quantity_b,
                price=order.price,
            )

        if report.executed or report.failed:
            logger.info(
                "[MATCH] ref=%s buy=%s sell=%s checked=%s executed=%s stale=%s failed=%s",
                quote.reference_price, quote.buy, quote.sell, report.checked,
                len(report.executed), len(report.stale), len(report.failed),
            )
        return report

    def _settle(self, order: Order) -> bool:
        pay_cur, pay_amt, recv_cur, recv_amt = legs(order.side, order.quantity_a, order.quantity_b)  # type: ignore[arg-type]
        now = self.clock()
        with self.db.transaction() as tx:
            if not self.orders.mark_executed(tx, order.order_id, executed_ms=now):
                return False
            self.ledger.settle(
                order.user_id, pay_cur, pay_amt, recv_cur, recv_amt, Bucket.RESERVED, tx=tx,
            )
        order.status = OrderStatus.EXECUTED
        order.executed_ms = now
        logger.info("[MATCH] executed %r", order)
        return True
