# src/tradeledger/core/orders/service.py
from __future__ import annotations

import logging
from typing import Optional

from tradeledger.cache.mirror import CacheMirror
from tradeledger.core.errors import NotFoundError, ValidationError
from tradeledger.core.ledger.ledger import BalanceLedger
from tradeledger.core.models.balance import Balance
from tradeledger.core.models.enums import Bucket, Currency, OrderKind, OrderStatus, Side
from tradeledger.core.models.order import Order
from tradeledger.core.models.state_machine import order_transition
from tradeledger.core.rates.calculator import RateCalculator
from tradeledger.core.read_model import ReadModel
from tradeledger.core.utils.amounts import UNITS_PER_ASSET, counter_amount, paying_leg, require_positive_int
from tradeledger.core.utils.timeutil import Clock, now_ms
from tradeledger.data.orders_repository import OrdersRepository
from tradeledger.data.storage.base import Database
from tradeledger.notifications.events import EventSink, NullSink, emit_user_change

logger = logging.getLogger(__name__)


def legs(order_side: Side, quantity_a: int, quantity_b: int) -> tuple[Currency, int, Currency, int]:
    """(pay currency, pay amount, receive currency, receive amount) for a trade."""
    pay = paying_leg(order_side)
    if pay is Currency.B:
        return Currency.B, quantity_b, Currency.A, quantity_a
    return Currency.A, quantity_a, Currency.B, quantity_b


class OrderService:
    """
    User-facing order operations.

    Every call:
      1) runs ledger + order writes in ONE durable transaction
      2) after commit, invalidates the affected cache entries
      3) then emits events for the dispatcher
    Rejections raise before anything is committed.
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
        units_per_asset: int = UNITS_PER_ASSET,
    ):
        self.db = db
        self.ledger = ledger
        self.calculator = calculator
        self.cache = cache
        self.reads = reads
        self.events = events or NullSink()
        self.orders = orders or OrdersRepository()
        self.clock = clock
        self.units_per_asset = int(units_per_asset)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get_balance(self, user_id: int, *, authoritative: Optional[bool] = None) -> Balance:
        return self.reads.balance(user_id, authoritative=authoritative)

    def recent_orders(self, user_id: int, *, limit: int = 15, offset: int = 0) -> list[Order]:
        return self.reads.orders_page(user_id, limit=limit, offset=offset)

    def open_account(self, user_id: int) -> bool:
        return self.ledger.open_account(user_id)

    # ------------------------------------------------------------------
    # market
    # ------------------------------------------------------------------
    def place_market_order(self, user_id: int, side: Side, *, amount: int, fixed: Currency) -> Order:
        """Fill at the live quote from available funds."""
        side, fixed = Side(side), Currency(fixed)
        amount = require_positive_int(amount, "amount")
        quote = self.calculator.quote(self.reads.require_reference_price())
        price = quote.for_side(side)
        qty_a, qty_b = counter_amount(
            side=side, fixed=fixed, amount=amount, price=price, units_per_asset=self.units_per_asset,
        )
        pay_cur, pay_amt, recv_cur, recv_amt = legs(side, qty_a, qty_b)

        now = self.clock()
        with self.db.transaction() as tx:
            self.ledger.settle(user_id, pay_cur, pay_amt, recv_cur, recv_amt, Bucket.AVAILABLE, tx=tx)
            order = self.orders.insert(
                tx,
                user_id=user_id,
                kind=OrderKind.market(side),
                status=OrderStatus.EXECUTED,
                quantity_a=qty_a,
                quantity_b=qty_b,
                price=price,
                created_ms=now,
                executed_ms=now,
            )

        logger.info("[ORDERS][MARKET] %r", order)
        self.cache.invalidate_user(user_id, balance=True, orders=True)
        emit_user_change(self.events, user_id, action="market_order", orders=True, **_details(order))
        return order

    # ------------------------------------------------------------------
    # limit
    # ------------------------------------------------------------------
    def place_limit_order(
        self,
        user_id: int,
        side: Side,
        *,
        amount: int,
        fixed: Currency,
        limit_price: int,
    ) -> Order:
        """Reserve the paying leg at the limit price and record a PENDING order."""
        side, fixed = Side(side), Currency(fixed)
        amount = require_positive_int(amount, "amount")
        limit_price = require_positive_int(limit_price, "limit_price")
        qty_a, qty_b = counter_amount(
            side=side, fixed=fixed, amount=amount, price=limit_price, units_per_asset=self.units_per_asset,
        )
        pay_cur, pay_amt, _, _ = legs(side, qty_a, qty_b)

        with self.db.transaction() as tx:
            self.ledger.reserve(user_id, pay_cur, pay_amt, tx=tx)
            order = self.orders.insert(
                tx,
                user_id=user_id,
                kind=OrderKind.limit(side),
                status=OrderStatus.PENDING,
                quantity_a=qty_a,
                quantity_b=qty_b,
                price=limit_price,
                created_ms=self.clock(),
            )

        logger.info("[ORDERS][LIMIT] placed %r", order)
        self.cache.invalidate_pending_limit()
        self.cache.invalidate_user(user_id, balance=True, orders=True)
        emit_user_change(self.events, user_id, action="limit_placed", orders=True, **_details(order))
        return order

    def cancel_limit_order(self, user_id: int, order_id: int) -> Order:
        """PENDING -> CANCELLED and release the reservation, atomically."""
        with self.db.transaction() as tx:
            order = self.orders.get(tx, order_id)
            if order is None or order.user_id != int(user_id) or not order.kind.is_limit:
                raise NotFoundError(f"limit order {order_id} not found", context={"order_id": order_id})

            decision = order_transition(order.status, OrderStatus.CANCELLED)
            if not decision.allow or not self.orders.mark_cancelled(tx, order_id, user_id=user_id):
                raise ValidationError(
                    f"order {order_id} cannot be cancelled: {decision.reason or order.status.value}",
                    context={"order_id": order_id, "status": order.status.value},
                )

            pay_cur, pay_amt, _, _ = legs(order.side, order.quantity_a, order.quantity_b)  # type: ignore[arg-type]
            self.ledger.release(user_id, pay_cur, pay_amt, tx=tx)
            order.status = OrderStatus.CANCELLED

        logger.info("[ORDERS][LIMIT] cancelled %r", order)
        self.cache.invalidate_pending_limit()
        self.cache.invalidate_user(user_id, balance=True, orders=True)
        emit_user_change(self.events, user_id, action="limit_cancelled", orders=True, **_details(order))
        return order

    # ------------------------------------------------------------------
    # external movements
    # ------------------------------------------------------------------
    def deposit(self, user_id: int, currency: Currency, amount: int) -> Order:
        currency = Currency(currency)
        amount = require_positive_int(amount, "amount")
        now = self.clock()
        with self.db.transaction() as tx:
            self.ledger.deposit(user_id, currency, amount, tx=tx)
            order = self._movement_row(tx, user_id, OrderKind.DEPOSIT, currency, amount, now)

        self.cache.invalidate_user(user_id, balance=True, orders=True)
        emit_user_change(self.events, user_id, action="deposit", orders=True, currency=currency.value, amount=amount)
        return order

    def withdraw(self, user_id: int, currency: Currency, amount: int) -> Order:
        currency = Currency(currency)
        amount = require_positive_int(amount, "amount")
        now = self.clock()
        with self.db.transaction() as tx:
            self.ledger.withdraw(user_id, currency, amount, tx=tx)
            order = self._movement_row(tx, user_id, OrderKind.WITHDRAW, currency, amount, now)

        self.cache.invalidate_user(user_id, balance=True, orders=True)
        emit_user_change(self.events, user_id, action="withdraw", orders=True, currency=currency.value, amount=amount)
        return order

    def transfer(self, from_user: int, to_user: int, currency: Currency, amount: int) -> tuple[Order, Order]:
        """Sender gets a WITHDRAW row, recipient a DEPOSIT row, in the same transaction."""
        currency = Currency(currency)
        amount = require_positive_int(amount, "amount")
        now = self.clock()
        with self.db.transaction() as tx:
            self.ledger.transfer(from_user, to_user, currency, amount, tx=tx)
            sent = self._movement_row(tx, from_user, OrderKind.WITHDRAW, currency, amount, now)
            received = self._movement_row(tx, to_user, OrderKind.DEPOSIT, currency, amount, now)

        logger.info("[ORDERS][TRANSFER] %s -> %s %s=%s", from_user, to_user, currency.value, amount)
        for uid, action in ((from_user, "transfer_sent"), (to_user, "transfer_received")):
            self.cache.invalidate_user(uid, balance=True, orders=True)
            emit_user_change(self.events, uid, action=action, orders=True, currency=currency.value, amount=amount)
        return sent, received

    def _movement_row(self, tx, user_id: int, kind: OrderKind, currency: Currency, amount: int, now: int) -> Order:
        return self.orders.insert(
            tx,
            user_id=user_id,
            kind=kind,
            status=OrderStatus.EXECUTED,
            quantity_a=amount if currency is Currency.A else 0,
            quantity_b=amount if currency is Currency.B else 0,
            price=0,
            created_ms=now,
            executed_ms=now,
        )


def _details(order: Order) -> dict:
    return {
        "order_id": order.order_id,
        "kind": order.kind.value,
        "quantity_a": order.quantity_a,
        "quantity_b": order.quantity_b,
        "price": order.price,
    }
