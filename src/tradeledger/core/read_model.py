# src/tradeledger/core/read_model.py
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from tradeledger.cache.mirror import CacheMirror, balance_key, orders_key, plans_key
from tradeledger.core.errors import NotFoundError, PriceUnavailable
from tradeledger.core.ledger.ledger import BalanceLedger
from tradeledger.core.models.balance import Balance
from tradeledger.core.models.enums import Frequency
from tradeledger.core.models.order import Order
from tradeledger.core.models.plan import RecurringPlan
from tradeledger.core.rates.calculator import RateCalculator
from tradeledger.data.market_repository import MarketRepository
from tradeledger.data.orders_repository import OrdersRepository
from tradeledger.data.plans_repository import PlansRepository
from tradeledger.data.storage.base import Database

RECENT_ORDERS_LIMIT = 15

# B per day = amount * num / den, months counted as 30 days
_PER_DAY = {
    Frequency.HOURLY: (24, 1),
    Frequency.DAILY: (1, 1),
    Frequency.WEEKLY: (1, 7),
    Frequency.MONTHLY: (1, 30),
}


class ReadModel:
    """
    Read path for users, admins and the notification dispatcher.

    Cached reads go through CacheMirror.read_through; authoritative=True reads
    the durable store and refreshes the cached copy.
    """

    def __init__(
        self,
        *,
        db: Database,
        cache: CacheMirror,
        ledger: BalanceLedger,
        calculator: RateCalculator,
        orders: Optional[OrdersRepository] = None,
        plans: Optional[PlansRepository] = None,
        market: Optional[MarketRepository] = None,
    ):
        self.db = db
        self.cache = cache
        self.ledger = ledger
        self.calculator = calculator
        self.orders = orders or OrdersRepository()
        self.plans = plans or PlansRepository()
        self.market = market or MarketRepository()

    # ------------------------------------------------------------------
    # user
    # ------------------------------------------------------------------
    def balance(self, user_id: int, *, authoritative: Optional[bool] = None) -> Balance:
        return self.cache.read_through(
            balance_key(user_id),
            lambda: self.ledger.get(user_id),
            ttl_sec=self.cache.ttls.balance_sec,
            encode=Balance.to_dict,
            decode=Balance.from_row,
            authoritative=authoritative,
        )

    def recent_orders(self, user_id: int, *, authoritative: Optional[bool] = None) -> list[Order]:
        def load() -> list[Order]:
            with self.db.transaction() as tx:
                return self.orders.recent_for_user(tx, user_id, limit=RECENT_ORDERS_LIMIT)

        return self.cache.read_through(
            orders_key(user_id),
            load,
            ttl_sec=self.cache.ttls.orders_sec,
            encode=lambda items: [o.to_dict() for o in items],
            decode=lambda raw: [Order.from_row(r) for r in raw],
            authoritative=authoritative,
        )

    def orders_page(self, user_id: int, *, limit: int = RECENT_ORDERS_LIMIT, offset: int = 0) -> list[Order]:
        # pages past the first are not cached
        if offset == 0 and limit == RECENT_ORDERS_LIMIT:
            return self.recent_orders(user_id)
        with self.db.transaction() as tx:
            return self.orders.recent_for_user(tx, user_id, limit=limit, offset=offset)

    def user_plans(self, user_id: int, *, authoritative: Optional[bool] = None) -> list[RecurringPlan]:
        def load() -> list[RecurringPlan]:
            with self.db.transaction() as tx:
                return self.plans.for_user(tx, user_id)

        return self.cache.read_through(
            plans_key(user_id),
            load,
            ttl_sec=self.cache.ttls.plans_sec,
            encode=lambda items: [p.to_dict() for p in items],
            decode=lambda raw: [RecurringPlan.from_row(r) for r in raw],
            authoritative=authoritative,
        )

    def plan_history(self, user_id: int, plan_id: int, *, limit: int = 10) -> list[Order]:
        with self.db.transaction() as tx:
            plan = self.plans.get(tx, plan_id)
            if plan is None or plan.user_id != int(user_id):
                raise NotFoundError(f"plan {plan_id} not found", context={"plan_id": plan_id})
            return self.orders.for_plan(tx, plan_id, limit=limit)

    # ------------------------------------------------------------------
    # market
    # ------------------------------------------------------------------
    def pending_limit_orders(self, *, authoritative: Optional[bool] = None) -> list[Order]:
        def load() -> list[Order]:
            with self.db.transaction() as tx:
                return self.orders.list_pending_limit(tx)

        return self.cache.pending_limit(
            load,
            encode=Order.to_dict,
            decode=Order.from_row,
            authoritative=authoritative,
        )

    def latest_price(self, *, authoritative: Optional[bool] = None) -> Optional[dict[str, Any]]:
        """Latest reference price with quotes at the current multipliers, or None."""

        def load() -> Optional[dict[str, Any]]:
            with self.db.transaction() as tx:
                tick = self.market.latest_tick(tx)
            if tick is None:
                return None
            return self.price_payload(tick["reference_price"], tick["observed_ms"])

        return self.cache.latest_price(load, authoritative=authoritative)

    def price_payload(self, reference_price: int, observed_ms: int) -> dict[str, Any]:
        payload: dict[str, Any] = self.calculator.quote(reference_price).to_dict()
        payload["observed_ms"] = int(observed_ms)
        return payload

    def require_reference_price(self) -> int:
        latest = self.latest_price()
        if latest is None:
            raise PriceUnavailable("no reference price observed yet")
        return int(latest["reference_price"])

    def chart(self, timeframe: str, *, authoritative: Optional[bool] = None) -> Optional[dict[str, Any]]:
        def load() -> Optional[dict[str, Any]]:
            with self.db.transaction() as tx:
                return self.market.latest_chart(tx, timeframe)

        return self.cache.chart(timeframe, load, authoritative=authoritative)

    # ------------------------------------------------------------------
    # admin
    # ------------------------------------------------------------------
    def admin_totals(self) -> dict[str, int]:
        return self.ledger.totals()

    def admin_pending_orders(self) -> list[Order]:
        return self.pending_limit_orders()

    def admin_plans(self) -> list[RecurringPlan]:
        with self.db.transaction() as tx:
            return self.plans.all(tx)

    def admin_recent_orders(self, *, limit: int = 100) -> list[Order]:
        with self.db.transaction() as tx:
            return self.orders.recent(tx, limit=limit)

    def admin_metrics(self) -> dict[str, int]:
        """
        Platform activity:
          trades, volume_b, buy_volume_b, sell_volume_b : executed trades only, deposits and withdrawals excluded
          active_plans                                  : ACTIVE plans of either side
          avg_daily_plan_b                              : mean per-day B of ACTIVE buy plans that fix B, rounded
        """
        with self.db.transaction() as tx:
            metrics = self.orders.trade_totals(tx)
            metrics["active_plans"] = self.plans.count_active(tx)
            amounts = self.plans.active_buy_amounts_b(tx)

        daily = [Decimal(amount * _PER_DAY[f][0]) / _PER_DAY[f][1] for f, amount in amounts]
        avg = sum(daily, Decimal(0)) / len(daily) if daily else Decimal(0)
        metrics["avg_daily_plan_b"] = int(avg.to_integral_value(rounding=ROUND_HALF_UP))
        return metrics
