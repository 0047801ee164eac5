# src/tradeledger/data/orders_repository.py
from typing import Optional

from tradeledger.core.models.enums import OrderKind, OrderStatus
from tradeledger.core.models.order import Order
from tradeledger.data.storage.base import Tx

_COLUMNS = (
    "order_id, user_id, kind, status, quantity_a, quantity_b, price, "
    "plan_id, created_ms, executed_ms"
)

_LIMIT_KINDS = (OrderKind.LIMIT_BUY.value, OrderKind.LIMIT_SELL.value)
_BUY_KINDS = (OrderKind.MARKET_BUY.value, OrderKind.LIMIT_BUY.value, OrderKind.RECURRING_BUY.value)
_SELL_KINDS = (OrderKind.MARKET_SELL.value, OrderKind.LIMIT_SELL.value, OrderKind.RECURRING_SELL.value)


class OrdersRepository:
    """Order rows. Every method runs inside the caller's transaction."""

    def insert(
        self,
        tx: Tx,
        *,
        user_id: int,
        kind: OrderKind,
        status: OrderStatus,
        quantity_a: int,
        quantity_b: int,
        price: int,
        created_ms: int,
        executed_ms: Optional[int] = None,
        plan_id: Optional[int] = None,
    ) -> Order:
        row = tx.fetch_one(
            f"""
            INSERT INTO orders (
                user_id, kind, status,
                quantity_a, quantity_b, price,
                plan_id, created_ms, executed_ms
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {_COLUMNS}
            """,
            (
                int(user_id), kind.value, status.value,
                int(quantity_a), int(quantity_b), int(price),
                plan_id, int(created_ms), executed_ms,
            ),
        )
        return Order.from_row(row)

    def get(self, tx: Tx, order_id: int) -> Optional[Order]:
        row = tx.fetch_one(
            f"SELECT {_COLUMNS} FROM orders WHERE order_id = %s",
            (int(order_id),),
        )
        return Order.from_row(row) if row else None

    def mark_executed(self, tx: Tx, order_id: int, *, executed_ms: int) -> bool:
        """PENDING -> EXECUTED. False when the order is no longer pending."""
        n = tx.execute(
            """
            UPDATE orders
            SET status = 'EXECUTED', executed_ms = %s
            WHERE order_id = %s AND status = 'PENDING'
            """,
            (int(executed_ms), int(order_id)),
        )
        return n > 0

    def mark_cancelled(self, tx: Tx, order_id: int, *, user_id: int) -> bool:
        """PENDING limit order -> CANCELLED, only for its owner."""
        n = tx.execute(
            """
            UPDATE orders
            SET status = 'CANCELLED'
            WHERE order_id = %s AND user_id = %s
              AND status = 'PENDING'
              AND kind IN (%s, %s)
            """,
            (int(order_id), int(user_id), *_LIMIT_KINDS),
        )
        return n > 0

    def list_pending_limit(self, tx: Tx) -> list[Order]:
        rows = tx.fetch_all(
            f"""
            SELECT {_COLUMNS} FROM orders
            WHERE status = 'PENDING' AND kind IN (%s, %s)
            ORDER BY order_id
            """,
            _LIMIT_KINDS,
        )
        return [Order.from_row(r) for r in rows]

    def recent_for_user(self, tx: Tx, user_id: int, *, limit: int = 15, offset: int = 0) -> list[Order]:
        rows = tx.fetch_all(
            f"""
            SELECT {_COLUMNS} FROM orders
            WHERE user_id = %s AND status IN ('PENDING', 'EXECUTED')
            ORDER BY created_ms DESC, order_id DESC
            LIMIT %s OFFSET %s
            """,
            (int(user_id), int(limit), int(offset)),
        )
        return [Order.from_row(r) for r in rows]

    def recent(self, tx: Tx, *, limit: int = 100) -> list[Order]:
        rows = tx.fetch_all(
            f"SELECT {_COLUMNS} FROM orders ORDER BY created_ms DESC, order_id DESC LIMIT %s",
            (int(limit),),
        )
        return [Order.from_row(r) for r in rows]

    def for_plan(self, tx: Tx, plan_id: int, *, limit: int = 10) -> list[Order]:
        rows = tx.fetch_all(
            f"""
            SELECT {_COLUMNS} FROM orders
            WHERE plan_id = %s
            ORDER BY executed_ms DESC, order_id DESC
            LIMIT %s
            """,
            (int(plan_id), int(limit)),
        )
        return [Order.from_row(r) for r in rows]

    def trade_totals(self, tx: Tx) -> dict[str, int]:
        """Executed trades (movements excluded): count and B volume, split by side."""
        row = tx.fetch_one(
            """
            SELECT
                COUNT(*) AS trades,
                COALESCE(SUM(quantity_b), 0) AS volume_b,
                COALESCE(SUM(CASE WHEN kind IN (%s, %s, %s) THEN quantity_b ELSE 0 END), 0) AS buy_volume_b,
                COALESCE(SUM(CASE WHEN kind IN (%s, %s, %s) THEN quantity_b ELSE 0 END), 0) AS sell_volume_b
            FROM orders
            WHERE status = 'EXECUTED' AND kind IN (%s, %s, %s, %s, %s, %s)
            """,
            (*_BUY_KINDS, *_SELL_KINDS, *_BUY_KINDS, *_SELL_KINDS),
        )
        return {k: int(row[k] or 0) for k in ("trades", "volume_b", "buy_volume_b", "sell_volume_b")}
