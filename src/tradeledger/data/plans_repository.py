# src/tradeledger/data/plans_repository.py
from __future__ import annotations

from typing import Optional

from tradeledger.core.models.enums import Frequency, PlanStatus, Side
from tradeledger.core.models.plan import RecurringPlan
from tradeledger.data.storage.base import Tx

_COLUMNS = (
    "plan_id, user_id, side, frequency, amount_a, amount_b, min_price, max_price, "
    "next_due_ms, remaining_executions, status, created_ms, completed_ms"
)


class PlansRepository:
    """
    Recurring plan rows.

    claim / finalize / revert are single conditional UPDATEs: the affected-row
    count is the only lock the scheduler relies on.
    """

    # ------------------------------------------------------------------
    # management
    # ------------------------------------------------------------------
    def insert(
        self,
        tx: Tx,
        *,
        user_id: int,
        side: Side,
        frequency: Frequency,
        amount_a: Optional[int],
        amount_b: Optional[int],
        min_price: Optional[int],
        max_price: Optional[int],
        remaining_executions: Optional[int],
        next_due_ms: int,
        created_ms: int,
    ) -> RecurringPlan:
        row = tx.fetch_one(
            f"""
            INSERT INTO plans (
                user_id, side, frequency,
                amount_a, amount_b, min_price, max_price,
                next_due_ms, remaining_executions, status, created_ms
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, 'ACTIVE', %s)
            RETURNING {_COLUMNS}
            """,
            (
                int(user_id), side.value, frequency.value,
                amount_a, amount_b, min_price, max_price,
                int(next_due_ms), remaining_executions, int(created_ms),
            ),
        )
        return RecurringPlan.from_row(row)

    def get(self, tx: Tx, plan_id: int) -> Optional[RecurringPlan]:
        row = tx.fetch_one(f"SELECT {_COLUMNS} FROM plans WHERE plan_id = %s", (int(plan_id),))
        return RecurringPlan.from_row(row) if row else None

    def for_user(self, tx: Tx, user_id: int) -> list[RecurringPlan]:
        rows = tx.fetch_all(
            f"""
            SELECT {_COLUMNS} FROM plans
            WHERE user_id = %s
            ORDER BY
                CASE status WHEN 'ACTIVE' THEN 1 WHEN 'PAUSED' THEN 2 ELSE 3 END,
                created_ms DESC
            """,
            (int(user_id),),
        )
        return [RecurringPlan.from_row(r) for r in rows]

    def all(self, tx: Tx) -> list[RecurringPlan]:
        rows = tx.fetch_all(f"SELECT {_COLUMNS} FROM plans ORDER BY plan_id")
        return [RecurringPlan.from_row(r) for r in rows]

    def set_status(
        self,
        tx: Tx,
        plan_id: int,
        *,
        user_id: int,
        expected: PlanStatus,
        new: PlanStatus,
        next_due_ms: Optional[int] = None,
    ) -> bool:
        if next_due_ms is None:
            n = tx.execute(
                "UPDATE plans SET status = %s WHERE plan_id = %s AND user_id = %s AND status = %s",
                (new.value, int(plan_id), int(user_id), expected.value),
            )
        else:
            n = tx.execute(
                """
                UPDATE plans SET status = %s, next_due_ms = %s
                WHERE plan_id = %s AND user_id = %s AND status = %s
                """,
                (new.value, int(next_due_ms), int(plan_id), int(user_id), expected.value),
            )
        return n > 0

    def delete(self, tx: Tx, plan_id: int, *, user_id: int) -> bool:
        n = tx.execute(
            "DELETE FROM plans WHERE plan_id = %s AND user_id = %s",
            (int(plan_id), int(user_id)),
        )
        return n > 0

    # ------------------------------------------------------------------
    # scheduler
    # ------------------------------------------------------------------
    def next_due_ms(self, tx: Tx) -> Optional[int]:
        row = tx.fetch_one("SELECT MIN(next_due_ms) AS next_due FROM plans WHERE status = 'ACTIVE'")
        if not row or row.get("next_due") is None:
            return None
        return int(row["next_due"])

    def list_due(self, tx: Tx, *, now_ms: int) -> list[RecurringPlan]:
        rows = tx.fetch_all(
            f"""
            SELECT {_COLUMNS} FROM plans
            WHERE status = 'ACTIVE' AND next_due_ms <= %s
            ORDER BY next_due_ms, plan_id
            """,
            (int(now_ms),),
        )
        return [RecurringPlan.from_row(r) for r in rows]

    def claim(self, tx: Tx, plan_id: int, *, now_ms: int, lock_until_ms: int) -> bool:
        n = tx.execute(
            """
            UPDATE plans
            SET next_due_ms = %s
            WHERE plan_id = %s
              AND status = 'ACTIVE'
              AND next_due_ms <= %s
              AND (remaining_executions IS NULL OR remaining_executions > 0)
            """,
            (int(lock_until_ms), int(plan_id), int(now_ms)),
        )
        return n > 0

    def finalize(self, tx: Tx, plan: RecurringPlan, *, claim_token_ms: int, now_ms: int, next_due_ms: int) -> bool:
        """
        Advance or complete a plan after its trade was written in the same transaction.
        Conditional on the claim still being held (token + ACTIVE).
        """
        if plan.remaining_executions is None:
            n = tx.execute(
                """
                UPDATE plans SET next_due_ms = %s
                WHERE plan_id = %s AND status = 'ACTIVE' AND next_due_ms = %s
                  AND remaining_executions IS NULL
                """,
                (int(next_due_ms), plan.plan_id, int(claim_token_ms)),
            )
        elif plan.remaining_executions == 1:
            n = tx.execute(
                """
                UPDATE plans
                SET status = 'COMPLETED', remaining_executions = 0, completed_ms = %s
                WHERE plan_id = %s AND status = 'ACTIVE' AND next_due_ms = %s
                  AND remaining_executions = 1
                """,
                (int(now_ms), plan.plan_id, int(claim_token_ms)),
            )
        else:
            n = tx.execute(
                """
                UPDATE plans
                SET next_due_ms = %s, remaining_executions = remaining_executions - 1
                WHERE plan_id = %s AND status = 'ACTIVE' AND next_due_ms = %s
                  AND remaining_executions = %s
                """,
                (int(next_due_ms), plan.plan_id, int(claim_token_ms), int(plan.remaining_executions)),
            )
        return n > 0

    def revert(self, tx: Tx, plan_id: int, *, claim_token_ms: int, now_ms: int) -> bool:
        n = tx.execute(
            """
            UPDATE plans SET next_due_ms = %s
            WHERE plan_id = %s AND status = 'ACTIVE' AND next_due_ms = %s
            """,
            (int(now_ms), int(plan_id), int(claim_token_ms)),
        )
        return n > 0

    def purge_completed(self, tx: Tx, *, older_than_ms: int) -> int:
        return tx.execute(
            """
            DELETE FROM plans
            WHERE status = 'COMPLETED'
              AND completed_ms IS NOT NULL
              AND completed_ms < %s
            """,
            (int(older_than_ms),),
        )

    # ------------------------------------------------------------------
    # admin
    # ------------------------------------------------------------------
    def count_active(self, tx: Tx) -> int:
        row = tx.fetch_one("SELECT COUNT(*) AS n FROM plans WHERE status = 'ACTIVE'")
        return int(row["n"]) if row else 0

    def active_buy_amounts_b(self, tx: Tx) -> list[tuple[Frequency, int]]:
        """(frequency, amount_b) of ACTIVE buy plans that fix the B amount."""
        rows = tx.fetch_all(
            """
            SELECT frequency, amount_b FROM plans
            WHERE status = 'ACTIVE' AND side = %s AND amount_b IS NOT NULL
            ORDER BY plan_id
            """,
            (Side.BUY.value,),
        )
        return [(Frequency(r["frequency"]), int(r["amount_b"])) for r in rows]
