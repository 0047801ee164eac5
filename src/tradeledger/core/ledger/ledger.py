# src/tradeledger/core/ledger/ledger.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from tradeledger.core.errors import InsufficientFunds, NotFoundError, ValidationError
from tradeledger.core.models.balance import Balance, column_name
from tradeledger.core.models.enums import Bucket, Currency
from tradeledger.core.utils.amounts import require_positive_int
from tradeledger.core.utils.timeutil import Clock, now_ms
from tradeledger.data.storage.base import Database, Tx

_BALANCE_COLUMNS = "user_id, available_a, reserved_a, available_b, reserved_b"


class BalanceLedger:
    """
    Per-user balances: the only writer of the balances table.

    Responsibilities:
      ✔ reserve / release / settle / deposit / withdraw / transfer
      ✔ each mutation is one conditional UPDATE guarded by "bucket >= amount"
      ✔ affected rows == 0 -> InsufficientFunds (or NotFoundError), never clamped
      ✖ no caching, no notifications (callers do that after commit)

    Every operation accepts an optional open transaction so order/plan writers
    can settle and update their own rows atomically. Without one, the operation
    runs in its own transaction.
    """

    def __init__(self, *, db: Database, clock: Clock = now_ms, logger: logging.Logger | None = None):
        self.db = db
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    @contextmanager
    def _scope(self, tx: Optional[Tx]) -> Iterator[Tx]:
        if tx is not None:
            yield tx
            return
        with self.db.transaction() as own:
            yield own

    def _require_user(self, tx: Tx, user_id: int) -> None:
        row = tx.fetch_one("SELECT user_id FROM balances WHERE user_id = %s", (int(user_id),))
        if not row:
            raise NotFoundError(f"no balance account for user {user_id}", context={"user_id": user_id})

    def _debit(self, tx: Tx, *, user_id: int, column: str, amount: int, credit_column: str | None, credit_amount: int) -> None:
        """
        column -= amount (guarded), optionally credit_column += credit_amount,
        in one statement.
        """
        if credit_column is None:
            sql = f"""
                UPDATE balances
                SET {column} = {column} - %s, updated_ms = %s
                WHERE user_id = %s AND {column} >= %s
            """
            params: tuple = (amount, self.clock(), int(user_id), amount)
        else:
            sql = f"""
                UPDATE balances
                SET {column} = {column} - %s,
                    {credit_column} = {credit_column} + %s,
                    updated_ms = %s
                WHERE user_id = %s AND {column} >= %s
            """
            params = (amount, credit_amount, self.clock(), int(user_id), amount)

        if tx.execute(sql, params) == 0:
            self._require_user(tx, user_id)
            currency = column.rsplit("_", 1)[1].upper()
            raise InsufficientFunds(
                f"insufficient {column} for user {user_id}: required {amount}",
                user_id=int(user_id),
                currency=currency,
                required=amount,
            )

    # ------------------------------------------------------------------
    # accounts / reads
    # ------------------------------------------------------------------
    def open_account(self, user_id: int, *, tx: Optional[Tx] = None) -> bool:
        with self._scope(tx) as t:
            n = t.execute(
                """
                INSERT INTO balances (user_id, available_a, reserved_a, available_b, reserved_b, updated_ms)
                VALUES (%s, 0, 0, 0, 0, %s)
                ON CONFLICT (user_id) DO NOTHING
                """,
                (int(user_id), self.clock()),
            )
        if n:
            self.logger.info("[LEDGER] account opened user=%s", user_id)
        return n > 0

    def get(self, user_id: int, *, tx: Optional[Tx] = None) -> Balance:
        with self._scope(tx) as t:
            row = t.fetch_one(
                f"SELECT {_BALANCE_COLUMNS} FROM balances WHERE user_id = %s",
                (int(user_id),),
            )
        if not row:
            raise NotFoundError(f"no balance account for user {user_id}", context={"user_id": user_id})
        return Balance.from_row(row)

    def totals(self, *, tx: Optional[Tx] = None) -> dict[str, int]:
        with self._scope(tx) as t:
            row = t.fetch_one(
                """
                SELECT COUNT(*) AS users,
                       COALESCE(SUM(available_a), 0) AS available_a,
                       COALESCE(SUM(reserved_a), 0)  AS reserved_a,
                       COALESCE(SUM(available_b), 0) AS available_b,
                       COALESCE(SUM(reserved_b), 0)  AS reserved_b
                FROM balances
                """
            ) or {}
        return {k: int(v or 0) for k, v in row.items()}

    # ------------------------------------------------------------------
    # reservation protocol
    # ------------------------------------------------------------------
    def reserve(self, user_id: int, currency: Currency, amount: int, *, tx: Optional[Tx] = None) -> None:
        """available -= amount; reserved += amount."""
        amount = require_positive_int(amount, "amount")
        with self._scope(tx) as t:
            self._debit(
                t,
                user_id=user_id,
                column=column_name(currency, Bucket.AVAILABLE),
                amount=amount,
                credit_column=column_name(currency, Bucket.RESERVED),
                credit_amount=amount,
            )
        self.logger.debug("[LEDGER][RESERVE] user=%s %s=%s", user_id, currency.value, amount)

    def release(self, user_id: int, currency: Currency, amount: int, *, tx: Optional[Tx] = None) -> None:
        """reserved -= amount; available += amount."""
        amount = require_positive_int(amount, "amount")
        with self._scope(tx) as t:
            self._debit(
                t,
                user_id=user_id,
                column=column_name(currency, Bucket.RESERVED),
                amount=amount,
                credit_column=column_name(currency, Bucket.AVAILABLE),
                credit_amount=amount,
            )
        self.logger.debug("[LEDGER][RELEASE] user=%s %s=%s", user_id, currency.value, amount)

    def settle(
        self,
        user_id: int,
        from_currency: Currency,
        from_amount: int,
        to_currency: Currency,
        to_amount: int,
        from_bucket: Bucket = Bucket.AVAILABLE,
        *,
        tx: Optional[Tx] = None,
    ) -> None:
        """Debit the paying bucket of from_currency and credit available of to_currency."""
        if from_currency is to_currency:
            raise ValidationError("settle needs two different currencies")
        from_amount = require_positive_int(from_amount, "from_amount")
        to_amount = require_positive_int(to_amount, "to_amount")

        with self._scope(tx) as t:
            self._debit(
                t,
                user_id=user_id,
                column=column_name(from_currency, from_bucket),
                amount=from_amount,
                credit_column=column_name(to_currency, Bucket.AVAILABLE),
                credit_amount=to_amount,
            )
        self.logger.info(
            "[LEDGER][SETTLE] user=%s -%s %s(%s) +%s %s",
            user_id, from_amount, from_currency.value, Bucket(from_bucket).value,
            to_amount, to_currency.value,
        )

    # ------------------------------------------------------------------
    # external movements
    # ------------------------------------------------------------------
    def deposit(self, user_id: int, currency: Currency, amount: int, *, tx: Optional[Tx] = None) -> None:
        amount = require_positive_int(amount, "amount")
        col = column_name(currency, Bucket.AVAILABLE)
        with self._scope(tx) as t:
            n = t.execute(
                f"UPDATE balances SET {col} = {col} + %s, updated_ms = %s WHERE user_id = %s",
                (amount, self.clock(), int(user_id)),
            )
            if n == 0:
                raise NotFoundError(f"no balance account for user {user_id}", context={"user_id": user_id})
        self.logger.info("[LEDGER][DEPOSIT] user=%s %s=%s", user_id, currency.value, amount)

    def withdraw(self, user_id: int, currency: Currency, amount: int, *, tx: Optional[Tx] = None) -> None:
        amount = require_positive_int(amount, "amount")
        with self._scope(tx) as t:
            self._debit(
                t,
                user_id=user_id,
                column=column_name(currency, Bucket.AVAILABLE),
                amount=amount,
                credit_column=None,
                credit_amount=0,
            )
        self.logger.info("[LEDGER][WITHDRAW] user=%s %s=%s", user_id, currency.value, amount)

    def transfer(
        self,
        from_user: int,
        to_user: int,
        currency: Currency,
        amount: int,
        *,
        tx: Optional[Tx] = None,
    ) -> None:
        """Move available funds between two users in one transaction."""
        if int(from_user) == int(to_user):
            raise ValidationError("cannot transfer to the same user")
        amount = require_positive_int(amount, "amount")

        with self._scope(tx) as t:
            # lower user id first so two opposite transfers lock rows in the same order
            if int(from_user) < int(to_user):
                self.withdraw(from_user, currency, amount, tx=t)
                self.deposit(to_user, currency, amount, tx=t)
            else:
                self.deposit(to_user, currency, amount, tx=t)
                self.withdraw(from_user, currency, amount, tx=t)
