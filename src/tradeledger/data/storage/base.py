# src/tradeledger/data/storage/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any, Sequence


class Tx(ABC):
    """
    One open durable transaction.

    SQL is written once with %s placeholders; backends translate if needed.
    Rows come back as plain dicts.
    """

    @abstractmethod
    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a statement, return affected row count."""

    @abstractmethod
    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> dict | None: ...

    @abstractmethod
    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict]: ...


class Database(ABC):
    """
    Durable store: the only shared mutable resource.

    transaction() commits on normal exit and rolls back on any exception.
    Driver errors surface as InfrastructureError; CHECK violations on balance
    columns surface as InvariantViolation.
    """

    name: str

    @abstractmethod
    def transaction(self) -> AbstractContextManager[Tx]: ...

    @abstractmethod
    def exec_ddl(self, ddl_sql: str) -> None: ...

    @abstractmethod
    def close(self) -> None: ...

    # ------------------------------------------------------------------
    # one-statement helpers
    # ------------------------------------------------------------------
    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        with self.transaction() as tx:
            return tx.execute(sql, params)

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> dict | None:
        with self.transaction() as tx:
            return tx.fetch_one(sql, params)

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        with self.transaction() as tx:
            return tx.fetch_all(sql, params)
