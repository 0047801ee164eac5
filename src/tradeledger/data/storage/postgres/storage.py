# src/tradeledger/data/storage/postgres/storage.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from tradeledger.core.errors import InfrastructureError, InvariantViolation
from tradeledger.data.storage.base import Database, Tx

logger = logging.getLogger(__name__)

DDL_PATH = Path(__file__).resolve().parent / "ddl.sql"


class PostgreSQLTx(Tx):
    def __init__(self, cur: psycopg.Cursor):
        self.cur = cur

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        self.cur.execute(sql, tuple(params))
        return int(self.cur.rowcount or 0)

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> dict | None:
        self.cur.execute(sql, tuple(params))
        return self.cur.fetchone()

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        self.cur.execute(sql, tuple(params))
        return list(self.cur.fetchall())


class PostgreSQLDatabase(Database):
    """
    PostgreSQL durable store on a psycopg_pool ConnectionPool.

    Each transaction() borrows one pooled connection; row-level locking of the
    conditional UPDATEs serializes concurrent writers on the same user/plan row.
    """

    name = "postgres"

    def __init__(self, pool: ConnectionPool):
        self.pool = pool

    @contextmanager
    def transaction(self) -> Iterator[Tx]:
        try:
            with self.pool.connection() as conn:
                with conn.transaction():
                    with conn.cursor(row_factory=dict_row) as cur:
                        yield PostgreSQLTx(cur)
        except psycopg.errors.CheckViolation as e:
            raise InvariantViolation(f"check constraint violated: {e}") from e
        except psycopg.Error as e:
            logger.error("[DB][PG] transaction aborted: %s", e)
            raise InfrastructureError(str(e), operation="transaction") from e

    def exec_ddl(self, ddl_sql: str) -> None:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(ddl_sql)
            conn.commit()

    def close(self) -> None:
        self.pool.close()
