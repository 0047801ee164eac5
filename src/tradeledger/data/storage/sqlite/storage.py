"""SQLite durable store for single-node deployments and the test suite."""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence

from tradeledger.core.errors import InfrastructureError, InvariantViolation
from tradeledger.data.storage.base import Database, Tx

DDL_PATH = Path(__file__).resolve().parent / "ddl.sql"


def _q(sql: str) -> str:
    return sql.replace("%s", "?")


class SQLiteTx(Tx):
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        cur = self.conn.execute(_q(sql), tuple(params))
        return int(cur.rowcount if cur.rowcount is not None and cur.rowcount > 0 else 0)

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> dict | None:
        # drain the cursor so INSERT ... RETURNING is finalized before COMMIT
        rows = self.conn.execute(_q(sql), tuple(params)).fetchall()
        return dict(rows[0]) if rows else None

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[dict]:
        return [dict(r) for r in self.conn.execute(_q(sql), tuple(params)).fetchall()]


class SQLiteDatabase(Database):
    """
    One connection per transaction, opened with BEGIN IMMEDIATE so writers are
    serialized by the database file lock rather than by anything in-process.
    Separate processes pointing at the same file coordinate the same way.
    """

    name = "sqlite"

    def __init__(self, db_path: str, *, busy_timeout_sec: float = 30.0):
        if db_path in ("", ":memory:"):
            raise ValueError("SQLiteDatabase needs a file path shared by all connections")
        self.db_path = Path(db_path)
        self.busy_timeout_sec = float(busy_timeout_sec)
        self.logger = logging.getLogger("tradeledger.storage.sqlite")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_sec,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def transaction(self) -> Iterator[Tx]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield SQLiteTx(conn)
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        except sqlite3.IntegrityError as e:
            if "CHECK constraint" in str(e):
                raise InvariantViolation(f"check constraint violated: {e}") from e
            raise InfrastructureError(str(e), operation="transaction") from e
        except sqlite3.Error as e:
            self.logger.error("[DB][SQLITE] transaction aborted: %s", e)
            raise InfrastructureError(str(e), operation="transaction") from e
        finally:
            conn.close()

    def exec_ddl(self, ddl_sql: str) -> None:
        conn = self._connect()
        try:
            conn.executescript(ddl_sql)
        finally:
            conn.close()

    def close(self) -> None:
        # connections are per-transaction
        return None
