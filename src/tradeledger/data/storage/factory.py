from __future__ import annotations

import logging

from tradeledger.data.storage.base import Database

logger = logging.getLogger(__name__)

SQLITE_PREFIX = "sqlite:///"


def open_database(dsn: str, *, pool_max_size: int = 10) -> Database:
    """
    sqlite:///path/to/file.db -> SQLiteDatabase
    anything else             -> PostgreSQLDatabase (libpq conninfo / URL)
    """
    if dsn.startswith(SQLITE_PREFIX):
        from tradeledger.data.storage.sqlite.storage import SQLiteDatabase

        path = dsn[len(SQLITE_PREFIX):]
        logger.info("[DB] using SQLite store: %s", path)
        return SQLiteDatabase(path)

    from tradeledger.data.storage.postgres.pool import create_pool
    from tradeledger.data.storage.postgres.storage import PostgreSQLDatabase

    pool = create_pool(dsn, max_size=int(pool_max_size))
    logger.info("[DB] PostgreSQL pool initialized (max_size=%s)", pool_max_size)
    return PostgreSQLDatabase(pool)


def default_ddl(db: Database) -> str:
    if db.name == "sqlite":
        from tradeledger.data.storage.sqlite.storage import DDL_PATH
    else:
        from tradeledger.data.storage.postgres.storage import DDL_PATH
    return DDL_PATH.read_text(encoding="utf-8")
