# src/tradeledger/data/storage/postgres/pool.py
from psycopg_pool import ConnectionPool


def create_pool(dsn: str, *, min_size: int = 1, max_size: int = 10, timeout_sec: float = 30.0) -> ConnectionPool:
    """
    Pool for the ledger store. Connections are checked on checkout so a
    restarted server does not surface as a failed ledger transaction.
    """
    return ConnectionPool(
        conninfo=dsn,
        min_size=int(min_size),
        max_size=int(max_size),
        timeout=float(timeout_sec),
        kwargs={"autocommit": False, "prepare_threshold": 0},
        check=ConnectionPool.check_connection,
        name="tradeledger",
        open=True,
    )
