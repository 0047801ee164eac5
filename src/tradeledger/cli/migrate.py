# src/tradeledger/cli/migrate.py
from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

from tradeledger.data.storage.factory import default_ddl, open_database


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")

    dsn = os.getenv("LEDGER_DB_DSN")
    if not dsn:
        raise SystemExit("LEDGER_DB_DSN env var is required")

    db = open_database(dsn)
    try:
        db.exec_ddl(default_ddl(db))
    finally:
        db.close()
    print(f"[migrate] schema applied ({db.name})")


if __name__ == "__main__":
    main()
