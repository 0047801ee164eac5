# src/tradeledger/cli/retention.py
from __future__ import annotations

import argparse
import logging

from tradeledger.config import load_config
from tradeledger.data.retention.retention_worker import RetentionWorker
from tradeledger.data.storage.factory import open_database


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(description="One-shot housekeeping: price history, chart series, completed plans")
    ap.add_argument("--config", default=None)
    ap.add_argument("--dry-run", action="store_true")
    args = ap.parse_args(argv)

    cfg = load_config(args.config)
    logging.basicConfig(level=cfg.log_level, format="%(asctime)s | %(levelname)s | %(name)s | %(message)s")

    db = open_database(cfg.storage.dsn)
    try:
        res = RetentionWorker(db=db, policy=cfg.retention.policy).run_once(dry_run=bool(args.dry_run))
    finally:
        db.close()

    mode = "DRY-RUN (would delete)" if args.dry_run else "DELETED"
    print(f"[{mode}] {res}")


if __name__ == "__main__":
    main()
