from __future__ import annotations

import json
from typing import Any, Optional

from tradeledger.data.storage.base import Tx


class MarketRepository:
    """Reference price history and chart series."""

    def insert_tick(self, tx: Tx, *, reference_price: int, observed_ms: int) -> None:
        tx.execute(
            "INSERT INTO price_ticks (reference_price, observed_ms) VALUES (%s, %s)",
            (int(reference_price), int(observed_ms)),
        )

    def latest_tick(self, tx: Tx) -> Optional[dict]:
        row = tx.fetch_one(
            """
            SELECT reference_price, observed_ms FROM price_ticks
            ORDER BY observed_ms DESC, tick_id DESC
            LIMIT 1
            """
        )
        if not row:
            return None
        return {"reference_price": int(row["reference_price"]), "observed_ms": int(row["observed_ms"])}

    def trim_ticks(self, tx: Tx, *, keep: int) -> int:
        return tx.execute(
            """
            DELETE FROM price_ticks
            WHERE tick_id NOT IN (
                SELECT tick_id FROM price_ticks
                ORDER BY observed_ms DESC, tick_id DESC
                LIMIT %s
            )
            """,
            (int(keep),),
        )

    # ------------------------------------------------------------------
    # chart series
    # ------------------------------------------------------------------
    def insert_chart(self, tx: Tx, series: dict[str, Any]) -> None:
        tx.execute(
            """
            INSERT INTO chart_series (
                timeframe, points_json, points_count, change_pct,
                from_ms, to_ms, fetched_ms
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                series["timeframe"],
                json.dumps(series["points"]),
                len(series["points"]),
                series.get("change_pct"),
                series.get("from_ms"),
                series.get("to_ms"),
                int(series["fetched_ms"]),
            ),
        )

    def latest_chart(self, tx: Tx, timeframe: str) -> Optional[dict[str, Any]]:
        row = tx.fetch_one(
            """
            SELECT timeframe, points_json, points_count, change_pct, from_ms, to_ms, fetched_ms
            FROM chart_series
            WHERE timeframe = %s
            ORDER BY fetched_ms DESC, series_id DESC
            LIMIT 1
            """,
            (timeframe,),
        )
        if not row:
            return None
        return {
            "timeframe": row["timeframe"],
            "points": json.loads(row["points_json"]),
            "points_count": int(row["points_count"]),
            "change_pct": row["change_pct"],
            "from_ms": row["from_ms"],
            "to_ms": row["to_ms"],
            "fetched_ms": int(row["fetched_ms"]),
        }

    def trim_charts(self, tx: Tx, timeframe: str, *, keep: int = 2) -> int:
        return tx.execute(
            """
            DELETE FROM chart_series
            WHERE timeframe = %s AND series_id NOT IN (
                SELECT series_id FROM chart_series
                WHERE timeframe = %s
                ORDER BY fetched_ms DESC, series_id DESC
                LIMIT %s
            )
            """,
            (timeframe, timeframe, int(keep)),
        )
