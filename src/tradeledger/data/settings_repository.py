from __future__ import annotations

from typing import Mapping

from tradeledger.data.storage.base import Tx


class SettingsRepository:
    """Key/value settings (buy_multiplier, sell_multiplier, ...)."""

    def load(self, tx: Tx, keys: tuple[str, ...]) -> dict[str, str]:
        if not keys:
            return {}
        marks = ", ".join(["%s"] * len(keys))
        rows = tx.fetch_all(f"SELECT key, value FROM settings WHERE key IN ({marks})", keys)
        return {str(r["key"]): str(r["value"]) for r in rows}

    def upsert(self, tx: Tx, values: Mapping[str, str], *, updated_ms: int) -> int:
        n = 0
        for key, value in values.items():
            n += tx.execute(
                """
                INSERT INTO settings (key, value, updated_ms)
                VALUES (%s, %s, %s)
                ON CONFLICT (key) DO UPDATE SET
                    value = EXCLUDED.value,
                    updated_ms = EXCLUDED.updated_ms
                """,
                (key, str(value), int(updated_ms)),
            )
        return n

    def insert_defaults(self, tx: Tx, values: Mapping[str, str], *, updated_ms: int) -> int:
        n = 0
        for key, value in values.items():
            n += tx.execute(
                """
                INSERT INTO settings (key, value, updated_ms)
                VALUES (%s, %s, %s)
                ON CONFLICT (key) DO NOTHING
                """,
                (key, str(value), int(updated_ms)),
            )
        return n
