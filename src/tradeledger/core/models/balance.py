from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from tradeledger.core.models.enums import Bucket, Currency


@dataclass(frozen=True, slots=True)
class Balance:
    user_id: int
    available_a: int = 0
    reserved_a: int = 0
    available_b: int = 0
    reserved_b: int = 0

    def get(self, currency: Currency, bucket: Bucket = Bucket.AVAILABLE) -> int:
        return int(getattr(self, column_name(currency, bucket)))

    def held(self, currency: Currency) -> int:
        return self.get(currency, Bucket.AVAILABLE) + self.get(currency, Bucket.RESERVED)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Balance":
        return cls(
            user_id=int(row["user_id"]),
            available_a=int(row["available_a"]),
            reserved_a=int(row["reserved_a"]),
            available_b=int(row["available_b"]),
            reserved_b=int(row["reserved_b"]),
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "user_id": self.user_id,
            "available_a": self.available_a,
            "reserved_a": self.reserved_a,
            "available_b": self.available_b,
            "reserved_b": self.reserved_b,
        }


def column_name(currency: Currency, bucket: Bucket) -> str:
    """Whitelisted balances column for (currency, bucket)."""
    return f"{Bucket(bucket).value}_{Currency(currency).value.lower()}"
