from __future__ import annotations
from enum import Enum


class Currency(str, Enum):
    A = "A"   # scarce asset, smallest unit e.g. satoshi
    B = "B"   # quote currency

    @property
    def other(self) -> "Currency":
        return Currency.B if self is Currency.A else Currency.A


class Bucket(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderKind(str, Enum):
    MARKET_BUY = "MARKET_BUY"
    MARKET_SELL = "MARKET_SELL"
    LIMIT_BUY = "LIMIT_BUY"
    LIMIT_SELL = "LIMIT_SELL"
    RECURRING_BUY = "RECURRING_BUY"
    RECURRING_SELL = "RECURRING_SELL"
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"

    @property
    def is_limit(self) -> bool:
        return self in (OrderKind.LIMIT_BUY, OrderKind.LIMIT_SELL)

    @classmethod
    def market(cls, side: Side) -> "OrderKind":
        return cls.MARKET_BUY if side is Side.BUY else cls.MARKET_SELL

    @classmethod
    def limit(cls, side: Side) -> "OrderKind":
        return cls.LIMIT_BUY if side is Side.BUY else cls.LIMIT_SELL

    @classmethod
    def recurring(cls, side: Side) -> "OrderKind":
        return cls.RECURRING_BUY if side is Side.BUY else cls.RECURRING_SELL


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    EXECUTED = "EXECUTED"
    CANCELLED = "CANCELLED"


class PlanStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class Frequency(str, Enum):
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
