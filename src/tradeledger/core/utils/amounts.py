from __future__ import annotations

from tradeledger.core.errors import AmountTooSmall, ValidationError
from tradeledger.core.models.enums import Currency, Side

UNITS_PER_ASSET = 100_000_000


def ceil_div(num: int, den: int) -> int:
    return -(-num // den)


def require_positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {type(value).__name__}")
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")
    return value


def counter_amount(
    *,
    side: Side,
    fixed: Currency,
    amount: int,
    price: int,
    units_per_asset: int = UNITS_PER_ASSET,
) -> tuple[int, int]:
    """
    Returns (quantity_a, quantity_b) for a trade of `amount` in the `fixed` currency at `price`
    (B per whole A).

    Buy with A fixed always charges ceil(A * P / U) and never less than one unit of B.
    Any other derived leg is rounded down.
    """
    if price <= 0:
        raise ValidationError(f"price must be positive, got {price}")

    if fixed is Currency.A:
        qty_a = amount
        if side is Side.BUY:
            qty_b = max(1, ceil_div(amount * price, units_per_asset))
        else:
            qty_b = (amount * price) // units_per_asset
    else:
        qty_b = amount
        qty_a = (amount * units_per_asset) // price

    if qty_a <= 0 or qty_b <= 0:
        raise AmountTooSmall(
            f"amount {amount} {fixed.value} at price {price} converts to zero",
            context={"quantity_a": qty_a, "quantity_b": qty_b},
        )
    return qty_a, qty_b


def paying_leg(side: Side) -> Currency:
    """Currency debited by a trade on `side`."""
    return Currency.B if side is Side.BUY else Currency.A
