from decimal import Decimal
from typing import Tuple

from papercoin.constants.margin import LEVERAGE_OPTIONS, MIN_MARGIN, LIQUIDATION_BUFFER
from papercoin.constants.positions import PositionDirection
from papercoin.utils.errors import InvalidLeverage, MarginTooLow, ValidationError

HUNDRED = Decimal("100")

def validate_leverage(leverage: int):
    if leverage not in LEVERAGE_OPTIONS:
        options = ", ".join(str(option) for option in LEVERAGE_OPTIONS)
        raise InvalidLeverage(f"Invalid leverage. Must be one of: {options}")

def validate_margin(margin: Decimal):
    if margin < MIN_MARGIN:
        raise MarginTooLow(f"Minimum margin is ${MIN_MARGIN}")

def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # Through str so floats keep their printed value
    return Decimal(str(value))

def validate_price(price: Decimal):
    if price is None or not price.is_finite() or price <= 0:
        raise ValidationError("Price must be positive")

def calculate_liquidation_price(entry_price: Decimal, direction: str, leverage: int) -> Decimal:
    """
    Price at which the position is forcibly closed.

    Long:  entry_price * (1 - 1/leverage + buffer)
    Short: entry_price * (1 + 1/leverage - buffer)
    """
    move = 1 / Decimal(leverage)
    if direction == PositionDirection.LONG:
        return entry_price * (1 - move + LIQUIDATION_BUFFER)
    return entry_price * (1 + move - LIQUIDATION_BUFFER)

def calculate_pnl(
    entry_price: Decimal,
    current_price: Decimal,
    margin: Decimal,
    leverage: int,
    direction: str
) -> Tuple[Decimal, Decimal]:
    """Returns (pnl, pnl_percent). Losses beyond the margin are not clamped here."""
    if direction == PositionDirection.LONG:
        pnl_percent = (current_price - entry_price) / entry_price * leverage * HUNDRED
    else:
        pnl_percent = (entry_price - current_price) / entry_price * leverage * HUNDRED

    pnl = pnl_percent / HUNDRED * margin
    return pnl, pnl_percent

def should_liquidate(current_price: Decimal, liquidation_price: Decimal, direction: str) -> bool:
    if direction == PositionDirection.LONG:
        return current_price <= liquidation_price
    return current_price >= liquidation_price
