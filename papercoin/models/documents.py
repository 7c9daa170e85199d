from decimal import Decimal, DecimalException
from typing import Any, Dict

from bson.decimal128 import Decimal128

from papercoin.utils.errors import ValidationError

def to_decimal128(field: str, value: Decimal) -> Decimal128:
    # Decimal128 holds at most 34 significant digits and refuses to round
    try:
        return Decimal128(value)
    except DecimalException as e:
        raise ValidationError(f"{field} has more precision than storage supports") from e

def to_bson(data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert Decimal values so MongoDB stores them without float rounding"""
    return {key: to_decimal128(key, value) if isinstance(value, Decimal) else value for key, value in data.items()}

def from_bson(document: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value.to_decimal() if isinstance(value, Decimal128) else value for key, value in document.items()}
