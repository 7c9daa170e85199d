from decimal import Decimal, InvalidOperation
from typing import Dict, Optional

from papercoin.utils.errors import ValidationError

def parse_price_map(raw: Optional[str]) -> Dict[str, Decimal]:
    """
    Parse a query-string price map of the form ``"bitcoin:65000,ethereum:3500"``.

    Empty pairs and pairs missing either side are ignored. A price that is
    not a positive number is rejected.
    """
    prices: Dict[str, Decimal] = {}
    if not raw:
        return prices

    for pair in raw.split(","):
        asset_id, _, price = pair.strip().partition(":")
        asset_id, price = asset_id.strip(), price.strip()
        if not asset_id or not price:
            continue
        try:
            value = Decimal(price)
        except InvalidOperation:
            raise ValidationError(f"Invalid price for {asset_id}: {price}")
        if not value.is_finite() or value <= 0:
            raise ValidationError(f"Price for {asset_id} must be positive")
        prices[asset_id] = value

    return prices
