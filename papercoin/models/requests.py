from decimal import Decimal
from typing import Dict, Optional
from pydantic import BaseModel, Field, condecimal

from papercoin.constants.positions import PositionDirection

# Shape checks only. Leverage set and margin floor are enforced by the
# margin service so they surface with their own error kinds. max_digits
# matches the precision MongoDB Decimal128 can store.

class OpenPositionRequest(BaseModel):
    owner_id: str = Field(..., min_length=1)
    account_id: Optional[str] = None
    asset_id: str = Field(..., min_length=1)
    asset_symbol: str = Field(..., min_length=1)
    asset_name: str = Field(..., min_length=1)
    direction: PositionDirection
    margin: Decimal = Field(..., max_digits=34)
    leverage: int
    current_price: Decimal = Field(..., gt=0, max_digits=34)

class ClosePositionRequest(BaseModel):
    position_id: str = Field(..., min_length=1)
    owner_id: str = Field(..., min_length=1)
    current_price: Decimal = Field(..., gt=0, max_digits=34)

class CheckLiquidationsRequest(BaseModel):
    prices: Dict[str, condecimal(gt=0, max_digits=34)]
