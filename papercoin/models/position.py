from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel

from papercoin.constants.positions import PositionStatus, PositionDirection
from papercoin.models.documents import to_bson, from_bson
from papercoin.utils.datetime import ensure_utc

class Position(BaseModel):
    position_id: str
    owner_id: str
    account_id: Optional[str] = None

    # Instrument
    asset_id: str
    asset_symbol: str
    asset_name: str

    # Fixed at open
    direction: PositionDirection
    leverage: int
    entry_price: Decimal
    quantity: Decimal
    margin: Decimal
    liquidation_price: Decimal

    # Set once when the position leaves OPEN
    status: PositionStatus = PositionStatus.OPEN
    close_price: Optional[Decimal] = None
    realized_pnl: Optional[Decimal] = None
    closed_at: Optional[datetime] = None

    created_at: datetime

    class Config:
        use_enum_values = True

    @property
    def is_open(self) -> bool:
        return self.status == PositionStatus.OPEN

    def to_document(self) -> Dict[str, Any]:
        data = self.model_dump()
        data["_id"] = data.pop("position_id")
        return to_bson(data)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Position":
        data = from_bson(document)
        data["position_id"] = data.pop("_id")
        data["created_at"] = ensure_utc(data["created_at"])
        if data.get("closed_at"):
            data["closed_at"] = ensure_utc(data["closed_at"])
        return cls(**data)


class PositionCloseFields(BaseModel):
    """Fields written on the single OPEN -> CLOSED/LIQUIDATED transition"""
    status: PositionStatus
    close_price: Decimal
    realized_pnl: Decimal
    closed_at: datetime

    class Config:
        use_enum_values = True


class PositionWithPnl(Position):
    unrealized_pnl: Decimal
    unrealized_pnl_percent: Decimal
    current_value: Decimal
