from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel

from papercoin.constants.transactions import TransactionType
from papercoin.models.documents import to_bson, from_bson
from papercoin.utils.datetime import ensure_utc

class TransactionRecord(BaseModel):
    transaction_id: str
    owner_id: str
    account_id: Optional[str] = None
    type: TransactionType
    position_id: str

    asset_id: str
    asset_symbol: str
    quantity: Decimal
    price_at_time: Decimal
    total_usd_value: Decimal

    created_at: datetime

    class Config:
        use_enum_values = True

    def to_document(self) -> Dict[str, Any]:
        data = self.model_dump()
        data["_id"] = data.pop("transaction_id")
        return to_bson(data)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "TransactionRecord":
        data = from_bson(document)
        data["transaction_id"] = data.pop("_id")
        data["created_at"] = ensure_utc(data["created_at"])
        return cls(**data)
