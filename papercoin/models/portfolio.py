from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from papercoin.models.documents import from_bson

class Portfolio(BaseModel):
    portfolio_id: str
    owner_id: str
    account_id: Optional[str] = None
    cash_balance: Decimal = Field(default=Decimal("0"), ge=0)

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Portfolio":
        data = from_bson(document)
        data["portfolio_id"] = data.pop("_id")
        return cls(**data)
