from decimal import Decimal
from typing import List
from pydantic import BaseModel

from papercoin.models.position import Position

class OpenPositionResult(BaseModel):
    position: Position
    new_cash_balance: Decimal

class ClosePositionResult(BaseModel):
    position: Position
    pnl: Decimal
    margin_return: Decimal
    new_cash_balance: Decimal

class LiquidationSweepResult(BaseModel):
    liquidated_count: int
    liquidated_ids: List[str]

class MarginStats(BaseModel):
    open_positions_count: int
    closed_positions_count: int
    total_margin_used: Decimal
    total_realized_pnl: Decimal
    winning_trades: int
    losing_trades: int
    win_rate: Decimal
