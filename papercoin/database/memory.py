import asyncio
import copy
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from papercoin.constants.positions import PositionStatus
from papercoin.database.ledger import PositionLedger
from papercoin.models.position import Position, PositionCloseFields
from papercoin.models.portfolio import Portfolio
from papercoin.models.transaction import TransactionRecord
from papercoin.utils.errors import AlreadyClosed, InsufficientFunds, PortfolioNotFound, PositionNotFound
from papercoin.utils.id_generator import generate_id
from papercoin.utils.logging import logger

memory_logger = logger.bind(name="memory_ledger")

class InMemoryPositionLedger(PositionLedger):
    """
    Ledger kept in process memory.

    A single lock serialises units of work. Entering one snapshots all
    state, and an exception inside it restores the snapshot before
    propagating.
    """

    def __init__(self):
        self.positions: Dict[str, Position] = {}
        self.portfolios: Dict[str, Portfolio] = {}
        self.transactions: List[TransactionRecord] = []
        self._lock = asyncio.Lock()

    def add_portfolio(self, owner_id: str, cash_balance: Decimal, account_id: Optional[str] = None) -> Portfolio:
        portfolio = Portfolio(
            portfolio_id=f"pf_{generate_id()}",
            owner_id=owner_id,
            account_id=account_id,
            cash_balance=Decimal(cash_balance)
        )
        self.portfolios[portfolio.portfolio_id] = portfolio
        memory_logger.info(f"Added portfolio {portfolio.portfolio_id} for owner {owner_id}")
        return portfolio

    @asynccontextmanager
    async def transaction(self):
        async with self._lock:
            snapshot = (
                copy.deepcopy(self.positions),
                copy.deepcopy(self.portfolios),
                list(self.transactions)
            )
            try:
                yield self
            except BaseException:
                self.positions, self.portfolios, self.transactions = snapshot
                memory_logger.warning("Rolled back in-memory transaction")
                raise

    async def find_position(self, position_id: str) -> Optional[Position]:
        position = self.positions.get(position_id)
        return position.model_copy() if position else None

    async def find_portfolio(self, account_id: Optional[str] = None, owner_id: Optional[str] = None) -> Optional[Portfolio]:
        for portfolio in self.portfolios.values():
            if account_id:
                if portfolio.account_id == account_id:
                    return portfolio.model_copy()
            elif owner_id and portfolio.owner_id == owner_id and portfolio.account_id is None:
                return portfolio.model_copy()
        return None

    async def list_positions(self, owner_id: str, account_id: Optional[str] = None, status: Optional[str] = None) -> List[Position]:
        # Insertion order breaks created_at ties
        matches = [
            (index, p) for index, p in enumerate(self.positions.values())
            if p.owner_id == owner_id
            and (not account_id or p.account_id == account_id)
            and (not status or p.status == status)
        ]
        matches.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [p.model_copy() for _, p in matches]

    async def list_open_positions(self) -> List[Position]:
        return [p.model_copy() for p in self.positions.values() if p.status == PositionStatus.OPEN]

    def _apply_balance_delta(self, portfolio_id: str, delta: Decimal) -> Decimal:
        portfolio = self.portfolios.get(portfolio_id)
        if not portfolio:
            raise PortfolioNotFound(f"Portfolio {portfolio_id} not found")
        new_balance = portfolio.cash_balance + delta
        if new_balance < 0:
            raise InsufficientFunds("Insufficient funds for margin")
        self.portfolios[portfolio_id] = portfolio.model_copy(update={"cash_balance": new_balance})
        return new_balance

    def _transition(self, position_id: str, close_fields: PositionCloseFields) -> Position:
        position = self.positions.get(position_id)
        if not position:
            raise PositionNotFound(f"Position {position_id} not found")
        if position.status != PositionStatus.OPEN:
            raise AlreadyClosed("Position is already closed")
        updated = position.model_copy(update=close_fields.model_dump())
        self.positions[position_id] = updated
        return updated

    async def atomic_open_position(self, position, portfolio_id, margin_delta, record) -> Tuple[Position, Decimal]:
        async with self.transaction():
            new_balance = self._apply_balance_delta(portfolio_id, -margin_delta)
            self.positions[position.position_id] = position.model_copy()
            self.transactions.append(record)
        return position.model_copy(), new_balance

    async def atomic_close_position(self, position_id, close_fields, portfolio_id, balance_delta, record) -> Tuple[Position, Decimal]:
        async with self.transaction():
            updated = self._transition(position_id, close_fields)
            new_balance = self._apply_balance_delta(portfolio_id, balance_delta)
            self.transactions.append(record)
        return updated.model_copy(), new_balance

    async def atomic_liquidate_position(self, position_id, close_fields, record) -> Position:
        async with self.transaction():
            updated = self._transition(position_id, close_fields)
            self.transactions.append(record)
        return updated.model_copy()

    async def list_transactions(self, owner_id: str, account_id: Optional[str] = None) -> List[TransactionRecord]:
        matches = [
            (index, r) for index, r in enumerate(self.transactions)
            if r.owner_id == owner_id and (not account_id or r.account_id == account_id)
        ]
        matches.sort(key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [r for _, r in matches]
