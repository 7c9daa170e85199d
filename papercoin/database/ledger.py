from abc import ABC, abstractmethod
from decimal import Decimal
from typing import AsyncContextManager, List, Optional, Tuple

from papercoin.models.position import Position, PositionCloseFields
from papercoin.models.portfolio import Portfolio
from papercoin.models.transaction import TransactionRecord

class PositionLedger(ABC):
    """
    Transactional store for margin positions, the portfolios backing them
    and the append-only transaction log.

    Every ``atomic_*`` method is all-or-nothing: if any step fails, neither
    the position, the balance nor the log is changed.
    """

    @abstractmethod
    def transaction(self) -> AsyncContextManager:
        """Unit of work; everything done inside commits together or not at all"""
        pass

    @abstractmethod
    async def find_position(self, position_id: str) -> Optional[Position]:
        pass

    @abstractmethod
    async def find_portfolio(self, account_id: Optional[str] = None, owner_id: Optional[str] = None) -> Optional[Portfolio]:
        """Resolve by account when given, otherwise by owner"""
        pass

    @abstractmethod
    async def list_positions(self, owner_id: str, account_id: Optional[str] = None, status: Optional[str] = None) -> List[Position]:
        """Positions for an owner, newest first"""
        pass

    @abstractmethod
    async def list_open_positions(self) -> List[Position]:
        pass

    @abstractmethod
    async def atomic_open_position(
        self,
        position: Position,
        portfolio_id: str,
        margin_delta: Decimal,
        record: TransactionRecord
    ) -> Tuple[Position, Decimal]:
        """
        Create the position, debit ``margin_delta`` from the portfolio and
        append the record. Returns the stored position and the new balance.
        Raises InsufficientFunds if the balance cannot cover the debit.
        """
        pass

    @abstractmethod
    async def atomic_close_position(
        self,
        position_id: str,
        close_fields: PositionCloseFields,
        portfolio_id: str,
        balance_delta: Decimal,
        record: TransactionRecord
    ) -> Tuple[Position, Decimal]:
        """
        Move an OPEN position to its terminal state and credit the portfolio.
        Raises AlreadyClosed if the position is no longer OPEN.
        """
        pass

    @abstractmethod
    async def atomic_liquidate_position(
        self,
        position_id: str,
        close_fields: PositionCloseFields,
        record: TransactionRecord
    ) -> Position:
        """Like close, without touching the balance"""
        pass

    @abstractmethod
    async def list_transactions(self, owner_id: str, account_id: Optional[str] = None) -> List[TransactionRecord]:
        pass
