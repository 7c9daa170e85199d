from decimal import Decimal
from typing import Dict, List, Optional

from papercoin.constants.margin import LEVERAGE_OPTIONS, LEVERAGE_DESCRIPTIONS
from papercoin.constants.positions import PositionDirection, PositionFilter, PositionStatus
from papercoin.constants.transactions import TransactionType
from papercoin.database.ledger import PositionLedger
from papercoin.models.position import Position, PositionCloseFields, PositionWithPnl
from papercoin.models.results import ClosePositionResult, LiquidationSweepResult, MarginStats, OpenPositionResult
from papercoin.models.transaction import TransactionRecord
from papercoin.services.margin_math import (
    calculate_liquidation_price,
    calculate_pnl,
    should_liquidate,
    to_decimal,
    validate_leverage,
    validate_margin,
    validate_price,
)
from papercoin.utils.datetime import get_utc_time
from papercoin.utils.errors import (
    AlreadyClosed,
    InsufficientFunds,
    PortfolioNotFound,
    PositionNotFound,
    Unauthorized,
    ValidationError,
)
from papercoin.utils.id_generator import generate_id
from papercoin.utils.logging import logger

ZERO = Decimal("0")

class MarginService:
    """
    Leveraged position lifecycle on top of a :class:`PositionLedger`.

    Prices are always passed in by the caller; the service never fetches
    market data itself.
    """

    def __init__(self, ledger: PositionLedger):
        self.ledger = ledger

    async def open_position(
        self,
        owner_id: str,
        asset_id: str,
        asset_symbol: str,
        asset_name: str,
        direction: str,
        margin,
        leverage: int,
        current_price,
        account_id: Optional[str] = None
    ) -> OpenPositionResult:
        """Reserve margin from the portfolio and open a position at current_price"""
        margin, current_price = to_decimal(margin), to_decimal(current_price)
        direction = self._parse_direction(direction)

        validate_leverage(leverage)
        validate_margin(margin)
        validate_price(current_price)
        leverage = int(leverage)

        portfolio = await self.ledger.find_portfolio(account_id=account_id, owner_id=owner_id)
        if not portfolio:
            logger.warning(f"Portfolio not found for owner {owner_id} account {account_id}")
            raise PortfolioNotFound("Portfolio not found")

        if portfolio.cash_balance < margin:
            logger.warning(f"Insufficient balance for owner {owner_id}. Required: {margin}, Available: {portfolio.cash_balance}")
            raise InsufficientFunds("Insufficient funds for margin")

        now = get_utc_time()
        position = Position(
            position_id=f"pos_{generate_id()}",
            owner_id=owner_id,
            account_id=account_id,
            asset_id=asset_id,
            asset_symbol=asset_symbol.upper(),
            asset_name=asset_name,
            direction=direction,
            leverage=leverage,
            entry_price=current_price,
            quantity=margin * leverage / current_price,
            margin=margin,
            liquidation_price=calculate_liquidation_price(current_price, direction, leverage),
            status=PositionStatus.OPEN,
            created_at=now
        )
        record = self._transaction_record(position, TransactionType.MARGIN_OPEN, current_price, margin, now)

        position, new_balance = await self.ledger.atomic_open_position(
            position,
            portfolio.portfolio_id,
            margin,
            record
        )

        logger.success(
            f"Opened {position.direction} {position.asset_symbol} x{leverage} for owner {owner_id}: "
            f"margin {margin} @ {current_price}, liquidation at {position.liquidation_price}"
        )
        return OpenPositionResult(position=position, new_cash_balance=new_balance)

    async def close_position(self, position_id: str, owner_id: str, current_price) -> ClosePositionResult:
        """Close at current_price and return max(0, margin + pnl) to the portfolio"""
        current_price = to_decimal(current_price)
        validate_price(current_price)

        position = await self.ledger.find_position(position_id)
        if not position:
            raise PositionNotFound("Position not found")

        if position.owner_id != owner_id:
            logger.warning(f"Owner {owner_id} tried to close position {position_id} owned by {position.owner_id}")
            raise Unauthorized("Unauthorized")

        if not position.is_open:
            raise AlreadyClosed("Position is already closed")

        pnl, _ = calculate_pnl(
            position.entry_price,
            current_price,
            position.margin,
            position.leverage,
            position.direction
        )
        # A loss beyond the margin returns nothing rather than debiting
        margin_return = max(ZERO, position.margin + pnl)

        portfolio = await self.ledger.find_portfolio(account_id=position.account_id, owner_id=position.owner_id)
        if not portfolio:
            raise PortfolioNotFound("Portfolio not found")

        now = get_utc_time()
        close_fields = PositionCloseFields(
            status=PositionStatus.CLOSED,
            close_price=current_price,
            realized_pnl=pnl,
            closed_at=now
        )
        record = self._transaction_record(position, TransactionType.MARGIN_CLOSE, current_price, margin_return, now)

        closed, new_balance = await self.ledger.atomic_close_position(
            position_id,
            close_fields,
            portfolio.portfolio_id,
            margin_return,
            record
        )

        if pnl > 0:
            logger.success(f"Closed position {position_id} with PnL {pnl}, returned {margin_return}")
        else:
            logger.info(f"Closed position {position_id} with PnL {pnl}, returned {margin_return}")

        return ClosePositionResult(
            position=closed,
            pnl=pnl,
            margin_return=margin_return,
            new_cash_balance=new_balance
        )

    async def liquidate_position(self, position_id: str) -> Optional[Position]:
        """
        Forfeit the whole margin. The position is recorded as closed at its
        liquidation price, not at the price that triggered the check.
        Returns None when there is nothing to liquidate.
        """
        position = await self.ledger.find_position(position_id)
        if not position or not position.is_open:
            return None

        now = get_utc_time()
        close_fields = PositionCloseFields(
            status=PositionStatus.LIQUIDATED,
            close_price=position.liquidation_price,
            realized_pnl=-position.margin,
            closed_at=now
        )
        record = self._transaction_record(
            position,
            TransactionType.MARGIN_LIQUIDATION,
            position.liquidation_price,
            ZERO,
            now
        )

        try:
            liquidated = await self.ledger.atomic_liquidate_position(position_id, close_fields, record)
        except AlreadyClosed:
            logger.info(f"Position {position_id} left OPEN before it could be liquidated")
            return None

        logger.warning(f"Liquidated position {position_id} for owner {position.owner_id}, lost margin {position.margin}")
        return liquidated

    async def check_liquidations(self, prices: Dict[str, Decimal]) -> LiquidationSweepResult:
        """Liquidate every open position whose asset price crossed its threshold"""
        prices = {asset_id: to_decimal(price) for asset_id, price in prices.items()}
        open_positions = await self.ledger.list_open_positions()
        liquidated_ids: List[str] = []

        for position in open_positions:
            current_price = prices.get(position.asset_id)
            if current_price is None:
                continue

            if not should_liquidate(current_price, position.liquidation_price, position.direction):
                continue

            try:
                liquidated = await self.liquidate_position(position.position_id)
            except Exception as e:
                logger.error(f"Error liquidating position {position.position_id}: {e}")
                continue

            if liquidated:
                liquidated_ids.append(position.position_id)

        logger.info(f"Liquidation check over {len(open_positions)} open positions liquidated {len(liquidated_ids)}")
        return LiquidationSweepResult(liquidated_count=len(liquidated_ids), liquidated_ids=liquidated_ids)

    async def get_positions(
        self,
        owner_id: str,
        account_id: Optional[str] = None,
        status: str = PositionFilter.ALL.value
    ) -> List[Position]:
        try:
            status = PositionFilter(status)
        except ValueError:
            raise ValidationError(f"Invalid status filter: {status}")

        status_filter = None if status == PositionFilter.ALL else status.value
        return await self.ledger.list_positions(owner_id, account_id=account_id, status=status_filter)

    async def get_positions_with_pnl(
        self,
        owner_id: str,
        prices: Dict[str, Decimal],
        account_id: Optional[str] = None
    ) -> List[PositionWithPnl]:
        """Open positions annotated with unrealized P&L; unpriced assets report zero"""
        positions = await self.get_positions(owner_id, account_id=account_id, status=PositionFilter.OPEN.value)

        annotated = []
        for position in positions:
            current_price = to_decimal(prices.get(position.asset_id) or position.entry_price)
            pnl, pnl_percent = calculate_pnl(
                position.entry_price,
                current_price,
                position.margin,
                position.leverage,
                position.direction
            )
            annotated.append(PositionWithPnl(
                **position.model_dump(),
                unrealized_pnl=pnl,
                unrealized_pnl_percent=pnl_percent,
                current_value=position.margin + pnl
            ))
        return annotated

    async def get_stats(self, owner_id: str, account_id: Optional[str] = None) -> MarginStats:
        positions = await self.ledger.list_positions(owner_id, account_id=account_id)

        open_positions = [p for p in positions if p.status == PositionStatus.OPEN]
        closed_positions = [p for p in positions if p.status != PositionStatus.OPEN]
        realized = [p.realized_pnl or ZERO for p in closed_positions]

        winning_trades = sum(1 for pnl in realized if pnl > 0)
        losing_trades = sum(1 for pnl in realized if pnl < 0)
        win_rate = (Decimal(winning_trades) / len(closed_positions) * 100) if closed_positions else ZERO

        return MarginStats(
            open_positions_count=len(open_positions),
            closed_positions_count=len(closed_positions),
            total_margin_used=sum((p.margin for p in open_positions), ZERO),
            total_realized_pnl=sum(realized, ZERO),
            winning_trades=winning_trades,
            losing_trades=losing_trades,
            win_rate=win_rate
        )

    async def get_transactions(self, owner_id: str, account_id: Optional[str] = None) -> List[TransactionRecord]:
        return await self.ledger.list_transactions(owner_id, account_id=account_id)

    def get_leverage_options(self) -> List[dict]:
        return [{"value": value, **LEVERAGE_DESCRIPTIONS[value]} for value in LEVERAGE_OPTIONS]

    def _parse_direction(self, direction) -> PositionDirection:
        try:
            return PositionDirection(direction)
        except ValueError:
            raise ValidationError(f"Invalid direction: {direction}")

    def _transaction_record(self, position, transaction_type, price, total_usd_value, created_at) -> TransactionRecord:
        return TransactionRecord(
            transaction_id=f"txn_{generate_id()}",
            owner_id=position.owner_id,
            account_id=position.account_id,
            type=transaction_type,
            position_id=position.position_id,
            asset_id=position.asset_id,
            asset_symbol=position.asset_symbol,
            quantity=position.quantity,
            price_at_time=price,
            total_usd_value=total_usd_value,
            created_at=created_at
        )
