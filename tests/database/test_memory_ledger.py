import pytest
from decimal import Decimal

from papercoin.constants.positions import PositionStatus
from papercoin.models.position import PositionCloseFields
from papercoin.models.transaction import TransactionRecord
from papercoin.utils.datetime import get_utc_time
from papercoin.utils.errors import AlreadyClosed, InsufficientFunds

def make_record(position, transaction_type="MARGIN_OPEN", total="50"):
    return TransactionRecord(
        transaction_id=f"txn_{position.position_id}_{transaction_type}",
        owner_id=position.owner_id,
        type=transaction_type,
        position_id=position.position_id,
        asset_id=position.asset_id,
        asset_symbol=position.asset_symbol,
        quantity=position.quantity,
        price_at_time=position.entry_price,
        total_usd_value=Decimal(total),
        created_at=get_utc_time()
    )

def close_fields(status=PositionStatus.CLOSED):
    return PositionCloseFields(
        status=status,
        close_price=Decimal("110"),
        realized_pnl=Decimal("25"),
        closed_at=get_utc_time()
    )

@pytest.mark.asyncio
async def test_open_debits_and_records(ledger, portfolio, make_position):
    position = make_position()

    stored, balance = await ledger.atomic_open_position(position, portfolio.portfolio_id, Decimal("50"), make_record(position))

    assert stored.position_id == position.position_id
    assert balance == Decimal("950")
    assert (await ledger.find_position(position.position_id)).status == PositionStatus.OPEN
    assert len(ledger.transactions) == 1

@pytest.mark.asyncio
async def test_open_rolls_back_when_balance_short(ledger, portfolio, make_position):
    position = make_position(margin=Decimal("1500"))

    with pytest.raises(InsufficientFunds):
        await ledger.atomic_open_position(position, portfolio.portfolio_id, Decimal("1500"), make_record(position))

    assert await ledger.find_position(position.position_id) is None
    assert ledger.transactions == []
    assert (await ledger.find_portfolio(owner_id="user1")).cash_balance == Decimal("1000")

@pytest.mark.asyncio
async def test_second_close_is_rejected(ledger, portfolio, make_position):
    position = make_position()
    await ledger.atomic_open_position(position, portfolio.portfolio_id, Decimal("50"), make_record(position))

    _, balance = await ledger.atomic_close_position(
        position.position_id, close_fields(), portfolio.portfolio_id, Decimal("75"), make_record(position, "MARGIN_CLOSE")
    )
    assert balance == Decimal("1025")

    with pytest.raises(AlreadyClosed):
        await ledger.atomic_close_position(
            position.position_id, close_fields(), portfolio.portfolio_id, Decimal("75"), make_record(position, "MARGIN_CLOSE")
        )

    assert (await ledger.find_portfolio(owner_id="user1")).cash_balance == Decimal("1025")
    assert len(ledger.transactions) == 2

@pytest.mark.asyncio
async def test_failure_inside_unit_of_work_restores_state(ledger, portfolio, make_position):
    position = make_position()
    await ledger.atomic_open_position(position, portfolio.portfolio_id, Decimal("50"), make_record(position))

    with pytest.raises(RuntimeError):
        async with ledger.transaction():
            ledger._transition(position.position_id, close_fields())
            ledger._apply_balance_delta(portfolio.portfolio_id, Decimal("75"))
            raise RuntimeError("crash mid-write")

    assert (await ledger.find_position(position.position_id)).status == PositionStatus.OPEN
    assert (await ledger.find_portfolio(owner_id="user1")).cash_balance == Decimal("950")

@pytest.mark.asyncio
async def test_find_portfolio_by_account_or_owner(ledger, portfolio):
    account = ledger.add_portfolio("user1", Decimal("10"), account_id="acct1")

    assert (await ledger.find_portfolio(account_id="acct1")).portfolio_id == account.portfolio_id
    assert (await ledger.find_portfolio(owner_id="user1")).portfolio_id == portfolio.portfolio_id
    assert await ledger.find_portfolio(account_id="acct2") is None
    assert await ledger.find_portfolio() is None

@pytest.mark.asyncio
async def test_list_positions_filters(ledger, portfolio, make_position):
    mine = make_position()
    in_account = make_position(account_id="acct1")
    theirs = make_position(owner_id="user2")
    for position in (mine, in_account, theirs):
        ledger.positions[position.position_id] = position

    assert [p.position_id for p in await ledger.list_positions("user1")] == [in_account.position_id, mine.position_id]
    assert [p.position_id for p in await ledger.list_positions("user1", account_id="acct1")] == [in_account.position_id]
    assert await ledger.list_positions("user1", status="CLOSED") == []
    assert len(await ledger.list_open_positions()) == 3
