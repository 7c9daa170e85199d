import pytest
from decimal import Decimal
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from papercoin.database.memory import InMemoryPositionLedger
from papercoin.database.redis import RedisPriceCache
from papercoin.models.position import Position
from papercoin.services.margin_service import MarginService
from papercoin.utils.datetime import get_utc_time

@pytest.fixture
def ledger():
    return InMemoryPositionLedger()

@pytest.fixture
def portfolio(ledger):
    return ledger.add_portfolio("user1", Decimal("1000"))

@pytest.fixture
def margin_service(ledger):
    return MarginService(ledger=ledger)

@pytest.fixture
def mock_price_cache():
    price_cache = MagicMock(spec=RedisPriceCache)
    price_cache._connect = AsyncMock()
    price_cache.set_prices = AsyncMock()
    price_cache.get_prices = AsyncMock(return_value={})
    return price_cache

@pytest.fixture
def make_position():
    """Build an OPEN position directly, bypassing the service"""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "position_id": f"pos_{counter['n']}",
            "owner_id": "user1",
            "asset_id": "bitcoin",
            "asset_symbol": "BTC",
            "asset_name": "Bitcoin",
            "direction": "LONG",
            "leverage": 5,
            "entry_price": Decimal("100"),
            "quantity": Decimal("2.5"),
            "margin": Decimal("50"),
            "liquidation_price": Decimal("85"),
            "created_at": get_utc_time() + timedelta(seconds=counter["n"]),
        }
        data.update(overrides)
        return Position(**data)

    return _make
