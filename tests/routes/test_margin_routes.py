import pytest
from decimal import Decimal
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from redis.exceptions import ConnectionError as RedisConnectionError

from papercoin.database.redis import RedisPriceCache
from papercoin.main import create_app

OPEN_BODY = {
    "owner_id": "user1",
    "asset_id": "bitcoin",
    "asset_symbol": "btc",
    "asset_name": "Bitcoin",
    "direction": "LONG",
    "margin": 100,
    "leverage": 10,
    "current_price": 50000
}

@pytest.fixture
def client(margin_service, portfolio, mock_price_cache):
    return TestClient(create_app(margin_service=margin_service, price_cache=mock_price_cache))

def open_position(client, **overrides):
    return client.post("/api/margin/open", json={**OPEN_BODY, **overrides})

def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "running"

def test_open_and_close(client):
    response = open_position(client)
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "success"
    assert body["position"]["asset_symbol"] == "BTC"
    assert body["position"]["liquidation_price"] == pytest.approx(47500)
    assert body["new_cash_balance"] == pytest.approx(900)

    response = client.post("/api/margin/close", json={
        "position_id": body["position"]["position_id"],
        "owner_id": "user1",
        "current_price": 55000
    })
    assert response.status_code == 200
    body = response.json()
    assert body["pnl"] == pytest.approx(100)
    assert body["margin_return"] == pytest.approx(200)
    assert body["new_cash_balance"] == pytest.approx(1100)
    assert body["position"]["status"] == "CLOSED"

@pytest.mark.parametrize("overrides, status_code, kind", [
    ({"leverage": 3}, 400, "InvalidLeverage"),
    ({"margin": 5}, 400, "MarginTooLow"),
    ({"margin": 5000}, 400, "InsufficientFunds"),
    ({"owner_id": "ghost"}, 404, "PortfolioNotFound"),
    ({"current_price": 0}, 400, "ValidationError"),
    ({"direction": "UP"}, 400, "ValidationError"),
    ({"current_price": "1234567890123456789012345678901234567890"}, 400, "ValidationError"),
])
def test_open_errors(client, overrides, status_code, kind):
    response = open_position(client, **overrides)
    assert response.status_code == status_code
    assert response.json()["kind"] == kind

def test_close_errors(client):
    position_id = open_position(client).json()["position"]["position_id"]

    response = client.post("/api/margin/close", json={"position_id": "nope", "owner_id": "user1", "current_price": 1})
    assert response.status_code == 404
    assert response.json()["kind"] == "PositionNotFound"

    response = client.post("/api/margin/close", json={"position_id": position_id, "owner_id": "user2", "current_price": 1})
    assert response.status_code == 403
    assert response.json()["kind"] == "Unauthorized"

    client.post("/api/margin/close", json={"position_id": position_id, "owner_id": "user1", "current_price": 50000})
    response = client.post("/api/margin/close", json={"position_id": position_id, "owner_id": "user1", "current_price": 50000})
    assert response.status_code == 400
    assert response.json()["kind"] == "AlreadyClosed"

def test_list_positions(client):
    open_position(client)
    open_position(client, asset_id="ethereum", asset_symbol="eth", current_price=3000)

    response = client.get("/api/margin/positions", params={"owner_id": "user1", "status": "OPEN"})
    assert response.status_code == 200
    assert response.json()["count"] == 2

    response = client.get("/api/margin/positions", params={"owner_id": "user1", "status": "CLOSED"})
    assert response.json()["count"] == 0

    response = client.get("/api/margin/positions", params={"owner_id": "user1", "status": "BOGUS"})
    assert response.status_code == 400

def test_live_positions_parse_prices_and_use_cache(client, mock_price_cache):
    open_position(client)
    open_position(client, asset_id="ethereum", asset_symbol="eth", current_price=3000)
    mock_price_cache.get_prices.return_value = {"ethereum": Decimal("3300")}

    response = client.get("/api/margin/positions/live", params={"owner_id": "user1", "prices": "bitcoin:55000"})

    assert response.status_code == 200
    positions = {p["asset_id"]: p for p in response.json()["positions"]}
    assert positions["bitcoin"]["unrealized_pnl"] == pytest.approx(100)
    assert positions["ethereum"]["unrealized_pnl"] == pytest.approx(100)
    assert positions["ethereum"]["current_value"] == pytest.approx(200)
    mock_price_cache.get_prices.assert_awaited_once_with(["ethereum"])

def test_live_positions_reject_bad_price(client):
    response = client.get("/api/margin/positions/live", params={"owner_id": "user1", "prices": "bitcoin:abc"})
    assert response.status_code == 400
    assert response.json()["kind"] == "ValidationError"

def test_check_liquidations(client, mock_price_cache):
    position_id = open_position(client).json()["position"]["position_id"]
    open_position(client, direction="SHORT")

    response = client.post("/api/margin/check-liquidations", json={"prices": {"bitcoin": 47000}})

    assert response.status_code == 200
    assert response.json()["liquidated_count"] == 1
    assert response.json()["liquidated_ids"] == [position_id]
    mock_price_cache.set_prices.assert_awaited_once()

    response = client.post("/api/margin/check-liquidations", json={"prices": {"bitcoin": -1}})
    assert response.status_code == 400

def test_stats_and_transactions(client):
    position_id = open_position(client).json()["position"]["position_id"]
    client.post("/api/margin/close", json={"position_id": position_id, "owner_id": "user1", "current_price": 55000})

    stats = client.get("/api/margin/stats", params={"owner_id": "user1"}).json()["stats"]
    assert stats["closed_positions_count"] == 1
    assert stats["winning_trades"] == 1
    assert stats["win_rate"] == pytest.approx(100)

    response = client.get("/api/margin/transactions", params={"owner_id": "user1"})
    assert [t["type"] for t in response.json()["transactions"]] == ["MARGIN_CLOSE", "MARGIN_OPEN"]

def test_leverage_options(client):
    options = client.get("/api/margin/leverage-options").json()["options"]
    assert [o["value"] for o in options] == [2, 5, 10]
    assert options[0] == {"value": 2, "label": "2x", "description": "Conservative - Liquidation at -50%", "risk": "Low"}

def test_owner_id_is_required(client):
    response = client.get("/api/margin/stats")
    assert response.status_code == 400

def test_startup_survives_unreachable_redis(monkeypatch):
    monkeypatch.setattr("papercoin.main.LEDGER_BACKEND", "memory")
    monkeypatch.setattr("papercoin.main.REDIS_HOST", "localhost")
    monkeypatch.setattr(RedisPriceCache, "_connect", AsyncMock(side_effect=RedisConnectionError("refused")))

    app = create_app()
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        assert app.state.price_cache is None
        assert app.state.margin_service is not None
