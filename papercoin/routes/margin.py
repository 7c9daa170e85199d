from typing import Optional
from fastapi import APIRouter, Query, Request

from papercoin.constants.positions import PositionFilter
from papercoin.models.requests import CheckLiquidationsRequest, ClosePositionRequest, OpenPositionRequest
from papercoin.services.margin_service import MarginService
from papercoin.utils.logging import logger
from papercoin.utils.prices import parse_price_map

router = APIRouter()

def _service(request: Request) -> MarginService:
    return request.app.state.margin_service

@router.post("/open", status_code=201)
async def open_position(request: Request, body: OpenPositionRequest):
    result = await _service(request).open_position(
        owner_id=body.owner_id,
        account_id=body.account_id,
        asset_id=body.asset_id,
        asset_symbol=body.asset_symbol,
        asset_name=body.asset_name,
        direction=body.direction,
        margin=body.margin,
        leverage=body.leverage,
        current_price=body.current_price
    )
    return {"status": "success", **result.model_dump()}

@router.post("/close")
async def close_position(request: Request, body: ClosePositionRequest):
    result = await _service(request).close_position(
        position_id=body.position_id,
        owner_id=body.owner_id,
        current_price=body.current_price
    )
    return {"status": "success", **result.model_dump()}

@router.get("/positions")
async def get_positions(
    request: Request,
    owner_id: str = Query(..., min_length=1),
    account_id: Optional[str] = Query(None),
    status: PositionFilter = Query(PositionFilter.ALL)
):
    positions = await _service(request).get_positions(owner_id, account_id=account_id, status=status.value)
    return {"status": "success", "positions": [p.model_dump() for p in positions], "count": len(positions)}

@router.get("/positions/live")
async def get_live_positions(
    request: Request,
    owner_id: str = Query(..., min_length=1),
    account_id: Optional[str] = Query(None),
    prices: Optional[str] = Query(None, description="assetId:price pairs, comma separated")
):
    service = _service(request)
    price_map = parse_price_map(prices)

    # Fill assets the caller did not price from the last prices we saw
    price_cache = request.app.state.price_cache
    if price_cache:
        open_positions = await service.get_positions(owner_id, account_id=account_id, status=PositionFilter.OPEN.value)
        missing = {p.asset_id for p in open_positions if p.asset_id not in price_map}
        if missing:
            cached = await price_cache.get_prices(sorted(missing))
            price_map = {**cached, **price_map}

    positions = await service.get_positions_with_pnl(owner_id, price_map, account_id=account_id)
    return {"status": "success", "positions": [p.model_dump() for p in positions], "count": len(positions)}

@router.post("/check-liquidations")
async def check_liquidations(request: Request, body: CheckLiquidationsRequest):
    logger.info(f"Received liquidation check for {len(body.prices)} assets")

    price_cache = request.app.state.price_cache
    if price_cache:
        await price_cache.set_prices(body.prices)

    result = await _service(request).check_liquidations(body.prices)
    return {"status": "success", **result.model_dump()}

@router.get("/stats")
async def get_stats(
    request: Request,
    owner_id: str = Query(..., min_length=1),
    account_id: Optional[str] = Query(None)
):
    stats = await _service(request).get_stats(owner_id, account_id=account_id)
    return {"status": "success", "stats": stats.model_dump()}

@router.get("/transactions")
async def get_transactions(
    request: Request,
    owner_id: str = Query(..., min_length=1),
    account_id: Optional[str] = Query(None)
):
    transactions = await _service(request).get_transactions(owner_id, account_id=account_id)
    return {"status": "success", "transactions": [t.model_dump() for t in transactions], "count": len(transactions)}

@router.get("/leverage-options")
async def get_leverage_options(request: Request):
    return {"status": "success", "options": _service(request).get_leverage_options()}
