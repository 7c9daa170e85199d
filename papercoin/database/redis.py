import asyncio
import json
import time
from decimal import Decimal
from typing import Dict, Iterable

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError, RedisError, TimeoutError as RedisTimeoutError

from papercoin.constants.redis import HashSets
from papercoin.utils.logging import logger

redis_logger = logger.bind(name="redis")

class RedisPriceCache:
    """
    Last-seen asset prices.

    Written whenever a caller pushes a price map (the liquidation check) and
    read back to fill gaps in a live P&L request. Entries older than ``ttl``
    seconds are ignored. The cache is best effort: Redis failures are logged
    and treated as a miss.
    """

    def __init__(self, redis_host, redis_port, redis_password, redis_db, ttl=60, max_retries=5):
        self.ttl = ttl
        self.max_retries = max_retries
        self.client = None  # Will be initialized in connect
        self.redis_params = {
            "host": redis_host,
            "port": redis_port,
            "password": redis_password,
            "db": redis_db,
            "decode_responses": True
        }

    async def _connect(self):
        retries = 0
        while retries < self.max_retries:
            try:
                if not self.client:
                    self.client = Redis(**self.redis_params)
                await self.client.ping()
                redis_logger.info("Connected to Redis!!!")
                return
            except (RedisConnectionError, RedisTimeoutError, OSError):
                retries += 1
                redis_logger.info(f"Attempt {retries} to reconnect...")
                await asyncio.sleep(retries * 0.5)
        raise RedisConnectionError("Too many retries connecting to Redis")

    async def set_prices(self, prices: Dict[str, Decimal]):
        if not prices:
            return
        now = time.time()
        mapping = {
            asset_id: json.dumps({"price": str(price), "updated_at": now})
            for asset_id, price in prices.items()
        }
        try:
            await self.client.hset(HashSets.PRICES.value, mapping=mapping)
            redis_logger.debug(f"Cached prices for {len(mapping)} assets")
        except RedisError as e:
            redis_logger.error(f"Error caching prices: {e}")

    async def get_prices(self, asset_ids: Iterable[str]) -> Dict[str, Decimal]:
        asset_ids = list(asset_ids)
        if not asset_ids:
            return {}
        try:
            values = await self.client.hmget(HashSets.PRICES.value, asset_ids)
        except RedisError as e:
            redis_logger.error(f"Error reading cached prices: {e}")
            return {}

        now = time.time()
        prices = {}
        for asset_id, raw in zip(asset_ids, values):
            if not raw:
                continue
            try:
                entry = json.loads(raw)
                if now - entry["updated_at"] > self.ttl:
                    continue
                price = Decimal(entry["price"])
            except (ValueError, KeyError, TypeError, ArithmeticError) as e:
                redis_logger.warning(f"Skipping unreadable cached price for {asset_id}: {e}")
                continue
            if not price.is_finite() or price <= 0:
                redis_logger.warning(f"Skipping invalid cached price for {asset_id}: {price}")
                continue
            prices[asset_id] = price
        return prices

    async def _disconnect(self):
        """Disconnect from Redis"""
        if self.client:
            await self.client.aclose()
            redis_logger.info("Disconnected from Redis")
