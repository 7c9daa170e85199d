import sys
import logging
from typing import Optional

import uvicorn
from loguru import logger
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from redis.exceptions import RedisError

from papercoin.config import (
    PORT,
    LOG_LEVEL,
    LOG_FILE,
    LEDGER_BACKEND,
    MONGO_URI,
    MONGO_DB,
    REDIS_HOST,
    REDIS_PORT,
    REDIS_PASSWORD,
    REDIS_DB,
    PRICE_CACHE_TTL
)
from papercoin.database.memory import InMemoryPositionLedger
from papercoin.database.mongodb import AsyncMongoDBClient, MongoPositionLedger
from papercoin.database.redis import RedisPriceCache
from papercoin.routes.margin import router as margin_router
from papercoin.services.margin_service import MarginService
from papercoin.utils.datetime import get_utc_time
from papercoin.utils.errors import ErrorKind, MarginError

logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=LOG_LEVEL,
    colorize=True
)
logger.add(
    LOG_FILE,
    rotation="500 MB",  # Rotate when file reaches 500MB
    retention="10 days",  # Keep logs for 10 days
    compression="zip",  # Compress rotated logs
    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
    level=LOG_LEVEL
)

# Intercept uvicorn's default logger
class InterceptHandler(logging.Handler):
    def emit(self, record):
        # Get corresponding Loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())

# Setup intercept handler for uvicorn
logging.getLogger("uvicorn").handlers = [InterceptHandler()]
logging.getLogger("uvicorn.access").handlers = [InterceptHandler()]

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Services injected by create_app are owned by the caller
    if app.state.margin_service is not None:
        yield
        return

    mongo_client: Optional[AsyncMongoDBClient] = None
    price_cache: Optional[RedisPriceCache] = None
    try:
        if LEDGER_BACKEND == "memory":
            logger.warning("Using in-memory ledger, positions will not survive a restart")
            ledger = InMemoryPositionLedger()
        else:
            mongo_client = AsyncMongoDBClient(MONGO_URI, MONGO_DB)
            ledger = await MongoPositionLedger.connect(mongo_client)

        if REDIS_HOST:
            price_cache = RedisPriceCache(
                redis_host=REDIS_HOST,
                redis_port=REDIS_PORT,
                redis_password=REDIS_PASSWORD,
                redis_db=REDIS_DB,
                ttl=PRICE_CACHE_TTL
            )
            try:
                await price_cache._connect()
            except (RedisError, OSError) as e:
                logger.warning(f"Redis unavailable, continuing without price cache: {e}")
                price_cache = None

        app.state.margin_service = MarginService(ledger=ledger)
        app.state.price_cache = price_cache
        logger.success(f"Margin service ready with {LEDGER_BACKEND} ledger")

        yield
    finally:
        logger.warning("Shutting down services...")
        if price_cache:
            await price_cache._disconnect()
        if mongo_client:
            mongo_client.close()
        app.state.margin_service = None
        logger.success("Shutdown complete")

async def margin_error_handler(request: Request, exc: MarginError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected ({exc.kind.value}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "status": "error",
            "kind": ErrorKind.VALIDATION_ERROR.value,
            "message": "Validation failed",
            "details": jsonable_encoder(exc.errors())
        }
    )

def create_app(margin_service: Optional[MarginService] = None, price_cache: Optional[RedisPriceCache] = None) -> FastAPI:
    app = FastAPI(lifespan=lifespan, title="papercoin")
    app.state.margin_service = margin_service
    app.state.price_cache = price_cache

    app.add_exception_handler(MarginError, margin_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(margin_router, prefix="/api/margin")

    @app.get("/health")
    def health_check():
        return {"status": "running", "message": "papercoin margin engine is running", "datetime": get_utc_time()}

    return app

app = create_app()

def main():
    logger.info(f"Starting FastAPI server on port {PORT}")
    uvicorn.run(app, host="0.0.0.0", port=PORT, log_level="info")

if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        logger.error("Received keyboard interrupt in main thread")
