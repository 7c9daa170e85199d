import asyncio
import functools
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import ConnectionFailure, PyMongoError

from papercoin.constants.collections import Collections
from papercoin.constants.positions import PositionStatus
from papercoin.database.ledger import PositionLedger
from papercoin.models.documents import to_bson, to_decimal128
from papercoin.models.position import Position, PositionCloseFields
from papercoin.models.portfolio import Portfolio
from papercoin.models.transaction import TransactionRecord
from papercoin.utils.errors import AlreadyClosed, InsufficientFunds, PortfolioNotFound, StorageError
from papercoin.utils.logging import logger

mongo_logger = logger.bind(name="mongodb")

# Attempts per atomic operation before a write conflict is reported
MAX_TRANSACTION_ATTEMPTS = 5

class AsyncMongoDBClient:
    def __init__(self, uri, db_name, max_retries=20):
        self.db_name = db_name
        self.max_retries = max_retries
        self.client = AsyncIOMotorClient(uri)
        self._is_connected = False

    async def ensure_connected(self):
        if not self._is_connected:
            await self._connect()
            self._is_connected = True

    async def _connect(self):
        retries = 0
        while retries < self.max_retries:
            try:
                await self.client.admin.command('ping')
                mongo_logger.success("Connected to MongoDB!!!")
                return
            except ConnectionFailure:
                retries += 1
                mongo_logger.warning(f"Attempt {retries} to reconnect...")
                await asyncio.sleep(retries * 0.5)
        raise StorageError("Too many retries connecting to MongoDB")

    async def get_database(self) -> AsyncIOMotorDatabase:
        await self.ensure_connected()
        return self.client[self.db_name]

    def close(self):
        self.client.close()
        mongo_logger.info("Disconnected from MongoDB")


class TransactionConflict(StorageError):
    """Transaction aborted by the server with a TransientTransactionError label"""


def storage_errors(func):
    """Surface driver failures as StorageError"""
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except PyMongoError as e:
            mongo_logger.error(f"{func.__name__} failed: {e}")
            raise StorageError(f"Storage failure in {func.__name__}") from e
    return wrapper


class MongoPositionLedger(PositionLedger):
    """
    Ledger on MongoDB. Atomic operations run in a multi-document
    transaction, so the server has to be a replica set.
    """

    def __init__(self, client: AsyncIOMotorClient, db: AsyncIOMotorDatabase):
        self.client = client
        self.positions = db[Collections.POSITIONS.value]
        self.portfolios = db[Collections.PORTFOLIOS.value]
        self.transactions = db[Collections.TRANSACTIONS.value]

    @classmethod
    async def connect(cls, mongo_client: AsyncMongoDBClient) -> "MongoPositionLedger":
        db = await mongo_client.get_database()
        ledger = cls(mongo_client.client, db)
        await ledger.ensure_indexes()
        return ledger

    @storage_errors
    async def ensure_indexes(self):
        await self.positions.create_index([("owner_id", ASCENDING), ("created_at", DESCENDING)])
        await self.positions.create_index([("status", ASCENDING)])
        await self.portfolios.create_index([("owner_id", ASCENDING), ("account_id", ASCENDING)])
        await self.transactions.create_index([("owner_id", ASCENDING), ("created_at", DESCENDING)])
        mongo_logger.info("Ledger indexes ensured")

    @asynccontextmanager
    async def transaction(self):
        try:
            async with await self.client.start_session() as session:
                async with session.start_transaction():
                    yield session
        except PyMongoError as e:
            if e.has_error_label("TransientTransactionError"):
                raise TransactionConflict("Ledger transaction conflicted with a concurrent write") from e
            mongo_logger.error(f"Transaction aborted: {e}")
            raise StorageError("Ledger transaction failed") from e

    async def _run_transaction(self, unit_of_work):
        """
        Run ``unit_of_work(session)`` in a transaction, starting over when the
        server aborts it for a write conflict. A retried close sees the
        position already moved out of OPEN and raises AlreadyClosed.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                async with self.transaction() as session:
                    return await unit_of_work(session)
            except TransactionConflict:
                if attempt >= MAX_TRANSACTION_ATTEMPTS:
                    mongo_logger.error(f"Transaction still conflicting after {attempt} attempts")
                    raise
                mongo_logger.warning(f"Write conflict, retrying transaction (attempt {attempt})")
                await asyncio.sleep(attempt * 0.05)

    @storage_errors
    async def find_position(self, position_id: str) -> Optional[Position]:
        document = await self.positions.find_one({"_id": position_id})
        return Position.from_document(document) if document else None

    @storage_errors
    async def find_portfolio(self, account_id: Optional[str] = None, owner_id: Optional[str] = None) -> Optional[Portfolio]:
        if account_id:
            query = {"account_id": account_id}
        elif owner_id:
            # Legacy single-portfolio mode
            query = {"owner_id": owner_id, "account_id": None}
        else:
            return None
        document = await self.portfolios.find_one(query)
        return Portfolio.from_document(document) if document else None

    @storage_errors
    async def list_positions(self, owner_id: str, account_id: Optional[str] = None, status: Optional[str] = None) -> List[Position]:
        query = {"owner_id": owner_id}
        if account_id:
            query["account_id"] = account_id
        if status:
            query["status"] = status
        documents = await self.positions.find(query).sort("created_at", DESCENDING).to_list(length=None)
        return [Position.from_document(d) for d in documents]

    @storage_errors
    async def list_open_positions(self) -> List[Position]:
        documents = await self.positions.find({"status": PositionStatus.OPEN.value}).to_list(length=None)
        return [Position.from_document(d) for d in documents]

    async def atomic_open_position(self, position, portfolio_id, margin_delta, record) -> Tuple[Position, Decimal]:
        async def open_in(session):
            # Guarded $inc so concurrent opens cannot overdraw the balance
            portfolio = await self.portfolios.find_one_and_update(
                {
                    "_id": portfolio_id,
                    "cash_balance": {"$gte": to_decimal128("margin", margin_delta)}
                },
                {"$inc": {"cash_balance": to_decimal128("margin", -margin_delta)}},
                return_document=ReturnDocument.AFTER,
                session=session
            )
            if not portfolio:
                mongo_logger.warning(f"Failed to debit {margin_delta} from portfolio {portfolio_id}")
                raise InsufficientFunds("Insufficient funds for margin")

            await self.positions.insert_one(position.to_document(), session=session)
            await self.transactions.insert_one(record.to_document(), session=session)
            return portfolio["cash_balance"].to_decimal()

        new_balance = await self._run_transaction(open_in)
        mongo_logger.info(f"Opened position {position.position_id} on portfolio {portfolio_id}")
        return position, new_balance

    async def _transition(self, position_id, close_fields, session) -> Position:
        document = await self.positions.find_one_and_update(
            {"_id": position_id, "status": PositionStatus.OPEN.value},
            {"$set": to_bson(close_fields.model_dump())},
            return_document=ReturnDocument.AFTER,
            session=session
        )
        if not document:
            raise AlreadyClosed("Position is already closed")
        return Position.from_document(document)

    async def atomic_close_position(self, position_id, close_fields, portfolio_id, balance_delta, record) -> Tuple[Position, Decimal]:
        async def close_in(session):
            position = await self._transition(position_id, close_fields, session)

            portfolio = await self.portfolios.find_one_and_update(
                {"_id": portfolio_id},
                {"$inc": {"cash_balance": to_decimal128("margin_return", balance_delta)}},
                return_document=ReturnDocument.AFTER,
                session=session
            )
            if not portfolio:
                raise PortfolioNotFound(f"Portfolio {portfolio_id} not found")

            await self.transactions.insert_one(record.to_document(), session=session)
            return position, portfolio["cash_balance"].to_decimal()

        position, new_balance = await self._run_transaction(close_in)
        mongo_logger.info(f"Closed position {position_id}, credited {balance_delta} to portfolio {portfolio_id}")
        return position, new_balance

    async def atomic_liquidate_position(self, position_id, close_fields, record) -> Position:
        async def liquidate_in(session):
            position = await self._transition(position_id, close_fields, session)
            await self.transactions.insert_one(record.to_document(), session=session)
            return position

        position = await self._run_transaction(liquidate_in)
        mongo_logger.info(f"Liquidated position {position_id}")
        return position

    @storage_errors
    async def list_transactions(self, owner_id: str, account_id: Optional[str] = None) -> List[TransactionRecord]:
        query = {"owner_id": owner_id}
        if account_id:
            query["account_id"] = account_id
        documents = await self.transactions.find(query).sort("created_at", DESCENDING).to_list(length=None)
        return [TransactionRecord.from_document(d) for d in documents]
