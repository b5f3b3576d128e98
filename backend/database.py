"""
Database connection and datastore adapter

The credit ledger talks to MongoDB only through MongoDatastore, a small
document/key adapter:
- get / set(merge) / add by key
- query with equality filter, sort, limit and offset
- atomic_increment of a numeric field
- run_transaction(fn) for multi-document atomic units

One MongoDatastore is built at startup (see server.create_app) and passed
to every component. There is no module-level client.

NOTE: MongoDB transactions need a replica set (a single-node replica set
is enough for local development).
"""
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
import uuid
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from credit_ledger.errors import CreditsError, DatastoreUnavailable
from utils.environment import Settings

logger = logging.getLogger(__name__)

SortSpec = Sequence[Tuple[str, int]]


def validate_required_env_vars(settings: Settings):
    """
    Validate the datastore settings exist before the app starts.
    Raises ValueError with clear error message if required variables are missing.
    """
    required_vars = {
        "MONGO_URL": ("MongoDB connection string (e.g., mongodb://localhost:27017/?replicaSet=rs0)",
                      settings.mongo_url),
        "DB_NAME": ("Database name (e.g., travelmundo)", settings.db_name)
    }

    missing = [
        f"  - {var}: {description}"
        for var, (description, value) in required_vars.items()
        if not value
    ]

    if missing:
        error_msg = (
            "\n" + "=" * 60 + "\n"
            "CRITICAL: Missing required environment variables!\n"
            "=" * 60 + "\n"
            "The following environment variables must be set:\n\n"
            + "\n".join(missing) + "\n\n"
            "Please check your .env file or environment configuration.\n"
            + "=" * 60
        )
        raise ValueError(error_msg)


def _strip_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    doc = dict(doc)
    doc.pop("_id", None)
    return doc


class MongoTransaction:
    """Operations bound to one client session inside an open transaction."""

    def __init__(self, db, session):
        self.db = db
        self.session = session

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        doc = await self.db[collection].find_one({"_id": key}, session=self.session)
        return _strip_id(doc)

    async def set(self, collection: str, key: str, doc: Dict[str, Any], merge: bool = False):
        if merge:
            await self.db[collection].update_one(
                {"_id": key}, {"$set": doc}, upsert=True, session=self.session
            )
        else:
            await self.db[collection].replace_one(
                {"_id": key}, doc, upsert=True, session=self.session
            )

    async def add(self, collection: str, doc: Dict[str, Any], key: Optional[str] = None) -> str:
        key = key or uuid.uuid4().hex
        await self.db[collection].insert_one({**doc, "_id": key}, session=self.session)
        return key


class MongoDatastore:
    """Document datastore adapter over Motor."""

    def __init__(self, client: AsyncIOMotorClient, db_name: str):
        self.client = client
        self.db = client[db_name]
        self.db_name = db_name

    @classmethod
    def from_settings(cls, settings: Settings) -> "MongoDatastore":
        validate_required_env_vars(settings)
        try:
            client = AsyncIOMotorClient(
                settings.mongo_url,
                maxPoolSize=50,
                minPoolSize=10,
                connectTimeoutMS=5000,
                serverSelectionTimeoutMS=5000,
                retryWrites=True
            )
        except Exception as e:
            raise ValueError(f"Failed to create MongoDB client: {e}")
        return cls(client, settings.db_name)

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        try:
            doc = await self.db[collection].find_one({"_id": key})
        except PyMongoError as e:
            raise DatastoreUnavailable(f"Datastore read failed: {e}")
        return _strip_id(doc)

    async def set(self, collection: str, key: str, doc: Dict[str, Any], merge: bool = False):
        try:
            if merge:
                await self.db[collection].update_one({"_id": key}, {"$set": doc}, upsert=True)
            else:
                await self.db[collection].replace_one({"_id": key}, doc, upsert=True)
        except PyMongoError as e:
            raise DatastoreUnavailable(f"Datastore write failed: {e}")

    async def add(self, collection: str, doc: Dict[str, Any], key: Optional[str] = None) -> str:
        key = key or uuid.uuid4().hex
        try:
            await self.db[collection].insert_one({**doc, "_id": key})
        except PyMongoError as e:
            raise DatastoreUnavailable(f"Datastore write failed: {e}")
        return key

    async def query(
        self,
        collection: str,
        filter: Dict[str, Any],
        order_by: Optional[SortSpec] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        try:
            cursor = self.db[collection].find(filter)
            if order_by:
                cursor = cursor.sort(list(order_by))
            if offset:
                cursor = cursor.skip(offset)
            if limit:
                cursor = cursor.limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise DatastoreUnavailable(f"Datastore query failed: {e}")
        return [_strip_id(doc) for doc in docs]

    async def atomic_increment(self, collection: str, key: str, field: str, delta: int) -> int:
        """Increment a numeric field server-side, creating the document if needed."""
        try:
            doc = await self.db[collection].find_one_and_update(
                {"_id": key},
                {"$inc": {field: delta}},
                upsert=True,
                return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise DatastoreUnavailable(f"Datastore increment failed: {e}")
        return doc.get(field, 0)

    async def run_transaction(self, fn: Callable[[MongoTransaction], Awaitable[Any]]) -> Any:
        """
        Run fn inside a MongoDB transaction and return its result.

        fn may be invoked more than once: with_transaction retries the whole
        callback on transient errors such as write conflicts between two
        requests touching the same account. CreditsError raised by fn aborts
        the transaction and propagates unchanged.
        """
        async def callback(session):
            return await fn(MongoTransaction(self.db, session))

        try:
            async with await self.client.start_session() as session:
                return await session.with_transaction(callback)
        except CreditsError:
            raise
        except DuplicateKeyError as e:
            # Concurrent insert of the same key; the caller's retry will read it
            raise DatastoreUnavailable(f"Concurrent write conflict: {e}")
        except PyMongoError as e:
            logger.error(f"Transaction failed: {e}")
            raise DatastoreUnavailable(f"Datastore transaction failed: {e}")

    async def ping(self) -> Tuple[bool, Optional[str]]:
        """
        Test database connection health.

        Returns:
            Tuple[bool, Optional[str]]: (success, error_message)
        """
        try:
            await self.client.admin.command('ping')
            await self.db.list_collection_names()
            logger.info(f"Database connected successfully: {self.db_name}")
            return True, None
        except Exception as e:
            error_msg = f"Database connection failed: {e}"
            logger.error(error_msg)
            return False, error_msg

    def close(self):
        self.client.close()
