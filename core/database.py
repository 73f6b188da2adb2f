"""
MongoDB access.

A single MongoStore wraps the process-wide AsyncIOMotorClient. It is created
once during application startup and handed to request handlers through
dependency injection; requests only ever open sessions on it.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.read_preferences import ReadPreference
from pymongo.write_concern import WriteConcern

from core.config import Settings
from core.constants.main_values import (
    DEFAULT_READ_PREFERENCE,
    SERVER_SELECTION_TIMEOUT_MS,
)
from core.errors import InitializationError
from models.operations import TransactionOptions

logger = logging.getLogger("docgate.database")

READ_PREFERENCES = {
    "primary": ReadPreference.PRIMARY,
    "primaryPreferred": ReadPreference.PRIMARY_PREFERRED,
    "secondary": ReadPreference.SECONDARY,
    "secondaryPreferred": ReadPreference.SECONDARY_PREFERRED,
    "nearest": ReadPreference.NEAREST,
}

# Option names as JSON clients spell them -> PyMongo keyword arguments.
CURSOR_OPTION_NAMES = {
    "maxTimeMS": "max_time_ms",
    "batchSize": "batch_size",
    "allowDiskUse": "allow_disk_use",
    "noCursorTimeout": "no_cursor_timeout",
    "returnKey": "return_key",
    "showRecordId": "show_record_id",
}
WRITE_OPTION_NAMES = {
    "arrayFilters": "array_filters",
    "bypassDocumentValidation": "bypass_document_validation",
}
IGNORED_OPTIONS = {"session", "returnDocument", "return_document"}
KEY_LIST_OPTIONS = {"sort", "hint"}


def with_default_read_preference(url: str) -> str:
    """Add readPreference=secondaryPreferred unless the URL already picks one."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if any(key.lower() == "readpreference" for key, _ in query):
        return url

    query.append(("readPreference", DEFAULT_READ_PREFERENCE))
    return urlunsplit(parts._replace(path=parts.path or "/", query=urlencode(query)))


def key_list(keys: Any) -> Any:
    """Index keys and sort specs given as JSON objects become ordered pairs."""
    if isinstance(keys, Mapping):
        return list(keys.items())
    return keys


def driver_options(options: Mapping[str, Any] | None, names: Mapping[str, str] | None = None) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {}
    for key, value in (options or {}).items():
        if key in IGNORED_OPTIONS:
            continue
        name = (names or {}).get(key, key)
        if name in KEY_LIST_OPTIONS:
            value = key_list(value)
        kwargs[name] = value
    return kwargs


def transaction_kwargs(options: TransactionOptions) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {"read_preference": READ_PREFERENCES[options.read_preference]}
    if options.read_concern is not None:
        kwargs["read_concern"] = ReadConcern(options.read_concern.level)
    if options.write_concern is not None:
        kwargs["write_concern"] = WriteConcern(**options.write_concern.model_dump(exclude_none=True))
    if options.max_commit_time_ms is not None:
        kwargs["max_commit_time_ms"] = options.max_commit_time_ms
    return kwargs


class MongoStore:
    """
    Thin async facade over one MongoDB database.

    Every method that takes `session` runs inside that client session when
    one is given, which is how transaction batches stay atomic.
    """

    def __init__(self, client: AsyncIOMotorClient, db_name: str):
        self.client = client
        self.db = client[db_name]

    @classmethod
    async def connect(cls, settings: Settings) -> "MongoStore":
        if not settings.mongodb_url:
            raise InitializationError("MONGODB_URL is not set")
        if not settings.db_name:
            raise InitializationError("DB_NAME is not set")

        client = AsyncIOMotorClient(
            with_default_read_preference(settings.mongodb_url),
            serverSelectionTimeoutMS=SERVER_SELECTION_TIMEOUT_MS,
        )
        store = cls(client, settings.db_name)

        try:
            await store.ping()
        except PyMongoError as e:
            client.close()
            logger.error(f"Failed to connect to MongoDB (database={settings.db_name}): {e}")
            raise InitializationError("Failed to connect to MongoDB", db_name=settings.db_name) from e

        logger.info(f"Connected to MongoDB (database={settings.db_name})")
        return store

    async def ping(self) -> None:
        await self.db.command("ping")

    def close(self) -> None:
        self.client.close()

    @asynccontextmanager
    async def transaction(self, options: TransactionOptions) -> AsyncIterator[AsyncIOMotorClientSession]:
        """
        Open one session and one transaction around the caller's block.

        Leaving the block normally commits; any exception, including
        cancellation, aborts the transaction and ends the session.
        """
        async with await self.client.start_session() as session:
            async with session.start_transaction(**transaction_kwargs(options)):
                yield session

    def _primary(self, collection: str):
        """Read-your-own-writes view of `collection`, ignoring the client default."""
        return self.db[collection].with_options(read_preference=ReadPreference.PRIMARY)

    # --- Reads ---

    async def find(self, collection: str, filter: Dict[str, Any], options: Dict[str, Any] | None = None,
                   session: AsyncIOMotorClientSession | None = None) -> List[Dict[str, Any]]:
        cursor = self.db[collection].find(filter, session=session, **driver_options(options, CURSOR_OPTION_NAMES))
        return await cursor.to_list(length=None)

    async def find_one(self, collection: str, filter: Dict[str, Any], options: Dict[str, Any] | None = None,
                       session: AsyncIOMotorClientSession | None = None) -> Dict[str, Any] | None:
        return await self.db[collection].find_one(
            filter, session=session, **driver_options(options, CURSOR_OPTION_NAMES)
        )

    async def count(self, collection: str, filter: Dict[str, Any], options: Dict[str, Any] | None = None) -> int:
        return await self.db[collection].count_documents(filter, **driver_options(options))

    async def list_collection_names(self) -> List[str]:
        return await self.db.list_collection_names()

    # --- Writes ---

    async def insert_one(self, collection: str, document: Dict[str, Any], options: Dict[str, Any] | None = None,
                         session: AsyncIOMotorClientSession | None = None) -> Tuple[Any, Dict[str, Any] | None]:
        """Insert and read the stored document back, inside `session` if given."""
        coll = self.db[collection]
        result = await coll.insert_one(document, session=session, **driver_options(options, WRITE_OPTION_NAMES))
        stored = await self._primary(collection).find_one({"_id": result.inserted_id}, session=session)
        return result.inserted_id, stored

    async def insert_many(self, collection: str, documents: List[Dict[str, Any]],
                          options: Dict[str, Any] | None = None) -> Tuple[int, List[Dict[str, Any]]]:
        coll = self.db[collection]
        result = await coll.insert_many(documents, **driver_options(options, WRITE_OPTION_NAMES))
        stored = await self._primary(collection).find(
            {"_id": {"$in": result.inserted_ids}}
        ).to_list(length=None)
        return len(result.inserted_ids), stored

    async def find_one_and_update(self, collection: str, filter: Dict[str, Any], update: Any,
                                  options: Dict[str, Any] | None = None,
                                  session: AsyncIOMotorClientSession | None = None) -> Dict[str, Any] | None:
        """Apply `update` to the first match and return its post-image."""
        return await self.db[collection].find_one_and_update(
            filter,
            update,
            return_document=ReturnDocument.AFTER,
            session=session,
            **driver_options(options, WRITE_OPTION_NAMES),
        )

    async def update_many(self, collection: str, filter: Dict[str, Any], update: Any,
                          options: Dict[str, Any] | None = None) -> Tuple[int, List[Dict[str, Any]]]:
        # Ids are collected before the update and re-read after it. Concurrent
        # writers can make the returned set differ from what was modified.
        coll = self.db[collection]
        primary = self._primary(collection)
        ids = [doc["_id"] for doc in await primary.find(filter, {"_id": 1}).to_list(length=None)]
        result = await coll.update_many(filter, update, **driver_options(options, WRITE_OPTION_NAMES))
        updated = await primary.find({"_id": {"$in": ids}}).to_list(length=None)
        return result.modified_count, updated

    async def delete_one(self, collection: str, filter: Dict[str, Any], options: Dict[str, Any] | None = None,
                         session: AsyncIOMotorClientSession | None = None) -> int:
        result = await self.db[collection].delete_one(filter, session=session, **driver_options(options))
        return result.deleted_count

    async def delete_many(self, collection: str, filter: Dict[str, Any], options: Dict[str, Any] | None = None) -> int:
        result = await self.db[collection].delete_many(filter, **driver_options(options))
        return result.deleted_count

    # --- Indexes ---

    async def create_index(self, collection: str, keys: Any, options: Dict[str, Any] | None = None) -> str:
        return await self.db[collection].create_index(key_list(keys), **(options or {}))

    async def drop_index(self, collection: str, index: Any, options: Dict[str, Any] | None = None) -> bool:
        result = await self.db.command("dropIndexes", collection, index=index, **(options or {}))
        return bool(result.get("ok"))
