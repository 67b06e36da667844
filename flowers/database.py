import logging
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from .config import Settings, settings as default_settings
from .document_store import (
    DocumentStore,
    InMemoryDocumentStore,
    split_collection_path,
    split_document_path,
)
from .errors import DocumentNotFoundError, RemoteStoreError

logger = logging.getLogger(__name__)

PARENT_FIELD = "_parent"


def _mongo_location(collection_path: str):
    """Mongo collection name and parent id for a slash collection path."""
    names, parent_id = split_collection_path(collection_path)
    return ".".join(names), parent_id


def _mongo_id(parent_id: Optional[str], doc_id: str) -> str:
    # Sub-collection documents share one Mongo collection, so prefix the parent
    return f"{parent_id}/{doc_id}" if parent_id else doc_id


def _strip_internal(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc.pop("_id", None)
    doc.pop(PARENT_FIELD, None)
    return doc


class MongoDocumentStore(DocumentStore):
    """Document store on MongoDB through motor"""

    def __init__(self, client: AsyncIOMotorClient, database_name: str):
        self.client = client
        self.db = client[database_name]

    def _locate(self, path: str):
        collection_path, doc_id = split_document_path(path)
        name, parent_id = _mongo_location(collection_path)
        return self.db[name], {"_id": _mongo_id(parent_id, doc_id)}, parent_id

    async def get(self, path: str) -> Optional[Dict[str, Any]]:
        collection, selector, _ = self._locate(path)
        try:
            doc = await collection.find_one(selector)
        except PyMongoError as e:
            raise RemoteStoreError(f"get {path}", e) from e
        return _strip_internal(doc) if doc is not None else None

    async def set(self, path: str, data: Dict[str, Any]):
        collection, selector, parent_id = self._locate(path)
        doc = dict(data)
        doc["_id"] = selector["_id"]
        if parent_id:
            doc[PARENT_FIELD] = parent_id
        try:
            await collection.replace_one(selector, doc, upsert=True)
        except PyMongoError as e:
            raise RemoteStoreError(f"set {path}", e) from e

    async def update(self, path: str, fields: Dict[str, Any]):
        collection, selector, _ = self._locate(path)
        try:
            result = await collection.update_one(selector, {"$set": fields})
        except PyMongoError as e:
            raise RemoteStoreError(f"update {path}", e) from e
        if result.matched_count == 0:
            raise DocumentNotFoundError(path)

    async def query(self, collection_path: str, order_by: Optional[str] = None,
                    descending: bool = False, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        name, parent_id = _mongo_location(collection_path)
        selector = {PARENT_FIELD: parent_id} if parent_id else {}
        try:
            cursor = self.db[name].find(selector)
            if order_by:
                cursor = cursor.sort(order_by, -1 if descending else 1)
            if limit is not None:
                cursor = cursor.limit(limit)
            docs = await cursor.to_list(length=limit)
        except PyMongoError as e:
            raise RemoteStoreError(f"query {collection_path}", e) from e
        return [_strip_internal(doc) for doc in docs]

    async def ping(self) -> bool:
        try:
            await self.client.admin.command("ping")
            return True
        except PyMongoError as e:
            logger.warning(f"MongoDB ping failed: {e}")
            return False

    async def close(self):
        self.client.close()
        logger.debug("MongoDB connection closed")


def connect_mongo(config: Settings) -> MongoDocumentStore:
    """Create the motor client. Connection is lazy; the first call dials."""
    client = AsyncIOMotorClient(
        config.MONGODB_URI,
        serverSelectionTimeoutMS=5000,
        connectTimeoutMS=5000,
        socketTimeoutMS=int(config.REQUEST_TIMEOUT_SECONDS * 1000),
    )
    logger.info(f"Using MongoDB at {config.safe_mongodb_host}, database '{config.MONGO_DB}'")
    return MongoDocumentStore(client, config.MONGO_DB)


def create_document_store(config: Optional[Settings] = None) -> DocumentStore:
    """Build the document store selected by ``STORE_BACKEND``"""
    config = config or default_settings

    if config.STORE_BACKEND == "memory":
        logger.warning("Using in-memory document store - data is not shared or kept")
        return InMemoryDocumentStore()

    if config.STORE_BACKEND == "firestore":
        from .firestore_rest import FirestoreRestStore
        return FirestoreRestStore.from_settings(config)

    return connect_mongo(config)
