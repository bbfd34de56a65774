"""
MongoDB access for the admin backend.

A Database owns one MongoClient and therefore one connection pool. It connects lazily on
first use and is closed when the application shuts down. The module level helpers are the
generic operation set every router goes through. They take a collection handle and let
driver errors (duplicate keys, malformed ids) propagate to the caller.
"""
import os
import logging
import threading
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from fastapi import Request
from pymongo import MongoClient, ReturnDocument, ASCENDING, DESCENDING, GEOSPHERE
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)


class NotFoundError(Exception):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message)
        self.message = message


class DatabaseUnavailable(Exception):
    pass


class Database:
    def __init__(self, url: Optional[str] = None, name: Optional[str] = None, client=None):
        self.url = url or os.getenv("DATABASE_URL") or os.getenv("MONGODB_URI")
        self.name = name or os.getenv("DATABASE_NAME") or "ecommerce"
        self._client = client
        self._owns_client = client is None
        self._db = None
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._db is not None

    def connect(self):
        if self._db is not None:
            return self._db
        with self._lock:
            if self._db is None:
                if self._client is None:
                    if not self.url:
                        raise DatabaseUnavailable("DATABASE_URL is not set")
                    self._client = MongoClient(self.url, serverSelectionTimeoutMS=5000, maxPoolSize=10)
                try:
                    if self._owns_client:
                        self._client.admin.command("ping")
                    db = self._client[self.name]
                    create_indexes(db)
                except PyMongoError as e:
                    logger.error("MongoDB connection failed: %s", e)
                    raise DatabaseUnavailable(str(e)) from e
                self._db = db
                logger.info("Connected to MongoDB database %s", self.name)
        return self._db

    def close(self):
        with self._lock:
            if self._client is not None and self._owns_client:
                self._client.close()
                self._client = None
            self._db = None

    def list_collection_names(self) -> List[str]:
        return self.connect().list_collection_names()

    def __getitem__(self, name: str) -> Collection:
        return self.connect()[name]


def create_indexes(db):
    db["product"].create_index("slug", unique=True)
    db["category"].create_index("slug", unique=True)
    db["subcategory"].create_index("slug", unique=True)
    db["subcategory"].create_index("parent_id")
    db["order"].create_index([("createdAt", DESCENDING)])
    db["rider"].create_index("phone", unique=True)
    db["rider"].create_index("email", unique=True, sparse=True)
    db["rider"].create_index([("location", GEOSPHERE)])
    db["pagecontent"].create_index("slug", unique=True)
    db["contactpage"].create_index("slug", unique=True)
    db["admin"].create_index("email", unique=True)
    db["passwordreset"].create_index([("email", ASCENDING), ("createdAt", DESCENDING)])
    db["passwordreset"].create_index("token")
    db["passwordreset"].create_index("expiresAt", expireAfterSeconds=0)


def get_db(request: Request) -> Database:
    database: Database = request.app.state.db
    database.connect()
    return database


# ---------------------- Generic operations ----------------------

def to_object_id(value: Union[str, ObjectId]) -> ObjectId:
    """Raises bson.errors.InvalidId for malformed ids."""
    if isinstance(value, ObjectId):
        return value
    return ObjectId(str(value))


def _projection(select):
    if select is None or isinstance(select, dict):
        return select
    projection = {}
    for field in select.split():
        if field.startswith("-"):
            projection[field[1:]] = 0
        else:
            projection[field] = 1
    return projection


def _as_update(update: Dict[str, Any]) -> Dict[str, Any]:
    if any(k.startswith("$") for k in update):
        return update
    return {"$set": update}


def find_all(
    collection: Collection,
    filter: Optional[dict] = None,
    select=None,
    sort: Optional[Dict[str, int]] = None,
    skip: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[dict]:
    cursor = collection.find(filter or {}, _projection(select))
    if sort:
        cursor = cursor.sort(list(sort.items()))
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def find_one(collection: Collection, filter: dict, select=None) -> Optional[dict]:
    return collection.find_one(filter, _projection(select))


def find_by_id(collection: Collection, id, select=None) -> Optional[dict]:
    return collection.find_one({"_id": to_object_id(id)}, _projection(select))


def insert_one(collection: Collection, data: dict) -> dict:
    doc = dict(data)
    res = collection.insert_one(doc)
    doc["_id"] = res.inserted_id
    return doc


def update_one(collection: Collection, filter: dict, update: dict, upsert: bool = False, select=None) -> Optional[dict]:
    return collection.find_one_and_update(
        filter,
        _as_update(update),
        projection=_projection(select),
        upsert=upsert,
        return_document=ReturnDocument.AFTER,
    )


def update_by_id(collection: Collection, id, update: dict, upsert: bool = False, select=None) -> Optional[dict]:
    return update_one(collection, {"_id": to_object_id(id)}, update, upsert=upsert, select=select)


def delete_one(collection: Collection, filter: dict) -> Optional[dict]:
    return collection.find_one_and_delete(filter)


def delete_by_id(collection: Collection, id) -> Optional[dict]:
    return delete_one(collection, {"_id": to_object_id(id)})


def count_documents(collection: Collection, filter: Optional[dict] = None) -> int:
    return collection.count_documents(filter or {})


def exists(collection: Collection, filter: dict) -> bool:
    return collection.find_one(filter, {"_id": 1}) is not None


def distinct(collection: Collection, field: str, filter: Optional[dict] = None) -> list:
    return collection.distinct(field, filter or {})


def update_many(collection: Collection, filter: dict, update: dict):
    return collection.update_many(filter, _as_update(update))


def require(doc: Optional[dict], message: str) -> dict:
    if doc is None:
        raise NotFoundError(message)
    return doc
