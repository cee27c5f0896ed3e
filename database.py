"""
MongoDB access for the Sales Tracker.

One collection per record kind. The module keeps a single client for the
process; request handlers receive the database through :func:`get_db` so
tests can substitute an in-memory one.
"""
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Tuple, Union

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import AppConfig
from errors import NotFoundError, StoreUnavailableError
from logs import log
from schemas import Document

PRODUCTS = "products"
SALES = "sales"
LEAVES = "leaves"
USERS = "users"

client: Optional[MongoClient] = None
db: Optional[Database] = None


def connect(config: AppConfig) -> Database:
    """Open the process-wide client and verify the server answers."""
    global client, db
    try:
        client = MongoClient(config.database_url, serverSelectionTimeoutMS=5000)
        client.admin.command("ping")
    except PyMongoError as exc:
        raise StoreUnavailableError(f"Could not connect to MongoDB: {exc}") from exc
    db = client[config.database_name]
    log.info("Connected to MongoDB database '%s'", config.database_name)
    return db


def close() -> None:
    global client, db
    if client is not None:
        client.close()
    client = None
    db = None


def get_db() -> Database:
    if db is None:
        raise StoreUnavailableError("Database is not connected")
    return db


def ensure_indexes(database: Database) -> None:
    """Create the indexes the uniqueness rules depend on. Safe to re-run."""
    database[USERS].create_index("username", unique=True)
    database[USERS].create_index("salesmanId", unique=True, sparse=True)
    database[PRODUCTS].create_index("itemCode", unique=True, sparse=True)
    database[PRODUCTS].create_index("brand")
    database[SALES].create_index([("salesmanId", ASCENDING), ("date", DESCENDING)])
    database[SALES].create_index("brand")
    database[LEAVES].create_index([("salesmanId", ASCENDING), ("fromDate", ASCENDING)], unique=True)
    database[LEAVES].create_index([("fromDate", ASCENDING), ("toDate", ASCENDING)])
    database[LEAVES].create_index([("status", ASCENDING), ("salesmanId", ASCENDING)])


def to_str_id(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return doc
    if "_id" in doc:
        doc["_id"] = str(doc["_id"])
    return doc


def object_id(value: str, label: str = "Record") -> ObjectId:
    if not ObjectId.is_valid(value):
        raise NotFoundError(f"{label} not found")
    return ObjectId(value)


def stamp_document(data: Union[Document, dict]) -> dict:
    """Return the stored shape of ``data`` with creation timestamps set."""
    doc = data.to_document() if isinstance(data, Document) else dict(data)
    now = datetime.now(timezone.utc)
    doc.setdefault("createdAt", now)
    doc.setdefault("updatedAt", now)
    return doc


def create_document(database: Database, collection_name: str, data: Union[Document, dict]) -> dict:
    doc = stamp_document(data)
    database[collection_name].insert_one(doc)
    return to_str_id(doc)


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[dict] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
    limit: Optional[int] = None,
    projection: Optional[dict] = None,
) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [to_str_id(doc) for doc in cursor]


def insert_documents(database: Database, collection_name: str, docs: Iterable[Any]) -> int:
    """Insert a prepared batch; returns how many documents were written."""
    batch = [stamp_document(doc) for doc in docs]
    if not batch:
        return 0
    result = database[collection_name].insert_many(batch)
    return len(result.inserted_ids)
