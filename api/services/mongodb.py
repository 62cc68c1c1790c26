# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB service layer with connection pooling, soft delete and versioned writes.
"""

import os
import re
import logging
from typing import List, Dict, Optional, Any
from pymongo import MongoClient, ASCENDING, DESCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    DuplicateKeyError
)
from pydantic import BaseModel

from models.base import utcnow
from domain.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)


def _to_camel(name: str) -> str:
    head, *tail = name.split("_")
    return head + "".join(part.title() for part in tail)


def _to_snake(name: str) -> str:
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def _convert_keys(value: Any, convert) -> Any:
    if isinstance(value, dict):
        return {convert(k) if k != "_id" else k: _convert_keys(v, convert) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_convert_keys(v, convert) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_convert_keys(v, convert) for v in value)
    return value


def to_document(model: BaseModel) -> Dict[str, Any]:
    """Serialize a model to a camelCase MongoDB document keyed by ``_id``."""
    data = model.model_dump()
    document = _convert_keys(data, _to_camel)
    document["_id"] = document.pop("id")
    return document


def from_document(document: Dict[str, Any]) -> Dict[str, Any]:
    """Turn a stored camelCase document back into model field names."""
    data = dict(document)
    if "_id" in data:
        data["id"] = str(data.pop("_id"))
    return _convert_keys(data, _to_snake)


class PaginationResult:
    """Result container for paginated queries."""

    def __init__(self, items: List[Dict], total: int, page: int, page_size: int):
        self.items = items
        self.total = total
        self.page = page
        self.page_size = page_size
        self.total_pages = (total + page_size - 1) // page_size
        self.has_next = page < self.total_pages
        self.has_prev = page > 1


class MongoDBService:
    """MongoDB service with connection pooling and soft-delete aware queries."""

    def __init__(self, connection_string: str = None, database_name: str = None):
        """Initialize MongoDB service with connection pooling."""
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/welfare_dev'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'welfare_dev')
        self._client: Optional[MongoClient] = None
        self._database: Optional[Database] = None

        # Connection pool settings
        self.max_pool_size = int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = int(os.getenv('MONGODB_MIN_POOL_SIZE', '1'))
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000'))

        logger.info(f"MongoDB service initialized for database: {self.database_name}")

    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    retryWrites=True,
                    retryReads=True,
                    tz_aware=True
                )
                # Test connection
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                raise

        return self._client

    @property
    def database(self) -> Database:
        """Get MongoDB database."""
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        """Get MongoDB collection."""
        return self.database[collection_name]

    def close_connection(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")

    def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            result = self.client.admin.command('ping')
            server_info = self.client.server_info()

            return {
                'status': 'healthy',
                'ping': result.get('ok') == 1,
                'version': server_info.get('version'),
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'error': str(e),
                'database': self.database_name
            }

    def _build_query(self, filters: Dict = None, include_deleted: bool = False) -> Dict:
        """Build a query that skips soft-deleted records unless asked not to."""
        query = {}

        if not include_deleted:
            query["deletedAt"] = None

        if filters:
            query.update(filters)

        return query

    def _add_timestamps(self, document: Dict, user_id: str, is_update: bool = False) -> Dict:
        """Add creation and update timestamps to document."""
        now = utcnow()

        if not is_update:
            document.setdefault("createdAt", now)
            document.setdefault("createdBy", user_id)

        document["updatedAt"] = now
        document["updatedBy"] = user_id

        return document

    # CRUD Operations

    def create(self, collection: str, document: Dict, user_id: str) -> str:
        """Insert a new document; ``_id`` must already be set."""
        try:
            document = self._add_timestamps(document, user_id)

            collection_obj = self.get_collection(collection)
            result = collection_obj.insert_one(document)

            logger.info(f"Created document in {collection}: {result.inserted_id}")
            return str(result.inserted_id)

        except DuplicateKeyError as e:
            logger.error(f"Duplicate key error in {collection}: {e}")
            raise ValueError("Document with this identifier already exists")
        except Exception as e:
            logger.error(f"Failed to create document in {collection}: {e}")
            raise

    def upsert(self, collection: str, document: Dict, user_id: str) -> str:
        """Replace a document by ``_id``, inserting it when absent."""
        try:
            document = self._add_timestamps(document, user_id, is_update=True)
            collection_obj = self.get_collection(collection)
            collection_obj.replace_one({"_id": document["_id"]}, document, upsert=True)

            logger.debug(f"Upserted document {document['_id']} in {collection}")
            return str(document["_id"])

        except Exception as e:
            logger.error(f"Failed to upsert document in {collection}: {e}")
            raise

    def find(self, collection: str, filters: Dict = None, include_deleted: bool = False) -> List[Dict]:
        """Find documents with optional filters."""
        try:
            query = self._build_query(filters, include_deleted)
            collection_obj = self.get_collection(collection)

            documents = list(collection_obj.find(query))

            logger.debug(f"Found {len(documents)} documents in {collection}")
            return documents

        except Exception as e:
            logger.error(f"Failed to find documents in {collection}: {e}")
            raise

    def find_one(self, collection: str, doc_id: str, include_deleted: bool = False) -> Optional[Dict]:
        """Find a single document by ID."""
        try:
            query = self._build_query({"_id": doc_id}, include_deleted)

            collection_obj = self.get_collection(collection)
            document = collection_obj.find_one(query)

            if document:
                logger.debug(f"Found document {doc_id} in {collection}")
            else:
                logger.debug(f"Document {doc_id} not found in {collection}")

            return document

        except Exception as e:
            logger.error(f"Failed to find document {doc_id} in {collection}: {e}")
            raise

    def compare_and_swap(self, collection: str, document: Dict, expected_version: int, user_id: str) -> None:
        """
        Replace a document only if its stored ``version`` still equals ``expected_version``.

        Raises:
            ConcurrencyConflict: If another writer got there first
        """
        doc_id = document["_id"]
        try:
            document = self._add_timestamps(document, user_id, is_update=True)
            collection_obj = self.get_collection(collection)
            result = collection_obj.replace_one(
                {"_id": doc_id, "version": expected_version, "deletedAt": None},
                document
            )
        except Exception as e:
            logger.error(f"Failed to write document {doc_id} in {collection}: {e}")
            raise

        if result.matched_count == 0:
            logger.warning(
                "Versioned write lost the race",
                extra={"collection": collection, "document_id": doc_id, "expected_version": expected_version}
            )
            raise ConcurrencyConflict(doc_id, expected_version)

        logger.debug(f"Versioned write of {doc_id} in {collection} (was version {expected_version})")

    def paginate(self, collection: str, page: int = 1, page_size: int = 20,
                 filters: Dict = None, sort_by: str = "createdAt", sort_order: int = -1,
                 include_deleted: bool = False) -> PaginationResult:
        """Paginate documents with sorting and filtering."""
        try:
            query = self._build_query(filters, include_deleted)
            collection_obj = self.get_collection(collection)

            skip = (page - 1) * page_size
            total = collection_obj.count_documents(query)
            cursor = collection_obj.find(query).sort(sort_by, sort_order).skip(skip).limit(page_size)
            documents = list(cursor)

            logger.debug(f"Paginated {len(documents)} documents from {collection} (page {page})")
            return PaginationResult(documents, total, page, page_size)

        except Exception as e:
            logger.error(f"Failed to paginate documents in {collection}: {e}")
            raise

    def next_sequence(self, name: str) -> int:
        """Atomically increment and return a named counter."""
        try:
            counter = self.get_collection("counters").find_one_and_update(
                {"_id": name},
                {"$inc": {"seq": 1}},
                upsert=True,
                return_document=ReturnDocument.AFTER
            )
            return counter["seq"]
        except Exception as e:
            logger.error(f"Failed to increment counter {name}: {e}")
            raise

    # Index Management

    def create_indexes(self) -> None:
        """Create performance indexes for all collections."""
        try:
            logger.info("Creating MongoDB indexes...")

            regions = self.get_collection("regions")
            regions.create_index([("parentId", ASCENDING), ("code", ASCENDING)], unique=True)
            regions.create_index([("level", ASCENDING), ("deletedAt", ASCENDING)])

            roles = self.get_collection("roles")
            roles.create_index("name", unique=True)
            roles.create_index("deletedAt")

            bindings = self.get_collection("user_role_bindings")
            bindings.create_index([("userId", ASCENDING), ("isActive", ASCENDING)])
            bindings.create_index([("roleId", ASCENDING), ("isActive", ASCENDING)])
            bindings.create_index("validUntil")

            applications = self.get_collection("applications")
            applications.create_index("number", unique=True)
            applications.create_index([("status", ASCENDING), ("createdAt", DESCENDING)])
            applications.create_index([("regionPath.district", ASCENDING), ("status", ASCENDING)])
            applications.create_index([("beneficiaryId", ASCENDING), ("createdAt", DESCENDING)])

            schemes = self.get_collection("scheme_configs")
            schemes.create_index("schemeId", unique=True)

            audit_logs = self.get_collection("audit_logs")
            audit_logs.create_index([("entity", ASCENDING), ("entityId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index([("actorId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index("traceId")

            logger.info("MongoDB indexes created successfully")

        except Exception as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise
