# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB service layer with organization-scoped and guarded operations.
"""

import os
import logging
from datetime import datetime
from typing import List, Dict, Optional, Any, Tuple
from pymongo import MongoClient, ASCENDING, DESCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    DuplicateKeyError
)
from bson import ObjectId
from bson.errors import InvalidId

logger = logging.getLogger(__name__)


def to_api_document(document: Optional[Dict]) -> Optional[Dict]:
    """Replace ``_id`` with a string ``id``."""
    if document is None:
        return None
    if "_id" in document:
        document["id"] = str(document["_id"])
        del document["_id"]
    return document


class MongoDBService:
    """MongoDB service with organization scoping and conditional writes."""

    def __init__(self, connection_string: str = None, database_name: str = None,
                 client: Optional[MongoClient] = None):
        """Initialize MongoDB service; an injected client is used as-is."""
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/bendrija_dev'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'bendrija_dev')
        self._client: Optional[MongoClient] = client
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
                    retryReads=True
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
            return {
                'status': 'healthy',
                'ping': result.get('ok') == 1,
                'database': self.database_name
            }
        except Exception as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'error': str(e),
                'database': self.database_name
            }

    def to_object_id(self, doc_id: str) -> ObjectId:
        """Validate and convert string ID to ObjectId."""
        try:
            return ObjectId(doc_id)
        except (InvalidId, TypeError):
            raise ValueError(f"Invalid ObjectId format: {doc_id}")

    def _build_org_query(self, org_id: str, filters: Dict = None, include_deleted: bool = False) -> Dict:
        """Build organization-scoped query with optional filters."""
        query = {"organizationId": org_id}

        # Exclude soft-deleted records by default
        if not include_deleted:
            query["deletedAt"] = None

        if filters:
            query.update(filters)

        return query

    def _add_timestamps(self, document: Dict, user_id: str, is_update: bool = False) -> Dict:
        """Add creation and update timestamps to document."""
        now = datetime.utcnow()

        if not is_update:
            document["createdAt"] = now
            document["createdBy"] = user_id

        document["updatedAt"] = now
        document["updatedBy"] = user_id

        return document

    def _with_update_stamp(self, update: Dict, user_id: str) -> Dict:
        """Merge updatedAt/updatedBy into the ``$set`` stage of an update."""
        update = dict(update)
        set_stage = dict(update.get("$set", {}))
        set_stage.setdefault("updatedAt", datetime.utcnow())
        set_stage.setdefault("updatedBy", user_id)
        update["$set"] = set_stage
        return update

    # CRUD Operations

    def create(self, collection: str, document: Dict, user_id: str) -> str:
        """Insert a new document and return its id."""
        try:
            document = self._add_timestamps(document, user_id)

            if "_id" not in document:
                document["_id"] = ObjectId()

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

    def find_by_id(self, collection: str, doc_id: str) -> Optional[Dict]:
        """Find a non-deleted document by ID regardless of organization."""
        try:
            object_id = self.to_object_id(doc_id)
        except ValueError:
            logger.debug(f"Invalid document ID {doc_id} for {collection}")
            return None

        return self.find_one(collection, {"_id": object_id})

    def find_one(self, collection: str, filters: Dict, include_deleted: bool = False) -> Optional[Dict]:
        """Find a single document by filter."""
        try:
            query = dict(filters)
            if not include_deleted:
                query["deletedAt"] = None

            document = self.get_collection(collection).find_one(query)
            return to_api_document(document)

        except Exception as e:
            logger.error(f"Failed to find document in {collection}: {e}")
            raise

    def find_many(self, collection: str, filters: Dict, sort: List[Tuple[str, int]] = None,
                  include_deleted: bool = False) -> List[Dict]:
        """Find documents by filter."""
        try:
            query = dict(filters)
            if not include_deleted:
                query["deletedAt"] = None

            cursor = self.get_collection(collection).find(query)
            if sort:
                cursor = cursor.sort(sort)

            return [to_api_document(doc) for doc in cursor]

        except Exception as e:
            logger.error(f"Failed to find documents in {collection}: {e}")
            raise

    def find_by_org(self, collection: str, org_id: str, filters: Dict = None,
                    include_deleted: bool = False) -> List[Dict]:
        """Find documents by organization with optional filters."""
        try:
            query = self._build_org_query(org_id, filters, include_deleted)
            documents = [to_api_document(doc) for doc in self.get_collection(collection).find(query)]

            logger.debug(f"Found {len(documents)} documents in {collection} for org {org_id}")
            return documents

        except Exception as e:
            logger.error(f"Failed to find documents in {collection}: {e}")
            raise

    def find_one_by_org(self, collection: str, org_id: str, doc_id: str,
                        include_deleted: bool = False) -> Optional[Dict]:
        """Find a single document by organization and ID."""
        try:
            object_id = self.to_object_id(doc_id)
        except ValueError as e:
            logger.error(f"Invalid document ID {doc_id}: {e}")
            return None

        query = self._build_org_query(org_id, {"_id": object_id}, include_deleted)
        return self.find_one(collection, query, include_deleted=True)

    def count_by_org(self, collection: str, org_id: str, filters: Dict = None,
                     include_deleted: bool = False) -> int:
        """Count documents by organization with optional filters."""
        try:
            query = self._build_org_query(org_id, filters, include_deleted)
            count = self.get_collection(collection).count_documents(query)
            logger.debug(f"Counted {count} documents in {collection} for org {org_id}")
            return count

        except Exception as e:
            logger.error(f"Failed to count documents in {collection}: {e}")
            raise

    def update_by_org(self, collection: str, org_id: str, doc_id: str,
                      updates: Dict, user_id: str) -> bool:
        """Update a document by organization and ID."""
        try:
            object_id = self.to_object_id(doc_id)
        except ValueError as e:
            logger.error(f"Invalid document ID {doc_id}: {e}")
            return False

        query = self._build_org_query(org_id, {"_id": object_id})
        return self.update_where(collection, query, {"$set": updates}, user_id)

    def soft_delete_by_org(self, collection: str, org_id: str, doc_id: str, user_id: str) -> bool:
        """Soft delete a document by setting deletedAt timestamp."""
        try:
            object_id = self.to_object_id(doc_id)
        except ValueError as e:
            logger.error(f"Invalid document ID {doc_id}: {e}")
            return False

        query = self._build_org_query(org_id, {"_id": object_id})
        return self.update_where(collection, query, {"$set": {"deletedAt": datetime.utcnow()}}, user_id)

    # Guarded writes

    def update_where(self, collection: str, filters: Dict, update: Dict, user_id: str) -> bool:
        """
        Apply an update only when the filter (including its preconditions)
        matches at write time.

        Returns:
            True if a document matched the filter
        """
        try:
            result = self.get_collection(collection).update_one(
                filters,
                self._with_update_stamp(update, user_id)
            )

            if result.matched_count > 0:
                logger.debug(f"Guarded update matched in {collection}")
                return True

            logger.info(
                "Guarded update did not match",
                extra={"collection": collection, "filter_keys": sorted(filters.keys())}
            )
            return False

        except Exception as e:
            logger.error(f"Failed guarded update in {collection}: {e}")
            raise

    def find_one_and_update(self, collection: str, filters: Dict, update: Dict,
                            user_id: str, stamp: bool = True) -> Optional[Dict]:
        """
        Atomically update a single document matching the filter and return the
        updated document, or None when nothing matched.
        """
        try:
            if stamp:
                update = self._with_update_stamp(update, user_id)

            document = self.get_collection(collection).find_one_and_update(
                filters,
                update,
                return_document=ReturnDocument.AFTER
            )
            return to_api_document(document)

        except Exception as e:
            logger.error(f"Failed find_one_and_update in {collection}: {e}")
            raise

    def delete_where(self, collection: str, filters: Dict) -> bool:
        """Hard delete a single document matching the filter."""
        try:
            result = self.get_collection(collection).delete_one(filters)
            return result.deleted_count > 0

        except Exception as e:
            logger.error(f"Failed to delete document in {collection}: {e}")
            raise

    def upsert_one(self, collection: str, key: Dict, set_fields: Dict,
                   set_on_insert: Dict, user_id: str) -> bool:
        """
        Insert or overwrite the single document identified by ``key``.

        ``key`` must be covered by a unique index. Concurrent upserts on the same
        key can race to insert; the loser retries once as a plain update.

        Returns:
            True if a new document was inserted
        """
        now = datetime.utcnow()
        set_stage = dict(set_fields, updatedAt=now, updatedBy=user_id)
        insert_stage = dict(set_on_insert, createdAt=now, createdBy=user_id)
        collection_obj = self.get_collection(collection)

        try:
            result = collection_obj.update_one(
                key,
                {"$set": set_stage, "$setOnInsert": insert_stage},
                upsert=True
            )
            return result.upserted_id is not None

        except DuplicateKeyError:
            logger.info(
                "Concurrent upsert lost the insert race, retrying as update",
                extra={"collection": collection, "key": {k: str(v) for k, v in key.items()}}
            )
            collection_obj.update_one(key, {"$set": set_stage})
            return False

    # Index Management

    def create_indexes(self) -> None:
        """Create uniqueness and lookup indexes for all collections."""
        try:
            logger.info("Creating MongoDB indexes...")

            orgs = self.get_collection("organizations")
            orgs.create_index("slug", unique=True)
            orgs.create_index("status")

            memberships = self.get_collection("memberships")
            memberships.create_index([("organizationId", ASCENDING), ("userId", ASCENDING)], unique=True)
            memberships.create_index([("organizationId", ASCENDING), ("memberStatus", ASCENDING), ("role", ASCENDING)])

            positions = self.get_collection("positions")
            positions.create_index([("organizationId", ASCENDING), ("userId", ASCENDING), ("isActive", ASCENDING)])

            resolutions = self.get_collection("resolutions")
            resolutions.create_index([("organizationId", ASCENDING), ("status", ASCENDING), ("createdAt", DESCENDING)])
            resolutions.create_index("meetingId")

            meetings = self.get_collection("meetings")
            meetings.create_index([("organizationId", ASCENDING), ("scheduledAt", DESCENDING)])

            agenda_items = self.get_collection("agenda_items")
            agenda_items.create_index([("meetingId", ASCENDING), ("itemNo", ASCENDING)], unique=True)
            agenda_items.create_index("resolutionId")

            attendance = self.get_collection("meeting_attendance")
            attendance.create_index([("meetingId", ASCENDING), ("membershipId", ASCENDING)], unique=True)

            votes = self.get_collection("votes")
            votes.create_index([("resolutionId", ASCENDING), ("status", ASCENDING)])
            votes.create_index([("meetingId", ASCENDING), ("status", ASCENDING)])

            ballots = self.get_collection("ballots")
            ballots.create_index([("voteId", ASCENDING), ("membershipId", ASCENDING)], unique=True)

            consents = self.get_collection("member_consents")
            consents.create_index(
                [("organizationId", ASCENDING), ("userId", ASCENDING), ("consentType", ASCENDING)],
                unique=True
            )

            applications = self.get_collection("community_applications")
            applications.create_index("email")

            audit_logs = self.get_collection("audit_logs")
            audit_logs.create_index([("organizationId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index([("organizationId", ASCENDING), ("entityId", ASCENDING), ("timestamp", DESCENDING)])
            audit_logs.create_index("traceId")

            logger.info("MongoDB indexes created successfully")

        except Exception as e:
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise


# Singleton instance for application use
_mongodb_service: Optional[MongoDBService] = None


def get_mongodb_service() -> MongoDBService:
    """Get singleton MongoDB service instance."""
    global _mongodb_service
    if _mongodb_service is None:
        _mongodb_service = MongoDBService()
    return _mongodb_service


def close_mongodb_connection() -> None:
    """Close MongoDB connection (for cleanup)."""
    global _mongodb_service
    if _mongodb_service:
        _mongodb_service.close_connection()
