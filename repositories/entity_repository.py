# repositories/entity_repository.py
import re
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Type

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError

from db.connection import ConnectionManager
from errors import ConnectionFailed, DuplicateKey, InvalidIdentifier, NotFound, StorageError
from models.entity import Entity, EntityKind, SearchResult, validate_entity, validate_update

logger = logging.getLogger(__name__)

# Hard cap on search results
SEARCH_LIMIT = 50
SEARCH_PROJECTION = {"_id": 0, "name": 1, "age": 1, "email": 1}


def utc_now() -> datetime:
    # MongoDB keeps milliseconds; truncate so returned and stored values agree
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond - now.microsecond % 1000)


class EntityRepository:
    """CRUD and search over the collection of one entity kind."""

    def __init__(self, kind: EntityKind, connections: ConnectionManager, model: Type[Entity] = Entity):
        self.kind = kind
        self.connections = connections
        self.model = model

    async def _collection(self):
        db = await self.connections.get_database()
        return db[self.kind.collection]

    @asynccontextmanager
    async def _storage_errors(self, action: str):
        try:
            yield
        except DuplicateKeyError as e:
            logger.warning(f"Duplicate email on {action} {self.kind.name}: {e}")
            raise DuplicateKey() from e
        except ConnectionFailure as e:
            logger.error(f"Lost database connection during {action} {self.kind.name}: {e}")
            raise ConnectionFailed() from e
        except PyMongoError as e:
            logger.error(f"Storage error during {action} {self.kind.name}: {e}", exc_info=True)
            raise StorageError() from e

    def _object_id(self, id: str) -> ObjectId:
        try:
            return ObjectId(id)
        except (InvalidId, TypeError):
            raise InvalidIdentifier(f"Invalid {self.kind.label.lower()} ID") from None

    def _to_entity(self, doc: Dict[str, Any]) -> Entity:
        return self.model(
            id=str(doc["_id"]),
            name=doc["name"],
            age=doc["age"],
            email=doc["email"],
            createdAt=doc["createdAt"],
            updatedAt=doc["updatedAt"],
        )

    def _not_found(self) -> NotFound:
        return NotFound(f"{self.kind.label} not found")

    async def list_all(self) -> List[Entity]:
        async with self._storage_errors("list"):
            collection = await self._collection()
            docs = await collection.find({}).sort("createdAt", DESCENDING).to_list(None)
        return [self._to_entity(doc) for doc in docs]

    async def get_by_id(self, id: str) -> Entity:
        oid = self._object_id(id)
        async with self._storage_errors("get"):
            collection = await self._collection()
            doc = await collection.find_one({"_id": oid})
        if doc is None:
            raise self._not_found()
        return self._to_entity(doc)

    async def create(self, fields: Dict[str, Any]) -> Entity:
        record = validate_entity(fields)
        now = utc_now()
        doc = record.model_dump()
        doc["createdAt"] = now
        doc["updatedAt"] = now

        async with self._storage_errors("create"):
            collection = await self._collection()
            result = await collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        logger.info(f"Created {self.kind.name} {result.inserted_id}")
        return self._to_entity(doc)

    async def update(self, id: str, changes: Dict[str, Any]) -> Entity:
        """Apply a partial update; the merged record must still validate."""
        oid = self._object_id(id)
        async with self._storage_errors("update"):
            collection = await self._collection()
            existing = await collection.find_one({"_id": oid})
        if existing is None:
            raise self._not_found()

        _, applied = validate_update(existing, changes)
        applied["updatedAt"] = utc_now()

        async with self._storage_errors("update"):
            doc = await collection.find_one_and_update(
                {"_id": oid},
                {"$set": applied},
                return_document=ReturnDocument.AFTER,
            )
        # Deleted between the read and the write
        if doc is None:
            raise self._not_found()
        logger.info(f"Updated {self.kind.name} {id}: {sorted(k for k in applied if k != 'updatedAt')}")
        return self._to_entity(doc)

    async def delete_by_id(self, id: str) -> Entity:
        oid = self._object_id(id)
        async with self._storage_errors("delete"):
            collection = await self._collection()
            doc = await collection.find_one_and_delete({"_id": oid})
        if doc is None:
            raise self._not_found()
        logger.info(f"Deleted {self.kind.name} {id}")
        return self._to_entity(doc)

    async def search(self, query: str) -> List[SearchResult]:
        """Case-insensitive substring match on name or email, sorted by name."""
        q = (query or "").strip()
        if not q:
            return []

        pattern = {"$regex": re.escape(q), "$options": "i"}
        async with self._storage_errors("search"):
            collection = await self._collection()
            docs = await (
                collection.find({"$or": [{"name": pattern}, {"email": pattern}]}, SEARCH_PROJECTION)
                .sort("name", ASCENDING)
                .limit(SEARCH_LIMIT)
                .to_list(None)
            )
        return [SearchResult(**doc) for doc in docs]
