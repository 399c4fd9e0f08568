"""
Entity Store: per-entity persistence against the six catalogue collections.

Repositories know how to load, save and delete documents and how to write a
single entry of an embedded map (``field.<foreignId>``) with a targeted
``$set``/``$unset``. They hold no business rules.
"""

from typing import Any, Dict, Generic, Iterable, List, Mapping, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from catalog.errors import NOT_FOUND_ERRORS
from catalog.models import (
    Author, Book, Category, Document, EntityType, Loan, Review, User,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=Document)


def encode(value: Any) -> Any:
    """Convert a model or scalar into the stored representation."""
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, mode="json")
    return to_jsonable_python(value)


def entry_path(field: str, key: str) -> str:
    """Dotted path of one entry inside an embedded map."""
    return f"{field}.{key}"


class EntityRepository(Generic[T]):
    """CRUD and embedded-map primitives for one collection."""

    def __init__(self, collection, model: Type[T], entity_type: EntityType):
        self.collection = collection
        self.model = model
        self.entity_type = entity_type
        self.logger = logger.bind(component="entity_store", entity_type=entity_type.value)

    @property
    def name(self) -> str:
        return getattr(self.collection, "name", self.entity_type.value)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, entity_id: str) -> Optional[T]:
        document = await self.collection.find_one({"_id": entity_id})
        if document is None:
            return None
        return self.model.from_document(document)

    async def require(self, entity_id: str) -> T:
        """Load a document or raise the entity's NotFound error."""
        entity = await self.get(entity_id)
        if entity is None:
            raise NOT_FOUND_ERRORS[self.entity_type](entity_id)
        return entity

    async def find_one(self, query: Dict[str, Any]) -> Optional[T]:
        document = await self.collection.find_one(query)
        if document is None:
            return None
        return self.model.from_document(document)

    async def find(self, query: Optional[Dict[str, Any]] = None) -> List[T]:
        entities = []
        async for document in self.collection.find(query or {}):
            entities.append(self.model.from_document(document))
        return entities

    async def exists(self, query: Dict[str, Any]) -> bool:
        return await self.collection.find_one(query) is not None

    async def holders_of(self, field: str, key: str) -> List[T]:
        """Documents whose embedded map ``field`` has an entry for ``key``."""
        return await self.find({entry_path(field, key): {"$exists": True}})

    # ------------------------------------------------------------------
    # Whole-document writes
    # ------------------------------------------------------------------

    async def insert(self, entity: T) -> T:
        await self.collection.insert_one(entity.to_document())
        self.logger.debug("Inserted document", entity_id=entity.id)
        return entity

    async def save(self, entity: T) -> T:
        """Replace the stored document with the in-memory state."""
        await self.collection.replace_one({"_id": entity.id}, entity.to_document(), upsert=True)
        self.logger.debug("Saved document", entity_id=entity.id)
        return entity

    async def delete(self, entity_id: str) -> bool:
        result = await self.collection.delete_one({"_id": entity_id})
        return result.deleted_count > 0

    async def delete_many(self, entity_ids: Iterable[str]) -> int:
        ids = list(entity_ids)
        if not ids:
            return 0
        return await self.delete_where({"_id": {"$in": ids}})

    async def delete_where(self, query: Dict[str, Any]) -> int:
        result = await self.collection.delete_many(query)
        return result.deleted_count

    # ------------------------------------------------------------------
    # Targeted writes
    # ------------------------------------------------------------------

    async def set_fields(self, entity_id: str, fields: Mapping[str, Any]) -> bool:
        """``$set`` stored field names (or dotted paths) on one document."""
        update = {path: encode(value) for path, value in fields.items()}
        result = await self.collection.update_one({"_id": entity_id}, {"$set": update})
        return result.matched_count > 0

    async def set_fields_where(self, query: Dict[str, Any], fields: Mapping[str, Any]) -> int:
        update = {path: encode(value) for path, value in fields.items()}
        result = await self.collection.update_many(query, {"$set": update})
        return result.modified_count

    async def put_entry(self, entity_id: str, field: str, key: str, value: BaseModel) -> bool:
        """Upsert one embedded entry in an existing document."""
        return await self.set_fields(entity_id, {entry_path(field, key): value})

    async def remove_entry(self, entity_id: str, field: str, key: str) -> bool:
        """Remove one embedded entry; a missing document or entry is not an error."""
        result = await self.collection.update_one(
            {"_id": entity_id},
            {"$unset": {entry_path(field, key): ""}}
        )
        return result.modified_count > 0

    async def remove_entry_where(self, query: Dict[str, Any], field: str, key: str) -> int:
        """Remove one embedded entry from every matching document holding it."""
        path = entry_path(field, key)
        result = await self.collection.update_many(
            {**query, path: {"$exists": True}},
            {"$unset": {path: ""}}
        )
        return result.modified_count

    async def replace_entry_where(self, query: Dict[str, Any], field: str, key: str, value: BaseModel) -> int:
        """Overwrite one embedded entry in every matching document that already holds it."""
        path = entry_path(field, key)
        result = await self.collection.update_many(
            {**query, path: {"$exists": True}},
            {"$set": {path: encode(value)}}
        )
        return result.modified_count

    async def set_entry_fields_where(
        self,
        query: Dict[str, Any],
        field: str,
        key: str,
        values: Mapping[str, Any]
    ) -> int:
        """Overwrite fields of one embedded entry in every document holding it."""
        path = entry_path(field, key)
        update = {f"{path}.{name}": encode(value) for name, value in values.items()}
        result = await self.collection.update_many(
            {**query, path: {"$exists": True}},
            {"$set": update}
        )
        return result.modified_count

    async def put_entry_by_name(self, name: str, field: str, key: str, value: BaseModel) -> None:
        """
        Locate-or-create by exact name, then upsert one embedded entry.

        Runs as a single upsert so a concurrent creator cannot produce a
        second document for the same name (the name index is unique).
        """
        defaults = self.model(name=name).to_document()
        defaults.pop("name")
        defaults.pop(field)
        await self.collection.update_one(
            {"name": name},
            {
                "$set": {entry_path(field, key): encode(value)},
                "$setOnInsert": defaults,
            },
            upsert=True
        )


class EntityStore:
    """The six entity repositories plus raw access to bookkeeping collections."""

    def __init__(self, collections: Mapping[str, Any]):
        self.collections = collections
        self.books: EntityRepository[Book] = EntityRepository(collections["books"], Book, EntityType.BOOK)
        self.authors: EntityRepository[Author] = EntityRepository(collections["authors"], Author, EntityType.AUTHOR)
        self.categories: EntityRepository[Category] = EntityRepository(
            collections["categories"], Category, EntityType.CATEGORY
        )
        self.users: EntityRepository[User] = EntityRepository(collections["users"], User, EntityType.USER)
        self.loans: EntityRepository[Loan] = EntityRepository(collections["loans"], Loan, EntityType.LOAN)
        self.reviews: EntityRepository[Review] = EntityRepository(collections["reviews"], Review, EntityType.REVIEW)

    @classmethod
    def from_database(cls, database, collection_names: Mapping[str, str]) -> "EntityStore":
        """Bind every logical collection key to a collection of ``database``."""
        return cls({key: database[name] for key, name in collection_names.items()})

    def repository(self, entity_type: EntityType) -> EntityRepository:
        return {
            EntityType.BOOK: self.books,
            EntityType.AUTHOR: self.authors,
            EntityType.CATEGORY: self.categories,
            EntityType.USER: self.users,
            EntityType.LOAN: self.loans,
            EntityType.REVIEW: self.reviews,
        }[entity_type]
