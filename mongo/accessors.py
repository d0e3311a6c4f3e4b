#!/usr/bin/env python3
"""
Dynamic collection resolver

Hands out one accessor per (tenant connection, entity name). Entities with a
registered shape load as pydantic models; everything else is treated as a
permissive key-value document.
"""

import logging
from typing import Any, Dict, Generic, Iterable, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel

from mongo.constants import (
    PROJECTS_COLLECTION,
    PROJECT_ASSIGNMENTS_COLLECTION,
    TEAM_ASSIGNMENTS_COLLECTION,
    TENANT_COLLECTIONS,
    USERS_COLLECTION,
)
from mongo.ids import id_candidates, ids_candidates
from mongo.tenants import TenantConnection

logger = logging.getLogger(__name__)

ShapeT = TypeVar("ShapeT", bound=BaseModel)
Document = Union[Dict[str, Any], BaseModel]

# Entity name -> collection name for formally modeled entities
ENTITY_COLLECTIONS: Dict[str, str] = {
    "Project": PROJECTS_COLLECTION,
    "ProjectAssignment": PROJECT_ASSIGNMENTS_COLLECTION,
    "TeamAssignment": TEAM_ASSIGNMENTS_COLLECTION,
    "User": USERS_COLLECTION,
}


def collection_name_for(entity_name: str) -> str:
    """Collection backing an entity: explicit map, standard tenant collections, then lower-case plural."""
    if entity_name in ENTITY_COLLECTIONS:
        return ENTITY_COLLECTIONS[entity_name]
    name = entity_name.strip().lower()
    if not name:
        raise ValueError("entity_name must be a non-empty string")
    if name in TENANT_COLLECTIONS:
        return name
    if name.endswith("s"):
        return name
    if name.endswith("y") and len(name) > 1 and name[-2] not in "aeiou":
        return name[:-1] + "ies"
    return name + "s"


class TenantCollection(Generic[ShapeT]):
    """Accessor over one entity's records in one tenant database."""

    def __init__(
        self,
        connection: TenantConnection,
        entity_name: str,
        collection_name: str,
        shape: Optional[Type[ShapeT]] = None,
    ):
        self.connection = connection
        self.entity_name = entity_name
        self.collection_name = collection_name
        self.shape = shape

    def __repr__(self) -> str:
        shape = self.shape.__name__ if self.shape else "dict"
        return f"TenantCollection({self.connection.db_name}.{self.collection_name}, shape={shape})"

    @property
    def collection(self):
        """Raw Motor collection, for queries the accessor does not cover."""
        return self.connection[self.collection_name]

    def _load(self, raw: Optional[Dict[str, Any]]) -> Optional[Document]:
        if raw is None or self.shape is None:
            return raw
        return self.shape.model_validate(raw)

    async def find(
        self,
        query: Optional[Mapping[str, Any]] = None,
        *,
        limit: Optional[int] = None,
        sort: Optional[List[tuple]] = None,
    ) -> List[Document]:
        cursor = self.collection.find(dict(query or {}))
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        results = await cursor.to_list(length=None)
        return [self._load(doc) for doc in results]

    async def find_one(self, query: Mapping[str, Any]) -> Optional[Document]:
        return self._load(await self.collection.find_one(dict(query)))

    async def find_by_id(self, doc_id: Any) -> Optional[Document]:
        candidates = id_candidates(doc_id)
        if not candidates:
            return None
        return await self.find_one({"_id": {"$in": candidates}})

    async def find_by_ids(self, doc_ids: Iterable[Any]) -> List[Document]:
        candidates = ids_candidates(doc_ids)
        if not candidates:
            return []
        return await self.find({"_id": {"$in": candidates}})

    async def count(self, query: Optional[Mapping[str, Any]] = None) -> int:
        return await self.collection.count_documents(dict(query or {}))

    def _dump(self, document: Document) -> Dict[str, Any]:
        if isinstance(document, BaseModel):
            return document.model_dump(by_alias=True, exclude_none=True)
        return dict(document)

    async def insert_one(self, document: Document) -> Any:
        result = await self.collection.insert_one(self._dump(document))
        return result.inserted_id

    async def insert_many(self, documents: Iterable[Document]) -> List[Any]:
        payload = [self._dump(document) for document in documents]
        if not payload:
            return []
        result = await self.collection.insert_many(payload)
        return list(result.inserted_ids)

    async def delete_by_id(self, doc_id: Any) -> int:
        candidates = id_candidates(doc_id)
        if not candidates:
            return 0
        result = await self.collection.delete_one({"_id": {"$in": candidates}})
        return result.deleted_count

    async def delete_many(self, query: Mapping[str, Any]) -> int:
        result = await self.collection.delete_many(dict(query))
        return result.deleted_count


def as_document(document: Optional[Document]) -> Optional[Dict[str, Any]]:
    """Plain dict view of a record, whatever accessor loaded it."""
    if isinstance(document, BaseModel):
        return document.model_dump(by_alias=True)
    return document


def as_shape(document: Document, shape: Type[ShapeT]) -> ShapeT:
    """``document`` loaded as ``shape``, whatever accessor loaded it."""
    if isinstance(document, shape):
        return document
    return shape.model_validate(as_document(document))


def accessor_for(
    connection: TenantConnection,
    entity_name: str,
    shape: Optional[Type[ShapeT]] = None,
) -> TenantCollection:
    """Return the accessor registered for ``entity_name`` on this connection.

    The first call registers it and later calls return the same accessor. A
    permissive accessor takes on the first shape passed for its entity; once
    shaped, a different shape is ignored.
    """
    existing = connection.accessors.get(entity_name)
    if existing is not None:
        if shape is not None and existing.shape is None:
            existing.shape = shape
        elif shape is not None and existing.shape is not shape:
            logger.debug(
                f"Accessor for {entity_name} on {connection.db_name} already registered "
                f"with shape {existing.shape.__name__}; ignoring {shape.__name__}"
            )
        return existing

    accessor = TenantCollection(connection, entity_name, collection_name_for(entity_name), shape)
    connection.accessors[entity_name] = accessor
    return accessor
