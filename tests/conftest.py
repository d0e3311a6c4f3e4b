"""
Shared fixtures: an in-memory stand-in for the Motor client.

The fake keeps documents in plain lists, one "server" per test, so tenant
databases survive reconnects the way a real deployment would. Only the query
operators the access layer uses are understood.
"""

import asyncio
import copy
import os
import sys
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from bson import ObjectId

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mongo.tenants import TenantConnectionRegistry


def _value_matches(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(key.startswith("$") for key in condition):
        for op, operand in condition.items():
            if op == "$in":
                if isinstance(value, list):
                    if not any(item in operand for item in value):
                        return False
                elif value not in operand:
                    return False
            elif op == "$ne":
                if _value_matches(value, operand):
                    return False
            elif op == "$eq":
                if not _value_matches(value, operand):
                    return False
            else:
                raise NotImplementedError(f"Operator {op} not supported by the fake")
        return True
    if isinstance(value, list) and not isinstance(condition, list):
        return condition in value
    return value == condition


def matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    for key, condition in query.items():
        if key == "$or":
            if not any(matches(document, sub) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(document, sub) for sub in condition):
                return False
        elif isinstance(condition, dict) and "$exists" in condition:
            if (key in document) != bool(condition["$exists"]):
                return False
        elif not _value_matches(document.get(key), condition):
            return False
    return True


class FakeCursor:
    def __init__(self, documents: List[Dict[str, Any]]):
        self._documents = documents
        self._limit = 0

    def sort(self, keys):
        for field, direction in reversed(list(keys)):
            self._documents.sort(key=lambda doc: str(doc.get(field, "")), reverse=direction < 0)
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    async def to_list(self, length: Optional[int] = None):
        documents = self._documents[: self._limit] if self._limit else self._documents
        if length:
            documents = documents[:length]
        return copy.deepcopy(documents)


class FakeCollection:
    def __init__(self, database: "FakeDatabase", name: str):
        self.database = database
        self.name = name
        self.documents: List[Dict[str, Any]] = []
        self.indexes: Dict[str, Any] = {"_id_": {"key": [("_id", 1)]}}
        self.fail_insert_many: Optional[Exception] = None

    def seed(self, *documents: Dict[str, Any]) -> List[Any]:
        """Synchronous insert for test setup."""
        ids = []
        for document in documents:
            document = dict(document)
            document.setdefault("_id", ObjectId())
            self.documents.append(document)
            ids.append(document["_id"])
        self.database.created.add(self.name)
        return ids

    def find(self, query: Optional[Dict[str, Any]] = None):
        return FakeCursor([doc for doc in self.documents if matches(doc, query or {})])

    async def find_one(self, query: Dict[str, Any]):
        for doc in self.documents:
            if matches(doc, query):
                return copy.deepcopy(doc)
        return None

    async def count_documents(self, query: Dict[str, Any]) -> int:
        return sum(1 for doc in self.documents if matches(doc, query))

    async def insert_one(self, document: Dict[str, Any]):
        document.setdefault("_id", ObjectId())
        self.documents.append(copy.deepcopy(document))
        self.database.created.add(self.name)
        return SimpleNamespace(inserted_id=document["_id"])

    async def insert_many(self, documents: List[Dict[str, Any]]):
        inserted = []
        for index, document in enumerate(documents):
            if self.fail_insert_many is not None and index == 1:
                # partial write, as an ordered bulk insert would leave behind
                raise self.fail_insert_many
            document.setdefault("_id", ObjectId())
            self.documents.append(copy.deepcopy(document))
            inserted.append(document["_id"])
        self.database.created.add(self.name)
        return SimpleNamespace(inserted_ids=inserted)

    async def delete_one(self, query: Dict[str, Any]):
        for index, doc in enumerate(self.documents):
            if matches(doc, query):
                del self.documents[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def delete_many(self, query: Dict[str, Any]):
        kept = [doc for doc in self.documents if not matches(doc, query)]
        deleted = len(self.documents) - len(kept)
        self.documents = kept
        return SimpleNamespace(deleted_count=deleted)

    async def index_information(self) -> Dict[str, Any]:
        return dict(self.indexes)

    async def create_index(self, keys, name: Optional[str] = None, **kwargs):
        name = name or "_".join(f"{field}_{direction}" for field, direction in keys)
        self.indexes[name] = {"key": list(keys)}
        self.database.created.add(self.name)
        return name


class FakeDatabase:
    def __init__(self, name: str):
        self.name = name
        self.collections: Dict[str, FakeCollection] = {}
        self.created = set()

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(self, name)
        return self.collections[name]

    async def list_collection_names(self) -> List[str]:
        return sorted(self.created)

    async def create_collection(self, name: str) -> FakeCollection:
        self.created.add(name)
        return self[name]


class FakeMongoServer:
    """Databases shared by every client the factory hands out."""

    def __init__(self):
        self.databases: Dict[str, FakeDatabase] = {}

    def database(self, name: str) -> FakeDatabase:
        if name not in self.databases:
            self.databases[name] = FakeDatabase(name)
        return self.databases[name]

    def tenant(self, tenant_id: str) -> FakeDatabase:
        return self.database(f"tenant_{tenant_id}")


class FakeAdmin:
    def __init__(self, client: "FakeMotorClient"):
        self.client = client

    async def command(self, name: str):
        if self.client.ping_delay:
            await asyncio.sleep(self.client.ping_delay)
        if self.client.ping_error is not None:
            raise self.client.ping_error
        return {"ok": 1.0}


class FakeMotorClient:
    def __init__(self, server: FakeMongoServer, uri: str, ping_error=None, ping_delay: float = 0, **kwargs):
        self.server = server
        self.uri = uri
        self.options = kwargs
        self.event_listeners = kwargs.get("event_listeners", [])
        self.ping_error = ping_error
        self.ping_delay = ping_delay
        self.closed = False
        self.admin = FakeAdmin(self)

    def __getitem__(self, name: str) -> FakeDatabase:
        return self.server.database(name)

    def close(self):
        self.closed = True


class FakeClientFactory:
    """Stands in for AsyncIOMotorClient; records every client it creates."""

    def __init__(self, server: FakeMongoServer):
        self.server = server
        self.clients: List[FakeMotorClient] = []
        self.ping_error: Optional[Exception] = None
        self.ping_delay: float = 0

    def __call__(self, uri: str, **kwargs) -> FakeMotorClient:
        client = FakeMotorClient(
            self.server, uri, ping_error=self.ping_error, ping_delay=self.ping_delay, **kwargs
        )
        self.clients.append(client)
        return client


@pytest.fixture
def mongo_server():
    return FakeMongoServer()


@pytest.fixture
def client_factory(mongo_server):
    return FakeClientFactory(mongo_server)


@pytest.fixture
def registry(client_factory):
    return TenantConnectionRegistry(
        "mongodb://db.example.com:27017/admin?authSource=admin",
        client_factory=client_factory,
        client_options={"maxPoolSize": 10},
    )


@pytest_asyncio.fixture
async def connection(registry):
    connection = await registry.get_connection("acme")
    yield connection
    await registry.close_all()


@pytest.fixture
def tenant_db(mongo_server):
    """The acme tenant's database, for seeding."""
    return mongo_server.tenant("acme")
