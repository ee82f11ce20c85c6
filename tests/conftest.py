"""
Pytest fixtures for casbin-mongo-adapter tests.

MongoDB is replaced by an in-memory fake of the small part of PyMongo's
asyncio API the adapter uses. The fake is patched over AsyncMongoClient in
casbin_mongo_adapter.adapter, so the adapter code runs unmodified.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Callable

import pytest
import pytest_asyncio
from casbin.model import Model
from pymongo.errors import ConfigurationError as DriverConfigurationError
from pymongo.errors import InvalidURI

import casbin_mongo_adapter.adapter as adapter_module
from casbin_mongo_adapter import MongoAdapter

MONGO_URI = "mongodb://localhost:27017"

# Keyword options the fake client accepts; anything else is rejected like an
# unknown AsyncMongoClient option.
CLIENT_OPTIONS = {"appname", "connectTimeoutMS", "maxPoolSize", "serverSelectionTimeoutMS"}

RBAC_MODEL = """
[request_definition]
r = sub, obj, act

[policy_definition]
p = sub, obj, act

[role_definition]
g = _, _

[policy_effect]
e = some(where (p.eft == allow))

[matchers]
m = g(r.sub, p.sub) && r.obj == p.obj && r.act == p.act
"""

ACL_MODEL = """
[request_definition]
r = sub, obj, act

[policy_definition]
p = sub, obj, act

[policy_effect]
e = some(where (p.eft == allow))

[matchers]
m = r.sub == p.sub && r.obj == p.obj && r.act == p.act
"""


# ============================================================================
# In-memory MongoDB fake
# ============================================================================


@dataclass
class DeleteResult:
    deleted_count: int


def _matches(document: dict[str, Any], query: dict[str, Any] | None) -> bool:
    for key, expected in (query or {}).items():
        if isinstance(expected, dict) and "$in" in expected:
            if document.get(key) not in expected["$in"]:
                return False
        elif document.get(key) != expected:
            return False
    return True


class FakeCursor:
    def __init__(self, documents: list[dict[str, Any]]) -> None:
        self._documents = documents

    def __aiter__(self) -> FakeCursor:
        self._iter = iter(self._documents)
        return self

    async def __anext__(self) -> dict[str, Any]:
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration from None


class FakeCollection:
    """Collection holding plain dict documents."""

    _ids = itertools.count(1)

    def __init__(self, name: str) -> None:
        self.name = name
        self.documents: list[dict[str, Any]] = []
        self.indexes: list[list[tuple[str, int]]] = []
        self.exists = False
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._failures: dict[str, tuple[Callable[[Any], bool], Exception]] = {}

    def fail_when(
        self,
        method: str,
        error: Exception,
        predicate: Callable[[Any], bool] | None = None,
    ) -> None:
        """Make ``method`` raise ``error`` for arguments matching ``predicate``."""
        self._failures[method] = (predicate or (lambda _arg: True), error)

    def _check(self, method: str, arg: Any) -> None:
        self.calls.append(method)
        if method in self._failures:
            predicate, error = self._failures[method]
            if predicate(arg):
                raise error

    def _store(self, document: dict[str, Any]) -> None:
        stored = copy.deepcopy(document)
        stored["_id"] = next(self._ids)
        self.documents.append(stored)
        self.exists = True

    def find(self, query: dict[str, Any] | None = None) -> FakeCursor:
        self._check("find", query)
        return FakeCursor([d for d in self.documents if _matches(d, query)])

    async def insert_one(self, document: dict[str, Any]) -> None:
        self._check("insert_one", document)
        self._store(document)

    async def insert_many(self, documents: list[dict[str, Any]]) -> None:
        self._check("insert_many", documents)
        for document in documents:
            self._store(document)

    async def delete_one(self, query: dict[str, Any]) -> DeleteResult:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            self._check("delete_one", query)
            for index, document in enumerate(self.documents):
                if _matches(document, query):
                    del self.documents[index]
                    return DeleteResult(1)
            return DeleteResult(0)
        finally:
            self.in_flight -= 1

    async def delete_many(self, query: dict[str, Any]) -> DeleteResult:
        self._check("delete_many", query)
        kept = [d for d in self.documents if not _matches(d, query)]
        deleted = len(self.documents) - len(kept)
        self.documents = kept
        return DeleteResult(deleted)

    async def create_index(self, keys: list[tuple[str, int]]) -> str:
        self._check("create_index", keys)
        self.indexes.append(list(keys))
        self.exists = True
        return "_".join(f"{name}_{direction}" for name, direction in keys)

    async def drop(self) -> None:
        self._check("drop", None)
        self.documents = []
        self.indexes = []
        self.exists = False


class FakeDatabase:
    def __init__(self, name: str) -> None:
        self.name = name
        self.collections: dict[str, FakeCollection] = {}

    def get_collection(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    async def list_collection_names(self, filter: dict[str, Any] | None = None) -> list[str]:
        names = [name for name, c in self.collections.items() if c.exists]
        if filter and "name" in filter:
            names = [name for name in names if name == filter["name"]]
        return names


class FakeAdmin:
    def __init__(self, server: FakeMongoServer) -> None:
        self._server = server

    async def command(self, name: str) -> dict[str, Any]:
        if self._server.ping_error is not None:
            raise self._server.ping_error
        return {"ok": 1.0}


class FakeMongoClient:
    def __init__(self, server: FakeMongoServer, uri: str, **kwargs: Any) -> None:
        if not uri.startswith(("mongodb://", "mongodb+srv://")):
            raise InvalidURI(
                "Invalid URI scheme: URI must begin with 'mongodb://' or 'mongodb+srv://'"
            )
        for key in kwargs:
            if key not in CLIENT_OPTIONS:
                raise DriverConfigurationError(f"Unknown option {key}")
        self.uri = uri
        self.kwargs = kwargs
        self.closed = False
        self.admin = FakeAdmin(server)
        self._server = server

    def get_database(self, name: str) -> FakeDatabase:
        return self._server.database(name)

    async def close(self) -> None:
        if self._server.close_error is not None:
            raise self._server.close_error
        self.closed = True


class FakeMongoServer:
    """Shared state behind every FakeMongoClient created during a test."""

    def __init__(self) -> None:
        self.databases: dict[str, FakeDatabase] = {}
        self.clients: list[FakeMongoClient] = []
        self.ping_error: Exception | None = None
        self.close_error: Exception | None = None

    def client(self, uri: str, **kwargs: Any) -> FakeMongoClient:
        client = FakeMongoClient(self, uri, **kwargs)
        self.clients.append(client)
        return client

    def database(self, name: str) -> FakeDatabase:
        if name not in self.databases:
            self.databases[name] = FakeDatabase(name)
        return self.databases[name]

    def collection(self, database: str = "casbindb", name: str = "casbin") -> FakeCollection:
        return self.database(database).get_collection(name)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def mongo(monkeypatch: pytest.MonkeyPatch) -> FakeMongoServer:
    """Patch AsyncMongoClient with the in-memory fake."""
    server = FakeMongoServer()
    monkeypatch.setattr(adapter_module, "AsyncMongoClient", server.client)
    return server


@pytest.fixture
def collection(mongo: FakeMongoServer) -> FakeCollection:
    """The default casbindb.casbin collection."""
    return mongo.collection()


@pytest_asyncio.fixture
async def adapter(mongo: FakeMongoServer) -> AsyncIterator[MongoAdapter]:
    """An open adapter on the default collection."""
    a = MongoAdapter(MONGO_URI)
    await a.open()
    yield a
    if a.is_connected:
        await a.close()


@pytest_asyncio.fixture
async def filtered_adapter(mongo: FakeMongoServer) -> AsyncIterator[MongoAdapter]:
    """An open adapter with filtered loading enabled."""
    a = MongoAdapter(MONGO_URI, filtered=True)
    await a.open()
    yield a
    if a.is_connected:
        await a.close()


def make_model(text: str = RBAC_MODEL) -> Model:
    model = Model()
    model.load_model_from_text(text)
    return model


@pytest.fixture
def rbac_model() -> Model:
    """An empty RBAC model with "p" and "g" sections."""
    return make_model(RBAC_MODEL)


@pytest.fixture
def acl_model() -> Model:
    """An empty ACL model without a "g" section."""
    return make_model(ACL_MODEL)


def seed(collection: FakeCollection, *lines: str) -> None:
    """Store documents for policy lines such as ``"p, alice, data1, read"``."""
    for line in lines:
        ptype, *values = [token.strip() for token in line.split(",")]
        document: dict[str, Any] = {"ptype": ptype}
        for i, value in enumerate(values):
            document[f"v{i}"] = value
        collection._store(document)
