"""
pytest configuration and fixtures.

MongoDB is replaced by an in-memory stand-in for the small part of the motor
API the repository uses. It is handed to the real ConnectionManager through
its client_factory, so connection caching is exercised by every test.
"""

import asyncio
import re
from types import SimpleNamespace

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from db.connection import ConnectionManager
from main import create_app
from models.instructor import INSTRUCTOR, Instructor
from models.student import STUDENT, Student
from repositories.entity_repository import EntityRepository


def _matches(doc, query):
    for key, cond in query.items():
        if key == "$or":
            if not any(_matches(doc, sub) for sub in cond):
                return False
        elif isinstance(cond, dict) and "$regex" in cond:
            flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
            if not re.search(cond["$regex"], str(doc.get(key, "")), flags):
                return False
        elif doc.get(key) != cond:
            return False
    return True


def _project(doc, projection):
    if not projection:
        return dict(doc)
    out = {k: v for k, v in doc.items() if projection.get(k)}
    if projection.get("_id", 1) and "_id" in doc:
        out["_id"] = doc["_id"]
    return out


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key, direction=1):
        self._docs = sorted(self._docs, key=lambda d: d.get(key), reverse=direction == DESCENDING)
        return self

    def limit(self, n):
        if n:
            self._docs = self._docs[:n]
        return self

    async def to_list(self, length=None):
        return [dict(d) for d in self._docs]


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []
        self.unique_fields = set()
        self.fail_next = None

    def _touch(self):
        if self.fail_next is not None:
            exc, self.fail_next = self.fail_next, None
            raise exc

    def _check_unique(self, doc, own_id=None):
        for field in self.unique_fields:
            for other in self.docs:
                if other["_id"] != own_id and other.get(field) == doc.get(field):
                    raise DuplicateKeyError(f"E11000 duplicate key error collection: {self.name} index: {field}_1", 11000)

    def _find(self, query):
        return next((d for d in self.docs if _matches(d, query)), None)

    async def create_index(self, field, unique=False):
        if unique:
            self.unique_fields.add(field)
        return f"{field}_1"

    async def insert_one(self, doc):
        self._touch()
        doc.setdefault("_id", ObjectId())
        self._check_unique(doc)
        self.docs.append(dict(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, query):
        self._touch()
        doc = self._find(query)
        return dict(doc) if doc else None

    def find(self, query, projection=None):
        self._touch()
        return FakeCursor([_project(d, projection) for d in self.docs if _matches(d, query)])

    async def find_one_and_update(self, query, update, return_document=ReturnDocument.BEFORE):
        self._touch()
        doc = self._find(query)
        if doc is None:
            return None
        updated = {**doc, **update["$set"]}
        self._check_unique(updated, own_id=doc["_id"])
        self.docs[self.docs.index(doc)] = updated
        return dict(updated if return_document == ReturnDocument.AFTER else doc)

    async def find_one_and_delete(self, query):
        self._touch()
        doc = self._find(query)
        if doc is None:
            return None
        self.docs.remove(doc)
        return dict(doc)


class FakeDatabase:
    def __init__(self):
        self.collections = {}

    def __getitem__(self, name):
        return self.collections.setdefault(name, FakeCollection(name))


class FakeClient:
    def __init__(self, factory, uri, **kwargs):
        self.factory = factory
        self.uri = uri
        self.kwargs = kwargs
        self.closed = False
        self.admin = SimpleNamespace(command=self._command)

    async def _command(self, name):
        await asyncio.sleep(0.01)
        if self.factory.failures_left > 0:
            self.factory.failures_left -= 1
            raise ServerSelectionTimeoutError("No servers found yet")
        return {"ok": 1}

    def __getitem__(self, name):
        return self.factory.databases.setdefault(name, FakeDatabase())

    def close(self):
        self.closed = True


class FakeClientFactory:
    """Callable standing in for AsyncIOMotorClient; records every client built."""

    def __init__(self, failures=0):
        self.failures_left = failures
        self.clients = []
        self.databases = {}

    def __call__(self, uri, **kwargs):
        client = FakeClient(self, uri, **kwargs)
        self.clients.append(client)
        return client

    def collection(self, name, db_name="test_db"):
        return self.databases.setdefault(db_name, FakeDatabase())[name]


@pytest.fixture
def client_factory():
    return FakeClientFactory()


@pytest.fixture
def connections(client_factory):
    return ConnectionManager(
        "mongodb://fake:27017",
        "test_db",
        unique_email_collections=[STUDENT.collection, INSTRUCTOR.collection],
        client_factory=client_factory,
    )


@pytest.fixture
def students(connections):
    return EntityRepository(STUDENT, connections, Student)


@pytest.fixture
def instructors(connections):
    return EntityRepository(INSTRUCTOR, connections, Instructor)


@pytest.fixture
def api(connections):
    app = create_app(connections)
    with TestClient(app) as client:
        yield client
