"""
Pytest configuration and fixtures for mongo-import.

Provides in-process stand-ins for MongoDB clients/collections and sinks so the
pipeline can be exercised without a database or broker.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Iterable, Optional

import pytest
from bson import ObjectId

from mongo_import.pipeline import Message, Sink


class FakeCollection:
    """Collection supporting the `find(filter, sort=, limit=)` call the scanner makes.

    `fail_on` lists 1-based find() call numbers that raise; `fail_after`
    maps a call number to how many documents are yielded before raising.
    """

    def __init__(self, docs: Iterable[dict] = (), *, fail_on=(), fail_after=None):
        self.docs = sorted(docs, key=lambda d: d["_id"])
        self.fail_on = set(fail_on)
        self.fail_after = dict(fail_after or {})
        self.calls: list[dict] = []
        self._lock = threading.Lock()

    def insert_many(self, docs: Iterable[dict]) -> None:
        with self._lock:
            self.docs = sorted([*self.docs, *docs], key=lambda d: d["_id"])

    def find(self, filter: Optional[dict] = None, sort=None, limit: int = 0):
        with self._lock:
            self.calls.append({"filter": filter, "sort": sort, "limit": limit})
            call_no = len(self.calls)
            docs = list(self.docs)

        if call_no in self.fail_on:
            raise RuntimeError(f"query failed (call {call_no})")

        gt = (filter or {}).get("_id", {}).get("$gt")
        page = [d for d in docs if gt is None or d["_id"] > gt]
        if limit:
            page = page[:limit]

        if call_no in self.fail_after:
            return _fail_midway(page, self.fail_after[call_no])
        return iter(page)

    @property
    def pages(self) -> int:
        return len(self.calls)


def _fail_midway(page: list[dict], n: int):
    for i, doc in enumerate(page):
        if i == n:
            raise RuntimeError("cursor died")
        yield doc


class FakeDatabase(dict):
    def __missing__(self, name: str) -> FakeCollection:
        coll = FakeCollection()
        self[name] = coll
        return coll


class FakeMongo:
    """Shared server state; `client()` hands out independent client handles."""

    def __init__(self) -> None:
        self.databases: dict[str, FakeDatabase] = {}
        self.clients: list["FakeClient"] = []

    def collection(self, namespace: str) -> FakeCollection:
        db, _, coll = namespace.partition(".")
        return self[db][coll]

    def __getitem__(self, name: str) -> FakeDatabase:
        return self.databases.setdefault(name, FakeDatabase())

    def client(self, uri: str = "mongodb://fake") -> "FakeClient":
        c = FakeClient(self, uri)
        self.clients.append(c)
        return c


class FakeClient:
    def __init__(self, server: FakeMongo, uri: str, *, close_error: Exception | None = None):
        self.server = server
        self.uri = uri
        self.closed = False
        self.close_error = close_error

    def __getitem__(self, name: str) -> FakeDatabase:
        return self.server[name]

    def close(self) -> None:
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class RecordingSink(Sink):
    """Sink that collects every message, optionally slowly."""

    def __init__(self, delay: float = 0.0):
        self.messages: list[Message] = []
        self.closed = False
        self.delay = delay

    def send(self, message: Message) -> None:
        if self.delay:
            time.sleep(self.delay)
        self.messages.append(message)

    def close(self) -> None:
        self.closed = True

    def ids_for(self, topic: str) -> list[str]:
        return [m.document_id for m in self.messages if m.topic == topic]


def make_docs(n: int, **fields: Any) -> list[dict]:
    """n documents with increasing ObjectIds."""
    return [{"_id": ObjectId(), "n": i, **fields} for i in range(n)]


@pytest.fixture
def mongo() -> FakeMongo:
    return FakeMongo()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
