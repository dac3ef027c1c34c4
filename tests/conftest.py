"""
Shared fixtures: an in-memory stand-in for the Supabase service client,
a deterministic clock, and a few callers.
"""

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from videogen import metrics
from videogen.pipeline import db
from videogen.pipeline import project_service
from videogen.pipeline.models import CallerContext, Scene


class FakeQuery:
    """Just enough of the postgrest builder for the pipeline's queries."""

    def __init__(self, rows: list):
        self._rows = rows
        self._op = "select"
        self._payload = None
        self._filters = []
        self._order = None
        self._limit = None

    def select(self, *columns):
        self._op = "select"
        return self

    def insert(self, row):
        self._op, self._payload = "insert", row
        return self

    def update(self, patch):
        self._op, self._payload = "update", patch
        return self

    def upsert(self, row):
        self._op, self._payload = "upsert", row
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, column, value):
        self._filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _matches(self, row) -> bool:
        return all(row.get(column) == value for column, value in self._filters)

    def execute(self):
        if self._op == "insert":
            self._rows.append(copy.deepcopy(self._payload))
            return SimpleNamespace(data=[copy.deepcopy(self._payload)])

        if self._op == "upsert":
            for row in self._rows:
                if row.get("id") == self._payload.get("id"):
                    row.update(copy.deepcopy(self._payload))
                    return SimpleNamespace(data=[copy.deepcopy(row)])
            self._rows.append(copy.deepcopy(self._payload))
            return SimpleNamespace(data=[copy.deepcopy(self._payload)])

        matched = [row for row in self._rows if self._matches(row)]

        if self._op == "update":
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return SimpleNamespace(data=copy.deepcopy(matched))

        if self._op == "delete":
            for row in matched:
                self._rows.remove(row)
            return SimpleNamespace(data=copy.deepcopy(matched))

        if self._order:
            column, desc = self._order
            matched = sorted(matched, key=lambda r: r.get(column) or "", reverse=desc)
        if self._limit is not None:
            matched = matched[:self._limit]
        return SimpleNamespace(data=copy.deepcopy(matched))


class FakeBucket:
    def __init__(self, name: str, files: dict):
        self.name = name
        self._files = files

    def upload(self, path, file, file_options=None):
        self._files[f"{self.name}/{path}"] = file

    def get_public_url(self, path):
        return f"https://storage.test/{self.name}/{path}"


class FakeSupabase:
    def __init__(self):
        self.tables: dict[str, list] = {}
        self.files: dict[str, bytes] = {}
        self.storage = SimpleNamespace(from_=lambda bucket: FakeBucket(bucket, self.files))

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self.tables.setdefault(name, []))

    def rows(self, name: str) -> list:
        return self.tables.get(name, [])


@pytest.fixture(autouse=True)
def fake_db(monkeypatch):
    client = FakeSupabase()
    monkeypatch.setattr(db, "_service_client", client)
    return client


@pytest.fixture(autouse=True)
def fresh_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture(autouse=True)
def clock(monkeypatch):
    """Every timestamp the store writes is one second after the previous one."""
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    ticks = {"n": 0}

    def _next():
        ticks["n"] += 1
        return (base + timedelta(seconds=ticks["n"])).isoformat()

    monkeypatch.setattr(project_service, "_now_iso", _next)
    return ticks


@pytest.fixture
def alice():
    return CallerContext(user_id="alice")


@pytest.fixture
def bob():
    return CallerContext(user_id="bob")


@pytest.fixture
def scenes():
    return [
        Scene(content="Coffee starts with the bean.", image_prompt="Close-up of roasted coffee beans"),
        Scene(content="Grind it fresh, right before brewing.", image_prompt="Burr grinder with fresh grounds"),
        Scene(content="Pour slowly and let it bloom.", image_prompt="Pour-over kettle above a dripper"),
    ]


@pytest.fixture
def make_project(alice, scenes):
    def _make(caller=None, **fields):
        project = run(project_service.create_project(
            caller or alice,
            title=fields.pop("title", "Morning Coffee"),
            script=fields.pop("script", " ".join(s.content for s in scenes)),
            scenes=fields.pop("scenes", scenes),
            keywords=fields.pop("keywords", ["coffee beans", "pour over"]),
        ))
        if fields:
            project = run(project_service.update_project(caller or alice, project.id, fields))
        return project
    return _make


@pytest.fixture
def profile(fake_db):
    """Alice has a cloned voice and an uploaded talking-head video."""
    fake_db.table("profiles").insert({
        "id": "alice",
        "voice_id": "voice-alice",
        "video_url": "https://cdn.test/alice/face.mp4",
    }).execute()


def run(coro):
    return asyncio.run(coro)
