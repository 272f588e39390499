"""Shared fixtures: an in-memory MongoDB (mongomock) behind Motor-style async calls."""

import os
import sys
from pathlib import Path

import mongomock
import pytest
from pymongo.errors import AutoReconnect

BACKEND_DIR = Path(__file__).resolve().parents[1] / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

os.environ.setdefault("MONGO_URL", "mongodb://localhost:27017")
os.environ.setdefault("DB_NAME", "qazaqcode_test")

from app import config  # noqa: E402

# Every module that does `from app.database import db`
DB_MODULES = [
    "app.deps",
    "app.services.scoring",
    "app.services.progress",
    "app.services.ratings",
    "app.routes.tests",
]


class AsyncCursor:
    def __init__(self, cursor):
        self._cursor = cursor

    def sort(self, *args, **kwargs):
        self._cursor = self._cursor.sort(*args, **kwargs)
        return self

    async def to_list(self, length=None):
        docs = list(self._cursor)
        return docs if length is None else docs[:length]


class AsyncCollection:
    """Awaitable facade over a mongomock collection, with injectable failures"""

    def __init__(self, collection):
        self._collection = collection
        self._failures = {}
        self.calls = []

    @property
    def sync(self):
        return self._collection

    def fail_next(self, method, times=1, error=None):
        self._failures[method] = [times, error or AutoReconnect("connection reset by peer")]

    def find(self, *args, **kwargs):
        self.calls.append("find")
        return AsyncCursor(self._collection.find(*args, **kwargs))

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        method = getattr(self._collection, name)

        async def call(*args, **kwargs):
            self.calls.append(name)
            failure = self._failures.get(name)
            if failure and failure[0] > 0:
                failure[0] -= 1
                raise failure[1]
            return method(*args, **kwargs)

        return call


class AsyncDatabase:
    def __init__(self, database):
        self._database = database
        self._collections = {}

    @property
    def sync(self):
        return self._database

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = AsyncCollection(self._database[name])
        return self._collections[name]

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]


@pytest.fixture(autouse=True)
def progress_config(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "PROGRESS_RETRY_DELAY", 0)
    monkeypatch.setattr(config, "PROGRESS_SAVE_ATTEMPTS", 3)
    monkeypatch.setattr(config, "PROGRESS_ERROR_LOG", tmp_path / "logs" / "progress-errors.log")
    monkeypatch.setattr(config, "STRICT_ANSWER_VALIDATION", False)
    return config


@pytest.fixture
def mock_db(monkeypatch):
    database = AsyncDatabase(mongomock.MongoClient()["qazaqcode_test"])
    for module in DB_MODULES:
        monkeypatch.setattr(f"{module}.db", database)
    return database


def make_test_doc(test_id="test_t1", group_id="group_1", points=(2, 3), correct=("A", "B"),
                  deadline=None, title="Loops quiz"):
    """Test document whose question i is "Q{i+1}" with options A, B, C"""
    questions = []
    for i, (pts, right) in enumerate(zip(points, correct)):
        questions.append({
            "question_id": f"Q{i + 1}",
            "text": f"Question {i + 1}",
            "points": pts,
            "options": [
                {"option_id": opt, "text": opt, "is_correct": opt == right}
                for opt in ("A", "B", "C")
            ],
        })
    return {
        "test_id": test_id,
        "group_id": group_id,
        "title": title,
        "time_limit": 30,
        "deadline": deadline,
        "questions": questions,
        "created_by": "user_teacher",
        "created_at": "2026-09-01T08:00:00+00:00",
    }
