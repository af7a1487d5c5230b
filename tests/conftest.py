"""Shared pytest fixtures for stickygraph tests."""

from __future__ import annotations

import os
import tempfile

# Keep test runs from writing into the user's log directory
os.environ.setdefault("STICKYGRAPH_LOG_DIR", tempfile.mkdtemp(prefix="stickygraph-logs-"))

import pytest

from stickygraph.db.sqlite_store import StructuredStore
from stickygraph.db.vector_index import SemanticIndex
from stickygraph.exceptions import EmbeddingError
from stickygraph.graph import GraphManager
from stickygraph.notifications import LocalNotificationChannel


class FakeEmbedder:
    """Deterministic 4-dim embedder keyed on topic words.

    Each axis is a topic, so texts sharing a topic land close together:
    - axis 0: caching (cache, redis)
    - axis 1: auth (auth, login, password)
    - axis 2: deployment (deploy, kubernetes)
    - axis 3: design (design, layout)
    """

    dimension = 4
    TOPICS = {
        "cache": 0,
        "redis": 0,
        "auth": 1,
        "login": 1,
        "password": 1,
        "deploy": 2,
        "kubernetes": 2,
        "design": 3,
        "layout": 3,
    }

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("provider unavailable")
        vector = [0.01, 0.01, 0.01, 0.01]
        lowered = text.lower()
        for word, axis in self.TOPICS.items():
            if word in lowered:
                vector[axis] += 1.0
        return vector


@pytest.fixture
def store(tmp_path):
    """Fresh structured store in a temp directory."""
    s = StructuredStore(tmp_path / "graph.db")
    yield s
    s.close()


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def failing_embedder():
    return FakeEmbedder(fail=True)


@pytest.fixture
def index(tmp_path, fake_embedder):
    """Enabled semantic index backed by LanceDB in a temp directory."""
    idx = SemanticIndex(tmp_path / "vectors", fake_embedder)
    yield idx
    idx.close()


@pytest.fixture
def disabled_index(tmp_path):
    """Semantic index with no embedder: every call is a no-op."""
    return SemanticIndex(tmp_path / "vectors", None)


@pytest.fixture
def events():
    """Recorded mutation events, in emission order."""
    return []


@pytest.fixture
def manager(store, disabled_index, events):
    """Graph manager without semantic search, recording events."""
    return GraphManager(store, disabled_index, LocalNotificationChannel([events.append]))


@pytest.fixture
def semantic_manager(store, index, events):
    """Graph manager with the fake embedder wired in."""
    return GraphManager(store, index, LocalNotificationChannel([events.append]))
