"""Shared fixtures and test doubles."""

from __future__ import annotations

import hashlib
import threading
from pathlib import Path

import pytest

from blobsearch.errors import NotFound, StoreUnavailable
from blobsearch.index.storage import SQLiteSearchIndex
from blobsearch.orchestrator import StoreOrchestrator


class MemoryContentStore:
    """Dict-backed content store that records calls."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.store_calls = 0
        self.fetch_calls: list[str] = []
        self.available = True
        self._lock = threading.Lock()

    def store(self, payload: bytes) -> str:
        with self._lock:
            self.store_calls += 1
        if not self.available:
            raise StoreUnavailable("blob store down")
        content_hash = hashlib.sha256(payload).hexdigest()
        self.blobs[content_hash] = bytes(payload)
        return content_hash

    def fetch(self, content_hash: str) -> bytes:
        with self._lock:
            self.fetch_calls.append(content_hash)
        if not self.available:
            raise StoreUnavailable("blob store down")
        try:
            return self.blobs[content_hash]
        except KeyError:
            raise NotFound("Unknown content hash: %s", content_hash) from None


@pytest.fixture
def content_store() -> MemoryContentStore:
    return MemoryContentStore()


@pytest.fixture
def search_index(tmp_path: Path):
    index = SQLiteSearchIndex(tmp_path / "index.db")
    yield index
    index.close()


@pytest.fixture
def orchestrator(content_store: MemoryContentStore, search_index: SQLiteSearchIndex) -> StoreOrchestrator:
    return StoreOrchestrator(content_store, search_index, fetch_concurrency=4)
