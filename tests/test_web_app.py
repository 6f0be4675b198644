"""Tests for the FastAPI web application."""

from __future__ import annotations

import base64
import hashlib
import json
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from blobsearch.config import AppConfig
from blobsearch.errors import IndexUnavailable, StoreUnavailable
from blobsearch.index.storage import SQLiteSearchIndex
from blobsearch.storage.content import FileSystemContentStore
from blobsearch.web.app import app


@pytest.fixture
def client(tmp_path: Path):
    app.state.config = AppConfig(data_dir=tmp_path / "data", default_page_size=20)
    with TestClient(app) as test_client:
        yield test_client
    app.state.config = None


def _put(client: TestClient, index: str, payload: bytes, doc_id: str, **fields) -> dict:
    params = {"id": doc_id}
    if fields:
        params["fields"] = json.dumps(fields)
    response = client.post(f"/store_index/{index}", content=payload, params=params)
    assert response.status_code == 200, response.text
    return response.json()


class TestHealth:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestStoreAndIndexEndpoints:
    """Tests for /store, /index and /store_index."""

    def test_store_returns_hash(self, client: TestClient) -> None:
        response = client.post("/store", content=b"hello")

        assert response.status_code == 200
        assert response.json() == {"hash": hashlib.sha256(b"hello").hexdigest()}

    def test_index_existing_hash(self, client: TestClient) -> None:
        content_hash = client.post("/store", content=b"hello").json()["hash"]

        response = client.post(
            "/index",
            json={"index": "docs", "hash": content_hash, "id": "greeting", "fields": {"lang": "en"}},
        )

        assert response.status_code == 200
        assert response.json() == {"index": "docs", "id": "greeting", "hash": content_hash}

    def test_index_accepts_field_list(self, client: TestClient) -> None:
        response = client.post(
            "/index",
            json={"index": "docs", "hash": "abc", "fields": [{"name": "year", "value": 2020}]},
        )

        body = response.json()
        assert response.status_code == 200
        assert len(body["id"]) == 32

    def test_index_rejects_duplicate_field_names(self, client: TestClient) -> None:
        response = client.post(
            "/index",
            json={
                "index": "docs",
                "hash": "abc",
                "fields": [{"name": "a", "value": 1}, {"name": "a", "value": 2}],
            },
        )
        assert response.status_code == 400

    def test_index_rejects_reserved_field_names(self, client: TestClient) -> None:
        response = client.post(
            "/index", json={"index": "docs", "hash": "abc", "fields": {"_id": "other"}}
        )
        assert response.status_code == 400
        assert "reserved" in response.json()["detail"]

    def test_store_index(self, client: TestClient) -> None:
        body = _put(client, "docs", b"hello", "d1", lang="en")

        assert body["id"] == "d1"
        assert body["hash"] == hashlib.sha256(b"hello").hexdigest()

    def test_store_index_invalid_fields_json(self, client: TestClient) -> None:
        response = client.post("/store_index/docs", content=b"x", params={"fields": "{oops"})
        assert response.status_code == 400
        assert "Invalid fields JSON" in response.json()["detail"]

    def test_store_index_fields_must_be_object(self, client: TestClient) -> None:
        response = client.post("/store_index/docs", content=b"x", params={"fields": "[1, 2]"})
        assert response.status_code == 400

    def test_store_unavailable(self, client: TestClient) -> None:
        with patch.object(FileSystemContentStore, "store", side_effect=StoreUnavailable("disk gone")):
            response = client.post("/store", content=b"hello")

        assert response.status_code == 503
        assert "disk gone" in response.json()["detail"]


class TestFetchEndpoints:
    """Tests for /fetch, /metadata and /documents."""

    def test_fetch_by_hash(self, client: TestClient) -> None:
        body = _put(client, "docs", b"\x00\x01payload", "bin")

        response = client.get(f"/fetch/docs/{body['hash']}")

        assert response.status_code == 200
        assert response.content == b"\x00\x01payload"
        assert response.headers["content-type"] == "application/octet-stream"

    def test_fetch_unknown_hash(self, client: TestClient) -> None:
        response = client.get(f"/fetch/docs/{'0' * 64}")
        assert response.status_code == 404

    def test_metadata(self, client: TestClient) -> None:
        body = _put(client, "docs", b"hello", "d1", lang="en")

        response = client.get("/metadata/docs/d1")

        assert response.status_code == 200
        assert response.json() == {
            "index": "docs",
            "id": "d1",
            "hash": body["hash"],
            "content_type": None,
            "fields": [{"name": "lang", "value": "en"}],
        }

    def test_metadata_missing(self, client: TestClient) -> None:
        assert client.get("/metadata/docs/nope").status_code == 404

    def test_document_uses_content_type(self, client: TestClient) -> None:
        client.post(
            "/store_index/docs", content=b"hello", params={"id": "d1", "content_type": "text/plain"}
        )

        response = client.get("/documents/docs/d1")

        assert response.status_code == 200
        assert response.content == b"hello"
        assert response.headers["content-type"].startswith("text/plain")

    def test_document_missing(self, client: TestClient) -> None:
        response = client.get("/documents/docs/nope")
        assert response.status_code == 404
        assert "not found" in response.json()["detail"]


class TestSearchEndpoints:
    """Tests for /search and /search_fetch."""

    @pytest.fixture
    def seeded(self, client: TestClient) -> TestClient:
        _put(client, "docs", b"one", "d1", lang="en", year=2019)
        _put(client, "docs", b"two", "d2", lang="fr", year=2020)
        _put(client, "docs", b"three", "d3", lang="en", year=2021)
        return client

    def test_search_without_body_returns_all(self, seeded: TestClient) -> None:
        response = seeded.post("/search/docs")

        body = response.json()
        assert response.status_code == 200
        assert body["total_elements"] == 3
        assert body["page_number"] == 0
        assert body["page_size"] == 20
        assert [item["id"] for item in body["content"]] == ["d1", "d2", "d3"]

    def test_search_with_query(self, seeded: TestClient) -> None:
        response = seeded.post(
            "/search/docs", json={"query": {"equals": {"field": "lang", "value": "en"}}}
        )

        assert [item["id"] for item in response.json()["content"]] == ["d1", "d3"]

    def test_search_pagination_and_sort(self, seeded: TestClient) -> None:
        response = seeded.post(
            "/search/docs", json={"page": 1, "size": 2, "sort": "year", "direction": "desc"}
        )

        body = response.json()
        assert body["total_elements"] == 3
        assert body["total_pages"] == 2
        assert [item["id"] for item in body["content"]] == ["d1"]

    def test_search_range(self, seeded: TestClient) -> None:
        response = seeded.post(
            "/search/docs", json={"query": {"range": {"field": "year", "min": 2020}}}
        )
        assert [item["id"] for item in response.json()["content"]] == ["d2", "d3"]

    def test_search_reserved_field(self, seeded: TestClient) -> None:
        response = seeded.post(
            "/search/docs", json={"query": {"equals": {"field": "_hash", "value": "x"}}}
        )
        assert response.status_code == 400

    def test_search_malformed_query(self, seeded: TestClient) -> None:
        response = seeded.post("/search/docs", json={"query": {"equals": {}, "in": {}}})
        assert response.status_code == 400

    def test_search_overflowing_integer(self, seeded: TestClient) -> None:
        response = seeded.post(
            "/search/docs", json={"query": {"equals": {"field": "year", "value": 2**64}}}
        )
        assert response.status_code == 400

    def test_search_long_in_list(self, seeded: TestClient) -> None:
        response = seeded.post(
            "/search/docs", json={"query": {"in": {"field": "year", "values": list(range(1000, 3000))}}}
        )
        assert response.status_code == 200
        assert response.json()["total_elements"] == 3

    def test_search_invalid_page(self, seeded: TestClient) -> None:
        response = seeded.post("/search/docs", json={"page": -1})
        assert response.status_code == 422

    def test_search_unknown_index(self, client: TestClient) -> None:
        response = client.post("/search/missing")
        assert response.status_code == 200
        assert response.json()["content"] == []

    def test_search_index_unavailable(self, client: TestClient) -> None:
        with patch.object(SQLiteSearchIndex, "search", side_effect=IndexUnavailable("locked")):
            response = client.post("/search/docs")
        assert response.status_code == 503

    def test_search_fetch(self, seeded: TestClient) -> None:
        response = seeded.post(
            "/search_fetch/docs", json={"query": {"in": {"field": "lang", "values": ["fr", "en"]}}}
        )

        body = response.json()
        assert response.status_code == 200
        assert body["total_elements"] == 3
        payloads = [base64.b64decode(item["payload"]) for item in body["content"]]
        assert payloads == [b"one", b"two", b"three"]
        assert body["content"][0]["metadata"]["id"] == "d1"


class TestCreateIndex:
    def test_create_index_idempotent(self, client: TestClient) -> None:
        first = client.post("/config/index/docs")
        second = client.post("/config/index/docs")

        assert first.status_code == 200
        assert second.json() == {"status": "ok", "index": "docs"}
