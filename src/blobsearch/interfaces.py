"""Capability interfaces over the blob store and the search index.

The orchestrator depends only on these protocols, so any backend that
provides the methods (a remote IPFS node, Elasticsearch, an in-memory fake)
can be plugged in.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence

from blobsearch.models import DocumentMetadata, IndexField, Page, PageRequest, Sort
from blobsearch.query import Query


class ContentStore(Protocol):
    """Content-addressed payload storage."""

    def store(self, payload: bytes) -> str:
        """Persist ``payload`` and return its content hash.

        Raises StoreUnavailable when the backend cannot be reached.
        """
        ...

    def fetch(self, content_hash: str) -> bytes:
        """Return the payload for ``content_hash``.

        Raises NotFound for an unknown hash, StoreUnavailable on backend failure.
        """
        ...


class QueryTranslator(Protocol):
    """Maps the query model to a search engine's native query."""

    def translate(self, query: Query | None, sort: Sort | None = None) -> Any:
        ...


class SearchIndex(Protocol):
    """Secondary index of document metadata."""

    translator: QueryTranslator

    def upsert(
        self,
        index_name: str,
        document_id: str | None,
        content_hash: str,
        content_type: str | None,
        fields: Sequence[IndexField],
    ) -> str:
        """Create or fully replace a document and return its id (generated when None)."""
        ...

    def search(
        self, index_name: str, native_query: Any, page_request: PageRequest
    ) -> Page[DocumentMetadata]:
        ...

    def create_index(self, index_name: str) -> None:
        """Create ``index_name``; creating an existing index is not an error."""
        ...
