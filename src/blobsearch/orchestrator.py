"""Store/index orchestration.

:class:`StoreOrchestrator` keeps a content store and a search index loosely
consistent without transactions:

- ``store_and_index`` stores first, then indexes. If indexing fails the blob
  stays behind (orphan blobs are harmless, they are addressed by hash) and the
  error reaches the caller, who retries ``index`` with the hash already known.
- ``get_by_id`` returns a ``MetadataAndPayload`` with ``metadata=None`` and an
  empty payload for unknown ids instead of raising.
- ``search_and_fetch`` drops items whose payload cannot be fetched and leaves
  ``total_elements`` as reported by the search, so a page may hold fewer items
  than the total suggests.

Nothing here retries; retry policy belongs to the caller or the adapters.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List

from blobsearch.errors import NotFound, StoreUnavailable
from blobsearch.interfaces import ContentStore, QueryTranslator, SearchIndex
from blobsearch.models import (
    DEFAULT_PAGE_SIZE,
    DocumentMetadata,
    IdAndHash,
    IndexOptions,
    MetadataAndPayload,
    Page,
    PageRequest,
)
from blobsearch.query import ID_FIELD, Query, equals

LOGGER = logging.getLogger(__name__)

DEFAULT_FETCH_CONCURRENCY = 8


class StoreOrchestrator:
    """Coordinates the content store and the search index.

    Holds no state beyond the adapter handles, so one instance may be shared
    across threads.
    """

    def __init__(
        self,
        content_store: ContentStore,
        search_index: SearchIndex,
        *,
        translator: QueryTranslator | None = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        fetch_concurrency: int = DEFAULT_FETCH_CONCURRENCY,
    ) -> None:
        if default_page_size < 1:
            raise ValueError("default_page_size must be >= 1")
        if fetch_concurrency < 1:
            raise ValueError("fetch_concurrency must be >= 1")
        self.content_store = content_store
        self.search_index = search_index
        self.translator = translator or search_index.translator
        self.default_page_size = default_page_size
        self.fetch_concurrency = fetch_concurrency

    def store(self, payload: bytes) -> str:
        """Store a payload and return its content hash. Nothing is indexed."""
        return self.content_store.store(payload)

    def index(
        self, index_name: str, content_hash: str, options: IndexOptions | None = None
    ) -> IdAndHash:
        """Index metadata for ``content_hash``.

        The hash is not checked against the content store: indexing may come
        before or after the payload is stored.
        """
        options = options or IndexOptions()
        document_id = self.search_index.upsert(
            index_name,
            options.document_id,
            content_hash,
            options.content_type,
            options.fields,
        )
        return IdAndHash(index_name=index_name, document_id=document_id, content_hash=content_hash)

    def store_and_index(
        self, payload: bytes, index_name: str, options: IndexOptions | None = None
    ) -> IdAndHash:
        content_hash = self.store(payload)
        try:
            return self.index(index_name, content_hash, options)
        except Exception:
            LOGGER.warning(
                "Stored %s but indexing into %s failed; retry index() with this hash",
                content_hash,
                index_name,
            )
            raise

    def get_by_hash(self, index_name: str, content_hash: str) -> bytes:
        """Fetch a payload by hash. ``index_name`` is accepted for symmetry only."""
        return self.content_store.fetch(content_hash)

    def get_metadata_by_id(self, index_name: str, document_id: str) -> DocumentMetadata | None:
        page = self.search(index_name, equals(ID_FIELD, document_id), PageRequest(page=0, size=1))
        if not page.content:
            LOGGER.warning("Content [index=%s, id=%s] not found", index_name, document_id)
            return None
        return page.content[0]

    def get_by_id(self, index_name: str, document_id: str) -> MetadataAndPayload:
        metadata = self.get_metadata_by_id(index_name, document_id)
        if metadata is None:
            return MetadataAndPayload(metadata=None, payload=b"")
        return MetadataAndPayload(
            metadata=metadata,
            payload=self.get_by_hash(index_name, metadata.content_hash),
        )

    def search(
        self,
        index_name: str,
        query: Query | None = None,
        page_request: PageRequest | None = None,
    ) -> Page[DocumentMetadata]:
        page_request = page_request or PageRequest(page=0, size=self.default_page_size)
        native_query = self.translator.translate(query, page_request.sort)
        return self.search_index.search(index_name, native_query, page_request)

    def search_and_fetch(
        self,
        index_name: str,
        query: Query | None = None,
        page_request: PageRequest | None = None,
        *,
        max_workers: int | None = None,
    ) -> Page[MetadataAndPayload]:
        """Search, then fetch every payload in the page.

        Fetches run concurrently, bounded by ``max_workers`` (defaults to
        ``fetch_concurrency``). Results keep the search order. Items whose
        fetch fails are dropped; ``total_elements`` is left untouched.
        """
        page = self.search(index_name, query, page_request)
        workers = max(1, min(max_workers or self.fetch_concurrency, len(page.content) or 1))

        if workers == 1:
            content = [self._fetch_item(index_name, metadata) for metadata in page.content]
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="blobsearch-fetch") as pool:
                futures: List[Future] = [
                    pool.submit(self._fetch_item, index_name, metadata) for metadata in page.content
                ]
                content = [future.result() for future in futures]

        fetched = [item for item in content if item is not None]
        if len(fetched) < len(page.content):
            LOGGER.warning(
                "Dropped %d of %d results from %s: payload fetch failed",
                len(page.content) - len(fetched),
                len(page.content),
                index_name,
            )
        return Page(
            content=fetched,
            total_elements=page.total_elements,
            page_number=page.page_number,
            page_size=page.page_size,
        )

    def create_index(self, index_name: str) -> None:
        self.search_index.create_index(index_name)

    def _fetch_item(self, index_name: str, metadata: DocumentMetadata) -> MetadataAndPayload | None:
        try:
            payload = self.get_by_hash(index_name, metadata.content_hash)
        except (NotFound, StoreUnavailable) as exc:
            LOGGER.error("Error while fetching %s: %s", metadata.content_hash, exc)
            return None
        return MetadataAndPayload(metadata=metadata, payload=payload)
