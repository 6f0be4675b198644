"""Error taxonomy shared by adapters, translator and orchestrator.

Callers retry ``StoreUnavailable`` / ``IndexUnavailable``; ``NotFound`` and
``QueryError`` are not retryable.
"""

from __future__ import annotations


class BlobSearchError(Exception):
    """Base class for all blobsearch errors."""


class StoreUnavailable(BlobSearchError):
    """The content store could not be reached or failed."""


class IndexUnavailable(BlobSearchError):
    """The search index could not be reached or failed."""


class NotFound(BlobSearchError):
    """A content hash or document is unknown."""

    def __init__(self, message: str, *args: object) -> None:
        super().__init__(message % args if args else message)


class QueryError(BlobSearchError, ValueError):
    """A query is malformed or misuses a reserved field name."""
