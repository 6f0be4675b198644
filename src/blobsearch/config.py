"""Application configuration defaults."""

from __future__ import annotations

import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Mapping

from blobsearch.index.storage import SQLiteSearchIndex
from blobsearch.models import DEFAULT_PAGE_SIZE
from blobsearch.orchestrator import DEFAULT_FETCH_CONCURRENCY, StoreOrchestrator
from blobsearch.storage.content import FileSystemContentStore

ENV_PREFIX = "BLOBSEARCH_"


def _get_default_data_dir() -> Path:
    """Get the default data directory based on platform and execution context."""
    user_dir = Path.home() / "Documents" / "BlobSearch"

    if getattr(sys, "frozen", False):
        return user_dir

    # When running from source, prefer local data/ if it exists
    local_dir = Path("data")
    if local_dir.exists():
        return local_dir

    return user_dir


@dataclass(slots=True)
class AppConfig:
    data_dir: Path | None = None
    db_path: Path | None = None
    blob_dir: Path | None = None
    default_page_size: int = DEFAULT_PAGE_SIZE
    fetch_concurrency: int = DEFAULT_FETCH_CONCURRENCY

    def __post_init__(self) -> None:
        if self.data_dir is None:
            self.data_dir = _get_default_data_dir()
        if self.db_path is None:
            self.db_path = Path(self.data_dir) / "blobsearch.db"
        if self.blob_dir is None:
            self.blob_dir = Path(self.data_dir) / "blobs"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AppConfig":
        """Build a config from ``BLOBSEARCH_*`` environment variables."""
        env = os.environ if environ is None else environ

        def _path(name: str) -> Path | None:
            value = env.get(ENV_PREFIX + name)
            return Path(value) if value else None

        def _int(name: str, default: int) -> int:
            value = env.get(ENV_PREFIX + name)
            if not value:
                return default
            try:
                return int(value)
            except ValueError:
                raise ValueError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}") from None

        return cls(
            data_dir=_path("DATA_DIR"),
            db_path=_path("DB"),
            blob_dir=_path("BLOB_DIR"),
            default_page_size=_int("PAGE_SIZE", DEFAULT_PAGE_SIZE),
            fetch_concurrency=_int("FETCH_CONCURRENCY", DEFAULT_FETCH_CONCURRENCY),
        )

    def _resolve(self, path: Path, base_dir: Path | None) -> Path:
        if Path(path).is_absolute() or base_dir is None:
            return Path(path)
        return base_dir / path

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        return self._resolve(self.db_path, base_dir)

    def resolve_blob_dir(self, base_dir: Path | None = None) -> Path:
        return self._resolve(self.blob_dir, base_dir)


@contextmanager
def open_orchestrator(config: AppConfig, base_dir: Path | None = None) -> Iterator[StoreOrchestrator]:
    """Wire the local adapters described by ``config`` and close them afterwards."""
    db_path = config.resolve_db_path(base_dir)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    content_store = FileSystemContentStore(config.resolve_blob_dir(base_dir))
    search_index = SQLiteSearchIndex(db_path)
    try:
        yield StoreOrchestrator(
            content_store,
            search_index,
            default_page_size=config.default_page_size,
            fetch_concurrency=config.fetch_concurrency,
        )
    finally:
        search_index.close()
