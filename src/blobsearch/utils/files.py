"""Utility helpers for hashing and walking files."""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import Iterable, Iterator

SHA256_HEX = re.compile(r"^[0-9a-f]{64}$")


def iter_file_paths(inputs: Iterable[Path]) -> Iterator[Path]:
    """Yield regular files from input paths, descending into directories."""
    for item in inputs:
        if item.is_dir():
            yield from iter_file_paths(sorted(child for child in item.rglob("*") if child.is_file()))
        elif item.is_file():
            yield item


def compute_sha256_bytes(payload: bytes) -> str:
    """Compute SHA256 hex digest for an in-memory payload."""
    return hashlib.sha256(payload).hexdigest()


def is_sha256_hex(value: str) -> bool:
    return bool(SHA256_HEX.match(value))
