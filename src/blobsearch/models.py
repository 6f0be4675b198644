"""Core blobsearch data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Iterable, List, Mapping, Tuple, TypeVar, Union

FieldValue = Union[str, int, float, bool]
FieldsInput = Union[Mapping[str, FieldValue], Iterable["IndexField"], None]

DEFAULT_PAGE_SIZE = 20
RESERVED_PREFIX = "_"
INTEGER_MIN = -(2**63)
INTEGER_MAX = 2**63 - 1

T = TypeVar("T")


def validate_field_name(name: object) -> str:
    """Return ``name`` if it can be used as an index field name, else raise ValueError."""
    if not isinstance(name, str) or not name:
        raise ValueError(f"Field name must be a non-empty string, got {name!r}")
    if '"' in name or any(ord(char) < 0x20 for char in name):
        raise ValueError(f"Field name contains forbidden characters: {name!r}")
    return name


def is_field_value(value: object) -> bool:
    return isinstance(value, (str, int, float, bool))


def fits_integer(value: int) -> bool:
    """SQLite stores integers as signed 64-bit."""
    return INTEGER_MIN <= value <= INTEGER_MAX


@dataclass(slots=True, frozen=True)
class IndexField:
    """Single key/value attribute attached to an indexed document."""

    name: str
    value: FieldValue

    def __post_init__(self) -> None:
        validate_field_name(self.name)
        if self.name.startswith(RESERVED_PREFIX):
            raise ValueError(f"Field name {self.name!r} is reserved")
        if not is_field_value(self.value):
            raise ValueError(
                f"Unsupported value type {type(self.value).__name__} for field {self.name!r}"
            )
        if isinstance(self.value, int) and not fits_integer(self.value):
            raise ValueError(f"Integer value of field {self.name!r} is outside the 64-bit range")


def normalize_fields(fields: FieldsInput) -> Tuple[IndexField, ...]:
    """Convert a mapping or a sequence of IndexField into an ordered tuple.

    Names must be unique within one document.
    """
    if fields is None:
        return ()
    if isinstance(fields, Mapping):
        items = [IndexField(name, value) for name, value in fields.items()]
    else:
        items = []
        for item in fields:
            if not isinstance(item, IndexField):
                raise ValueError(f"Expected IndexField, got {type(item).__name__}")
            items.append(item)

    seen: set[str] = set()
    for item in items:
        if item.name in seen:
            raise ValueError(f"Duplicate field name: {item.name!r}")
        seen.add(item.name)
    return tuple(items)


@dataclass(slots=True, frozen=True)
class DocumentMetadata:
    """Indexed metadata pointing at one payload in the content store."""

    index_name: str
    document_id: str
    content_hash: str
    content_type: str | None = None
    fields: Tuple[IndexField, ...] = ()

    def fields_dict(self) -> Dict[str, FieldValue]:
        return {item.name: item.value for item in self.fields}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index_name,
            "id": self.document_id,
            "hash": self.content_hash,
            "content_type": self.content_type,
            "fields": [{"name": item.name, "value": item.value} for item in self.fields],
        }


@dataclass(slots=True, frozen=True)
class IdAndHash:
    """Result of an index call: where the metadata lives and what it points at."""

    index_name: str
    document_id: str
    content_hash: str


@dataclass(slots=True, frozen=True)
class IndexOptions:
    """Optional parts of an index request.

    Replaces the per-argument overloads: every default is resolved here.
    """

    document_id: str | None = None
    content_type: str | None = None
    fields: Tuple[IndexField, ...] = ()

    @classmethod
    def build(
        cls,
        *,
        document_id: str | None = None,
        content_type: str | None = None,
        fields: FieldsInput = None,
    ) -> "IndexOptions":
        return cls(
            document_id=document_id or None,
            content_type=content_type,
            fields=normalize_fields(fields),
        )


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(slots=True, frozen=True)
class Sort:
    field: str
    direction: SortDirection = SortDirection.ASC


@dataclass(slots=True, frozen=True)
class PageRequest:
    """Zero-based page request with optional sort."""

    page: int = 0
    size: int = DEFAULT_PAGE_SIZE
    sort: Sort | None = None

    def __post_init__(self) -> None:
        if self.page < 0:
            raise ValueError("Page number must be >= 0")
        if self.size < 1:
            raise ValueError("Page size must be >= 1")

    @property
    def offset(self) -> int:
        return self.page * self.size


@dataclass(slots=True)
class Page(Generic[T]):
    """One page of results.

    ``total_elements`` counts the full matching set, not only ``content``.
    """

    content: List[T]
    total_elements: int
    page_number: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return -(-self.total_elements // self.page_size)

    @property
    def has_next(self) -> bool:
        return self.page_number + 1 < self.total_pages

    def __len__(self) -> int:
        return len(self.content)


@dataclass(slots=True)
class MetadataAndPayload:
    """Metadata joined with its payload.

    ``metadata`` is None when the document does not exist; the payload is then empty.
    """

    metadata: DocumentMetadata | None
    payload: bytes = field(default=b"")

    @property
    def found(self) -> bool:
        return self.metadata is not None
