"""Engine-agnostic query model.

A query is a tree of :class:`Query` nodes. Leaves test one field
(``equals``, ``in``, ``range``, ``exists``); composites (``and``, ``or``)
combine children. An empty composite matches every document.

Example::

    q = and_(equals("lang", "en"), or_(exists("draft"), range_("year", 2020, None)))
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Tuple

from blobsearch.errors import QueryError

ID_FIELD = "_id"


class QueryKind(str, Enum):
    EQUALS = "equals"
    IN = "in"
    RANGE = "range"
    EXISTS = "exists"
    AND = "and"
    OR = "or"


LEAF_KINDS = frozenset({QueryKind.EQUALS, QueryKind.IN, QueryKind.RANGE, QueryKind.EXISTS})


@dataclass(slots=True, frozen=True)
class Query:
    """Immutable node of a predicate tree.

    Which attributes are meaningful depends on ``kind``:

    - ``EQUALS``: ``field``, ``values[0]``
    - ``IN``: ``field``, ``values``
    - ``RANGE``: ``field``, ``low``, ``high`` (None means unbounded)
    - ``EXISTS``: ``field``
    - ``AND`` / ``OR``: ``children``
    """

    kind: QueryKind
    field: str | None = None
    values: Tuple[Any, ...] = ()
    low: Any = None
    high: Any = None
    children: Tuple["Query", ...] = ()

    @property
    def is_leaf(self) -> bool:
        return self.kind in LEAF_KINDS

    @property
    def value(self) -> Any:
        return self.values[0] if self.values else None

    def and_(self, *others: "Query") -> "Query":
        return and_(self, *others)

    def or_(self, *others: "Query") -> "Query":
        return or_(self, *others)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the JSON form accepted by :func:`query_from_dict`."""
        if self.kind is QueryKind.EQUALS:
            return {"equals": {"field": self.field, "value": self.value}}
        if self.kind is QueryKind.IN:
            return {"in": {"field": self.field, "values": list(self.values)}}
        if self.kind is QueryKind.RANGE:
            return {"range": {"field": self.field, "min": self.low, "max": self.high}}
        if self.kind is QueryKind.EXISTS:
            return {"exists": {"field": self.field}}
        return {self.kind.value: [child.to_dict() for child in self.children]}


def equals(field: str, value: Any) -> Query:
    return Query(QueryKind.EQUALS, field=field, values=(value,))


def in_(field: str, values: Iterable[Any]) -> Query:
    return Query(QueryKind.IN, field=field, values=tuple(values))


def range_(field: str, min: Any = None, max: Any = None) -> Query:  # noqa: A002
    """Inclusive range; pass None for an open side."""
    return Query(QueryKind.RANGE, field=field, low=min, high=max)


def exists(field: str) -> Query:
    return Query(QueryKind.EXISTS, field=field)


def and_(*children: Query) -> Query:
    return Query(QueryKind.AND, children=_check_children(children))


def or_(*children: Query) -> Query:
    return Query(QueryKind.OR, children=_check_children(children))


def match_all() -> Query:
    return Query(QueryKind.AND)


def _check_children(children: Iterable[Query]) -> Tuple[Query, ...]:
    result = tuple(children)
    for child in result:
        if not isinstance(child, Query):
            raise QueryError(f"Composite children must be Query nodes, got {type(child).__name__}")
    return result


def query_from_dict(data: Mapping[str, Any]) -> Query:
    """Build a query tree from its JSON form.

    Each node is a single-key mapping, e.g. ``{"and": [{"equals": {"field": "a", "value": 1}}]}``.
    """
    if not isinstance(data, Mapping) or len(data) != 1:
        raise QueryError(f"Query node must be a single-key object, got {data!r}")

    ((key, body),) = data.items()
    try:
        kind = QueryKind(key)
    except ValueError:
        raise QueryError(f"Unknown query kind: {key!r}") from None

    if kind in (QueryKind.AND, QueryKind.OR):
        if not isinstance(body, list):
            raise QueryError(f"'{kind.value}' expects a list of queries")
        children = [query_from_dict(child) for child in body]
        return and_(*children) if kind is QueryKind.AND else or_(*children)

    if not isinstance(body, Mapping) or "field" not in body:
        raise QueryError(f"'{kind.value}' expects an object with a 'field' key")
    field_name = body["field"]

    if kind is QueryKind.EQUALS:
        if "value" not in body:
            raise QueryError("'equals' requires a 'value'")
        return equals(field_name, body["value"])
    if kind is QueryKind.IN:
        values = body.get("values")
        if not isinstance(values, list):
            raise QueryError("'in' requires a 'values' list")
        return in_(field_name, values)
    if kind is QueryKind.RANGE:
        return range_(field_name, body.get("min"), body.get("max"))
    return exists(field_name)
