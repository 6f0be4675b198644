"""Translate the engine-agnostic query model into SQLite queries."""

from __future__ import annotations

import math
import sqlite3
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from blobsearch.errors import QueryError
from blobsearch.models import (
    RESERVED_PREFIX,
    DocumentMetadata,
    IndexField,
    Sort,
    SortDirection,
    fits_integer,
    validate_field_name,
)
from blobsearch.query import ID_FIELD, Query, QueryKind

KIND_STRING = "string"
KIND_NUMBER = "number"
KIND_BOOLEAN = "boolean"

_FIELD_PREDICATE = (
    "EXISTS (SELECT 1 FROM document_fields f "
    "WHERE f.document_id = d.id AND f.name = ?{condition})"
)
_FIELD_VALUE = "(SELECT f.value FROM document_fields f WHERE f.document_id = d.id AND f.name = ?)"


@dataclass(slots=True, frozen=True)
class SQLClause:
    sql: str
    params: Tuple[Any, ...] = ()


MATCH_ALL = SQLClause("1 = 1")
MATCH_NONE = SQLClause("1 = 0")
DEFAULT_ORDER = SQLClause("ORDER BY d.id ASC")


@dataclass(slots=True, frozen=True)
class SQLQuery:
    """Native query of :class:`~blobsearch.index.storage.SQLiteSearchIndex`.

    ``where`` filters the ``documents`` table aliased ``d``; ``order`` is a full
    ``ORDER BY`` clause.
    """

    where: SQLClause = MATCH_ALL
    order: SQLClause = DEFAULT_ORDER


def value_kind(value: Any) -> str:
    """Return the stored kind for a field value; bool is checked before int."""
    if isinstance(value, bool):
        return KIND_BOOLEAN
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            raise QueryError("NaN is not a comparable field value")
        if isinstance(value, int) and not fits_integer(value):
            raise QueryError(f"Integer {value} is outside the 64-bit range")
        return KIND_NUMBER
    if isinstance(value, str):
        return KIND_STRING
    raise QueryError(f"Unsupported value type: {type(value).__name__}")


def storage_value(value: Any) -> Any:
    return int(value) if isinstance(value, bool) else value


def restore_value(kind: str, value: Any) -> Any:
    if kind == KIND_BOOLEAN:
        return bool(value)
    if kind == KIND_STRING:
        return str(value)
    return value


def is_reserved(name: str) -> bool:
    """Names starting with an underscore are internal, except the identifier."""
    return name.startswith(RESERVED_PREFIX) and name != ID_FIELD


def _balanced(joiner: str, clauses: Sequence[SQLClause]) -> SQLClause:
    """Join clauses as a balanced tree so wide composites stay shallow for SQLite."""
    if len(clauses) <= 2:
        return SQLClause(
            joiner.join(f"({clause.sql})" for clause in clauses),
            tuple(param for clause in clauses for param in clause.params),
        )
    middle = len(clauses) // 2
    left = _balanced(joiner, clauses[:middle])
    right = _balanced(joiner, clauses[middle:])
    return SQLClause(f"({left.sql}){joiner}({right.sql})", left.params + right.params)


class SQLQueryTranslator:
    """Maps :class:`~blobsearch.query.Query` trees to :class:`SQLQuery`.

    Composite nodes are translated recursively and parenthesised so nesting
    keeps its precedence. All validation happens here, before the index runs
    anything.
    """

    def translate(self, query: Query | None, sort: Sort | None = None) -> SQLQuery:
        where = MATCH_ALL if query is None else self.where(query)
        return SQLQuery(where=where, order=self.order_by(sort))

    def where(self, query: Query) -> SQLClause:
        if not isinstance(query, Query):
            raise QueryError(f"Expected a Query, got {type(query).__name__}")

        kind = query.kind
        if kind is QueryKind.AND or kind is QueryKind.OR:
            return self._composite(" AND " if kind is QueryKind.AND else " OR ", query.children)

        name = self._field_name(query.field)
        if name == ID_FIELD:
            return self._identifier(query)
        if kind is QueryKind.EQUALS:
            return self._equals(name, query.value)
        if kind is QueryKind.IN:
            return self._in(name, query.values)
        if kind is QueryKind.RANGE:
            return self._range(name, query.low, query.high)
        if kind is QueryKind.EXISTS:
            return SQLClause(_FIELD_PREDICATE.format(condition=""), (name,))
        raise QueryError(f"Unsupported query kind: {kind!r}")

    def order_by(self, sort: Sort | None) -> SQLClause:
        if sort is None:
            return DEFAULT_ORDER
        name = self._field_name(sort.field)
        try:
            direction = "DESC" if SortDirection(sort.direction) is SortDirection.DESC else "ASC"
        except ValueError:
            raise QueryError(f"Unknown sort direction: {sort.direction!r}") from None
        if name == ID_FIELD:
            return SQLClause(f"ORDER BY d.doc_id {direction}, d.id ASC")
        return SQLClause(f"ORDER BY {_FIELD_VALUE} {direction}, d.id ASC", (name,))

    def metadata_from_rows(
        self, row: sqlite3.Row | dict, field_rows: Iterable[sqlite3.Row | dict]
    ) -> DocumentMetadata:
        """Build metadata from a ``documents`` row and its ordered ``document_fields`` rows."""
        fields = tuple(
            IndexField(item["name"], restore_value(item["kind"], item["value"]))
            for item in field_rows
        )
        return DocumentMetadata(
            index_name=row["index_name"],
            document_id=row["doc_id"],
            content_hash=row["hash"],
            content_type=row["content_type"],
            fields=fields,
        )

    def _composite(self, joiner: str, children: Sequence[Query]) -> SQLClause:
        if not children:
            return MATCH_ALL
        return _balanced(joiner, [self.where(child) for child in children])

    def _field_name(self, name: Any) -> str:
        try:
            validate_field_name(name)
        except ValueError as exc:
            raise QueryError(str(exc)) from None
        if is_reserved(name):
            raise QueryError(f"Field name {name!r} is reserved")
        return name

    def _equals(self, name: str, value: Any) -> SQLClause:
        kind = value_kind(value)
        return SQLClause(
            _FIELD_PREDICATE.format(condition=" AND f.kind = ? AND f.value = ?"),
            (name, kind, storage_value(value)),
        )

    def _in(self, name: str, values: Sequence[Any]) -> SQLClause:
        if not values:
            return MATCH_NONE
        by_kind: Dict[str, List[Any]] = {}
        for value in values:
            by_kind.setdefault(value_kind(value), []).append(storage_value(value))

        terms: List[str] = []
        params: List[Any] = [name]
        for kind, kind_values in by_kind.items():
            placeholders = ", ".join("?" for _ in kind_values)
            terms.append(f"(f.kind = ? AND f.value IN ({placeholders}))")
            params.append(kind)
            params.extend(kind_values)
        condition = " AND (" + " OR ".join(terms) + ")"
        return SQLClause(_FIELD_PREDICATE.format(condition=condition), tuple(params))

    def _range(self, name: str, low: Any, high: Any) -> SQLClause:
        kind = self._range_kind(name, low, high)
        if kind is None:
            return SQLClause(_FIELD_PREDICATE.format(condition=""), (name,))

        condition = " AND f.kind = ?"
        params: List[Any] = [name, kind]
        if low is not None:
            condition += " AND f.value >= ?"
            params.append(low)
        if high is not None:
            condition += " AND f.value <= ?"
            params.append(high)
        return SQLClause(_FIELD_PREDICATE.format(condition=condition), tuple(params))

    def _range_kind(self, name: str, low: Any, high: Any) -> str | None:
        kinds = {value_kind(bound) for bound in (low, high) if bound is not None}
        if not kinds:
            return None
        if KIND_BOOLEAN in kinds:
            raise QueryError(f"Range on {name!r} cannot use boolean bounds")
        if len(kinds) > 1:
            raise QueryError(f"Range bounds on {name!r} must have the same type")
        return kinds.pop()

    def _identifier(self, query: Query) -> SQLClause:
        kind = query.kind
        if kind is QueryKind.EXISTS:
            return MATCH_ALL
        if kind is QueryKind.EQUALS:
            return SQLClause("d.doc_id = ?", (self._identifier_value(query.value),))
        if kind is QueryKind.IN:
            if not query.values:
                return MATCH_NONE
            ids = tuple(self._identifier_value(value) for value in query.values)
            placeholders = ", ".join("?" for _ in ids)
            return SQLClause(f"d.doc_id IN ({placeholders})", ids)
        if kind is QueryKind.RANGE:
            parts: List[str] = []
            params: List[Any] = []
            if query.low is not None:
                parts.append("d.doc_id >= ?")
                params.append(self._identifier_value(query.low))
            if query.high is not None:
                parts.append("d.doc_id <= ?")
                params.append(self._identifier_value(query.high))
            if not parts:
                return MATCH_ALL
            return SQLClause(" AND ".join(parts), tuple(params))
        raise QueryError(f"Unsupported query kind for {ID_FIELD}: {kind!r}")

    @staticmethod
    def _identifier_value(value: Any) -> str:
        if not isinstance(value, str):
            raise QueryError(f"{ID_FIELD} values must be strings, got {type(value).__name__}")
        return value
