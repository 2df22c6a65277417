from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from fastapi import HTTPException

RESERVED_KEYS = frozenset({"order", "limit", "offset"})
IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_]+$")
_NON_NEGATIVE_INT_RE = re.compile(r"^[0-9]+$")
_MAX_PAGE_VALUE = 2**63 - 1

OPERATOR_SQL = {
    "eq": "=",
    "gt": ">",
    "lt": "<",
    "gte": ">=",
    "lte": "<=",
    "like": "LIKE",
    "ilike": "ILIKE",
    "in": "IN",
}

# Order matters: the first prefix found on the value wins.
VALUE_MARKERS = (
    ("eq.", "eq"),
    ("in.(", "in"),
    ("like.", "like"),
    ("ilike.", "ilike"),
    ("gt.", "gt"),
    ("lt.", "lt"),
    ("gte.", "gte"),
    ("lte.", "lte"),
)

ORDER_DIRECTIONS = {"asc", "desc"}


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: str | tuple[str, ...]


@dataclass(frozen=True)
class OrderSpec:
    field: str
    direction: str


@dataclass(frozen=True)
class Pagination:
    limit: int | None = None
    offset: int | None = None


@dataclass(frozen=True)
class CompiledQuery:
    """Parameterized WHERE/ORDER BY/LIMIT/OFFSET fragments for one request.

    ``values`` binds the ``$1..$n`` placeholders of ``where`` left to right.
    The remaining fragments never carry placeholders.
    """

    filters: tuple[Filter, ...] = ()
    conditions: tuple[str, ...] = ()
    values: tuple[Any, ...] = ()
    order: OrderSpec | None = None
    pagination: Pagination = field(default_factory=Pagination)

    @property
    def where(self) -> str:
        if not self.conditions:
            return ""
        return "WHERE " + " AND ".join(self.conditions)

    @property
    def order_by(self) -> str:
        if self.order is None:
            return ""
        return f"ORDER BY {self.order.field} {self.order.direction.upper()}"

    @property
    def limit(self) -> str:
        if self.pagination.limit is None:
            return ""
        return f"LIMIT {int(self.pagination.limit)}"

    @property
    def offset(self) -> str:
        if self.pagination.offset is None:
            return ""
        return f"OFFSET {int(self.pagination.offset)}"

    def fragments(self) -> list[str]:
        return [part for part in (self.where, self.order_by, self.limit, self.offset) if part]

    def select_sql(self, table: str, *, schema: str | None = None) -> str:
        source = validate_identifier(table, "table")
        if schema:
            source = f"{validate_identifier(schema, 'schema')}.{source}"
        return " ".join([f"SELECT * FROM {source}", *self.fragments()])


def validate_identifier(name: Any, kind: str = "column") -> str:
    text = "" if name is None else str(name)
    if not IDENTIFIER_RE.fullmatch(text):
        raise HTTPException(status_code=400, detail=f'Invalid {kind} name: "{text}"')
    return text


def _malformed_in_list(field_name: str, raw: str) -> HTTPException:
    return HTTPException(status_code=400, detail=f'Malformed "in" list for field "{field_name}": {raw}')


def _parse_in_list(field_name: str, raw: str, *, require_parens: bool) -> tuple[str, ...]:
    text = raw
    if require_parens or text.startswith("("):
        if len(text) < 2 or not (text.startswith("(") and text.endswith(")")):
            raise _malformed_in_list(field_name, raw)
        text = text[1:-1]
    if "(" in text or ")" in text:
        raise _malformed_in_list(field_name, raw)
    if not text:
        raise HTTPException(status_code=400, detail=f'Empty "in" list for field "{field_name}"')
    return tuple(text.split(","))


def _operand(field_name: str, op: str, raw: str, *, in_requires_parens: bool) -> str | tuple[str, ...]:
    if op == "in":
        return _parse_in_list(field_name, raw, require_parens=in_requires_parens)
    if op in {"like", "ilike"}:
        return raw.replace("*", "%")
    return raw


def parse_filter(key: str, value: Any) -> Filter:
    raw = "" if value is None else str(value)
    if "." in key:
        # "field.op=value": the operator comes from the key and the value is literal.
        field_name, _, op = key.partition(".")
        field_name = validate_identifier(field_name)
        if op not in OPERATOR_SQL:
            raise HTTPException(status_code=400, detail=f'Unknown operator "{op}" for field "{field_name}"')
        return Filter(field_name, op, _operand(field_name, op, raw, in_requires_parens=False))

    field_name = validate_identifier(key)
    for marker, op in VALUE_MARKERS:
        if raw.startswith(marker):
            rest = raw[len("in.") :] if op == "in" else raw[len(marker) :]
            return Filter(field_name, op, _operand(field_name, op, rest, in_requires_parens=True))
    return Filter(field_name, "eq", raw)


def parse_order(raw: Any) -> OrderSpec | None:
    parts = str(raw or "").split(".")
    if len(parts) != 2:
        return None
    field_name, direction = parts
    direction = direction.lower()
    if not IDENTIFIER_RE.fullmatch(field_name) or direction not in ORDER_DIRECTIONS:
        return None
    return OrderSpec(field_name, direction)


def _parse_page_value(name: str, raw: Any) -> int:
    text = str(raw).strip()
    if not _NON_NEGATIVE_INT_RE.fullmatch(text):
        raise HTTPException(status_code=400, detail=f'"{name}" must be a non-negative integer, got "{raw}"')
    value = int(text)
    if value > _MAX_PAGE_VALUE:
        raise HTTPException(status_code=400, detail=f'"{name}" is too large')
    return value


def parse_pagination(params: Mapping[str, Any]) -> Pagination:
    limit = params.get("limit")
    offset = params.get("offset")
    return Pagination(
        limit=None if limit is None else _parse_page_value("limit", limit),
        offset=None if offset is None else _parse_page_value("offset", offset),
    )


def _render_condition(item: Filter, start: int, dialect: str) -> tuple[str, list[Any]]:
    if item.op == "in":
        values = list(item.value)
        placeholders = ", ".join(f"${index}" for index in range(start, start + len(values)))
        return f"{item.field} IN ({placeholders})", values
    placeholder = f"${start}"
    if item.op == "ilike" and dialect != "postgresql":
        return f"LOWER({item.field}) LIKE LOWER({placeholder})", [item.value]
    return f"{item.field} {OPERATOR_SQL[item.op]} {placeholder}", [item.value]


def compile_query(params: Mapping[str, Any], *, dialect: str = "postgresql") -> CompiledQuery:
    filters: list[Filter] = []
    conditions: list[str] = []
    values: list[Any] = []
    for key, value in params.items():
        if key in RESERVED_KEYS:
            continue
        item = parse_filter(key, value)
        condition, bound = _render_condition(item, len(values) + 1, dialect)
        filters.append(item)
        conditions.append(condition)
        values.extend(bound)

    order_raw = params.get("order")
    return CompiledQuery(
        filters=tuple(filters),
        conditions=tuple(conditions),
        values=tuple(values),
        order=parse_order(order_raw) if order_raw is not None else None,
        pagination=parse_pagination(params),
    )
