from __future__ import annotations

import hashlib
import json
import logging
import re
import uuid
from dataclasses import replace
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from fastapi import HTTPException
from sqlalchemy import MetaData, Table, delete, insert, select, text, update
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import Session
from sqlalchemy.sql.sqltypes import JSON, Boolean, Date, DateTime, Float, Integer, Numeric, Time

from sqlbridge.core.config import settings
from sqlbridge.core.security import hash_password_if_plain
from sqlbridge.services.query_compiler import IDENTIFIER_RE, CompiledQuery, compile_query, validate_identifier
from sqlbridge.services.response_cache import ResponseCache

_LOG = logging.getLogger("sqlbridge.tables")
_PLACEHOLDER_RE = re.compile(r"\$(\d+)")


def _db_failure(action: str) -> HTTPException:
    return HTTPException(status_code=500, detail=f"Failed to {action}")


def _table_visible(table_name: str) -> bool:
    allowlist = settings.tables_allowlist
    if allowlist and table_name not in allowlist:
        return False
    return table_name not in settings.tables_denylist


def _hidden_fields() -> set[str]:
    return settings.password_columns


def _serialize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _serialize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize_value(item) for item in value]
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


def _row_to_dict(row: Mapping[str, Any]) -> dict[str, Any]:
    hidden = _hidden_fields()
    return {str(key): _serialize_value(value) for key, value in row.items() if key not in hidden}


def _columns_map(table: Table) -> dict[str, Any]:
    return {column.name: column for column in table.columns}


def _column_python_type(column: Any):
    try:
        return column.type.python_type
    except Exception:
        return None


def _column_kind(column: Any) -> str:
    if column.name in _hidden_fields():
        return "password"
    col_type = column.type
    if isinstance(col_type, Boolean):
        return "boolean"
    if isinstance(col_type, (Integer, Numeric, Float)):
        return "number"
    if isinstance(col_type, DateTime):
        return "datetime"
    if isinstance(col_type, Date):
        return "date"
    if isinstance(col_type, Time):
        return "time"
    if isinstance(col_type, JSON):
        return "json"
    if _column_python_type(column) is uuid.UUID:
        return "uuid"
    return "text"


def _reflect_table_or_404(db: Session, table_name: str) -> Table:
    name = validate_identifier(table_name, "table")
    if not _table_visible(name):
        raise HTTPException(status_code=404, detail=f'Table "{name}" not found')
    try:
        return Table(name, MetaData(), autoload_with=db.connection(), schema=settings.db_schema)
    except NoSuchTableError:
        raise HTTPException(status_code=404, detail=f'Table "{name}" not found')


def _primary_key_or_400(table: Table):
    pk = list(table.primary_key.columns)
    if len(pk) == 1:
        return pk[0]
    if not pk and "id" in table.c:
        return table.c["id"]
    raise HTTPException(status_code=400, detail=f'Table "{table.name}" must have a single primary key')


def _pk_value(column: Any, raw: Any) -> Any:
    python_type = _column_python_type(column)
    if python_type is int:
        try:
            return int(str(raw).strip())
        except ValueError:
            raise HTTPException(status_code=400, detail=f'Invalid identifier: "{raw}"')
    if python_type is uuid.UUID:
        try:
            return uuid.UUID(str(raw).strip())
        except ValueError:
            raise HTTPException(status_code=400, detail=f'Invalid identifier: "{raw}"')
    return raw


def _bad_value(column_name: str, kind: str) -> HTTPException:
    return HTTPException(status_code=400, detail=f'Invalid value for column "{column_name}" ({kind})')


def _coerce_column_value(column: Any, value: Any) -> Any:
    if value is None or not isinstance(value, str):
        return value
    python_type = _column_python_type(column)
    text_value = value.strip()
    try:
        if python_type is datetime:
            return datetime.fromisoformat(text_value.replace("Z", "+00:00"))
        if python_type is date:
            if "T" in text_value or " " in text_value:
                return datetime.fromisoformat(text_value.replace("Z", "+00:00")).date()
            return date.fromisoformat(text_value)
        if python_type is time:
            return time.fromisoformat(text_value)
        if python_type is Decimal:
            return Decimal(text_value)
        if python_type is uuid.UUID:
            return uuid.UUID(text_value)
    except (ValueError, InvalidOperation):
        raise _bad_value(column.name, python_type.__name__)
    return value


def _sanitize_payload(table: Table, payload: Any, *, is_update: bool) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")

    columns = _columns_map(table)
    primary_keys = {column.name for column in table.primary_key.columns}
    data = dict(payload)
    if is_update:
        for name in primary_keys or {"id"}:
            data.pop(name, None)

    invalid = sorted(key for key in data if not IDENTIFIER_RE.fullmatch(str(key)))
    if invalid:
        raise HTTPException(status_code=400, detail="Invalid column names: " + ", ".join(invalid))
    unknown = sorted(set(data.keys()) - set(columns.keys()))
    if unknown:
        raise HTTPException(status_code=400, detail="Unknown columns: " + ", ".join(unknown))

    hidden = _hidden_fields()
    cleaned: dict[str, Any] = {}
    for key, value in data.items():
        column = columns[key]
        if value is None and not column.nullable and key not in primary_keys:
            raise HTTPException(status_code=400, detail=f'Column "{key}" cannot be null')
        if key in hidden:
            value = hash_password_if_plain(value)
        cleaned[key] = _coerce_column_value(column, value)
    return cleaned


def _select_row_or_404(db: Session, table: Table, pk_column: Any, pk_value: Any) -> dict[str, Any]:
    row = db.execute(select(table).where(pk_column == pk_value)).mappings().first()
    if row is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return _row_to_dict(row)


def _insert_row(db: Session, table: Table, payload: Any) -> dict[str, Any]:
    values = _sanitize_payload(table, payload, is_update=False)
    result = db.execute(insert(table).values(values))
    pk = list(table.primary_key.columns)
    if len(pk) != 1:
        return _row_to_dict(values)
    inserted = result.inserted_primary_key
    pk_value = inserted[0] if inserted and inserted[0] is not None else values.get(pk[0].name)
    return _select_row_or_404(db, table, pk[0], pk_value)


def _update_row(db: Session, table: Table, row_id: Any, payload: Any) -> dict[str, Any]:
    pk_column = _primary_key_or_400(table)
    pk_value = _pk_value(pk_column, row_id)
    values = _sanitize_payload(table, payload, is_update=True)
    if not values:
        raise HTTPException(status_code=400, detail="No columns to update")
    result = db.execute(update(table).where(pk_column == pk_value).values(values))
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Record not found")
    return _select_row_or_404(db, table, pk_column, pk_value)


def _delete_row(db: Session, table: Table, row_id: Any) -> dict[str, Any]:
    pk_column = _primary_key_or_400(table)
    result = db.execute(delete(table).where(pk_column == _pk_value(pk_column, row_id)))
    if result.rowcount == 0:
        raise HTTPException(status_code=404, detail="Record not found")
    return {"success": True}


def _named_binds(sql: str, values: tuple[Any, ...]) -> tuple[str, dict[str, Any]]:
    """Rewrite ``$n`` placeholders into ``:pn`` binds understood by ``text()``."""
    named_sql = _PLACEHOLDER_RE.sub(lambda match: f":p{match.group(1)}", sql)
    return named_sql, {f"p{index}": value for index, value in enumerate(values, start=1)}


def _check_query_columns(table: Table, compiled: CompiledQuery) -> CompiledQuery:
    # Hidden columns are neither readable nor searchable.
    hidden = _hidden_fields()
    columns = {name: column for name, column in _columns_map(table).items() if name not in hidden}
    fields = {item.field for item in compiled.filters}
    protected = sorted(fields & hidden)
    if protected:
        raise HTTPException(status_code=400, detail="Columns cannot be filtered: " + ", ".join(protected))
    unknown = sorted(fields - set(columns.keys()))
    if unknown:
        raise HTTPException(status_code=400, detail="Unknown columns: " + ", ".join(unknown))
    if compiled.order is not None and compiled.order.field not in columns:
        # An unusable order is dropped the same way a malformed one is.
        return replace(compiled, order=None)
    return compiled


def _cache_key(sql: str, values: tuple[Any, ...]) -> str:
    raw = json.dumps([sql, list(values)], ensure_ascii=False, default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def list_tables_service(db: Session) -> list[dict[str, str]]:
    try:
        names = sa_inspect(db.connection()).get_table_names(schema=settings.db_schema)
    except SQLAlchemyError:
        _LOG.exception("Error fetching tables")
        raise _db_failure("fetch tables")
    return [
        {"table_name": name}
        for name in sorted(names)
        if IDENTIFIER_RE.fullmatch(name) and _table_visible(name)
    ]


def table_columns_service(table_name: str, db: Session) -> list[dict[str, Any]]:
    table = _reflect_table_or_404(db, table_name)
    out: list[dict[str, Any]] = []
    for column in table.columns:
        out.append(
            {
                "name": column.name,
                "kind": _column_kind(column),
                "nullable": bool(column.nullable),
                "primary_key": bool(column.primary_key),
                "has_default": column.server_default is not None
                or column.default is not None
                or (column.primary_key and column.autoincrement is not False),
            }
        )
    return out


def query_rows_service(
    table_name: str,
    params: Mapping[str, Any],
    db: Session,
    cache: ResponseCache,
) -> list[dict[str, Any]]:
    table = _reflect_table_or_404(db, table_name)
    compiled = compile_query(params, dialect=db.get_bind().dialect.name)
    compiled = _check_query_columns(table, compiled)
    sql = compiled.select_sql(table.name, schema=settings.db_schema)

    key = _cache_key(sql, compiled.values)
    cached = cache.get(table.name, key)
    if cached is not None:
        return cached

    named_sql, binds = _named_binds(sql, compiled.values)
    try:
        statement = text(named_sql).columns(*table.columns)
        rows = db.execute(statement, binds).mappings().all()
    except SQLAlchemyError:
        db.rollback()
        _LOG.exception("Error fetching data from %s", table.name)
        raise _db_failure("fetch data")
    payload = [_row_to_dict(row) for row in rows]
    cache.set(table.name, key, payload, ttl_seconds=settings.RESPONSE_CACHE_TTL_SECONDS)
    return payload


def get_row_service(table_name: str, row_id: str, db: Session) -> dict[str, Any]:
    table = _reflect_table_or_404(db, table_name)
    pk_column = _primary_key_or_400(table)
    try:
        return _select_row_or_404(db, table, pk_column, _pk_value(pk_column, row_id))
    except SQLAlchemyError:
        db.rollback()
        _LOG.exception("Error fetching record %s from %s", row_id, table.name)
        raise _db_failure("fetch data")


def create_row_service(table_name: str, payload: Any, db: Session, cache: ResponseCache) -> dict[str, Any]:
    table = _reflect_table_or_404(db, table_name)
    try:
        row = _insert_row(db, table, payload)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        _LOG.exception("Error creating record in %s", table.name)
        raise _db_failure("create record")
    cache.invalidate_table(table.name)
    _LOG.info("Created record in %s", table.name)
    return row


def update_row_service(
    table_name: str,
    row_id: str,
    payload: Any,
    db: Session,
    cache: ResponseCache,
) -> dict[str, Any]:
    table = _reflect_table_or_404(db, table_name)
    try:
        row = _update_row(db, table, row_id, payload)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        _LOG.exception("Error updating record %s in %s", row_id, table.name)
        raise _db_failure("update data")
    cache.invalidate_table(table.name)
    _LOG.info("Updated record %s in %s", row_id, table.name)
    return row


def delete_row_service(table_name: str, row_id: str, db: Session, cache: ResponseCache) -> dict[str, Any]:
    table = _reflect_table_or_404(db, table_name)
    try:
        result = _delete_row(db, table, row_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        _LOG.exception("Error deleting record %s from %s", row_id, table.name)
        raise _db_failure("delete data")
    cache.invalidate_table(table.name)
    _LOG.info("Deleted record %s from %s", row_id, table.name)
    return result
