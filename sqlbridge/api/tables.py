from __future__ import annotations

from typing import Any, List

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from sqlbridge.core.deps import require_api_user
from sqlbridge.db.session import get_db
from sqlbridge.schemas.bridge import ColumnInfo, TableInfo
from sqlbridge.services.response_cache import ResponseCache, get_response_cache
from sqlbridge.services.tables import (
    create_row_service,
    delete_row_service,
    get_row_service,
    list_tables_service,
    query_rows_service,
    table_columns_service,
    update_row_service,
)

router = APIRouter(dependencies=[Depends(require_api_user)])


@router.get("", response_model=List[TableInfo])
def list_tables(db: Session = Depends(get_db)):
    return list_tables_service(db)


@router.get("/{table_name}")
def query_rows(
    table_name: str,
    request: Request,
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_response_cache),
):
    """Rows of a table filtered by the query string.

    ``?age=gt.30&status=in.(a,b)&name=like.J*&order=id.desc&limit=10&offset=20``
    """
    return query_rows_service(table_name, request.query_params, db, cache)


@router.get("/{table_name}/columns", response_model=List[ColumnInfo])
def table_columns(table_name: str, db: Session = Depends(get_db)):
    return table_columns_service(table_name, db)


@router.get("/{table_name}/{row_id}")
def get_row(table_name: str, row_id: str, db: Session = Depends(get_db)):
    return get_row_service(table_name, row_id, db)


@router.post("/{table_name}", status_code=201)
def create_row(
    table_name: str,
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_response_cache),
):
    return create_row_service(table_name, payload, db, cache)


@router.put("/{table_name}/{row_id}")
def update_row(
    table_name: str,
    row_id: str,
    payload: Any = Body(...),
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_response_cache),
):
    return update_row_service(table_name, row_id, payload, db, cache)


@router.delete("/{table_name}/{row_id}")
def delete_row(
    table_name: str,
    row_id: str,
    db: Session = Depends(get_db),
    cache: ResponseCache = Depends(get_response_cache),
):
    return delete_row_service(table_name, row_id, db, cache)
