from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sqlbridge.core.config import settings
from sqlbridge.schemas.bridge import TransactionOperation, TransactionRequest
from sqlbridge.services.response_cache import ResponseCache
from sqlbridge.services.tables import _db_failure, _delete_row, _insert_row, _reflect_table_or_404, _update_row

_LOG = logging.getLogger("sqlbridge.transactions")


def _apply_operation(db: Session, op: TransactionOperation) -> tuple[str, dict[str, Any]]:
    table = _reflect_table_or_404(db, op.table)
    if op.action == "insert":
        return table.name, _insert_row(db, table, op.data)
    if op.action == "update":
        return table.name, _update_row(db, table, op.id, op.data)
    return table.name, _delete_row(db, table, op.id)


def run_transaction_service(payload: TransactionRequest, db: Session, cache: ResponseCache) -> dict[str, Any]:
    """Run every operation inside one database transaction.

    The first failing operation rolls the whole batch back. Client errors keep
    their status code and get the operation index prepended to the detail.
    """
    limit = int(max(settings.TRANSACTION_MAX_OPERATIONS, 1))
    if len(payload.operations) > limit:
        raise HTTPException(status_code=400, detail=f"Too many operations: at most {limit} allowed")

    results: list[dict[str, Any]] = []
    touched: set[str] = set()
    index = 0
    try:
        for index, op in enumerate(payload.operations):
            table_name, result = _apply_operation(db, op)
            touched.add(table_name)
            results.append(result)
        db.commit()
    except HTTPException as exc:
        db.rollback()
        raise HTTPException(status_code=exc.status_code, detail=f"Operation {index}: {exc.detail}")
    except SQLAlchemyError:
        db.rollback()
        _LOG.exception("Transaction failed at operation %s", index)
        raise _db_failure("execute transaction")

    for table_name in sorted(touched):
        cache.invalidate_table(table_name)
    _LOG.info("Transaction committed operations=%s tables=%s", len(results), ",".join(sorted(touched)))
    return {"results": results}
