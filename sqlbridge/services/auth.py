from __future__ import annotations

import hashlib
import logging
from datetime import timedelta
from typing import Any

from fastapi import HTTPException, Request
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from sqlbridge.core.config import settings
from sqlbridge.core.security import create_jwt, hash_password, is_password_hash, pwd_context, verify_password
from sqlbridge.services.rate_limit import get_rate_limiter
from sqlbridge.services.tables import _columns_map, _db_failure, _reflect_table_or_404, _row_to_dict

_LOG = logging.getLogger("sqlbridge.auth")

INVALID_CREDENTIALS = "Invalid username or password"


def _client_ip(request: Request) -> str:
    xff = str(request.headers.get("x-forwarded-for") or "").strip()
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first
    client = request.client
    return str(client.host if client else "unknown")


def _hash_key_part(value: str | None) -> str:
    raw = str(value or "").strip().lower()
    if not raw:
        return "-"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:20]


def rate_limit_login_or_429(*, client_ip: str, login: str) -> None:
    limiter = get_rate_limiter()
    window = int(max(settings.LOGIN_RATE_LIMIT_WINDOW_SECONDS, 1))
    limit = int(max(settings.LOGIN_RATE_LIMIT, 1))
    keys = [
        f"login:ip:{_hash_key_part(client_ip)}",
        f"login:user:{_hash_key_part(login)}",
    ]
    for key in keys:
        result = limiter.hit(key, limit=limit, window_seconds=window)
        if not result.allowed:
            _LOG.warning("Login rate limit exceeded key=%s", key)
            raise HTTPException(
                status_code=429,
                detail=f"Too many login attempts. Retry in {max(result.retry_after_seconds, 1)} s.",
            )


def _upgrade_password_hash(db: Session, table, pk_column, pk_value, password: str) -> None:
    # Plaintext and deprecated hashes are replaced after a successful login.
    db.execute(
        update(table)
        .where(pk_column == pk_value)
        .values({settings.AUTH_PASSWORD_COLUMN: hash_password(password)})
    )
    db.commit()
    _LOG.info("Upgraded stored password hash for %s=%s", pk_column.name, pk_value)


def authenticate_user(db: Session, login: str, password: str) -> dict[str, Any]:
    try:
        table = _reflect_table_or_404(db, settings.AUTH_USERS_TABLE)
    except HTTPException:
        _LOG.error("Users table %r is not available for login", settings.AUTH_USERS_TABLE)
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    columns = _columns_map(table)
    login_column = columns.get(settings.AUTH_LOGIN_COLUMN)
    password_column = columns.get(settings.AUTH_PASSWORD_COLUMN)
    if login_column is None or password_column is None:
        _LOG.error("Users table %r lacks login/password columns", table.name)
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    try:
        row = db.execute(select(table).where(login_column == login)).mappings().first()
    except SQLAlchemyError:
        db.rollback()
        _LOG.exception("Error fetching user for login")
        raise _db_failure("authenticate")

    stored = row.get(password_column.name) if row is not None else None
    if row is None or not verify_password(password, stored):
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    pk = list(table.primary_key.columns)
    if len(pk) == 1 and (not is_password_hash(stored) or pwd_context.needs_update(stored)):
        try:
            _upgrade_password_hash(db, table, pk[0], row[pk[0].name], password)
        except SQLAlchemyError:
            db.rollback()
            _LOG.warning("Could not upgrade stored password hash", exc_info=True)

    user = _row_to_dict(row)
    user.pop(password_column.name, None)
    return user


def issue_token(user: dict[str, Any]) -> str:
    subject = user.get("id", user.get(settings.AUTH_LOGIN_COLUMN))
    return create_jwt(
        {"sub": str(subject), "login": str(user.get(settings.AUTH_LOGIN_COLUMN) or "")},
        settings.JWT_SECRET,
        timedelta(minutes=settings.JWT_TTL_MINUTES),
    )
