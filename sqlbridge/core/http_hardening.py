from __future__ import annotations

import logging
import re
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request

REQUEST_ID_HEADER = "X-Request-ID"
RESPONSE_TIME_HEADER = "X-Response-Time-Ms"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_TABLE_PATH_RE = re.compile(r"^/api/tables/([^/]+)")
_LOG = logging.getLogger("sqlbridge.http")

BRIDGE_RESPONSE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Cache-Control": "no-store",
}


def request_id_for(request: Request) -> str:
    supplied = str(request.headers.get(REQUEST_ID_HEADER) or "").strip()
    return supplied if _REQUEST_ID_RE.fullmatch(supplied) else uuid4().hex


def table_of(path: str) -> str:
    """Name of the table a request targets, ``-`` for every other route."""
    match = _TABLE_PATH_RE.match(path)
    return match.group(1) if match else "-"


def install_http_hardening(app: FastAPI) -> None:
    @app.middleware("http")
    async def _bridge_http_middleware(request: Request, call_next):
        request.state.request_id = request_id_for(request)
        started_at = perf_counter()

        response = await call_next(request)

        elapsed_ms = (perf_counter() - started_at) * 1000.0
        response.headers.update(BRIDGE_RESPONSE_HEADERS)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        response.headers[RESPONSE_TIME_HEADER] = f"{elapsed_ms:.1f}"

        level = logging.WARNING if response.status_code >= 500 else logging.INFO
        _LOG.log(
            level,
            "%s %s table=%s status=%s duration_ms=%.2f request_id=%s",
            request.method,
            request.url.path,
            table_of(request.url.path),
            response.status_code,
            elapsed_ms,
            request.state.request_id,
        )
        return response
