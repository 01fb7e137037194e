from __future__ import annotations

import re
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from structlog import contextvars as structlog_contextvars

from .logging import logger
from .metrics import registry, status_class


_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag every request with an id, in logs and in the `X-Request-ID` header.

    呼び出し元の `X-Request-ID` は安全な文字種・長さのときだけ引き継ぎ、
    それ以外は新しく採番する。
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        incoming = request.headers.get("x-request-id", "")
        request_id = incoming if _REQUEST_ID_PATTERN.match(incoming) else uuid.uuid4().hex
        request.state.request_id = request_id
        structlog_contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog_contextvars.unbind_contextvars("request_id")
        response.headers["X-Request-ID"] = request_id
        return response


class AccessLogAndMetricsMiddleware(BaseHTTPMiddleware):
    """One `request_complete` line per request, plus a metrics sample.

    4xx はクライアント起因なので warning、5xx（未処理例外を含む）は error で出す。
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        started = time.perf_counter()
        route = f"{request.method} {request.url.path}"
        status_code: int | None = None
        error_type: str | None = None
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as exc:
            error_type = exc.__class__.__name__
            raise
        finally:
            latency_ms = (time.perf_counter() - started) * 1000
            registry.record(route, latency_ms, status_code)
            outcome = status_class(status_code)
            if outcome == "5xx":
                log_method = logger.error
            elif outcome == "4xx":
                log_method = logger.warning
            else:
                log_method = logger.info
            log_method(
                "request_complete",
                route=route,
                query=request.url.query or None,
                status_code=status_code,
                latency_ms=round(latency_ms, 2),
                error_type=error_type,
                client_ip=request.client.host if request.client else None,
            )
