from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from .config import Settings, settings as default_settings
from .errors import QuestionStoreError, UnavailableError
from .logging import configure_logging, logger
from .middleware import AccessLogAndMetricsMiddleware, RequestIDMiddleware
from .routers import health, questions
from .store import QuestionStore, create_store


async def _handle_store_error(request: Request, exc: QuestionStoreError) -> JSONResponse:
    """Map the error taxonomy onto fixed HTTP status codes.

    UnavailableError の詳細はログにのみ残し、呼び出し元には汎用メッセージを返す。
    """
    if isinstance(exc, UnavailableError):
        logger.error(
            "storage_unavailable",
            path=request.url.path,
            method=request.method,
            detail=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content={"message": exc.public_message})
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed bodies/queries as 400 with the offending fields."""
    errors: list[dict[str, Any]] = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    logger.info("request_validation_failed", path=request.url.path, errors=errors)
    return JSONResponse(
        status_code=400,
        content={"message": "Missing or invalid fields", "errors": errors},
    )


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    store: QuestionStore | None = getattr(app.state, "store", None)
    if store is not None:
        store.close()


def create_app(store: QuestionStore | None = None, cfg: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance."""
    cfg = cfg or default_settings
    configure_logging(cfg)
    app = FastAPI(title="Revision Tracker API", version="0.1.0", lifespan=_lifespan)
    app.state.settings = cfg
    app.state.store = store or create_store(cfg)
    logger.info(
        "app_configured",
        store_backend=type(app.state.store).__name__,
        interval_policy=app.state.store.interval_policy.name,
        creation_policy=app.state.store.creation_policy.name,
    )

    configured_origins = list(cfg.allowed_cors_origins)
    allow_credentials = bool(configured_origins)
    if not configured_origins:
        configured_origins = ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=configured_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Starlette では後から追加したミドルウェアが外側で実行される。
    # RequestID で採番した `request_id` を AccessLog 側で参照する。
    app.add_middleware(AccessLogAndMetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(QuestionStoreError, _handle_store_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]

    app.include_router(questions.router)
    app.include_router(health.router)
    return app


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
