"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (logging, database engine).
Middleware, CORS, error handlers and routers are all registered here.

Error handling: the auth core raises AuthError subclasses; one handler
maps them to status codes via errors.STATUS_CODES and returns only the
public message. The internal cause goes to the log, never the body.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from authcore import __version__
from authcore.api import api_router
from authcore.config import settings
from authcore.errors import AuthError, UnauthorizedError, status_code_for
from authcore.logs import configure_logging

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    configure_logging(
        settings.log_level, json_output=settings.environment != "development"
    )
    logger.info(
        "authcore.starting",
        version=__version__,
        environment=settings.environment,
        store_backend=settings.store_backend,
        port=settings.port,
    )

    yield

    logger.info("authcore.shutdown")
    if settings.store_backend == "sql":
        from authcore.db.engine import get_engine

        await get_engine().dispose()


def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


def register_exception_handlers(app: FastAPI) -> None:
    """Translate AuthError kinds (and stray exceptions) into JSON responses."""

    @app.exception_handler(AuthError)
    async def _auth_error_handler(request: Request, exc: AuthError):
        status = status_code_for(exc)
        logger.info(
            "auth.error",
            kind=type(exc).__name__,
            cause=exc.cause.value if exc.cause else None,
            status=status,
            path=request.url.path,
        )
        body = {"detail": exc.message}
        rid = _request_id(request)
        if rid:
            body["request_id"] = rid
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
        return JSONResponse(status_code=status, content=body, headers=headers)

    @app.exception_handler(Exception)
    async def _generic_handler(request: Request, exc: Exception):
        rid = _request_id(request)
        logger.exception("http.unhandled_error", path=request.url.path)
        body = {"detail": "Internal server error"}
        if rid:
            body["request_id"] = rid
        return JSONResponse(status_code=500, content=body)


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="authcore",
        description="Credential issuance and session management",
        version=__version__,
        lifespan=lifespan,
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → CORS → handler

    from authcore.middleware.request_id import RequestIdMiddleware
    from authcore.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)
    app.include_router(api_router)

    return app


# Default app instance (used by uvicorn: authcore.main:app)
app = create_app()
