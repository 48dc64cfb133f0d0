import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from diy_assistant.api.routes import chat, health
from diy_assistant.assistant.factory import build_orchestrator
from diy_assistant.config import settings
from diy_assistant.errors import DomainError
from diy_assistant.logging import configure_logging
from diy_assistant.models.contracts import ErrorResponse

configure_logging()

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the orchestrator once per process.

    A configuration problem does not stop the server: it is kept on app
    state and every chat request answers 500 with the detail.
    """
    app.state.orchestrator = None
    app.state.configuration_error = None
    try:
        app.state.orchestrator = await build_orchestrator(settings)
    except DomainError as exc:
        logger.error("assistant_startup_failed", error=exc.error, detail=str(exc))
        app.state.configuration_error = str(exc)
    try:
        yield
    finally:
        if app.state.orchestrator is not None:
            await app.state.orchestrator.provider.close()


app = FastAPI(
    title="DIY Assistant API",
    version=health.VERSION,
    docs_url="/docs",
    redoc_url=None,
    lifespan=lifespan,
)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", request.headers.get("X-Request-ID", ""))


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a request ID to every request and emit one access log line.

    The ID is bound into structlog context vars, so every log entry for the
    request carries it, and is echoed in the X-Request-ID response header.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    started = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    logger.info(
        "http_request",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    return response


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Malformed requests (unknown action, missing fields) answer 400."""
    messages = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}")
    response = JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error="validation_error",
            message="; ".join(messages),
            retryable=False,
        ).model_dump(),
    )
    response.headers["X-Request-ID"] = _request_id(request)
    return response


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Errors raised outside the chat handlers, e.g. missing configuration."""
    logger.error(
        "domain_error",
        path=request.url.path,
        error=exc.error,
        detail=str(exc),
    )
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.error,
            message=exc.user_message,
            retryable=False,
            detail=str(exc),
        ).model_dump(),
    )
    response.headers["X-Request-ID"] = _request_id(request)
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Consistent JSON for unhandled exceptions instead of a bare 500 page."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    response = JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="internal_error",
            message="An unexpected error occurred",
            retryable=True,
        ).model_dump(),
    )
    response.headers["X-Request-ID"] = _request_id(request)
    return response


app.include_router(health.router)
app.include_router(chat.router, prefix="/api/v1")
