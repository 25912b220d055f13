"""FastAPI application for the mockup generation queue."""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from mockup_queue.api import api_router
from mockup_queue.core.config import get_settings
from mockup_queue.core.exceptions import QueueError
from mockup_queue.core.logging import bind_log_context, clear_log_context, setup_logging, get_logger
from mockup_queue.core.timezone import utcnow
from mockup_queue.db.database import init_db, close_db
from mockup_queue.schemas.common import ErrorResponse
import time
import uuid

setup_logging()
logger = get_logger(__name__)

API_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    logger.info(
        "Starting application",
        app_name=settings.app_name,
        environment=settings.app_env,
        provider_mode="live" if settings.replicate_api_token else "mock",
        dispatch_capacity=settings.dispatch_capacity,
        webhook_url=settings.webhook_url
    )
    if settings.webhook_url is None:
        logger.warning(
            "No HTTPS public base URL configured; predictions will be created without webhooks",
            public_base_url=settings.public_base_url
        )

    await init_db()

    yield

    logger.info("Shutting down application")
    await close_db()


app = FastAPI(
    title="Mockup Generation Queue",
    description="Credit-metered generation job queue driven by Replicate webhooks",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)

settings = get_settings()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, reusing the caller's X-Request-ID when given."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        clear_log_context()
        bind_log_context(request_id=request_id)

        start_time = time.perf_counter()
        response = await call_next(request)
        process_time = time.perf_counter() - start_time

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{process_time:.4f}"

        # Webhook deliveries are frequent; keep them out of INFO
        log = logger.debug if request.url.path.startswith("/api/v1/webhooks") else logger.info
        log(
            "Request processed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time=f"{process_time:.3f}s"
        )

        return response


app.add_middleware(RequestIDMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Process-Time"]
)


def _error_response(
    request: Request,
    status_code: int,
    message: str,
    error_code: str,
    details: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    body = ErrorResponse(
        error=message,
        error_code=error_code,
        details=details,
        request_id=getattr(request.state, "request_id", None),
        timestamp=utcnow().isoformat()
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


@app.exception_handler(QueueError)
async def queue_error_handler(request: Request, exc: QueueError):
    """Render domain errors with their status code."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Request failed",
        error_code=exc.error_code,
        error=exc.message,
        path=request.url.path,
        method=request.method
    )
    return _error_response(request, exc.status_code, exc.message, exc.error_code, exc.details)


@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    return _error_response(
        request, 404, "The requested resource was not found", "NOT_FOUND",
        {"path": request.url.path}
    )


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc):
    logger.error(
        "Internal server error",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method
    )
    return _error_response(request, 500, "An unexpected error occurred", "INTERNAL_ERROR")


@app.get("/", tags=["root"])
async def root():
    return {
        "name": settings.app_name,
        "version": API_VERSION,
        "environment": settings.app_env,
        "docs": "/docs",
        "health": "/api/v1/health"
    }


app.include_router(api_router)


if settings.prometheus_enabled:
    from prometheus_client import make_asgi_app
    app.mount("/metrics", make_asgi_app())
