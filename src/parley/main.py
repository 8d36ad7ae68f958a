"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from parley import __version__
from parley.api.middleware.auth import build_auth_provider
from parley.api.ratelimit import limiter, rate_limit_exceeded_handler
from parley.api.router import api_router
from parley.api.routes import health
from parley.config import get_settings
from parley.observability.metrics import setup_metrics
from parley.runtime import build_runtime
from parley.shared.exceptions import AuthenticationError, ParleyError
from parley.shared.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - startup and shutdown events."""
    setup_logging()
    logger.info("parley_starting", version=__version__)

    # Tests inject their own runtime and auth provider before startup
    settings = get_settings()
    if getattr(app.state, "auth_provider", None) is None:
        app.state.auth_provider = build_auth_provider(settings)
    if getattr(app.state, "runtime", None) is None:
        app.state.runtime = build_runtime(settings)

    yield

    logger.info("parley_stopping")
    await app.state.auth_provider.close()
    await app.state.runtime.close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Parley API",
        description="Resumable, cancellable chat streaming over interchangeable model backends",
        version=__version__,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)  # type: ignore[arg-type]

    # CORS middleware
    # Stream ids travel in headers, so they must be exposed to browsers
    exposed_headers = ["X-Stream-Id", "X-Session-Id", "x-vercel-ai-data-stream"]
    if settings.is_production:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
            expose_headers=exposed_headers,
        )
    else:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=exposed_headers,
        )

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(api_router, prefix="/api")

    # Observability
    setup_metrics(app)

    return app


def _error_body(exc: ParleyError) -> dict[str, object]:
    body: dict[str, object] = {"error": exc.message, "code": exc.code}
    if exc.details:
        body["details"] = exc.details
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Register custom exception handlers."""

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        _ = request
        return JSONResponse(
            status_code=400,
            content={
                "error": "Request validation failed",
                "code": "BAD_REQUEST",
                "details": {"errors": exc.errors()},
            },
        )

    @app.exception_handler(AuthenticationError)
    async def auth_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
        _ = request
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(ParleyError)
    async def parley_error_handler(request: Request, exc: ParleyError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "request_failed",
                path=request.url.path,
                error=exc.message,
                code=exc.code,
                details=exc.details,
            )
        else:
            logger.info("request_rejected", path=request.url.path, code=exc.code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc))

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        _ = request
        logger.exception("unexpected_error", error=str(exc))
        return JSONResponse(
            status_code=500,
            content={
                "error": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )


# Create app instance
app = create_app()
