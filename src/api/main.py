"""FastAPI application factory and configuration."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.dependencies import get_storage
from src.api.routes import agent_router, health_router, webhooks_router
from src.core.config import settings
from src.core.exceptions import AppException, RateLimitError
from src.core.messages import get_message
from src.services.conversation.engine import get_conversation_engine

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Customer-facing text per HTTP status; internal error strings never leave the API
_PUBLIC_MESSAGE_KEYS = {
    status.HTTP_429_TOO_MANY_REQUESTS: "rate_limited",
    status.HTTP_500_INTERNAL_SERVER_ERROR: "generic_failure",
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info(
        "Starting Agent Pipeline API",
        environment=settings.app_env,
        debug=settings.app_debug,
        storage_backend=settings.storage_backend,
    )

    # Initialize storage
    storage = get_storage()

    # Seed demo tenant in development
    if settings.is_development:
        from src.storage.memory import InMemoryStorage
        if isinstance(storage, InMemoryStorage):
            await storage.seed_demo_tenant()
            logger.info("Seeded demo tenant for development")

    yield

    # Shutdown: let admitted turns and queued deliveries finish
    await get_conversation_engine(storage).drain()
    logger.info("Shutting down Agent Pipeline API")


def _error_body(exc: AppException, status_code: int) -> dict:
    key = _PUBLIC_MESSAGE_KEYS.get(status_code)
    message = get_message(key, settings.default_locale) if key else exc.message
    return {
        "error": exc.code,
        "message": message,
        "details": exc.details if status_code < 500 else {},
    }


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Agent Pipeline API",
        description="Multi-tenant conversational-commerce agent: planning, function dispatch and payments",
        version="0.1.0",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(RateLimitError)
    async def rate_limit_exception_handler(request: Request, exc: RateLimitError) -> JSONResponse:
        """429 with retry hints."""
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(exc, exc.status_code),
            headers={
                "Retry-After": str(exc.retry_after),
                "X-RateLimit-Limit": str(exc.limit),
                "X-RateLimit-Remaining": str(exc.remaining),
                "X-RateLimit-Reset": str(int(exc.reset_at.timestamp())),
            },
        )

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        """Handle application-specific exceptions."""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "Application exception",
            code=exc.code,
            message=exc.message,
            details=exc.details,
            path=request.url.path,
        )
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc, exc.status_code))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """Malformed request bodies are 400s."""
        errors = [
            {"field": ".".join(str(p) for p in e.get("loc", ())[1:]), "message": e.get("msg")}
            for e in exc.errors()
        ]
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "VALIDATION_ERROR",
                "message": "Invalid request",
                "details": {"errors": errors},
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.error("Unhandled exception", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "INTERNAL_ERROR",
                "message": get_message("generic_failure", settings.default_locale),
                "details": {},
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(agent_router)
    app.include_router(webhooks_router)

    # Root endpoint
    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "service": "Agent Pipeline API",
            "version": "0.1.0",
            "status": "running",
        }

    return app


# Create default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.is_development,
    )
