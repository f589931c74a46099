"""
FastAPI Gateway Application Factory
===================================

This is the main entry point for the gateway service that sits between a
browser-hosted web data connector and the upstream API it cannot call
directly.

Architecture:
    Host application → Connector (browser) → Gateway (this service) → Upstream API

Routes:
    - /proxy    : Credential-forwarding proxy to the upstream API
    - /health   : Health check endpoint
    - /         : Connector entry page (index.html)
    - /*        : Static files from STATIC_DIR

Environment Variables:
    - PORT: Listen port (default: 9001)
    - UPSTREAM_BASE_URL: Upstream API base URL (default: https://api.example.com/)
    - USER_AGENT: User-Agent sent upstream (default: formstack/0.0.0)
    - STATIC_DIR: Directory served as static files (default: .)
    - ALLOWED_ORIGINS: Comma-separated CORS origins
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn wdc_gateway.main:app --reload --port 9001

    Direct:
        PORT=9001 python -m wdc_gateway.main
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from .config import get_settings
from .proxy import proxy_router


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    The gateway holds no per-request state, so startup only configures
    logging and reports where requests will be forwarded. There is no
    drain on shutdown.
    """
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("wdc_gateway.main")

    logger.info(
        "Starting gateway service",
        extra={
            "upstream_base_url": settings.upstream_base_url_str,
            "static_dir": settings.STATIC_DIR,
            "log_level": settings.LOG_LEVEL
        }
    )

    yield

    logger.info("Gateway service shutdown complete")


class PublicStaticFiles(StaticFiles):
    """
    Static files with dotfiles hidden.

    STATIC_DIR defaults to the working directory, which is also where .env
    (OAuth client secret) and VCS metadata live. Any path segment starting
    with "." is answered with 404.
    """

    async def get_response(self, path: str, scope):
        parts = path.replace("\\", "/").split("/")
        if any(part.startswith(".") and part != "." for part in parts):
            raise HTTPException(status_code=404)
        return await super().get_response(path, scope)


# Create FastAPI application
def create_app() -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - CORS middleware
        - Proxy route
        - Entry page and static files
        - Exception handlers

    Returns:
        FastAPI: Configured application instance
    """
    settings = get_settings()
    static_dir = Path(settings.STATIC_DIR)

    app = FastAPI(
        title="Web Data Connector Gateway",
        description="Credential-forwarding proxy for browser-hosted web data connectors",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Configure CORS
    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["*"]
        )

    # Proxy router: Forwards requests to the upstream API
    app.include_router(proxy_router, tags=["Upstream Proxy"])

    # Health check endpoint
    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        """
        Health check endpoint.

        Returns:
            dict: Service health information
        """
        return {
            "status": "ok",
            "service": "wdc-gateway",
            "version": "1.0.0"
        }

    # Connector entry page
    @app.get("/", include_in_schema=False)
    async def index() -> FileResponse:
        return FileResponse(static_dir / "index.html")

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response so a
        failure in one request never takes the process down.

        Args:
            request: FastAPI request object
            exc: Exception that was raised

        Returns:
            JSONResponse: Standardized error response
        """
        logger = logging.getLogger("wdc_gateway.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "detail": str(exc) if settings.LOG_LEVEL == "DEBUG" else None
            }
        )

    # Everything else is served as a static file; mounted last so the
    # routes above take precedence.
    app.mount("/", PublicStaticFiles(directory=static_dir), name="static")

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "wdc_gateway.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
