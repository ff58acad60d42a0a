"""FastAPI server for the e-invoice consolidation engine.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import consolidation, health
from api.services import close_services
from core.config import load_config
from core.errors import (
    ConsolidationError,
    ConsolidationInputError,
    DocumentNotFoundError,
)
from core.observability import configure_logging, get_logger


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    config = load_config()
    configure_logging(level=config.log_level_value, json_format=config.log_json)
    logger.info("Consolidation API starting up...")

    yield

    await close_services()
    logger.info("Consolidation API shutting down...")


def error_status(exc: ConsolidationError) -> int:
    """HTTP status for a consolidation error."""
    if isinstance(exc, DocumentNotFoundError):
        return 404
    if isinstance(exc, ConsolidationInputError):
        return 400
    return 409


async def consolidation_error_handler(request: Request, exc: ConsolidationError) -> JSONResponse:
    status_code = error_status(exc)
    logger.warning(
        f"Request rejected: {exc}",
        extra_fields={"path": request.url.path, "status_code": status_code, "error": type(exc).__name__},
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="e-Invoice Consolidation API",
        description="Monthly consolidated e-invoices for several business lines sharing one core",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ConsolidationError, consolidation_error_handler)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(consolidation.router, prefix="/consolidation", tags=["Consolidation"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
