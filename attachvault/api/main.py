"""
FastAPI Application — attachvault.

Architecture:
  - SQLite (dev) / PostgreSQL (prod) for model records
  - Local filesystem or MinIO/S3 for binary content
  - Signed JWT tickets for direct uploads and downloads
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from attachvault.api.dependencies import ServiceContainer
from attachvault.api.routes.binary import create_binary_router
from attachvault.api.schemas.responses import HealthResponse
from attachvault.config.logging_config import setup_logging
from attachvault.config.settings import Settings, get_settings
from attachvault.core.errors import BinaryError
from attachvault.infrastructure.db.database import get_engine, init_db
from attachvault.infrastructure.storage.minio_binary import MinIOBinary

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(settings: Settings | None = None, minio_client=None) -> FastAPI:
    """Application factory; tests pass their own settings and storage client."""
    settings = settings or get_settings()
    app = FastAPI(
        title="attachvault",
        description="Deduplicating attachment storage with challenge-based direct uploads.",
        version=VERSION,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.container = ServiceContainer(settings, minio_client=minio_client)

    # ── Startup ──
    @app.on_event("startup")
    async def startup():
        """Initialize logging, DB and bucket."""
        setup_logging(settings.log_level)
        init_db()
        binary = app.state.container.binary
        if isinstance(binary, MinIOBinary):
            await binary.ensure_bucket()
        logger.info(f"attachvault started with {binary.name} binary storage")

    # ── Errors ──
    @app.exception_handler(BinaryError)
    async def binary_error_handler(request: Request, exc: BinaryError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # Register binary routes
    app.include_router(create_binary_router(settings), prefix=settings.binary_expose_url, tags=["Binary"])

    # ── Health ──
    @app.get("/health", response_model=HealthResponse)
    async def health():
        db_url = str(get_engine().url)
        return HealthResponse(
            status="ok",
            version=VERSION,
            binary_backend=app.state.container.binary.name,
            database="PostgreSQL" if "postgres" in db_url else "SQLite",
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run("attachvault.api.main:app", host=_settings.api_host, port=_settings.api_port, reload=_settings.debug)
