"""Main entrypoint and application factory for the Ledger Import API.

This module initializes the FastAPI application, configures logging, sets up the database, starts the import service and its cleanup loop, and exposes the Scalar API reference endpoint for interactive OpenAPI documentation. It also includes the main entrypoint for running the app with Uvicorn.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.responses import HTMLResponse
from scalar_fastapi import get_scalar_api_reference
from sqlalchemy.exc import SQLAlchemyError

from ledger_import.api.routes import router
from ledger_import.core.db import get_engine, init_models
from ledger_import.core.settings import get_settings
from ledger_import.core.utils import ensure_dir, get_logger
from ledger_import.services.import_service import create_import_service

LOGGER_NAMES = (
    "ledger-import",
    "ledger-import.api",
    "ledger-import.service",
    "ledger-import.worker",
    "ledger-import.parser",
    "ledger-import.resolver",
    "ledger-import.store",
)


# --- Logging Setup ---
def setup_logging() -> None:
    """Configure logging to file and console, and ensure the log directory exists."""
    settings = get_settings()
    log_path = Path(settings.log_file)
    ensure_dir(log_path.parent)
    level = logging.getLevelName(settings.log_level.upper())
    file_handler = logging.FileHandler(log_path)
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    for name in LOGGER_NAMES:
        logger = get_logger(name)
        logger.setLevel(level)
        # File handler for persistent logs (not colorized)
        if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
            logger.addHandler(file_handler)


setup_logging()
logger = get_logger("ledger-import")


def _sqlite_dir(database_url: str) -> Path | None:
    """Directory holding a file-backed SQLite database, if that is what the URL names."""
    prefix = "sqlite+aiosqlite:///"
    if not database_url.startswith(prefix) or ":memory:" in database_url:
        return None
    return Path(database_url.removeprefix(prefix)).parent


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create tables, start the import service and the cleanup loop; stop them on shutdown."""
    settings = get_settings()
    db_dir = _sqlite_dir(settings.database_url)
    if db_dir is not None:
        ensure_dir(db_dir)
    engine = get_engine(settings.database_url)
    try:
        await init_models(engine)
    except SQLAlchemyError:
        logger.exception("Failed to create import tables")
        raise
    service = create_import_service(engine, settings)
    app.state.import_service = service
    cleanup = None
    if settings.cleanup_interval_minutes > 0:
        cleanup = asyncio.create_task(
            service.run_cleanup_loop(settings.cleanup_interval_minutes, settings.job_retention_hours),
            name="import-job-cleanup",
        )
    logger.info("Ledger import service started")
    try:
        yield
    finally:
        if cleanup is not None:
            cleanup.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cleanup
        await service.aclose()
        await engine.dispose()
        logger.info("Ledger import service stopped")


app = FastAPI(
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    title="Ledger Import API",
    description="""
    The Ledger Import API turns CSV and Excel spreadsheets into income and expense records, running each import as a background job.

    **Endpoints:**
    - `POST /imports/preview`: Upload a file; returns headers, a suggested field mapping and preview rows.
    - `POST /imports/{{record_type}}/validate`: Validate rows under a mapping without importing them.
    - `POST /imports/{{record_type}}`: Start an import job. Returns a `job_id`.
    - `GET /imports/{{job_id}}`: Check the progress of an import job.
    - `POST /imports/{{job_id}}/cancel`: Cancel a pending or running job.
    - `GET /imports`: List recent jobs.
    - `GET /health`: Health check endpoint.
    - `GET /scalar`: Interactive Scalar OpenAPI documentation.
    """,
    version="1.0.0",
)
app.include_router(router)


@app.get("/scalar", include_in_schema=False)
async def scalar_docs() -> HTMLResponse:
    """Return Scalar API reference."""
    return get_scalar_api_reference(openapi_url=app.openapi_url, title=app.title)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run("main:app", host=settings.server_host, port=settings.server_port, reload=True)
