import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from memorylane.api.endpoints import router as api_router
from memorylane.core.config import settings
from memorylane.core.exceptions import (
    IndexingConflictError,
    IndexingStartError,
    MemoryLaneError,
    NotFoundError,
    ValidationError,
)
from memorylane.core.logging import setup_logging
from memorylane.services.container import build_services

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging(settings.DEBUG)
    logger.info("Starting up MemoryLane backend...")

    owns_services = getattr(app.state, "services", None) is None
    if owns_services:
        app.state.services = build_services(settings)
    engine = getattr(app.state.services.store, "engine", None)
    if engine is not None:
        from memorylane.db.postgres import init_db
        await init_db(engine)

    yield

    # Shutdown
    logger.info("Shutting down MemoryLane backend...")
    if owns_services:
        await app.state.services.aclose()
        app.state.services = None


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": {"message": message}})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error(400, str(exc))


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return _error(404, str(exc))


@app.exception_handler(IndexingConflictError)
async def conflict_handler(request: Request, exc: IndexingConflictError):
    return _error(409, str(exc))


@app.exception_handler(IndexingStartError)
async def indexing_start_handler(request: Request, exc: IndexingStartError):
    return _error(502, str(exc))


@app.exception_handler(MemoryLaneError)
async def memorylane_error_handler(request: Request, exc: MemoryLaneError):
    logger.error(f"Unhandled application error on {request.url.path}: {exc}")
    return _error(500, "Internal server error")


app.include_router(api_router, prefix="/api")
app.mount("/media", StaticFiles(directory=settings.MEDIA_ROOT, check_dir=False), name="media")
