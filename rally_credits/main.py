"""Rally Credits API application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rally_credits.core.config import settings
from rally_credits.core.logging_config import setup_logging
from rally_credits.routes import clubs, credits, internal
from rally_credits.services.errors import (
    IdempotencyConflict,
    InsufficientBalance,
    ItemInactive,
    LedgerError,
    NotFound,
    StorageUnavailable,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    StorageUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    InsufficientBalance: status.HTTP_409_CONFLICT,
    ItemInactive: status.HTTP_409_CONFLICT,
    IdempotencyConflict: status.HTTP_409_CONFLICT,
    NotFound: status.HTTP_404_NOT_FOUND,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    setup_logging()
    logger.info("%s starting", settings.app_name)
    yield


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    docs_url=f"{settings.api_prefix}/docs",
    openapi_url=f"{settings.api_prefix}/openapi.json",
    lifespan=lifespan,
)

# CORS - permissive in dev, lock down in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    headers = None
    if isinstance(exc, StorageUnavailable):
        logger.error("Storage unavailable for %s %s", request.method, request.url.path)
        headers = {"Retry-After": "1"}
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"code": exc.code, "message": exc.message}},
        headers=headers,
    )


# Mount routes
app.include_router(credits.router, prefix=settings.api_prefix)
app.include_router(clubs.router, prefix=settings.api_prefix)
app.include_router(internal.router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
