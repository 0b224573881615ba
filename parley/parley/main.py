"""
Parley FastAPI application.

Chat threads with an AI assistant, grounded in documents uploaded to each channel.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from parley.api import admin, chat, documents
from parley.config import settings
from parley.db import async_session_factory
from parley.errors import ParleyError

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    logger.info(
        f"Starting Parley API (completion model={settings.completion_model}, "
        f"embedding model={settings.embedding_model}, retrieval={settings.enable_retrieval})"
    )
    yield
    logger.info("Parley API shutdown complete")


app = FastAPI(
    lifespan=lifespan,
    title="Parley API",
    description="Channels, threads and an AI assistant over uploaded documents",
    version="0.1.0",
)


@app.exception_handler(ParleyError)
async def parley_error_handler(request: Request, exc: ParleyError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        db_status = "unhealthy"

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "database": db_status,
    }


app.include_router(admin.router, prefix="/v0/admin", tags=["admin"])
app.include_router(documents.router, prefix="/v0", tags=["documents"])
app.include_router(chat.router, prefix="/v0", tags=["chat"])
