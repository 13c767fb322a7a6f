"""FastAPI server for the Sophie dialogue engine.

Run with:
    uvicorn sophie.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from sophie.api.routes import router
from sophie.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from sophie.dialogue.engine import build_engine
from sophie.services.metrics import metrics

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the engine once and keep it on ``app.state``.

    Requests arriving before this completes get a 503 from the routes.
    """
    logger.info("Building dialogue engine…")
    application.state.engine = build_engine()
    logger.info("Engine ready.")
    yield
    metrics.flush()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Sophie Dialogue Engine",
    description=(
        "Bilingual medical-clinic assistant: books, moves and cancels "
        "appointments and answers questions about the clinic."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Tag every request with an ID, echoed back as ``X-Request-ID``."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Sophie Dialogue Engine",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    logger.info("Starting Sophie API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "sophie.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
