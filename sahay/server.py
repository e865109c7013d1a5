"""FastAPI server for the Sahay scheduling assistant.

Run with:
    uvicorn sahay.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from sahay.api.routes import router
from sahay.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from sahay.orchestrator import create_orchestrator
from sahay.services.gateway import create_gateway
from sahay.services.notifier import create_notifier
from sahay.tools.scheduling import SchedulingService

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the gateway, handlers and orchestrator once per process.

    They hold no per-request state, so every request reuses them.
    """
    logger.info("Starting data gateway and orchestrator…")
    gateway = create_gateway()
    notifier = create_notifier()
    application.state.service = SchedulingService(gateway, notifier=notifier)
    application.state.orchestrator = create_orchestrator(application.state.service)
    logger.info("Assistant ready.")
    yield
    application.state.orchestrator = None
    application.state.service = None
    notifier.close()
    gateway.close()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Sahay Scheduling Assistant",
    description=(
        "Conversational hospital receptionist — find doctors, check availability, "
        "book, reschedule and cancel appointments."
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
    """Attach a request ID (client-supplied or fresh) for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Sahay Scheduling Assistant",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    logger.info("Starting Sahay API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "sahay.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
