"""FastAPI route definitions for the Sahay assistant API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request

from sahay.api.schemas import CapabilityResponse, ChatRequest, ChatResponse, HealthResponse
from sahay.tools.schemas import CAPABILITIES

logger = logging.getLogger(__name__)

router = APIRouter()


def _state_attr(request: Request, name: str):
    """Fetch a lifespan-initialised resource, or 503 while starting up."""
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=503,
            detail="The assistant is still starting up. Please try again in a moment.",
        )
    return value


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, http_request: Request):
    """Send a message (with prior history) and get the assistant's reply.

    ``Orchestrator.reply`` blocks on the model and the store, so it runs in
    a worker thread to keep the event loop free for other requests.
    """
    orchestrator = _state_attr(http_request, "orchestrator")
    request_id = getattr(http_request.state, "request_id", "?")
    history = [turn.model_dump() for turn in request.history]

    try:
        reply = await asyncio.to_thread(orchestrator.reply, request.message, history)
    except Exception as e:
        # Full traceback stays in the server log; the client gets a generic detail
        logger.exception("[%s] Error processing chat request", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    return ChatResponse(reply=reply, session_id=request.session_id)


@router.post("/capabilities/{name}", response_model=CapabilityResponse)
async def run_capability(
    name: str,
    http_request: Request,
    args: dict[str, Any] | None = Body(None),
):
    """Run a single capability directly, bypassing the model."""
    if name not in CAPABILITIES:
        raise HTTPException(status_code=404, detail=f"Unknown capability '{name}'.")
    service = _state_attr(http_request, "service")
    request_id = getattr(http_request.state, "request_id", "?")

    result = await asyncio.to_thread(service.invoke, name, args)
    logger.info("[%s] capability %s success=%s", request_id, name, result.get("success"))

    data = {k: v for k, v in result.items() if k not in ("success", "message", "error_type")}
    return CapabilityResponse(
        success=result["success"],
        message=result["message"],
        error_type=result.get("error_type"),
        data=data,
    )
