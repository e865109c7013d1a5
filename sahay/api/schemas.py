"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ChatTurn(BaseModel):
    """One earlier message in the conversation."""

    role: Literal["user", "assistant"]
    content: str = Field(..., max_length=4000)


class ChatRequest(BaseModel):
    """Incoming chat message plus the conversation so far.

    The server keeps no session state; the client resends the history.
    """

    message: str = Field(..., min_length=1, max_length=2000, description="The patient's message")
    history: list[ChatTurn] = Field(default_factory=list, max_length=50)
    session_id: str | None = Field(
        None,
        max_length=100,
        description="Optional client-side session identifier, echoed back for log correlation",
    )


class ChatResponse(BaseModel):
    """Response from the assistant."""

    reply: str = Field(..., description="The assistant's response message")
    session_id: str | None = Field(None, description="The session ID sent with the request")


class CapabilityResponse(BaseModel):
    """Structured result of a directly invoked capability."""

    success: bool
    message: str
    error_type: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "sahay-agent"
