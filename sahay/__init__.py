"""Sahay — a conversational scheduling assistant for a multi-doctor hospital.

Architecture Overview
=====================

The assistant delegates *language* to an LLM and keeps *data* to itself:

1. **Orchestrator** (``sahay/orchestrator.py``) — a two-pass LangGraph
   graph. Pass 1 lets the model answer directly or request tool calls;
   the tools run; pass 2 turns their structured results into the reply.

2. **Capability handlers** (``sahay/tools/scheduling.py``) — find doctors,
   list specialties, list availability, create/reschedule/cancel
   bookings. Each returns ``success`` / ``message`` / ``error_type`` so the
   model can tell "not found" from "try again later".

3. **Entity resolver** (``sahay/services/resolver.py``) — "tomorrow",
   "23/01/26", "Dr. Adithya", "cardio" → canonical dates and doctors.

4. **Data gateway** (``sahay/services/gateway.py``) — every Supabase call
   goes through bounded exponential-backoff retries for transient
   failures, a deadline, and error classification.

Key Design Decisions
--------------------
- **LLM**: Anthropic via ``langchain-anthropic``; both passes bind the
  pydantic-generated capability catalog.
- **Store**: Supabase PostgREST over ``httpx``. The gateway is the only
  component that talks to it, and only the gateway retries.
- **Stateless requests**: the client sends the conversation history; no
  server-side sessions.
- **Double-booking guard**: check-then-insert, plus store-level unique
  violations mapped to ``Conflict``.
- **Dual Interface**: FastAPI server (production) + CLI chat loop (dev).

Package Structure
-----------------
- ``sahay/config.py`` — configuration from environment variables / SSM
- ``sahay/errors.py`` — failure taxonomy
- ``sahay/models.py`` — Provider and Booking records
- ``sahay/prompts.py`` — system prompt with date injection
- ``sahay/orchestrator.py`` — two-pass tool-calling graph
- ``sahay/server.py`` — FastAPI application
- ``sahay/main.py`` — CLI chat interface
- ``sahay/services/`` — Supabase client, data gateway, resolver, notifier, metrics
- ``sahay/tools/`` — capability schemas and handlers
- ``sahay/api/`` — FastAPI routes and Pydantic schemas
"""
