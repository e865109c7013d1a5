"""Two-pass tool-calling orchestrator for the Sahay assistant.

Architecture:
  A LangGraph StateGraph with three nodes:

    1. **reason**   — pass 1: the model sees the system prompt, the
                      conversation and the capability catalog, and either
                      answers in text or requests one or more tool calls
    2. **tools**    — validates every requested call against its schema and
                      runs it through :class:`SchedulingService`, in the
                      order received; each result becomes a ``ToolMessage``
    3. **respond**  — pass 2: the model sees everything above plus the tool
                      results and writes the final reply

  Routing:
    reason → (no tool calls?) → END
    reason → (tool calls?)    → tools → respond → END

  There is no loop back from ``respond``: a request costs at
  most two reasoning passes.  Tool failures never raise out of the graph;
  they are serialised as structured results for pass 2 to phrase.

  No checkpointer is attached.  Each request carries its own history, and
  all persistent state lives in the backing store.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Annotated, Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, AnyMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.graph import END, StateGraph
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict

from sahay.config import ANTHROPIC_API_KEY, MODEL_NAME, REASONING_TEMPERATURE, RESPONSE_TEMPERATURE
from sahay.errors import InvalidInputError, UnavailableError
from sahay.prompts import get_system_prompt
from sahay.services.metrics import metrics
from sahay.tools.scheduling import SchedulingService
from sahay.tools.schemas import tool_definitions

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I'm sorry, I wasn't able to put together a response. Could you say that again?"

_MARKDOWN_EMPHASIS = re.compile(r"\*\*|__")
_MARKDOWN_HEADING = re.compile(r"^\s*#{1,6}\s?", re.MULTILINE)


class ConversationState(TypedDict):
    """State flowing through the graph.

    ``messages`` uses the ``add_messages`` reducer so each node appends to
    the history instead of replacing it.
    """

    messages: Annotated[list[AnyMessage], add_messages]


# ── LLM builders ────────────────────────────────────────────────────


def _build_llm(temperature: float):
    """Build the Anthropic chat model with the capability catalog bound.

    Both passes bind the catalog: the second pass replays tool-use blocks,
    which the Messages API only accepts alongside tool definitions.
    """
    llm = ChatAnthropic(
        model=MODEL_NAME,
        api_key=ANTHROPIC_API_KEY,
        temperature=temperature,
        max_tokens=1024,
    )
    return llm.bind_tools(tool_definitions())


# ── Message helpers ─────────────────────────────────────────────────


def message_text(message: Any) -> str:
    """Extract the plain text of a model message (string or content blocks)."""
    content = getattr(message, "content", message)
    if isinstance(content, str):
        return content
    parts = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def clean_reply(text: str) -> str:
    """Strip markdown emphasis and heading markers the model slipped in."""
    text = _MARKDOWN_EMPHASIS.sub("", text)
    text = _MARKDOWN_HEADING.sub("", text)
    return text.strip()


def build_conversation(message: str, history: list[dict[str, str]] | None = None) -> list[AnyMessage]:
    """Convert ``[{"role": "user"|"assistant", "content": ...}]`` plus the new
    message into LangChain messages, dropping empty turns."""
    messages: list[AnyMessage] = []
    for turn in history or []:
        content = (turn.get("content") or "").strip()
        if not content:
            continue
        if turn.get("role") in ("assistant", "model"):
            messages.append(AIMessage(content=content))
        else:
            messages.append(HumanMessage(content=content))
    messages.append(HumanMessage(content=message))
    return messages


def should_use_tools(state: ConversationState) -> str:
    """Route to the tools node if pass 1 requested any tool calls."""
    last_message = state["messages"][-1]
    if getattr(last_message, "tool_calls", None) or getattr(last_message, "invalid_tool_calls", None):
        return "tools"
    return END


# ── Orchestrator ────────────────────────────────────────────────────


class Orchestrator:
    """Runs one conversational turn: reason → tools → respond."""

    def __init__(
        self,
        service: SchedulingService,
        *,
        reasoning_llm=None,
        responding_llm=None,
    ):
        self._service = service
        self._reasoning_llm = reasoning_llm or _build_llm(REASONING_TEMPERATURE)
        self._responding_llm = responding_llm or _build_llm(RESPONSE_TEMPERATURE)
        self._graph = self._build_graph()

    # ── Nodes ────────────────────────────────────────────────────────

    def _invoke_llm(self, llm, operation: str, messages: list[AnyMessage]) -> AIMessage:
        system = SystemMessage(content=get_system_prompt())
        t0 = time.perf_counter()
        try:
            response = llm.invoke([system] + messages)
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "anthropic", operation, error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", operation, latency_ms=elapsed)
        logger.debug(
            "%s pass answered in %.0fms (%d tool calls)",
            operation, elapsed, len(getattr(response, "tool_calls", None) or []),
        )
        return response

    def _reason_node(self, state: ConversationState) -> dict:
        return {"messages": [self._invoke_llm(self._reasoning_llm, "reason", state["messages"])]}

    def _respond_node(self, state: ConversationState) -> dict:
        response = self._invoke_llm(self._responding_llm, "respond", state["messages"])
        if getattr(response, "tool_calls", None):
            logger.warning(
                "Ignoring %d tool call(s) requested in the final pass", len(response.tool_calls),
            )
        return {"messages": [response]}

    def _tools_node(self, state: ConversationState) -> dict:
        request = state["messages"][-1]
        results: list[ToolMessage] = []

        for call in getattr(request, "tool_calls", None) or []:
            result = self.execute_tool(call["name"], call.get("args"))
            results.append(ToolMessage(
                content=json.dumps(result, default=str),
                tool_call_id=call["id"],
                name=call["name"],
            ))

        for call in getattr(request, "invalid_tool_calls", None) or []:
            error = InvalidInputError(f"The arguments for {call.get('name')} were not valid JSON.")
            results.append(ToolMessage(
                content=json.dumps(error.to_result()),
                tool_call_id=call.get("id") or "",
                name=call.get("name") or "unknown",
                status="error",
            ))

        return {"messages": results}

    def execute_tool(self, name: str, args: dict[str, Any] | None) -> dict[str, Any]:
        """Run one tool call; never raises."""
        logger.info("Tool call: %s %s", name, args)
        try:
            result = self._service.invoke(name, args)
        except Exception:
            logger.exception("Tool %s crashed", name)
            result = UnavailableError(
                "The appointment system hit an unexpected problem. Please try again."
            ).to_result()
        logger.info(
            "Tool result: %s success=%s error_type=%s",
            name, result.get("success"), result.get("error_type"),
        )
        return result

    # ── Graph assembly ───────────────────────────────────────────────

    def _build_graph(self):
        graph = StateGraph(ConversationState)
        graph.add_node("reason", self._reason_node)
        graph.add_node("tools", self._tools_node)
        graph.add_node("respond", self._respond_node)

        graph.set_entry_point("reason")
        graph.add_conditional_edges("reason", should_use_tools, {"tools": "tools", END: END})
        graph.add_edge("tools", "respond")
        graph.add_edge("respond", END)

        return graph.compile()

    # ── Public API ───────────────────────────────────────────────────

    def reply(self, message: str, history: list[dict[str, str]] | None = None) -> str:
        """Answer *message* given the prior conversation *history*."""
        result = self._graph.invoke({"messages": build_conversation(message, history)})
        messages = result.get("messages", [])
        if not messages:
            return FALLBACK_REPLY
        text = clean_reply(message_text(messages[-1]))
        return text or FALLBACK_REPLY


def create_orchestrator(service: SchedulingService) -> Orchestrator:
    """Build the orchestrator with Anthropic models for both passes."""
    orchestrator = Orchestrator(service)
    logger.debug(
        "Orchestrator compiled — model: %s, capabilities: %d",
        MODEL_NAME, len(tool_definitions()),
    )
    return orchestrator
