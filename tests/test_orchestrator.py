"""Tests for the two-pass orchestrator graph and its helpers."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.graph import END

from sahay.errors import InvalidInputError
from sahay.orchestrator import (
    FALLBACK_REPLY,
    Orchestrator,
    build_conversation,
    clean_reply,
    message_text,
    should_use_tools,
)
from sahay.tools.schemas import CAPABILITIES, parse_invocation, tool_definitions

# ── Helpers ──────────────────────────────────────────────────────────


def _llm(*responses: AIMessage) -> MagicMock:
    llm = MagicMock()
    llm.invoke.side_effect = list(responses)
    return llm


def _tool_call(name: str, args: dict, call_id: str) -> dict:
    return {"name": name, "args": args, "id": call_id}


def _tool_messages(llm: MagicMock) -> list[ToolMessage]:
    sent = llm.invoke.call_args[0][0]
    return [m for m in sent if isinstance(m, ToolMessage)]


# ── Message helpers ──────────────────────────────────────────────────


class TestBuildConversation:
    def test_maps_roles_and_appends_new_message(self):
        messages = build_conversation(
            "Book me in",
            [{"role": "user", "content": "Hi"}, {"role": "assistant", "content": "Hello!"}],
        )
        assert [type(m) for m in messages] == [HumanMessage, AIMessage, HumanMessage]
        assert messages[-1].content == "Book me in"

    def test_model_role_is_treated_as_assistant(self):
        messages = build_conversation("ok", [{"role": "model", "content": "Earlier reply"}])
        assert isinstance(messages[0], AIMessage)

    def test_empty_turns_are_dropped(self):
        messages = build_conversation("ok", [{"role": "user", "content": "  "}, {"role": "assistant"}])
        assert len(messages) == 1


class TestReplyText:
    def test_clean_reply_strips_markdown(self):
        assert clean_reply("## Slots\n**Dr. Aditya** has __two__ slots.") == "Slots\nDr. Aditya has two slots."

    def test_message_text_joins_text_blocks(self):
        message = AIMessage(content=[
            {"type": "text", "text": "Hello "},
            {"type": "tool_use", "id": "x", "name": "find_provider", "input": {}},
            {"type": "text", "text": "there"},
        ])
        assert message_text(message) == "Hello there"

    def test_should_use_tools_routes_on_tool_calls(self):
        with_calls = AIMessage(content="", tool_calls=[_tool_call("list_specialties", {}, "c1")])
        assert should_use_tools({"messages": [with_calls]}) == "tools"
        assert should_use_tools({"messages": [AIMessage(content="Hi")]}) == END


# ── Capability catalog ───────────────────────────────────────────────


class TestCatalog:
    def test_every_capability_has_a_definition(self):
        definitions = {d["name"]: d for d in tool_definitions()}
        assert set(definitions) == set(CAPABILITIES)
        create = definitions["create_booking"]
        assert create["description"]
        assert set(create["input_schema"]["required"]) == {
            "doctor_name", "patient_name", "date", "time", "phone",
        }
        assert "title" not in create["input_schema"]

    def test_unknown_capability_rejected(self):
        with pytest.raises(InvalidInputError) as exc_info:
            parse_invocation("delete_everything", {})
        assert "find_provider" in exc_info.value.details["available"]

    def test_extra_arguments_are_ignored(self):
        request = parse_invocation("find_provider", {"name": " Aditya ", "mood": "happy"})
        assert request.name == "Aditya"
        assert not hasattr(request, "mood")


# ── Graph ────────────────────────────────────────────────────────────


class TestOrchestrator:
    def test_text_only_answer_uses_one_pass(self):
        service = MagicMock()
        reasoning = _llm(AIMessage(content="Hello! How can I help?"))
        responding = _llm()
        orchestrator = Orchestrator(service, reasoning_llm=reasoning, responding_llm=responding)

        assert orchestrator.reply("Hi") == "Hello! How can I help?"
        assert reasoning.invoke.call_count == 1
        responding.invoke.assert_not_called()
        service.invoke.assert_not_called()

    def test_system_prompt_is_sent_first(self):
        reasoning = _llm(AIMessage(content="Hi"))
        Orchestrator(MagicMock(), reasoning_llm=reasoning, responding_llm=_llm()).reply("Hi")
        sent = reasoning.invoke.call_args[0][0]
        assert isinstance(sent[0], SystemMessage)
        assert "Today is" in sent[0].content

    def test_tool_results_feed_the_second_pass(self):
        service = MagicMock()
        service.invoke.return_value = {"success": True, "message": "Found 1", "count": 1}
        reasoning = _llm(AIMessage(
            content="", tool_calls=[_tool_call("find_provider", {"name": "aditya"}, "call_1")],
        ))
        responding = _llm(AIMessage(content="Dr. Aditya is our cardiologist."))
        orchestrator = Orchestrator(service, reasoning_llm=reasoning, responding_llm=responding)

        assert orchestrator.reply("Is Dr. Aditya here?") == "Dr. Aditya is our cardiologist."
        service.invoke.assert_called_once_with("find_provider", {"name": "aditya"})
        tool_messages = _tool_messages(responding)
        assert len(tool_messages) == 1
        assert tool_messages[0].tool_call_id == "call_1"
        assert json.loads(tool_messages[0].content)["count"] == 1

    def test_multiple_calls_run_in_order(self):
        service = MagicMock()
        service.invoke.side_effect = [
            {"success": True, "message": "first"},
            {"success": True, "message": "second"},
        ]
        reasoning = _llm(AIMessage(content="", tool_calls=[
            _tool_call("list_specialties", {}, "a"),
            _tool_call("find_provider", {"specialty": "Neurology"}, "b"),
        ]))
        responding = _llm(AIMessage(content="Done"))
        Orchestrator(service, reasoning_llm=reasoning, responding_llm=responding).reply("?")

        assert [c.args[0] for c in service.invoke.call_args_list] == ["list_specialties", "find_provider"]
        assert [m.tool_call_id for m in _tool_messages(responding)] == ["a", "b"]

    def test_crashing_tool_becomes_unavailable_result(self):
        service = MagicMock()
        service.invoke.side_effect = RuntimeError("boom")
        reasoning = _llm(AIMessage(content="", tool_calls=[_tool_call("list_specialties", {}, "c1")]))
        responding = _llm(AIMessage(content="Sorry, please try again shortly."))
        orchestrator = Orchestrator(service, reasoning_llm=reasoning, responding_llm=responding)

        assert orchestrator.reply("What do you offer?") == "Sorry, please try again shortly."
        result = json.loads(_tool_messages(responding)[0].content)
        assert result["success"] is False
        assert result["error_type"] == "Unavailable"

    def test_unparseable_arguments_become_invalid_input(self):
        service = MagicMock()
        reasoning = _llm(AIMessage(content="", invalid_tool_calls=[{
            "name": "create_booking", "args": "{not json", "id": "bad_1",
            "error": "malformed", "type": "invalid_tool_call",
        }]))
        responding = _llm(AIMessage(content="Could you repeat the details?"))
        Orchestrator(service, reasoning_llm=reasoning, responding_llm=responding).reply("book")

        service.invoke.assert_not_called()
        result = json.loads(_tool_messages(responding)[0].content)
        assert result["error_type"] == "InvalidInput"

    def test_second_pass_tool_calls_are_ignored(self):
        service = MagicMock()
        service.invoke.return_value = {"success": True, "message": "ok"}
        reasoning = _llm(AIMessage(content="", tool_calls=[_tool_call("list_specialties", {}, "c1")]))
        responding = _llm(AIMessage(
            content="We offer cardiology.",
            tool_calls=[_tool_call("find_provider", {}, "c2")],
        ))
        orchestrator = Orchestrator(service, reasoning_llm=reasoning, responding_llm=responding)

        assert orchestrator.reply("?") == "We offer cardiology."
        assert service.invoke.call_count == 1
        assert reasoning.invoke.call_count == 1

    def test_empty_final_text_falls_back(self):
        reasoning = _llm(AIMessage(content="   "))
        orchestrator = Orchestrator(MagicMock(), reasoning_llm=reasoning, responding_llm=_llm())
        assert orchestrator.reply("Hi") == FALLBACK_REPLY

    def test_llm_errors_propagate(self):
        reasoning = MagicMock()
        reasoning.invoke.side_effect = RuntimeError("rate limited")
        orchestrator = Orchestrator(MagicMock(), reasoning_llm=reasoning, responding_llm=_llm())
        with pytest.raises(RuntimeError):
            orchestrator.reply("Hi")


class TestOrchestratorWithService:
    """Graph wired to the real handlers over the in-memory store."""

    def test_same_slot_twice_in_one_turn(self, service, store):
        args = {
            "doctor_name": "Aditya", "patient_name": "Ravi", "date": "2026-01-21",
            "time": "11:00", "phone": "9876543210",
        }
        reasoning = _llm(AIMessage(content="", tool_calls=[
            _tool_call("create_booking", args, "first"),
            _tool_call("create_booking", {**args, "patient_name": "Meena"}, "second"),
        ]))
        responding = _llm(AIMessage(content="Ravi is booked; Meena needs another time."))
        Orchestrator(service, reasoning_llm=reasoning, responding_llm=responding).reply("book both")

        first, second = (json.loads(m.content) for m in _tool_messages(responding))
        assert first["success"] is True
        assert second["error_type"] == "Conflict"
        assert len(store.confirmed(doctor_id=1, appointment_time="11:00")) == 1

    def test_unknown_tool_name_reported_as_invalid_input(self, service):
        reasoning = _llm(AIMessage(content="", tool_calls=[_tool_call("teleport", {}, "t1")]))
        responding = _llm(AIMessage(content="I can't do that."))
        Orchestrator(service, reasoning_llm=reasoning, responding_llm=responding).reply("?")

        result = json.loads(_tool_messages(responding)[0].content)
        assert result["error_type"] == "InvalidInput"
        assert "teleport" in result["message"]
