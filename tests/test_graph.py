"""
Unit tests for the agent and tool steps, called directly without the graph runtime.
"""

import json

import pytest

from app.agent.graph import SYSTEM_PROMPT, agent_step, tool_step
from app.agent.state import ai_message, human_message
from app.core.errors import ModelCapabilityError

from conftest import KB_TOOL, FakeChatModel, FakeRetriever, kb_call


class TestAgentStep:
    """Tests for agent_step()."""

    def test_prefixes_system_prompt_and_increments(self) -> None:
        model = FakeChatModel([ai_message("answer")])
        state = {"messages": [human_message("q")], "iterations": 4}
        update = agent_step(state, model)
        assert update == {"messages": [ai_message("answer")], "current_step": "agent", "iterations": 5}
        sent = model.calls[0]["messages"]
        assert sent[0] == {"role": "system", "content": SYSTEM_PROMPT}
        assert sent[1:] == [human_message("q")]
        assert [t["function"]["name"] for t in model.calls[0]["tools"]] == [KB_TOOL]

    def test_tokens_go_to_writer(self) -> None:
        events = []
        agent_step({"messages": [human_message("q")], "iterations": 0}, FakeChatModel([ai_message("hi")]), writer=events.append)
        assert events == [{"event": "token", "content": "hi"}]

    def test_model_failure_raises(self) -> None:
        model = FakeChatModel(error=TimeoutError("timed out"))
        with pytest.raises(ModelCapabilityError, match="timed out"):
            agent_step({"messages": [human_message("q")], "iterations": 0}, model)

    def test_malformed_model_reply_raises(self) -> None:
        model = FakeChatModel([{"role": "human", "content": "?"}])
        with pytest.raises(ModelCapabilityError):
            agent_step({"messages": [human_message("q")], "iterations": 0}, model)


class TestToolStep:
    """Tests for tool_step()."""

    def test_one_result_per_call_in_call_order(self) -> None:
        calls = [
            {"id": "b", "name": KB_TOOL, "arguments": {"query": "second"}},
            {"id": "a", "name": KB_TOOL, "arguments": {"query": "first"}},
            {"id": "c", "name": "no_such_tool", "arguments": {}},
        ]
        retriever = FakeRetriever([{"text": "chunk"}])
        state = {"messages": [human_message("q"), ai_message("", calls)], "iterations": 1}
        update = tool_step(state, retriever)

        assert update["current_step"] == "tools"
        assert [m["tool_call_id"] for m in update["messages"]] == ["b", "a", "c"]
        assert all(m["role"] == "tool" for m in update["messages"])
        statuses = [json.loads(m["content"])["status"] for m in update["messages"]]
        assert statuses == ["success", "success", "error"]
        assert update["error"] == "Unknown tool: no_such_tool"
        assert [q for q, _ in retriever.calls] == ["second", "first"]

    def test_error_is_cleared_when_all_calls_succeed(self) -> None:
        state = {"messages": [kb_call("q")], "iterations": 1, "error": "old"}
        assert tool_step(state, FakeRetriever())["error"] is None

    def test_writer_sees_start_and_end(self) -> None:
        events = []
        tool_step({"messages": [kb_call("q", call_id="x")], "iterations": 1}, FakeRetriever(), writer=events.append)
        assert [e["event"] for e in events] == ["tool_start", "tool_end"]
        assert events[0]["arguments"] == {"query": "q"}
        assert events[1] == {"event": "tool_end", "id": "x", "name": KB_TOOL, "status": "success"}

    def test_malformed_arguments_become_error_result(self) -> None:
        call = {"id": "bad", "name": KB_TOOL, "arguments": ["oops"]}
        retriever = FakeRetriever()
        update = tool_step({"messages": [ai_message("", [call])], "iterations": 1}, retriever)

        assert [m["tool_call_id"] for m in update["messages"]] == ["bad"]
        assert json.loads(update["messages"][0]["content"])["status"] == "error"
        assert update["error"].startswith("Invalid arguments")
        assert retriever.calls == []
