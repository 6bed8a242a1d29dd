"""
Unit tests for the agent router: tools vs end, and the iteration cap.
"""

import pytest
from langgraph.graph import END

from app.agent.graph import route_agent_response
from app.agent.state import ai_message, human_message, tool_message
from app.core.config import MAX_AGENT_ITERATIONS

from conftest import kb_call


def _state(messages, iterations=1):
    return {"messages": messages, "iterations": iterations, "current_step": "agent", "error": None}


class TestRouteAgentResponse:
    """Tests for route_agent_response()."""

    def test_tool_calls_route_to_tools(self) -> None:
        state = _state([human_message("q"), kb_call("budget")])
        assert route_agent_response(state) == "tools"

    def test_final_answer_routes_to_end(self) -> None:
        state = _state([human_message("q"), ai_message("The total is $5.")])
        assert route_agent_response(state) == END

    def test_empty_tool_call_list_routes_to_end(self) -> None:
        state = _state([human_message("q"), {"role": "ai", "content": "x", "tool_calls": []}])
        assert route_agent_response(state) == END

    def test_last_message_not_ai_routes_to_end(self) -> None:
        state = _state([human_message("q"), kb_call("budget"), tool_message("{}", "call_1")])
        assert route_agent_response(state) == END

    def test_no_messages_routes_to_end(self) -> None:
        assert route_agent_response(_state([], iterations=0)) == END

    @pytest.mark.parametrize("iterations", [MAX_AGENT_ITERATIONS, MAX_AGENT_ITERATIONS + 3])
    def test_cap_wins_over_pending_tool_calls(self, iterations: int) -> None:
        state = _state([human_message("q"), kb_call("budget")], iterations=iterations)
        assert route_agent_response(state) == END

    def test_just_below_cap_still_routes_to_tools(self) -> None:
        state = _state([human_message("q"), kb_call("budget")], iterations=MAX_AGENT_ITERATIONS - 1)
        assert route_agent_response(state) == "tools"

    def test_is_idempotent(self) -> None:
        state = _state([human_message("q"), kb_call("budget")], iterations=3)
        first = route_agent_response(state)
        assert route_agent_response(state) == first
        assert state["iterations"] == 3
        assert len(state["messages"]) == 2
