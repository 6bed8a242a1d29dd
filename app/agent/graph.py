"""
LangGraph agent: agent ⇄ tools loop over a persisted conversation.

    START → agent → (route) → tools → agent → ... → END

The agent node calls the model with the system prompt plus full history; the
router sends it to the tools node while the last ai message requests tool
calls, up to MAX_AGENT_ITERATIONS agent steps. There is no router after tools.
Model failures abort the run; retrieval failures become tool results.
"""

import logging
from typing import Any, Callable, Literal

from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.config import get_stream_writer
from langgraph.graph import END, StateGraph

from app.agent.llm import ChatModel
from app.agent.state import ConversationState, get_message_text, pending_tool_calls, system_message, tool_message
from app.agent.tools import AGENT_TOOLS, execute_tool
from app.core.config import MAX_AGENT_ITERATIONS, RETRIEVAL_TOP_K
from app.core.errors import ModelCapabilityError
from app.services.retrieval_service import Retriever

logger = logging.getLogger(__name__)

StreamWriter = Callable[[Any], None]

SYSTEM_PROMPT = """You are a Budget Book RAG Assistant, an expert at answering questions about government and organizational budget documents.

You have access to a retrieval tool that searches a knowledge base containing budget book documents.

## How You Work

1. When a user asks a question, use the `knowledge_base_retrieval` tool to search for relevant budget document chunks.
2. Analyze the retrieved chunks carefully and synthesize a clear, accurate answer.
3. If the retrieved context doesn't fully answer the question, you may:
   - Rephrase your query and search again for better results
   - Search for related terms or concepts
   - Clearly state what information you found vs. what is missing
4. Always cite which document(s) your answer is based on when possible.

## Guidelines

- Accuracy: Only state facts that are supported by the retrieved chunks. Do not infer budget figures.
- Transparency: If the retrieved context is insufficient, say so clearly rather than guessing.
- Specificity: When discussing budget figures, include exact numbers, line items, and fiscal years.
- Format: Use markdown headings, bold, numbered lists, and bullet points for clarity.

## Response Format

- A direct answer to the question
- Supporting details from the retrieved chunks
- Any caveats about information completeness"""


def _no_op_writer(_: Any) -> None:
    return None


def agent_step(
    state: ConversationState,
    model: ChatModel,
    system_prompt: str = SYSTEM_PROMPT,
    writer: StreamWriter | None = None,
) -> dict:
    """Call the model on system prompt + history; append its reply and count the step."""
    writer = writer or _no_op_writer
    history = state.get("messages") or []
    iterations = state.get("iterations") or 0
    logger.info("[graph:agent] IN  iterations=%d history_len=%d", iterations, len(history))

    def on_token(delta: str) -> None:
        writer({"event": "token", "content": delta})

    try:
        response = model.generate([system_message(system_prompt), *history], AGENT_TOOLS, on_token=on_token)
    except Exception as e:
        raise ModelCapabilityError(f"Model call failed: {e}") from e
    if not isinstance(response, dict) or response.get("role") != "ai":
        raise ModelCapabilityError(f"Model returned a malformed message: {response!r}")

    logger.info(
        "[graph:agent] OUT iterations=%d tool_calls=%s content_len=%d",
        iterations + 1,
        [tc.get("name") for tc in pending_tool_calls(response)],
        len(get_message_text(response)),
    )
    return {"messages": [response], "current_step": "agent", "iterations": iterations + 1}


def tool_step(
    state: ConversationState,
    retriever: Retriever,
    default_top_k: int = RETRIEVAL_TOP_K,
    writer: StreamWriter | None = None,
) -> dict:
    """Run every tool call of the last ai message in order; one tool message per call."""
    writer = writer or _no_op_writer
    history = state.get("messages") or []
    calls = pending_tool_calls(history[-1] if history else None)
    logger.info("[graph:tools] IN  calls=%s", [tc.get("name") for tc in calls])

    results = []
    error = None
    for tc in calls:
        name = tc.get("name", "")
        writer({"event": "tool_start", "id": tc["id"], "name": name, "arguments": tc.get("arguments") or {}})
        payload = execute_tool(name, tc.get("arguments"), retriever, default_top_k)
        status = payload.get("status")
        if status == "error" and error is None:
            error = payload.get("message")
        results.append(tool_message(payload, tc["id"]))
        writer({"event": "tool_end", "id": tc["id"], "name": name, "status": status})

    logger.info("[graph:tools] OUT results=%d error=%r", len(results), error)
    return {"messages": results, "current_step": "tools", "error": error}


def route_agent_response(state: ConversationState) -> Literal["tools", "__end__"]:
    """Go to tools while the last ai message requests tool calls; stop at the iteration cap."""
    iterations = state.get("iterations") or 0
    if iterations >= MAX_AGENT_ITERATIONS:
        logger.warning("[graph:route] max iterations reached (%d), forcing end", iterations)
        return END

    history = state.get("messages") or []
    calls = pending_tool_calls(history[-1] if history else None)
    if calls:
        logger.info("[graph:route] -> tools %s", [tc.get("name") for tc in calls])
        return "tools"
    logger.info("[graph:route] -> end")
    return END


def build_graph(
    model: ChatModel,
    retriever: Retriever,
    checkpointer: BaseCheckpointSaver | None = None,
    system_prompt: str = SYSTEM_PROMPT,
    default_top_k: int = RETRIEVAL_TOP_K,
):
    """
    Build and compile the agent graph with its capabilities bound.
    agent → (tools → agent)* → END.
    """

    def agent(state: ConversationState) -> dict:
        return agent_step(state, model, system_prompt, writer=get_stream_writer())

    def tools(state: ConversationState) -> dict:
        return tool_step(state, retriever, default_top_k, writer=get_stream_writer())

    graph = StateGraph(ConversationState)

    graph.add_node("agent", agent)
    graph.add_node("tools", tools)

    graph.set_entry_point("agent")
    graph.add_conditional_edges("agent", route_agent_response, {"tools": "tools", END: END})
    graph.add_edge("tools", "agent")

    return graph.compile(checkpointer=checkpointer)
