"""
Shared fakes for the model and retrieval capabilities.

Tests never call OpenAI, Hugging Face or Milvus: the agent is built with these
fakes and an in-memory checkpointer.
"""

from typing import Any

import pytest
from langgraph.checkpoint.memory import MemorySaver

from app.agent.state import Message, ai_message
from app.services.agent_service import RagAgent

KB_TOOL = "knowledge_base_retrieval"


def kb_call(query: str, call_id: str = "call_1", **extra: Any) -> Message:
    """An ai message requesting one knowledge_base_retrieval call."""
    return ai_message("", [{"id": call_id, "name": KB_TOOL, "arguments": {"query": query, **extra}}])


class FakeChatModel:
    """Returns scripted ai messages in order; a final answer once the script runs out."""

    def __init__(self, responses: list[Message] | None = None, error: Exception | None = None) -> None:
        self.responses = list(responses or [])
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def generate(self, messages, tools, on_token=None) -> Message:
        self.calls.append({"messages": list(messages), "tools": tools})
        if self.error is not None:
            raise self.error
        response = dict(self.responses.pop(0)) if self.responses else ai_message("Done.")
        if on_token is not None and response.get("content") and not response.get("tool_calls"):
            on_token(response["content"])
        return response


class AlwaysToolModel:
    """Requests a retrieval on every turn and never answers."""

    def __init__(self) -> None:
        self.calls = 0

    def generate(self, messages, tools, on_token=None) -> Message:
        self.calls += 1
        return kb_call(f"query {self.calls}", call_id=f"call_{self.calls}")


class FakeRetriever:
    """Returns fixed chunks (or raises) and records every search."""

    def __init__(self, chunks: list[dict] | None = None, error: Exception | None = None) -> None:
        self.chunks = chunks if chunks is not None else [{"text": "Chunk one."}]
        self.error = error
        self.calls: list[tuple[str, int]] = []

    def search(self, query: str, top_k: int) -> list[dict]:
        self.calls.append((query, top_k))
        if self.error is not None:
            raise self.error
        return list(self.chunks)


@pytest.fixture
def retriever() -> FakeRetriever:
    return FakeRetriever([{"text": "Total budget: $4.2B."}, {"text": "General fund: $1.1B."}, {"text": "Capital: $0.9B."}])


def make_agent(model, retriever, **kwargs) -> RagAgent:
    kwargs.setdefault("checkpointer", MemorySaver())
    return RagAgent(model=model, retriever=retriever, **kwargs)
