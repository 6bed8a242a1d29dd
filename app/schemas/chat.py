"""Schemas for the chat endpoints. History is stored server-side by thread_id."""

from typing import Any

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    """Request body for POST /api/chat and POST /api/chat/stream."""

    message: str = Field("", description="User question for the agent.")
    thread_id: str | None = Field(
        None,
        description="Conversation thread. Omit to start a new thread; pass a previous thread_id to continue it.",
    )


class ChatResponse(BaseModel):
    """Response for POST /api/chat."""

    success: bool = Field(True)
    response: str = Field(..., description="Final answer (markdown) with <thinking> blocks removed.")
    thinking: list[str] = Field(default_factory=list, description="Contents of <thinking> blocks, in order.")
    message: str = Field(..., description="The user message that was processed.")
    thread_id: str = Field(..., description="Thread to pass back to continue the conversation.")
    iterations: int = Field(0, description="Agent steps recorded on the thread.")
    tools_used: list[str] = Field(default_factory=list, description="Tools executed during this turn.")

    model_config = {
        "json_schema_extra": {
            "examples": [{
                "success": True,
                "response": "The total budget is **$4.2 billion** for FY2025.",
                "thinking": [],
                "message": "How much is the total budget?",
                "thread_id": "thread_3f9a1c2b7d10",
                "iterations": 2,
                "tools_used": ["knowledge_base_retrieval"],
            }]
        }
    }


class ErrorResponse(BaseModel):
    """Error body: machine-readable error plus a message to show the user."""

    error: str
    response: str


class ThreadStateResponse(BaseModel):
    thread_id: str
    state: dict[str, Any]


class ThreadHistoryResponse(BaseModel):
    thread_id: str
    history: list[dict[str, Any]]
