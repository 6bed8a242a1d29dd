"""
API route aggregator: register endpoints; no logic, only delegate to handlers.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse

from app.api.handlers import NO_MESSAGE_TEXT, error_response, handle_chat, sse_events
from app.core.errors import CheckpointStoreError, InvalidQueryError
from app.schemas.chat import ChatRequest, ChatResponse, ErrorResponse, ThreadHistoryResponse, ThreadStateResponse
from app.services.agent_service import RagAgent

logger = logging.getLogger(__name__)
router = APIRouter()

EXAMPLE_QUESTIONS = [
    "How much is the total budget?",
    "What are the main priorities of this year's budget?",
    "What are the primary sources of revenue for this year's budget?",
    "Can you tell me about the file in the knowledge base? Summarize it",
    "Summarize the budgets",
    "What departments are included in this budget?",
]

_BAD_REQUEST = {400: {"model": ErrorResponse, "description": "Empty message or invalid thread id"}}
_UNAVAILABLE = {503: {"model": ErrorResponse, "description": "Model provider or checkpoint store unavailable"}}
_FAILED = {500: {"model": ErrorResponse, "description": "Agent failed while answering"}}


def get_agent(request: Request) -> RagAgent:
    agent = getattr(request.app.state, "agent", None)
    if agent is None:
        raise HTTPException(status_code=503, detail="Agent is not available")
    return agent


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "RAG agent backend running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


@router.get("/api/health", tags=["system"])
def api_health(request: Request) -> dict:
    return {
        "status": "healthy",
        "agent_available": getattr(request.app.state, "agent", None) is not None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/api/examples", tags=["system"], summary="Example questions for the chat UI")
def api_examples() -> dict:
    return {"examples": EXAMPLE_QUESTIONS}


# --- Chat ---

@router.post(
    "/api/chat",
    response_model=ChatResponse,
    responses={**_BAD_REQUEST, **_FAILED, **_UNAVAILABLE},
    tags=["chat"],
    summary="Ask the RAG agent (sync)",
    description="Send a message; receive the answer with <thinking> blocks split out. 400 on empty message, 500 on agent failure.",
)
def post_chat(body: ChatRequest, agent: RagAgent = Depends(get_agent)):
    return handle_chat(agent, body)


@router.post(
    "/api/chat/stream",
    responses={**_BAD_REQUEST, **_UNAVAILABLE},
    tags=["chat"],
    summary="Ask the RAG agent (SSE stream)",
    description="Stream the answer via Server-Sent Events. Events: token, tool_start, tool_end, done, error.",
)
def post_chat_stream(body: ChatRequest, agent: RagAgent = Depends(get_agent)):
    logger.info("[api:chat_stream] IN  message=%r thread_id=%s", body.message, body.thread_id)
    if not (body.message or "").strip():
        return error_response(400, "No message provided", NO_MESSAGE_TEXT)
    try:
        events = agent.stream_events(body.message, body.thread_id)
    except InvalidQueryError as e:
        return error_response(400, "Invalid request", str(e))
    except CheckpointStoreError as e:
        return error_response(503, "Service unavailable", str(e))
    return StreamingResponse(
        sse_events(events),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


# --- Threads ---

@router.get("/api/threads/{thread_id}", response_model=ThreadStateResponse, tags=["threads"])
def get_thread_state(thread_id: str, agent: RagAgent = Depends(get_agent)):
    try:
        state = agent.get_state(thread_id)
    except CheckpointStoreError as e:
        return JSONResponse(status_code=503, content={"detail": str(e)})
    if state is None:
        raise HTTPException(status_code=404, detail=f"Thread not found: {thread_id!r}")
    return ThreadStateResponse(thread_id=thread_id, state=state)


@router.get("/api/threads/{thread_id}/history", response_model=ThreadHistoryResponse, tags=["threads"])
def get_thread_history(thread_id: str, agent: RagAgent = Depends(get_agent)):
    try:
        history = agent.get_history(thread_id)
    except CheckpointStoreError as e:
        return JSONResponse(status_code=503, content={"detail": str(e)})
    if not history:
        raise HTTPException(status_code=404, detail=f"Thread not found: {thread_id!r}")
    return ThreadHistoryResponse(thread_id=thread_id, history=history)
