"""
API handlers: call the agent, map results/errors to HTTP.

Responsibility: Bridge HTTP types and the agent service. Marshalling, <thinking>
extraction, and exception-to-HTTP mapping. Lives in the API layer so services
stay free of FastAPI/HTTP types.
"""

import json
import logging
import re
from typing import Any, Iterator

from fastapi.responses import JSONResponse

from app.core.errors import CheckpointStoreError, InvalidQueryError, ServiceUnavailableError
from app.schemas.chat import ChatRequest, ChatResponse, ErrorResponse
from app.services.agent_service import RagAgent

logger = logging.getLogger(__name__)

_THINKING_RE = re.compile(r"<thinking>([\s\S]*?)</thinking>")
_BLANK_LINES_RE = re.compile(r"\n\s*\n")

NO_MESSAGE_TEXT = "Please provide a message to process."


def extract_thinking(raw: str) -> tuple[str, list[str]]:
    """Split <thinking> blocks out of an answer. Returns (cleaned answer, thinking blocks)."""
    thinking = _THINKING_RE.findall(raw or "")
    content = _THINKING_RE.sub("", raw or "")
    content = _BLANK_LINES_RE.sub("\n\n", content).strip()
    return content, thinking


def error_response(status_code: int, error: str, response: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error, response=response).model_dump())


def apology(e: Exception) -> str:
    return f"I apologize, but I encountered an error processing your request: {e}"


def handle_chat(agent: RagAgent, body: ChatRequest) -> ChatResponse | JSONResponse:
    """Run one chat turn; 400 on invalid input, 503 on unavailable dependencies, 500 on agent failure."""
    message = body.message if isinstance(body.message, str) else ""
    if not message.strip():
        return error_response(400, "No message provided", NO_MESSAGE_TEXT)
    message = message.strip()
    logger.info("[api:chat] Processing user message: %s", message[:100])

    try:
        result = agent.run(message, body.thread_id)
    except InvalidQueryError as e:
        return error_response(400, "Invalid request", str(e))
    except (ServiceUnavailableError, CheckpointStoreError) as e:
        logger.exception("[api:chat] dependency unavailable")
        return error_response(503, "Service unavailable", apology(e))
    except Exception as e:
        logger.exception("[api:chat] Error processing message with RAG agent")
        return error_response(500, "Processing error", apology(e))

    content, thinking = extract_thinking(result["answer"])
    return ChatResponse(
        success=True,
        response=content,
        thinking=thinking,
        message=message,
        thread_id=result["thread_id"],
        iterations=result["iterations"],
        tools_used=result["tools_used"],
    )


def _sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


def sse_events(events: Iterator[dict[str, Any]]) -> Iterator[str]:
    """Yield Server-Sent Events for a running agent event stream."""
    try:
        for evt in events:
            event_type = evt.get("event", "")
            data = {k: v for k, v in evt.items() if k != "event"}
            if event_type == "done":
                content, thinking = extract_thinking(data.get("answer", ""))
                data["answer"] = content
                data["thinking"] = thinking
            yield _sse(event_type, data)
    except Exception as e:
        logger.exception("[api:chat_stream] SSE stream failed")
        yield _sse("error", {"message": apology(e)})
