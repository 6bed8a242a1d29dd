"""
Conversation state for the agent loop.

Messages are plain dicts so checkpoints serialize without custom types:
    {"role": "system"|"human"|"ai"|"tool", "content": str | list[block],
     "tool_calls": [{"id", "name", "arguments"}], "tool_call_id": str}
"""

import json
from typing import Annotated, Any, Literal, TypedDict

Role = Literal["system", "human", "ai", "tool"]


class ToolCall(TypedDict):
    id: str
    name: str
    arguments: dict[str, Any]


class Message(TypedDict, total=False):
    role: Role
    content: str | list[dict[str, Any]]
    tool_calls: list[ToolCall]
    tool_call_id: str


def append_messages(existing: list[Message] | None, new: list[Message] | None) -> list[Message]:
    """Reducer for the messages channel: append-only, emission order preserved."""
    return list(existing or []) + list(new or [])


class ConversationState(TypedDict, total=False):
    messages: Annotated[list[Message], append_messages]
    current_step: str
    error: str | None
    iterations: int


def human_message(content: str) -> Message:
    return {"role": "human", "content": content}


def system_message(content: str) -> Message:
    return {"role": "system", "content": content}


def ai_message(content: str = "", tool_calls: list[ToolCall] | None = None) -> Message:
    msg: Message = {"role": "ai", "content": content}
    if tool_calls:
        msg["tool_calls"] = list(tool_calls)
    return msg


def tool_message(content: str | dict[str, Any], tool_call_id: str) -> Message:
    if not isinstance(content, str):
        content = json.dumps(content)
    return {"role": "tool", "content": content, "tool_call_id": tool_call_id}


def get_message_text(message: Message | None) -> str:
    """Text of a message; multi-block content is joined from its text blocks."""
    if not message:
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )
    return ""


def pending_tool_calls(message: Message | None) -> list[ToolCall]:
    """Tool calls requested by an ai message (empty for any other message)."""
    if not message or message.get("role") != "ai":
        return []
    return list(message.get("tool_calls") or [])


def unanswered_tool_calls(messages: list[Message]) -> list[ToolCall]:
    """Calls of the last ai message that have no tool message after it."""
    for idx in range(len(messages) - 1, -1, -1):
        if messages[idx].get("role") == "ai":
            answered = {m.get("tool_call_id") for m in messages[idx + 1 :] if m.get("role") == "tool"}
            return [tc for tc in pending_tool_calls(messages[idx]) if tc.get("id") not in answered]
    return []
