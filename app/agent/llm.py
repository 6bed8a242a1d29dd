"""
Agent LLM: OpenAI (primary) or Hugging Face router (fallback).

Both implement the model capability used by the agent step:
    generate(messages, tools, on_token=None) -> ai Message
Messages are converted to the OpenAI chat format on the way out and the reply is
converted back into an ai Message (text plus zero or more tool calls).
Errors are raised to the caller; the agent step decides what to do with them.
"""

import json
import logging
import uuid
from typing import Any, Callable, Protocol

import httpx
from openai import OpenAI

from app.agent.state import Message, ToolCall, ai_message, get_message_text
from app.core.config import (
    AGENT_MAX_TOKENS,
    HF_API_KEY,
    HF_CHAT_URL,
    HF_LLM_MODEL,
    LLM_API_TIMEOUT,
    LLM_PROVIDER,
    LLM_TEMPERATURE,
    OPENAI_API_KEY,
    OPENAI_LLM_MODEL,
)
from app.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]

_ROLE_TO_WIRE = {"system": "system", "human": "user", "ai": "assistant", "tool": "tool"}


class ChatModel(Protocol):
    """Model capability: one call, one ai message back."""

    def generate(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        on_token: TokenCallback | None = None,
    ) -> Message: ...


def to_openai_messages(messages: list[Message]) -> list[dict[str, Any]]:
    """Convert agent messages to OpenAI chat-completions messages."""
    wire: list[dict[str, Any]] = []
    for m in messages:
        role = _ROLE_TO_WIRE.get(m.get("role", "human"), "user")
        text = get_message_text(m)
        entry: dict[str, Any] = {"role": role, "content": text}
        if role == "assistant" and m.get("tool_calls"):
            entry["content"] = text or None
            entry["tool_calls"] = [
                {
                    "id": tc["id"],
                    "type": "function",
                    "function": {"name": tc["name"], "arguments": json.dumps(tc.get("arguments") or {})},
                }
                for tc in m["tool_calls"]
            ]
        if role == "tool":
            entry["tool_call_id"] = m.get("tool_call_id", "")
        wire.append(entry)
    return wire


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        args = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        logger.warning("[llm] tool call arguments are not valid JSON: %r", str(raw)[:200])
        return {}
    return args if isinstance(args, dict) else {}


def parse_tool_calls(raw_calls: list[dict[str, Any]]) -> list[ToolCall]:
    """Normalize accumulated or wire tool calls; missing ids are generated."""
    tool_calls: list[ToolCall] = []
    for raw in raw_calls:
        fn = raw.get("function") or {}
        name = raw.get("name") or fn.get("name") or ""
        arguments = raw.get("arguments") if "arguments" in raw else fn.get("arguments")
        tool_calls.append({
            "id": raw.get("id") or f"call_{uuid.uuid4().hex[:12]}",
            "name": name,
            "arguments": _parse_arguments(arguments),
        })
    return tool_calls


class OpenAIChatModel:
    """OpenAI chat completions with tools, streamed so text deltas can be forwarded."""

    def __init__(
        self,
        api_key: str = OPENAI_API_KEY,
        model: str = OPENAI_LLM_MODEL,
        max_tokens: int = AGENT_MAX_TOKENS,
        temperature: float = LLM_TEMPERATURE,
        client: Any = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.client = client or OpenAI(api_key=api_key, timeout=LLM_API_TIMEOUT)

    def generate(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        on_token: TokenCallback | None = None,
    ) -> Message:
        logger.info("[llm:openai] IN  messages=%d tools=%d model=%s", len(messages), len(tools), self.model)
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(messages),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = tools
        stream = self.client.chat.completions.create(**kwargs)

        content_parts: list[str] = []
        tool_calls_accum: dict[int, dict[str, Any]] = {}
        for chunk in stream:
            if not chunk.choices:
                continue
            d = chunk.choices[0].delta
            if getattr(d, "content", None):
                content_parts.append(d.content)
                if on_token is not None:
                    on_token(d.content)
            if getattr(d, "tool_calls", None):
                for tc in d.tool_calls:
                    idx = getattr(tc, "index", 0)
                    if idx not in tool_calls_accum:
                        tool_calls_accum[idx] = {"id": "", "name": "", "arguments": ""}
                    if getattr(tc, "id", None):
                        tool_calls_accum[idx]["id"] = tc.id
                    fn = getattr(tc, "function", None)
                    if fn:
                        if getattr(fn, "name", None):
                            tool_calls_accum[idx]["name"] = fn.name
                        if getattr(fn, "arguments", None):
                            tool_calls_accum[idx]["arguments"] += fn.arguments

        content = "".join(content_parts)
        tool_calls = parse_tool_calls([tool_calls_accum[i] for i in sorted(tool_calls_accum)])
        if tool_calls:
            logger.info("[llm:openai] OUT tool_calls=%s", [t["name"] for t in tool_calls])
        logger.info("[llm:openai] OUT content_len=%d", len(content))
        return ai_message(content, tool_calls)


class HuggingFaceChatModel:
    """Hugging Face router (OpenAI-compatible chat completions), non-streaming."""

    def __init__(
        self,
        api_key: str = HF_API_KEY,
        model: str = HF_LLM_MODEL,
        max_tokens: int = AGENT_MAX_TOKENS,
        temperature: float = LLM_TEMPERATURE,
        url: str = HF_CHAT_URL,
        timeout: float = LLM_API_TIMEOUT,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.url = url
        self.timeout = timeout

    def generate(
        self,
        messages: list[Message],
        tools: list[dict[str, Any]],
        on_token: TokenCallback | None = None,
    ) -> Message:
        logger.info("[llm:hf] IN  messages=%d tools=%d model=%s", len(messages), len(tools), self.model)
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(messages),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }
        if tools:
            payload["tools"] = tools
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(self.url, json=payload, headers=headers)
        if response.status_code != 200:
            raise RuntimeError(f"HF LLM error {response.status_code}: {response.text[:200]}")
        data = response.json()
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            raise ValueError("HF LLM response had no choices")
        msg = choices[0].get("message") or {}
        content = msg.get("content") or ""
        tool_calls = parse_tool_calls(msg.get("tool_calls") or [])
        if content and on_token is not None:
            on_token(content)
        logger.info("[llm:hf] OUT content_len=%d tool_calls=%s", len(content), [t["name"] for t in tool_calls])
        return ai_message(content, tool_calls)


def build_chat_model(provider: str | None = None) -> ChatModel:
    """Construct the model capability for the configured provider."""
    provider = (provider or LLM_PROVIDER).strip().lower()
    if provider == "openai":
        return OpenAIChatModel()
    if provider == "huggingface":
        return HuggingFaceChatModel()
    raise ServiceUnavailableError(f"Unsupported LLM provider: {provider}")
