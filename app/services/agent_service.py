"""
Agent: run the retrieval QA loop for a query on a conversation thread.

Responsibility: Validate input, seed or resume the thread from the checkpoint
store, drive the LangGraph loop, and hand results back as a final answer, state
snapshots, or fine-grained events. Called by the API; no HTTP here.
Capabilities (model, retriever) and the checkpointer are passed in explicitly.
"""

import logging
import queue
import threading
from contextlib import contextmanager
from typing import Any, Generic, Iterator, TypeVar

from langgraph.checkpoint.base import BaseCheckpointSaver

from app.agent.graph import SYSTEM_PROMPT, build_graph
from app.agent.llm import ChatModel, build_chat_model
from app.agent.state import (
    ConversationState,
    Message,
    get_message_text,
    human_message,
    pending_tool_calls,
    tool_message,
    unanswered_tool_calls,
)
from app.core.checkpoints import build_checkpointer, generate_thread_id, thread_config
from app.core.config import MAX_AGENT_ITERATIONS, RETRIEVAL_TOP_K, STREAM_BUFFER_SIZE, validate_llm_config
from app.core.errors import AgentError, CheckpointStoreError, InvalidQueryError
from app.services.retrieval_service import MilvusRetriever, Retriever

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Every agent step but the last is followed by a tools step; leave headroom for the input step.
RECURSION_LIMIT = 2 * MAX_AGENT_ITERATIONS + 5

_SKIPPED_TOOL_RESULT = {
    "status": "skipped",
    "message": "Tool call was not executed because the iteration limit was reached.",
}


def _raised_by(owner: Any, exc: BaseException) -> bool:
    """True when a method of owner is one of the frames the exception passed through."""
    tb = exc.__traceback__
    while tb is not None:
        if tb.tb_frame.f_locals.get("self") is owner:
            return True
        tb = tb.tb_next
    return False


def _tools_used(messages: list[Message]) -> list[str]:
    """Names of tool calls in messages that were answered by a tool message."""
    answered = {m.get("tool_call_id") for m in messages if m.get("role") == "tool"}
    return [tc["name"] for m in messages for tc in pending_tool_calls(m) if tc["id"] in answered]


class ThreadStream(Generic[T]):
    """Items of one running turn; thread_id is the thread the turn runs on (generated if none was given)."""

    def __init__(self, thread_id: str, items: Iterator[T]) -> None:
        self.thread_id = thread_id
        self._items = items

    def __iter__(self) -> "ThreadStream[T]":
        return self

    def __next__(self) -> T:
        return next(self._items)

    def close(self) -> None:
        self._items.close()


class RagAgent:
    """Retrieval-augmented QA agent over persisted conversation threads."""

    def __init__(
        self,
        model: ChatModel,
        retriever: Retriever,
        checkpointer: BaseCheckpointSaver | None = None,
        system_prompt: str = SYSTEM_PROMPT,
        default_top_k: int = RETRIEVAL_TOP_K,
        stream_buffer_size: int = STREAM_BUFFER_SIZE,
    ) -> None:
        self.checkpointer = checkpointer if checkpointer is not None else build_checkpointer()
        self.stream_buffer_size = stream_buffer_size
        self.graph = build_graph(
            model,
            retriever,
            checkpointer=self.checkpointer,
            system_prompt=system_prompt,
            default_top_k=default_top_k,
        )

    # --- thread bookkeeping ---

    def _config(self, thread_id: str) -> dict[str, Any]:
        config = thread_config(thread_id)
        config["recursion_limit"] = RECURSION_LIMIT
        return config

    @contextmanager
    def _store_errors(self) -> Iterator[None]:
        """Report failures raised inside the checkpointer during a run as CheckpointStoreError."""
        try:
            yield
        except AgentError:
            raise
        except Exception as e:
            if _raised_by(self.checkpointer, e):
                raise CheckpointStoreError(f"Checkpoint store unavailable: {e}") from e
            raise

    def _load(self, thread_id: str) -> ConversationState | None:
        try:
            snapshot = self.graph.get_state(thread_config(thread_id))
        except Exception as e:
            raise CheckpointStoreError(f"Checkpoint store unavailable: {e}") from e
        return dict(snapshot.values) if snapshot.values else None

    def _prepare(self, query: Any, thread_id: str | None) -> tuple[str, dict[str, Any], dict[str, Any], int]:
        """
        Validate input and build the graph input for this turn.
        Returns (thread_id, run config, input, number of messages already on the thread).
        """
        if not isinstance(query, str) or not query.strip():
            raise InvalidQueryError("query is required")
        if thread_id is None:
            thread_id = generate_thread_id()
        elif not isinstance(thread_id, str) or not thread_id.strip():
            raise InvalidQueryError("thread_id must be a non-empty string")
        q = query.strip()

        existing = self._load(thread_id)
        if existing is None:
            logger.info("[agent_service] new thread=%s", thread_id)
            payload: dict[str, Any] = {
                "messages": [human_message(q)],
                "current_step": "start",
                "error": None,
                "iterations": 0,
            }
            return thread_id, self._config(thread_id), payload, 0

        history = existing.get("messages") or []
        skipped = [tool_message(_SKIPPED_TOOL_RESULT, tc["id"]) for tc in unanswered_tool_calls(history)]
        if skipped:
            logger.info("[agent_service] thread=%s closing %d unanswered tool calls", thread_id, len(skipped))
        logger.info(
            "[agent_service] resume thread=%s history_len=%d iterations=%d",
            thread_id, len(history), existing.get("iterations") or 0,
        )
        return thread_id, self._config(thread_id), {"messages": [*skipped, human_message(q)]}, len(history)

    # --- entry points ---

    def run(self, query: str, thread_id: str | None = None) -> dict[str, Any]:
        """
        Run the loop to completion. Returns answer, thread_id, iterations, tools_used.
        The answer keeps any <thinking> markup; stripping it is the caller's job.
        """
        thread_id, config, payload, prior_len = self._prepare(query, thread_id)
        logger.info("[agent_service:run] START thread=%s query=%r", thread_id, payload["messages"][-1]["content"])
        with self._store_errors():
            final = self.graph.invoke(payload, config)
        messages = final.get("messages") or []
        answer = get_message_text(messages[-1] if messages else None)
        result = {
            "answer": answer,
            "thread_id": thread_id,
            "iterations": final.get("iterations") or 0,
            "tools_used": _tools_used(messages[prior_len:]),
        }
        logger.info(
            "[agent_service:run] END thread=%s iterations=%d tools_used=%s answer_len=%d",
            thread_id, result["iterations"], result["tools_used"], len(answer),
        )
        return result

    def invoke(self, query: str, thread_id: str | None = None) -> str:
        """Run the loop to completion and return the final answer text."""
        return self.run(query, thread_id)["answer"]

    def stream(self, query: str, thread_id: str | None = None) -> ThreadStream[ConversationState]:
        """
        Yield the full conversation state after every completed node (agent or tools).
        Input is validated here, before anything is yielded. The returned stream's
        thread_id is the thread to pass back to continue the conversation.
        """
        thread_id, config, payload, _ = self._prepare(query, thread_id)
        logger.info("[agent_service:stream] START thread=%s", thread_id)

        def produce() -> Iterator[ConversationState]:
            with self._store_errors():
                values = self.graph.stream(payload, config, stream_mode="values")
                # The first emission is the input applied to the thread, before any node ran.
                next(values, None)
                for snapshot in values:
                    yield snapshot

        return ThreadStream(thread_id, self._channel(produce()))

    def stream_events(self, query: str, thread_id: str | None = None) -> ThreadStream[dict[str, Any]]:
        """
        Yield token, tool_start and tool_end events as they happen, then one done event:
        {"event": "done", "answer", "thread_id", "iterations", "tools_used"}.
        """
        thread_id, config, payload, _ = self._prepare(query, thread_id)
        logger.info("[agent_service:stream_events] START thread=%s", thread_id)

        def produce() -> Iterator[dict[str, Any]]:
            tools_used: list[str] = []
            with self._store_errors():
                for event in self.graph.stream(payload, config, stream_mode="custom"):
                    if event.get("event") == "tool_end":
                        tools_used.append(event.get("name", ""))
                    yield event
            final = self._load(thread_id) or {}
            messages = final.get("messages") or []
            yield {
                "event": "done",
                "answer": get_message_text(messages[-1] if messages else None),
                "thread_id": thread_id,
                "iterations": final.get("iterations") or 0,
                "tools_used": tools_used,
            }

        return self._channel(produce())

    def get_state(self, thread_id: str) -> ConversationState | None:
        """Latest persisted state of a thread, or None if the thread does not exist."""
        if not isinstance(thread_id, str) or not thread_id.strip():
            raise InvalidQueryError("thread_id must be a non-empty string")
        return self._load(thread_id)

    def get_history(self, thread_id: str) -> list[dict[str, Any]]:
        """All checkpoints of a thread, newest first."""
        if not isinstance(thread_id, str) or not thread_id.strip():
            raise InvalidQueryError("thread_id must be a non-empty string")
        try:
            snapshots = list(self.graph.get_state_history(thread_config(thread_id)))
        except Exception as e:
            raise CheckpointStoreError(f"Checkpoint store unavailable: {e}") from e
        return [
            {
                "checkpoint_id": snap.config["configurable"].get("checkpoint_id"),
                "step": (snap.metadata or {}).get("step"),
                "next": list(snap.next),
                "state": dict(snap.values),
            }
            for snap in snapshots
        ]

    # --- streaming channel ---

    def _channel(self, source: Iterator[T]) -> Iterator[T]:
        """
        Run source on a producer thread that pushes items onto a bounded queue.
        Items arrive in order; a producer error is re-raised to the consumer;
        closing the returned iterator stops the producer at its next put.
        """
        buffer: queue.Queue = queue.Queue(maxsize=self.stream_buffer_size)
        closed = threading.Event()

        def put(entry: tuple[str, Any]) -> bool:
            while not closed.is_set():
                try:
                    buffer.put(entry, timeout=0.1)
                    return True
                except queue.Full:
                    continue
            return False

        def pump() -> None:
            try:
                for item in source:
                    if not put(("item", item)):
                        logger.info("[agent_service:channel] consumer closed, stopping producer")
                        return
                put(("end", None))
            except Exception as e:
                put(("error", e))
            finally:
                source.close()

        producer = threading.Thread(target=pump, name="agent-stream", daemon=True)

        def drain() -> Iterator[T]:
            producer.start()
            try:
                while True:
                    kind, value = buffer.get()
                    if kind == "end":
                        return
                    if kind == "error":
                        raise value
                    yield value
            finally:
                closed.set()

        return drain()


def build_rag_agent(checkpointer: BaseCheckpointSaver | None = None) -> RagAgent:
    """Construct the agent from configuration: model provider, Milvus retriever, checkpoint store."""
    validate_llm_config()
    return RagAgent(
        model=build_chat_model(),
        retriever=MilvusRetriever(),
        checkpointer=checkpointer if checkpointer is not None else build_checkpointer(),
    )
